"""Initial schema for the inverse token accounting and settlement engine."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from alembic import op

logger = logging.getLogger(__name__)

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


ENUM_DDL: tuple[str, ...] = (
    "CREATE TYPE order_type_enum AS ENUM ('CREATE', 'REDEEM', 'REDEEM_NO_SETTLEMENT');",
    "CREATE TYPE rebalance_kind_enum AS ENUM ('DAILY', 'THRESHOLD');",
)

TABLE_DDL: tuple[str, ...] = (
    """
    CREATE TABLE accounting_snapshot (
        day_key INTEGER NOT NULL,
        sequence INTEGER NOT NULL,
        price NUMERIC(78,0) NOT NULL,
        cash_per_unit NUMERIC(78,0) NOT NULL,
        balance_per_unit NUMERIC(78,0) NOT NULL,
        lending_fee NUMERIC(78,0) NOT NULL,
        recorded_at_utc TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT pk_accounting_snapshot PRIMARY KEY (day_key, sequence),
        CONSTRAINT ck_accounting_snapshot_day_key_range CHECK (day_key >= 19700101),
        CONSTRAINT ck_accounting_snapshot_sequence_non_negative CHECK (sequence >= 0),
        CONSTRAINT ck_accounting_snapshot_amounts_non_negative CHECK (price >= 0 AND cash_per_unit >= 0 AND balance_per_unit >= 0 AND lending_fee >= 0)
    );
    """,
    """
    CREATE TABLE minting_fee_bracket (
        bracket_index INTEGER NOT NULL,
        threshold NUMERIC(78,0) NOT NULL,
        rate NUMERIC(78,0) NOT NULL,
        CONSTRAINT pk_minting_fee_bracket PRIMARY KEY (bracket_index),
        CONSTRAINT uq_minting_fee_bracket_threshold UNIQUE (threshold),
        CONSTRAINT ck_minting_fee_bracket_index_non_negative CHECK (bracket_index >= 0),
        CONSTRAINT ck_minting_fee_bracket_amounts_non_negative CHECK (threshold >= 0 AND rate >= 0)
    );
    """,
    """
    CREATE TABLE engine_parameter (
        parameter_name TEXT NOT NULL,
        parameter_value NUMERIC(78,0) NOT NULL,
        CONSTRAINT pk_engine_parameter PRIMARY KEY (parameter_name),
        CONSTRAINT ck_engine_parameter_name_not_blank CHECK (length(btrim(parameter_name)) > 0),
        CONSTRAINT ck_engine_parameter_value_non_negative CHECK (parameter_value >= 0)
    );
    """,
    """
    CREATE TABLE settlement_order (
        sequence_index BIGINT NOT NULL,
        account TEXT NOT NULL,
        account_index INTEGER NOT NULL,
        order_type order_type_enum NOT NULL,
        tokens_given NUMERIC(78,0) NOT NULL,
        tokens_received NUMERIC(78,0) NOT NULL,
        fee NUMERIC(78,0) NOT NULL,
        price NUMERIC(78,0) NOT NULL,
        created_at_utc TIMESTAMPTZ NOT NULL,
        row_hash CHAR(64) NOT NULL,
        CONSTRAINT pk_settlement_order PRIMARY KEY (sequence_index),
        CONSTRAINT uq_settlement_order_account_index UNIQUE (account, account_index),
        CONSTRAINT ck_settlement_order_account_not_blank CHECK (length(btrim(account)) > 0),
        CONSTRAINT ck_settlement_order_indexes_non_negative CHECK (sequence_index >= 0 AND account_index >= 0),
        CONSTRAINT ck_settlement_order_amounts_non_negative CHECK (tokens_given >= 0 AND tokens_received >= 0 AND fee >= 0 AND price > 0)
    );
    """,
    """
    CREATE TABLE delayed_redemption (
        account TEXT NOT NULL,
        outstanding_amount NUMERIC(78,0) NOT NULL,
        CONSTRAINT pk_delayed_redemption PRIMARY KEY (account),
        CONSTRAINT ck_delayed_redemption_amount_pos CHECK (outstanding_amount > 0)
    );
    """,
    """
    CREATE TABLE rebalance_event (
        rebalance_seq BIGINT GENERATED ALWAYS AS IDENTITY,
        kind rebalance_kind_enum NOT NULL,
        day_key INTEGER NOT NULL,
        price NUMERIC(78,0) NOT NULL,
        lending_fee NUMERIC(78,0) NOT NULL,
        total_supply NUMERIC(78,0) NOT NULL,
        end_cash_position NUMERIC(78,0) NOT NULL,
        end_balance NUMERIC(78,0) NOT NULL,
        end_net_value NUMERIC(78,0) NOT NULL,
        fee_in_fiat NUMERIC(78,0) NOT NULL,
        change_in_balance NUMERIC(78,0) NOT NULL,
        change_is_negative BOOLEAN NOT NULL,
        created_at_utc TIMESTAMPTZ NOT NULL,
        row_hash CHAR(64) NOT NULL,
        CONSTRAINT pk_rebalance_event PRIMARY KEY (rebalance_seq),
        CONSTRAINT uq_rebalance_event_row_hash UNIQUE (row_hash),
        CONSTRAINT ck_rebalance_event_day_key_range CHECK (day_key >= 19700101),
        CONSTRAINT ck_rebalance_event_price_pos CHECK (price > 0),
        CONSTRAINT ck_rebalance_event_supply_pos CHECK (total_supply > 0)
    );
    """,
)

INDEX_DDL: tuple[str, ...] = (
    "CREATE INDEX idx_settlement_order_account_created ON settlement_order USING btree (account, created_at_utc DESC);",
    "CREATE INDEX idx_settlement_order_type ON settlement_order USING btree (order_type);",
    "CREATE INDEX idx_rebalance_event_day_key ON rebalance_event USING btree (day_key);",
)

APPEND_ONLY_DDL: tuple[str, ...] = (
    """
    CREATE OR REPLACE FUNCTION fn_enforce_append_only()
    RETURNS TRIGGER
    LANGUAGE plpgsql
    AS $$
    BEGIN
        RAISE EXCEPTION 'append-only violation on table %, operation % is not allowed', TG_TABLE_NAME, TG_OP;
    END;
    $$;
    """,
    """
    CREATE TRIGGER trg_accounting_snapshot_append_only
    BEFORE UPDATE OR DELETE ON accounting_snapshot
    FOR EACH ROW EXECUTE FUNCTION fn_enforce_append_only();
    """,
    """
    CREATE TRIGGER trg_rebalance_event_append_only
    BEFORE UPDATE OR DELETE ON rebalance_event
    FOR EACH ROW EXECUTE FUNCTION fn_enforce_append_only();
    """,
)


def _execute_all(statements: Sequence[str]) -> None:
    """Execute an ordered sequence of SQL statements."""

    for statement in statements:
        try:
            op.execute(statement)
        except Exception:
            logger.exception("Migration statement failed.")
            raise


def upgrade() -> None:
    """Apply the initial schema migration."""

    logger.info("Starting initial schema migration upgrade.")
    _execute_all(ENUM_DDL)
    _execute_all(TABLE_DDL)
    _execute_all(INDEX_DDL)
    _execute_all(APPEND_ONLY_DDL)
    logger.info("Completed initial schema migration upgrade.")


def downgrade() -> None:
    """Revert the initial schema migration."""

    logger.info("Starting initial schema migration downgrade.")
    _execute_all(
        (
            "DROP TRIGGER IF EXISTS trg_rebalance_event_append_only ON rebalance_event;",
            "DROP TRIGGER IF EXISTS trg_accounting_snapshot_append_only ON accounting_snapshot;",
            "DROP FUNCTION IF EXISTS fn_enforce_append_only();",
            "DROP TABLE IF EXISTS rebalance_event;",
            "DROP TABLE IF EXISTS delayed_redemption;",
            "DROP TABLE IF EXISTS settlement_order;",
            "DROP TABLE IF EXISTS engine_parameter;",
            "DROP TABLE IF EXISTS minting_fee_bracket;",
            "DROP TABLE IF EXISTS accounting_snapshot;",
            "DROP TYPE IF EXISTS rebalance_kind_enum;",
            "DROP TYPE IF EXISTS order_type_enum;",
        )
    )
    logger.info("Completed initial schema migration downgrade.")
