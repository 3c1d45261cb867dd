"""SQL-backed ledger store over a minimal named-parameter database protocol."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Iterator, Mapping, Optional, Protocol, Sequence

from backend.db.enums import OrderType, RebalanceKind
from engine.errors import EngineError
from engine.ledger_store import (
    AccountingSnapshot,
    MintingFeeBracket,
    OrderRecord,
    RebalanceRecord,
)

logger = logging.getLogger(__name__)


class LedgerDatabase(Protocol):
    """Minimal transactional DB protocol used by the SQL ledger store."""

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        """Fetch one row."""

    def fetch_all(self, sql: str, params: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        """Fetch all rows in deterministic query order."""

    def execute(self, sql: str, params: Mapping[str, Any]) -> None:
        """Execute a mutation statement."""

    def begin(self) -> None:
        """Open a transaction."""

    def commit(self) -> None:
        """Commit the open transaction."""

    def rollback(self) -> None:
        """Discard the open transaction."""


def _as_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, Decimal):
        if value != value.to_integral_value():
            raise EngineError(f"Stored scaled amount is not integral: {value}.")
        return int(value)
    return int(str(value))


def _as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _snapshot_from_row(row: Mapping[str, Any]) -> AccountingSnapshot:
    return AccountingSnapshot(
        day_key=int(row["day_key"]),
        sequence=int(row["sequence"]),
        price=_as_int(row["price"]),
        cash_per_unit=_as_int(row["cash_per_unit"]),
        balance_per_unit=_as_int(row["balance_per_unit"]),
        lending_fee=_as_int(row["lending_fee"]),
    )


def _order_from_row(row: Mapping[str, Any]) -> OrderRecord:
    return OrderRecord(
        order_type=OrderType(str(row["order_type"])),
        account=str(row["account"]),
        tokens_given=_as_int(row["tokens_given"]),
        tokens_received=_as_int(row["tokens_received"]),
        fee=_as_int(row["fee"]),
        price=_as_int(row["price"]),
        created_at_utc=_as_datetime(row["created_at_utc"]),
        sequence_index=int(row["sequence_index"]),
        account_index=int(row["account_index"]),
        row_hash=str(row["row_hash"]),
    )


def _rebalance_from_row(row: Mapping[str, Any]) -> RebalanceRecord:
    return RebalanceRecord(
        kind=RebalanceKind(str(row["kind"])),
        day_key=int(row["day_key"]),
        price=_as_int(row["price"]),
        lending_fee=_as_int(row["lending_fee"]),
        total_supply=_as_int(row["total_supply"]),
        end_cash_position=_as_int(row["end_cash_position"]),
        end_balance=_as_int(row["end_balance"]),
        end_net_value=_as_int(row["end_net_value"]),
        fee_in_fiat=_as_int(row["fee_in_fiat"]),
        change_in_balance=_as_int(row["change_in_balance"]),
        change_is_negative=bool(row["change_is_negative"]),
        created_at_utc=_as_datetime(row["created_at_utc"]),
        row_hash=str(row["row_hash"]),
    )


_ORDER_COLUMNS = """
    sequence_index, account, account_index, order_type, tokens_given, tokens_received,
    fee, price, created_at_utc, row_hash
"""


class SqlLedgerStore:
    """Ledger store persisting to the ``0001_initial_schema`` tables."""

    def __init__(self, db: LedgerDatabase) -> None:
        self._db = db
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._depth > 0:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        self._db.begin()
        self._depth = 1
        try:
            yield
        except BaseException:
            self._db.rollback()
            logger.info("Ledger transaction rolled back.")
            raise
        else:
            self._db.commit()
        finally:
            self._depth = 0

    def append_snapshot(self, snapshot: AccountingSnapshot) -> None:
        self._db.execute(
            """
            INSERT INTO accounting_snapshot (
                day_key, sequence, price, cash_per_unit, balance_per_unit, lending_fee
            ) VALUES (
                :day_key, :sequence, :price, :cash_per_unit, :balance_per_unit, :lending_fee
            )
            """,
            {
                "day_key": snapshot.day_key,
                "sequence": snapshot.sequence,
                "price": snapshot.price,
                "cash_per_unit": snapshot.cash_per_unit,
                "balance_per_unit": snapshot.balance_per_unit,
                "lending_fee": snapshot.lending_fee,
            },
        )

    def snapshots_for_day(self, day_key: int) -> tuple[AccountingSnapshot, ...]:
        rows = self._db.fetch_all(
            """
            SELECT day_key, sequence, price, cash_per_unit, balance_per_unit, lending_fee
            FROM accounting_snapshot
            WHERE day_key = :day_key
            ORDER BY sequence ASC
            """,
            {"day_key": day_key},
        )
        return tuple(_snapshot_from_row(row) for row in rows)

    def get_parameter(self, name: str) -> Optional[int]:
        row = self._db.fetch_one(
            "SELECT parameter_value FROM engine_parameter WHERE parameter_name = :name",
            {"name": name},
        )
        if row is None:
            return None
        return _as_int(row["parameter_value"])

    def set_parameter(self, name: str, value: int) -> None:
        self._db.execute(
            """
            INSERT INTO engine_parameter (parameter_name, parameter_value)
            VALUES (:name, :value)
            ON CONFLICT (parameter_name) DO UPDATE SET parameter_value = EXCLUDED.parameter_value
            """,
            {"name": name, "value": value},
        )

    def fee_brackets(self) -> tuple[MintingFeeBracket, ...]:
        rows = self._db.fetch_all(
            "SELECT threshold, rate FROM minting_fee_bracket ORDER BY bracket_index ASC",
            {},
        )
        return tuple(
            MintingFeeBracket(threshold=_as_int(row["threshold"]), rate=_as_int(row["rate"]))
            for row in rows
        )

    def append_fee_bracket(self, bracket: MintingFeeBracket) -> None:
        self._db.execute(
            """
            INSERT INTO minting_fee_bracket (bracket_index, threshold, rate)
            SELECT COALESCE(MAX(bracket_index) + 1, 0), :threshold, :rate
            FROM minting_fee_bracket
            """,
            {"threshold": bracket.threshold, "rate": bracket.rate},
        )

    def update_fee_bracket(self, index: int, bracket: MintingFeeBracket) -> None:
        self._db.execute(
            """
            UPDATE minting_fee_bracket
            SET threshold = :threshold, rate = :rate
            WHERE bracket_index = :bracket_index
            """,
            {"bracket_index": index, "threshold": bracket.threshold, "rate": bracket.rate},
        )

    def remove_last_fee_bracket(self) -> None:
        self._db.execute(
            """
            DELETE FROM minting_fee_bracket
            WHERE bracket_index = (SELECT MAX(bracket_index) FROM minting_fee_bracket)
            """,
            {},
        )

    def append_order(self, order: OrderRecord) -> None:
        self._db.execute(
            f"""
            INSERT INTO settlement_order ({_ORDER_COLUMNS})
            VALUES (
                :sequence_index, :account, :account_index, :order_type, :tokens_given,
                :tokens_received, :fee, :price, :created_at_utc, :row_hash
            )
            """,
            self._order_params(order),
        )

    def replace_order(self, order: OrderRecord) -> None:
        self._db.execute(
            """
            UPDATE settlement_order
            SET order_type = :order_type,
                tokens_given = :tokens_given,
                tokens_received = :tokens_received,
                fee = :fee,
                price = :price,
                created_at_utc = :created_at_utc,
                row_hash = :row_hash
            WHERE sequence_index = :sequence_index
              AND account = :account
              AND account_index = :account_index
            """,
            self._order_params(order),
        )

    def order_count(self) -> int:
        row = self._db.fetch_one("SELECT COUNT(*) AS n FROM settlement_order", {})
        return int(row["n"]) if row is not None else 0

    def orders(self) -> tuple[OrderRecord, ...]:
        rows = self._db.fetch_all(
            f"SELECT {_ORDER_COLUMNS} FROM settlement_order ORDER BY sequence_index ASC",
            {},
        )
        return tuple(_order_from_row(row) for row in rows)

    def account_orders(self, account: str) -> tuple[OrderRecord, ...]:
        rows = self._db.fetch_all(
            f"""
            SELECT {_ORDER_COLUMNS}
            FROM settlement_order
            WHERE account = :account
            ORDER BY account_index ASC
            """,
            {"account": account},
        )
        return tuple(_order_from_row(row) for row in rows)

    def delayed_redemption(self, account: str) -> int:
        row = self._db.fetch_one(
            "SELECT outstanding_amount FROM delayed_redemption WHERE account = :account",
            {"account": account},
        )
        return _as_int(row["outstanding_amount"]) if row is not None else 0

    def set_delayed_redemption(self, account: str, amount: int) -> None:
        if amount == 0:
            self._db.execute(
                "DELETE FROM delayed_redemption WHERE account = :account",
                {"account": account},
            )
            return
        self._db.execute(
            """
            INSERT INTO delayed_redemption (account, outstanding_amount)
            VALUES (:account, :amount)
            ON CONFLICT (account) DO UPDATE SET outstanding_amount = EXCLUDED.outstanding_amount
            """,
            {"account": account, "amount": amount},
        )

    def append_rebalance_record(self, record: RebalanceRecord) -> None:
        self._db.execute(
            """
            INSERT INTO rebalance_event (
                kind, day_key, price, lending_fee, total_supply, end_cash_position,
                end_balance, end_net_value, fee_in_fiat, change_in_balance,
                change_is_negative, created_at_utc, row_hash
            ) VALUES (
                :kind, :day_key, :price, :lending_fee, :total_supply, :end_cash_position,
                :end_balance, :end_net_value, :fee_in_fiat, :change_in_balance,
                :change_is_negative, :created_at_utc, :row_hash
            )
            """,
            {
                "kind": record.kind.value,
                "day_key": record.day_key,
                "price": record.price,
                "lending_fee": record.lending_fee,
                "total_supply": record.total_supply,
                "end_cash_position": record.end_cash_position,
                "end_balance": record.end_balance,
                "end_net_value": record.end_net_value,
                "fee_in_fiat": record.fee_in_fiat,
                "change_in_balance": record.change_in_balance,
                "change_is_negative": record.change_is_negative,
                "created_at_utc": record.created_at_utc,
                "row_hash": record.row_hash,
            },
        )

    def rebalance_records(self) -> tuple[RebalanceRecord, ...]:
        rows = self._db.fetch_all(
            """
            SELECT kind, day_key, price, lending_fee, total_supply, end_cash_position,
                   end_balance, end_net_value, fee_in_fiat, change_in_balance,
                   change_is_negative, created_at_utc, row_hash
            FROM rebalance_event
            ORDER BY rebalance_seq ASC
            """,
            {},
        )
        return tuple(_rebalance_from_row(row) for row in rows)

    @staticmethod
    def _order_params(order: OrderRecord) -> dict[str, Any]:
        return {
            "sequence_index": order.sequence_index,
            "account": order.account,
            "account_index": order.account_index,
            "order_type": order.order_type.value,
            "tokens_given": order.tokens_given,
            "tokens_received": order.tokens_received,
            "fee": order.fee,
            "price": order.price,
            "created_at_utc": order.created_at_utc,
            "row_hash": order.row_hash,
        }
