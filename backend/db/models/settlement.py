"""Settlement order, delayed redemption and rebalance event models."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CHAR,
    CheckConstraint,
    DateTime,
    Identity,
    Index,
    Integer,
    PrimaryKeyConstraint,
    Text,
    UniqueConstraint,
    desc,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base
from backend.db.enums import order_type_enum, rebalance_kind_enum
from backend.db.models.accounting import SCALED_AMOUNT

logger = logging.getLogger(__name__)


class SettlementOrder(Base):
    """Settled creation/redemption order in global and per-account order."""

    __tablename__ = "settlement_order"
    __table_args__ = (
        PrimaryKeyConstraint("sequence_index", name="pk_settlement_order"),
        UniqueConstraint("account", "account_index", name="uq_settlement_order_account_index"),
        CheckConstraint(
            "length(btrim(account)) > 0",
            name="ck_settlement_order_account_not_blank",
        ),
        CheckConstraint(
            "sequence_index >= 0 AND account_index >= 0",
            name="ck_settlement_order_indexes_non_negative",
        ),
        CheckConstraint(
            "tokens_given >= 0 AND tokens_received >= 0 AND fee >= 0 AND price > 0",
            name="ck_settlement_order_amounts_non_negative",
        ),
        Index(
            "idx_settlement_order_account_created",
            "account",
            desc("created_at_utc"),
        ),
        Index("idx_settlement_order_type", "order_type"),
    )

    sequence_index: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    account: Mapped[str] = mapped_column(Text, nullable=False)
    account_index: Mapped[int] = mapped_column(Integer, nullable=False)
    order_type: Mapped[str] = mapped_column(order_type_enum, nullable=False)
    tokens_given: Mapped[Decimal] = mapped_column(SCALED_AMOUNT, nullable=False)
    tokens_received: Mapped[Decimal] = mapped_column(SCALED_AMOUNT, nullable=False)
    fee: Mapped[Decimal] = mapped_column(SCALED_AMOUNT, nullable=False)
    price: Mapped[Decimal] = mapped_column(SCALED_AMOUNT, nullable=False)
    created_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    row_hash: Mapped[str] = mapped_column(CHAR(64), nullable=False)


class DelayedRedemption(Base):
    """Outstanding redemption payout awaiting hot-wallet liquidity."""

    __tablename__ = "delayed_redemption"
    __table_args__ = (
        PrimaryKeyConstraint("account", name="pk_delayed_redemption"),
        CheckConstraint("outstanding_amount > 0", name="ck_delayed_redemption_amount_pos"),
    )

    account: Mapped[str] = mapped_column(Text, primary_key=True)
    outstanding_amount: Mapped[Decimal] = mapped_column(SCALED_AMOUNT, nullable=False)


class RebalanceEvent(Base):
    """Append-only record of a committed daily or threshold rebalance."""

    __tablename__ = "rebalance_event"
    __table_args__ = (
        PrimaryKeyConstraint("rebalance_seq", name="pk_rebalance_event"),
        UniqueConstraint("row_hash", name="uq_rebalance_event_row_hash"),
        CheckConstraint("day_key >= 19700101", name="ck_rebalance_event_day_key_range"),
        CheckConstraint("price > 0", name="ck_rebalance_event_price_pos"),
        CheckConstraint("total_supply > 0", name="ck_rebalance_event_supply_pos"),
        Index("idx_rebalance_event_day_key", "day_key"),
    )

    rebalance_seq: Mapped[int] = mapped_column(
        BigInteger,
        Identity(always=True),
        primary_key=True,
    )
    kind: Mapped[str] = mapped_column(rebalance_kind_enum, nullable=False)
    day_key: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(SCALED_AMOUNT, nullable=False)
    lending_fee: Mapped[Decimal] = mapped_column(SCALED_AMOUNT, nullable=False)
    total_supply: Mapped[Decimal] = mapped_column(SCALED_AMOUNT, nullable=False)
    end_cash_position: Mapped[Decimal] = mapped_column(SCALED_AMOUNT, nullable=False)
    end_balance: Mapped[Decimal] = mapped_column(SCALED_AMOUNT, nullable=False)
    end_net_value: Mapped[Decimal] = mapped_column(SCALED_AMOUNT, nullable=False)
    fee_in_fiat: Mapped[Decimal] = mapped_column(SCALED_AMOUNT, nullable=False)
    change_in_balance: Mapped[Decimal] = mapped_column(SCALED_AMOUNT, nullable=False)
    change_is_negative: Mapped[bool] = mapped_column(Boolean, nullable=False)
    created_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    row_hash: Mapped[str] = mapped_column(CHAR(64), nullable=False)
