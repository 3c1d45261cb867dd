"""Accounting snapshot, minting fee schedule and engine parameter models."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Integer,
    Numeric,
    PrimaryKeyConstraint,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base

logger = logging.getLogger(__name__)

# Scaled integers at 10**18 within the unsigned 256-bit range.
SCALED_AMOUNT = Numeric(78, 0)


class AccountingSnapshot(Base):
    """Append-only per-unit accounting row keyed by UTC day and sequence."""

    __tablename__ = "accounting_snapshot"
    __table_args__ = (
        PrimaryKeyConstraint("day_key", "sequence", name="pk_accounting_snapshot"),
        CheckConstraint("day_key >= 19700101", name="ck_accounting_snapshot_day_key_range"),
        CheckConstraint("sequence >= 0", name="ck_accounting_snapshot_sequence_non_negative"),
        CheckConstraint(
            "price >= 0 AND cash_per_unit >= 0 AND balance_per_unit >= 0 AND lending_fee >= 0",
            name="ck_accounting_snapshot_amounts_non_negative",
        ),
    )

    day_key: Mapped[int] = mapped_column(Integer, primary_key=True)
    sequence: Mapped[int] = mapped_column(Integer, primary_key=True)
    price: Mapped[Decimal] = mapped_column(SCALED_AMOUNT, nullable=False)
    cash_per_unit: Mapped[Decimal] = mapped_column(SCALED_AMOUNT, nullable=False)
    balance_per_unit: Mapped[Decimal] = mapped_column(SCALED_AMOUNT, nullable=False)
    lending_fee: Mapped[Decimal] = mapped_column(SCALED_AMOUNT, nullable=False)
    recorded_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )


class MintingFeeBracket(Base):
    """One tier of the ascending minting fee schedule."""

    __tablename__ = "minting_fee_bracket"
    __table_args__ = (
        PrimaryKeyConstraint("bracket_index", name="pk_minting_fee_bracket"),
        UniqueConstraint("threshold", name="uq_minting_fee_bracket_threshold"),
        CheckConstraint("bracket_index >= 0", name="ck_minting_fee_bracket_index_non_negative"),
        CheckConstraint(
            "threshold >= 0 AND rate >= 0",
            name="ck_minting_fee_bracket_amounts_non_negative",
        ),
    )

    bracket_index: Mapped[int] = mapped_column(Integer, primary_key=True)
    threshold: Mapped[Decimal] = mapped_column(SCALED_AMOUNT, nullable=False)
    rate: Mapped[Decimal] = mapped_column(SCALED_AMOUNT, nullable=False)


class EngineParameter(Base):
    """Named scalar engine setting (last active day, fee floors, thresholds)."""

    __tablename__ = "engine_parameter"
    __table_args__ = (
        PrimaryKeyConstraint("parameter_name", name="pk_engine_parameter"),
        CheckConstraint(
            "length(btrim(parameter_name)) > 0",
            name="ck_engine_parameter_name_not_blank",
        ),
        CheckConstraint("parameter_value >= 0", name="ck_engine_parameter_value_non_negative"),
    )

    parameter_name: Mapped[str] = mapped_column(Text, primary_key=True)
    parameter_value: Mapped[Decimal] = mapped_column(SCALED_AMOUNT, nullable=False)
