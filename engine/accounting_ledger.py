"""Day-keyed accounting snapshots, minting-fee schedule and engine parameters."""

from __future__ import annotations

from bisect import bisect_left
import logging
from typing import Iterable, Optional

from engine.collaborators import CallerRole
from engine.common import EngineClock
from engine.day_key import to_day_key
from engine.errors import (
    BracketOrderViolation,
    InvalidOrderIndex,
    InvalidRange,
    NoData,
    Unauthorized,
)
from engine.fixed_point import require_amount
from engine.ledger_store import (
    PARAM_LAST_ACTIVE_DAY,
    PARAM_LAST_MINTING_FEE,
    PARAM_MIN_REBALANCE_AMOUNT,
    PARAM_MINIMUM_MINTING_FEE,
    PARAM_MINIMUM_TRADE,
    AccountingSnapshot,
    LedgerStore,
    MintingFeeBracket,
)

logger = logging.getLogger(__name__)

_WRITER_ROLES = frozenset({CallerRole.OWNER, CallerRole.SETTLEMENT})
_ADMIN_ROLES = frozenset({CallerRole.OWNER})


def require_role(role: CallerRole, allowed: Iterable[CallerRole], operation: str) -> None:
    """Reject callers whose role is not in ``allowed`` before any state is touched."""
    if role not in allowed:
        raise Unauthorized(f"{operation} is not permitted for role {getattr(role, 'value', role)}.")


class AccountingLedger:
    """Authoritative per-unit accounting history plus the fee schedule.

    Snapshots are immutable and grouped by UTC day key; the current snapshot is
    the last one appended under the last active day. Amounts are scaled
    integers at ``ONE``.
    """

    def __init__(self, store: LedgerStore, clock: Optional[EngineClock] = None) -> None:
        self._store = store
        self._clock = clock or EngineClock()

    @property
    def store(self) -> LedgerStore:
        return self._store

    @property
    def clock(self) -> EngineClock:
        return self._clock

    # Snapshots

    def append_snapshot(
        self,
        role: CallerRole,
        price: int,
        cash_per_unit: int,
        balance_per_unit: int,
        lending_fee: int,
    ) -> AccountingSnapshot:
        """Append a snapshot under today's day key and make it the last active day."""
        require_role(role, _WRITER_ROLES, "append_snapshot")
        day_key = to_day_key(self._clock.now_utc())
        last_day = self.last_active_day()
        if last_day is not None and day_key < last_day:
            raise InvalidRange(f"Day key {day_key} precedes last active day {last_day}.")
        with self._store.transaction():
            snapshot = self._append(day_key, price, cash_per_unit, balance_per_unit, lending_fee)
            self._store.set_parameter(PARAM_LAST_ACTIVE_DAY, day_key)
        logger.info(
            "Accounting snapshot appended",
            extra={"day_key": day_key, "sequence": snapshot.sequence, "price": price},
        )
        return snapshot

    def append_snapshot_to_last_active_day(
        self,
        role: CallerRole,
        price: int,
        cash_per_unit: int,
        balance_per_unit: int,
        lending_fee: int,
    ) -> AccountingSnapshot:
        """Append under the existing last active day without advancing it."""
        require_role(role, _WRITER_ROLES, "append_snapshot_to_last_active_day")
        day_key = self.last_active_day()
        if day_key is None:
            raise NoData("No last active day to append to.")
        with self._store.transaction():
            snapshot = self._append(day_key, price, cash_per_unit, balance_per_unit, lending_fee)
        logger.info(
            "Accounting snapshot appended to last active day",
            extra={"day_key": day_key, "sequence": snapshot.sequence, "price": price},
        )
        return snapshot

    def _append(
        self,
        day_key: int,
        price: int,
        cash_per_unit: int,
        balance_per_unit: int,
        lending_fee: int,
    ) -> AccountingSnapshot:
        snapshot = AccountingSnapshot(
            day_key=day_key,
            sequence=len(self._store.snapshots_for_day(day_key)),
            price=require_amount(price, "price"),
            cash_per_unit=require_amount(cash_per_unit, "cash_per_unit"),
            balance_per_unit=require_amount(balance_per_unit, "balance_per_unit"),
            lending_fee=require_amount(lending_fee, "lending_fee"),
        )
        self._store.append_snapshot(snapshot)
        return snapshot

    def last_active_day(self) -> Optional[int]:
        return self._store.get_parameter(PARAM_LAST_ACTIVE_DAY)

    def snapshots_for_day(self, day_key: int) -> tuple[AccountingSnapshot, ...]:
        return self._store.snapshots_for_day(day_key)

    def current_snapshot(self) -> AccountingSnapshot:
        day_key = self.last_active_day()
        if day_key is None:
            raise NoData("No accounting snapshot has been recorded.")
        snapshots = self._store.snapshots_for_day(day_key)
        if not snapshots:
            raise NoData(f"No accounting snapshot recorded for day {day_key}.")
        return snapshots[-1]

    def current_price(self) -> int:
        return self.current_snapshot().price

    def current_cash_per_unit(self) -> int:
        return self.current_snapshot().cash_per_unit

    def current_balance_per_unit(self) -> int:
        return self.current_snapshot().balance_per_unit

    def current_lending_fee(self) -> int:
        return self.current_snapshot().lending_fee

    # Minting fee schedule

    def fee_brackets(self) -> tuple[MintingFeeBracket, ...]:
        return self._store.fee_brackets()

    def lookup_minting_fee(self, cash_amount: int) -> int:
        """Rate of the first threshold >= ``cash_amount``, else the catch-all rate."""
        require_amount(cash_amount, "cash_amount")
        brackets = self._store.fee_brackets()
        thresholds = [bracket.threshold for bracket in brackets]
        index = bisect_left(thresholds, cash_amount)
        if index < len(brackets):
            return brackets[index].rate
        return self.last_minting_fee()

    def add_bracket(self, role: CallerRole, threshold: int, rate: int) -> MintingFeeBracket:
        require_role(role, _ADMIN_ROLES, "add_bracket")
        bracket = MintingFeeBracket(
            threshold=require_amount(threshold, "threshold"),
            rate=require_amount(rate, "rate"),
        )
        brackets = self._store.fee_brackets()
        if brackets and threshold <= brackets[-1].threshold:
            raise BracketOrderViolation(
                f"Threshold {threshold} must exceed the last threshold {brackets[-1].threshold}."
            )
        with self._store.transaction():
            self._store.append_fee_bracket(bracket)
        logger.info("Minting fee bracket added", extra={"index": len(brackets), "threshold": threshold})
        return bracket

    def change_bracket(
        self,
        role: CallerRole,
        index: int,
        threshold: int,
        rate: int,
    ) -> MintingFeeBracket:
        require_role(role, _ADMIN_ROLES, "change_bracket")
        bracket = MintingFeeBracket(
            threshold=require_amount(threshold, "threshold"),
            rate=require_amount(rate, "rate"),
        )
        brackets = self._store.fee_brackets()
        if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < len(brackets):
            raise InvalidOrderIndex(f"Bracket index {index} out of range (size {len(brackets)}).")
        if index > 0 and threshold <= brackets[index - 1].threshold:
            raise BracketOrderViolation(
                f"Threshold {threshold} must exceed the previous threshold {brackets[index - 1].threshold}."
            )
        if index + 1 < len(brackets) and threshold >= brackets[index + 1].threshold:
            raise BracketOrderViolation(
                f"Threshold {threshold} must stay below the next threshold {brackets[index + 1].threshold}."
            )
        with self._store.transaction():
            self._store.update_fee_bracket(index, bracket)
        logger.info("Minting fee bracket changed", extra={"index": index, "threshold": threshold})
        return bracket

    def remove_last_bracket(self, role: CallerRole) -> MintingFeeBracket:
        require_role(role, _ADMIN_ROLES, "remove_last_bracket")
        brackets = self._store.fee_brackets()
        if not brackets:
            raise NoData("Minting fee schedule is empty.")
        with self._store.transaction():
            self._store.remove_last_fee_bracket()
        logger.info("Minting fee bracket removed", extra={"index": len(brackets) - 1})
        return brackets[-1]

    # Engine parameters; unset values read as zero.

    def _parameter(self, name: str) -> int:
        value = self._store.get_parameter(name)
        return 0 if value is None else value

    def _set_parameter(self, role: CallerRole, name: str, value: int) -> None:
        require_role(role, _ADMIN_ROLES, f"set {name}")
        require_amount(value, name)
        with self._store.transaction():
            self._store.set_parameter(name, value)
        logger.info("Engine parameter updated", extra={"parameter": name, "value": value})

    def last_minting_fee(self) -> int:
        return self._parameter(PARAM_LAST_MINTING_FEE)

    def set_last_minting_fee(self, role: CallerRole, rate: int) -> None:
        self._set_parameter(role, PARAM_LAST_MINTING_FEE, rate)

    def min_rebalance_amount(self) -> int:
        return self._parameter(PARAM_MIN_REBALANCE_AMOUNT)

    def set_min_rebalance_amount(self, role: CallerRole, amount: int) -> None:
        self._set_parameter(role, PARAM_MIN_REBALANCE_AMOUNT, amount)

    def minimum_minting_fee(self) -> int:
        return self._parameter(PARAM_MINIMUM_MINTING_FEE)

    def set_minimum_minting_fee(self, role: CallerRole, amount: int) -> None:
        self._set_parameter(role, PARAM_MINIMUM_MINTING_FEE, amount)

    def minimum_trade(self) -> int:
        return self._parameter(PARAM_MINIMUM_TRADE)

    def set_minimum_trade(self, role: CallerRole, amount: int) -> None:
        self._set_parameter(role, PARAM_MINIMUM_TRADE, amount)
