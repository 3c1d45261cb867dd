"""Persistent state contracts for the engine and the in-memory store."""

from __future__ import annotations

from contextlib import contextmanager
import copy
from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import ContextManager, Iterator, Optional, Protocol

from backend.db.enums import OrderType, RebalanceKind

logger = logging.getLogger(__name__)

PARAM_LAST_ACTIVE_DAY = "last_active_day"
PARAM_MIN_REBALANCE_AMOUNT = "min_rebalance_amount"
PARAM_MINIMUM_MINTING_FEE = "minimum_minting_fee"
PARAM_LAST_MINTING_FEE = "last_minting_fee"
PARAM_MINIMUM_TRADE = "minimum_trade"


@dataclass(frozen=True)
class AccountingSnapshot:
    """One immutable accounting row; ``sequence`` orders rows within a day key."""

    day_key: int
    sequence: int
    price: int
    cash_per_unit: int
    balance_per_unit: int
    lending_fee: int


@dataclass(frozen=True)
class MintingFeeBracket:
    threshold: int
    rate: int


@dataclass(frozen=True)
class OrderRecord:
    order_type: OrderType
    account: str
    tokens_given: int
    tokens_received: int
    fee: int
    price: int
    created_at_utc: datetime
    sequence_index: int
    account_index: int
    row_hash: str


@dataclass(frozen=True)
class RebalanceRecord:
    kind: RebalanceKind
    day_key: int
    price: int
    lending_fee: int
    total_supply: int
    end_cash_position: int
    end_balance: int
    end_net_value: int
    fee_in_fiat: int
    change_in_balance: int
    change_is_negative: bool
    created_at_utc: datetime
    row_hash: str


class LedgerStore(Protocol):
    """Injected persistence for snapshots, fee schedule, orders and balances."""

    def transaction(self) -> ContextManager[None]:
        """All-or-nothing scope; nested scopes join the outermost one."""

    def append_snapshot(self, snapshot: AccountingSnapshot) -> None:
        """Append one snapshot."""

    def snapshots_for_day(self, day_key: int) -> tuple[AccountingSnapshot, ...]:
        """Snapshots of one day key in append order."""

    def get_parameter(self, name: str) -> Optional[int]:
        """Read a named integer parameter."""

    def set_parameter(self, name: str, value: int) -> None:
        """Write a named integer parameter."""

    def fee_brackets(self) -> tuple[MintingFeeBracket, ...]:
        """Fee schedule in ascending threshold order."""

    def append_fee_bracket(self, bracket: MintingFeeBracket) -> None:
        """Append a bracket at the end of the schedule."""

    def update_fee_bracket(self, index: int, bracket: MintingFeeBracket) -> None:
        """Replace the bracket at ``index``."""

    def remove_last_fee_bracket(self) -> None:
        """Drop the highest bracket."""

    def append_order(self, order: OrderRecord) -> None:
        """Append to the global and per-account order logs."""

    def replace_order(self, order: OrderRecord) -> None:
        """Overwrite the record at ``order.sequence_index`` in both logs."""

    def order_count(self) -> int:
        """Length of the global order log."""

    def orders(self) -> tuple[OrderRecord, ...]:
        """Global order log."""

    def account_orders(self, account: str) -> tuple[OrderRecord, ...]:
        """Per-account order log."""

    def delayed_redemption(self, account: str) -> int:
        """Outstanding delayed payout of an account (0 when none)."""

    def set_delayed_redemption(self, account: str, amount: int) -> None:
        """Set the outstanding payout; zero deletes the entry."""

    def append_rebalance_record(self, record: RebalanceRecord) -> None:
        """Append a rebalance event."""

    def rebalance_records(self) -> tuple[RebalanceRecord, ...]:
        """Rebalance events in append order."""


@dataclass
class _MemoryState:
    snapshots: dict[int, list[AccountingSnapshot]] = field(default_factory=dict)
    parameters: dict[str, int] = field(default_factory=dict)
    brackets: list[MintingFeeBracket] = field(default_factory=list)
    orders: list[OrderRecord] = field(default_factory=list)
    account_orders: dict[str, list[int]] = field(default_factory=dict)
    delayed: dict[str, int] = field(default_factory=dict)
    rebalances: list[RebalanceRecord] = field(default_factory=list)


class InMemoryLedgerStore:
    """Dictionary-backed store; a failed transaction restores the prior state."""

    def __init__(self) -> None:
        self._state = _MemoryState()
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

        saved = copy.deepcopy(self._state)
        self._depth = 1
        try:
            yield
        except BaseException:
            self._state = saved
            logger.debug("In-memory ledger transaction rolled back.")
            raise
        finally:
            self._depth = 0

    def append_snapshot(self, snapshot: AccountingSnapshot) -> None:
        self._state.snapshots.setdefault(snapshot.day_key, []).append(snapshot)

    def snapshots_for_day(self, day_key: int) -> tuple[AccountingSnapshot, ...]:
        return tuple(self._state.snapshots.get(day_key, ()))

    def get_parameter(self, name: str) -> Optional[int]:
        return self._state.parameters.get(name)

    def set_parameter(self, name: str, value: int) -> None:
        self._state.parameters[name] = value

    def fee_brackets(self) -> tuple[MintingFeeBracket, ...]:
        return tuple(self._state.brackets)

    def append_fee_bracket(self, bracket: MintingFeeBracket) -> None:
        self._state.brackets.append(bracket)

    def update_fee_bracket(self, index: int, bracket: MintingFeeBracket) -> None:
        self._state.brackets[index] = bracket

    def remove_last_fee_bracket(self) -> None:
        self._state.brackets.pop()

    def append_order(self, order: OrderRecord) -> None:
        self._state.orders.append(order)
        self._state.account_orders.setdefault(order.account, []).append(order.sequence_index)

    def replace_order(self, order: OrderRecord) -> None:
        self._state.orders[order.sequence_index] = order

    def order_count(self) -> int:
        return len(self._state.orders)

    def orders(self) -> tuple[OrderRecord, ...]:
        return tuple(self._state.orders)

    def account_orders(self, account: str) -> tuple[OrderRecord, ...]:
        indexes = self._state.account_orders.get(account, ())
        return tuple(self._state.orders[index] for index in indexes)

    def delayed_redemption(self, account: str) -> int:
        return self._state.delayed.get(account, 0)

    def set_delayed_redemption(self, account: str, amount: int) -> None:
        if amount == 0:
            self._state.delayed.pop(account, None)
        else:
            self._state.delayed[account] = amount

    def append_rebalance_record(self, record: RebalanceRecord) -> None:
        self._state.rebalances.append(record)

    def rebalance_records(self) -> tuple[RebalanceRecord, ...]:
        return tuple(self._state.rebalances)
