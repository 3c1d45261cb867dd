"""Net-value, lending-fee, rebalance and creation/redemption amount calculations.

The module-level functions are pure and bit-exact: the settlement coordinator
recomputes every externally reported amount with them, so identical inputs
must always produce identical scaled integers. ``CompositionCalculator`` wraps
them with reads from the accounting ledger and the token supply.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional

from engine.accounting_ledger import AccountingLedger
from engine.collaborators import TokenSupply
from engine.common import EngineClock
from engine.config import MinRebalanceFloor, RebalancePolicy
from engine.day_key import day_key_to_day_start, days_between
from engine.errors import (
    FeeExceedsBalance,
    InsolventPosition,
    NoData,
    ZeroPrice,
    ZeroSupply,
)
from engine.fixed_point import (
    ONE,
    add,
    mul,
    require_amount,
    scaled_div,
    scaled_mul,
    sub,
)

logger = logging.getLogger(__name__)

_PERCENT = 100 * ONE
_DAYS_PER_YEAR = 365 * ONE


@dataclass(frozen=True)
class RebalanceResult:
    """End state of one rebalance computation."""

    end_net_value: int
    end_balance: int
    end_cash_position: int
    fee_in_fiat: int
    change_in_balance: int
    change_is_negative: bool


def _require_price(price: int) -> int:
    if require_amount(price, "price") == 0:
        raise ZeroPrice("Price must be non-zero.")
    return price


def _require_supply(total_supply: int) -> int:
    if require_amount(total_supply, "total_supply") == 0:
        raise ZeroSupply("Total supply must be non-zero.")
    return total_supply


def net_value(cash_position: int, balance: int, price: int) -> int:
    """Cash position minus the fiat value of the crypto debt."""
    debt_in_fiat = scaled_mul(balance, price)
    if require_amount(cash_position, "cash_position") <= debt_in_fiat:
        raise InsolventPosition(
            f"Cash position {cash_position} does not exceed debt value {debt_in_fiat}."
        )
    return cash_position - debt_in_fiat


def lending_fee_in_crypto(annual_rate: int, balance: int, days_elapsed: int) -> int:
    """Simple interest on ``balance``: annual percentage rate pro-rated per whole day."""
    daily_rate = scaled_div(scaled_div(annual_rate, _PERCENT), _DAYS_PER_YEAR)
    return mul(scaled_mul(daily_rate, balance), require_amount(days_elapsed, "days_elapsed"))


def rebalance_delta(net_value_amount: int, balance: int, price: int) -> tuple[int, bool]:
    """Return ``(|target - balance|, target < balance)`` for target ``net_value / price``."""
    target = scaled_div(net_value_amount, _require_price(price))
    if target < require_amount(balance, "balance"):
        return balance - target, True
    return target - balance, False


def compute_rebalance(
    cash_position: int,
    balance: int,
    price: int,
    annual_lending_rate: int,
    days_elapsed: int,
    min_rebalance_amount: int,
    floor: MinRebalanceFloor = MinRebalanceFloor.AFTER_FEE,
) -> RebalanceResult:
    """Accrue the lending fee, then move the balance to ``net_value / price``.

    A target move smaller than ``min_rebalance_amount`` is skipped. With
    ``BEFORE_FEE`` the threshold is compared against the move derived from the
    pre-fee net value; the applied move always uses the post-fee net value.
    """
    _require_price(price)
    require_amount(min_rebalance_amount, "min_rebalance_amount")

    fee = lending_fee_in_crypto(annual_lending_rate, balance, days_elapsed)
    if fee > balance:
        raise FeeExceedsBalance(f"Lending fee {fee} exceeds balance {balance}.")
    fee_in_fiat = scaled_mul(fee, price)

    if floor is MinRebalanceFloor.BEFORE_FEE:
        threshold_delta, _ = rebalance_delta(net_value(cash_position, balance, price), balance, price)
    else:
        threshold_delta = None

    cash_after_fee = sub(cash_position, fee_in_fiat)
    delta, is_negative = rebalance_delta(net_value(cash_after_fee, balance, price), balance, price)
    if threshold_delta is None:
        threshold_delta = delta
    if threshold_delta < min_rebalance_amount:
        delta = 0

    delta_in_fiat = scaled_mul(delta, price)
    if is_negative:
        end_balance = sub(balance, delta)
        end_cash_position = sub(cash_after_fee, delta_in_fiat)
    else:
        end_balance = add(balance, delta)
        end_cash_position = add(cash_after_fee, delta_in_fiat)

    return RebalanceResult(
        end_net_value=net_value(end_cash_position, end_balance, price),
        end_balance=end_balance,
        end_cash_position=end_cash_position,
        fee_in_fiat=fee_in_fiat,
        change_in_balance=delta,
        change_is_negative=is_negative,
    )


def tokens_from_cash(
    cash_position: int,
    balance: int,
    total_supply: int,
    cash: int,
    price: int,
) -> int:
    _require_price(price)
    _require_supply(total_supply)
    return scaled_div(scaled_mul(cash, total_supply), net_value(cash_position, balance, price))


def cash_from_tokens(
    cash_position: int,
    balance: int,
    total_supply: int,
    token_amount: int,
    price: int,
) -> int:
    _require_price(price)
    _require_supply(total_supply)
    return scaled_div(scaled_mul(net_value(cash_position, balance, price), token_amount), total_supply)


def remove_minting_fee(cash: int, fee_rate: int, minimum_fee: int) -> int:
    """Deduct ``max(cash * fee_rate, minimum_fee)`` from ``cash``."""
    fee = max(scaled_mul(cash, fee_rate), require_amount(minimum_fee, "minimum_fee"))
    return sub(cash, fee)


class CompositionCalculator:
    """Ledger-aware wrappers and read-only previews over the pure calculations."""

    def __init__(
        self,
        ledger: AccountingLedger,
        supply: TokenSupply,
        clock: Optional[EngineClock] = None,
        policy: Optional[RebalancePolicy] = None,
    ) -> None:
        self._ledger = ledger
        self._supply = supply
        self._clock = clock or ledger.clock
        self._policy = policy or RebalancePolicy()

    @property
    def policy(self) -> RebalancePolicy:
        return self._policy

    def total_supply(self) -> int:
        return _require_supply(self._supply.total_supply())

    def total_cash_position(self) -> int:
        return scaled_mul(self._ledger.current_cash_per_unit(), self.total_supply())

    def total_balance(self) -> int:
        return scaled_mul(self._ledger.current_balance_per_unit(), self.total_supply())

    def current_net_value(self) -> int:
        return net_value(
            self.total_cash_position(),
            self.total_balance(),
            self._ledger.current_price(),
        )

    def days_since_last_rebalance(self, for_redemption: bool = False) -> int:
        """Whole days from the start of the last active day to now.

        The redemption side charges one extra day for the fee period in progress
        when the policy enables it.
        """
        last_day = self._ledger.last_active_day()
        if last_day is None:
            raise NoData("No rebalance has been recorded.")
        days = days_between(day_key_to_day_start(last_day), self._clock.now_utc())
        if for_redemption and self._policy.redemption_extra_day:
            days += 1
        return days

    def minting_fee_for(self, cash: int) -> int:
        return self._ledger.lookup_minting_fee(cash)

    def net_cash_after_minting_fee(self, cash: int) -> int:
        return remove_minting_fee(cash, self.minting_fee_for(cash), self._ledger.minimum_minting_fee())

    def tokens_for_cash(self, cash: int, price: int) -> int:
        """Tokens created for ``cash`` after the tiered minting fee."""
        total_supply = self.total_supply()
        return tokens_from_cash(
            self.total_cash_position(),
            self.total_balance(),
            total_supply,
            self.net_cash_after_minting_fee(cash),
            price,
        )

    def cash_for_tokens(self, token_amount: int, price: int) -> int:
        """Cash paid out for ``token_amount`` after accrued lending and minting fees."""
        total_supply = self.total_supply()
        total_balance = self.total_balance()
        accrued_fee = lending_fee_in_crypto(
            self._ledger.current_lending_fee(),
            total_balance,
            self.days_since_last_rebalance(for_redemption=True),
        )
        if accrued_fee > total_balance:
            raise FeeExceedsBalance(f"Lending fee {accrued_fee} exceeds balance {total_balance}.")
        cash_position = sub(self.total_cash_position(), scaled_mul(accrued_fee, _require_price(price)))
        gross = cash_from_tokens(cash_position, total_balance, total_supply, token_amount, price)
        return self.net_cash_after_minting_fee(gross)

    def preview_daily_rebalance(self, price: int, lending_fee: int) -> RebalanceResult:
        return compute_rebalance(
            self.total_cash_position(),
            self.total_balance(),
            price,
            lending_fee,
            self.days_since_last_rebalance(),
            self._ledger.min_rebalance_amount(),
            self._policy.min_rebalance_floor,
        )

    def preview_threshold_rebalance(self, price: int) -> RebalanceResult:
        """Intra-day rebalance at ``price``; no lending fee accrues."""
        return compute_rebalance(
            self.total_cash_position(),
            self.total_balance(),
            price,
            0,
            0,
            self._ledger.min_rebalance_amount(),
            self._policy.min_rebalance_floor,
        )
