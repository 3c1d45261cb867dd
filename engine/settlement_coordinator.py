"""Order settlement state machine and rebalance cross-validation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
import enum
import logging
from typing import Optional, Union

from backend.db.enums import OrderType, RebalanceKind
from engine.accounting_ledger import AccountingLedger, require_role
from engine.collaborators import (
    AdminControls,
    CallerRole,
    CustodyAsset,
    CustodyPool,
    IdentityVerifier,
    TokenSupply,
)
from engine.common import EngineClock, stable_hash
from engine.composition_calculator import CompositionCalculator, RebalanceResult
from engine.errors import (
    ArithmeticUnderflow,
    BelowMinimumTrade,
    CollaboratorFailure,
    InsufficientHotWalletFunds,
    InvalidOrderIndex,
    NotWhitelisted,
    OperationPaused,
    RebalanceMismatch,
    SettlementMismatch,
    TokensLocked,
    ZeroPrice,
    ZeroSupply,
)
from engine.fixed_point import add, require_amount, scaled_div, sub
from engine.ledger_store import OrderRecord, RebalanceRecord

logger = logging.getLogger(__name__)

_SETTLEMENT_ROLES = frozenset({CallerRole.OWNER, CallerRole.BRIDGE})
DEFAULT_LOCK_WINDOW_SECONDS = 3600


class OrderState(str, enum.Enum):
    SUBMITTED = "SUBMITTED"
    VERIFIED = "VERIFIED"
    COMMITTED = "COMMITTED"
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class Append:
    """Place the order at the end of both order logs."""


@dataclass(frozen=True)
class OverwriteAt:
    """Replace the account's order at ``index`` (per-account position)."""

    index: int


OrderPlacement = Union[Append, OverwriteAt]


@dataclass(frozen=True)
class SettlementOutcome:
    """Terminal state of one create/redeem call."""

    state: OrderState
    order: Optional[OrderRecord] = None
    paid_amount: int = 0
    delayed_amount: int = 0


def _require_collaborator(accepted: bool, action: str) -> None:
    if not accepted:
        raise CollaboratorFailure(f"Collaborator rejected {action}.")


class SettlementCoordinator:
    """Re-derive reported trade outcomes and commit them atomically.

    Every mutating call checks pause state, caller role and whitelist before
    touching state, then runs its writes inside one store transaction with the
    collaborator calls last, so a rejection at any step leaves nothing behind.
    """

    def __init__(
        self,
        ledger: AccountingLedger,
        calculator: CompositionCalculator,
        custody: CustodyPool,
        identity: IdentityVerifier,
        supply: TokenSupply,
        admin: AdminControls,
        clock: Optional[EngineClock] = None,
        lock_window_seconds: int = DEFAULT_LOCK_WINDOW_SECONDS,
        custody_account: str = "custody_pool",
    ) -> None:
        self._ledger = ledger
        self._store = ledger.store
        self._calculator = calculator
        self._custody = custody
        self._identity = identity
        self._supply = supply
        self._admin = admin
        self._clock = clock or ledger.clock
        self._lock_window = timedelta(seconds=lock_window_seconds)
        self._custody_account = custody_account

    # Preconditions

    def _require_active(self, operation: str) -> None:
        if self._admin.is_shutdown():
            raise OperationPaused(f"{operation} rejected: engine is shut down.")
        if self._admin.is_paused():
            raise OperationPaused(f"{operation} rejected: engine is paused.")

    def _require_whitelisted(self, account: str) -> None:
        if not self._identity.is_whitelisted(account):
            raise NotWhitelisted(f"Account {account} is not whitelisted.")

    def _admit(self, role: CallerRole, operation: str, account: Optional[str] = None) -> None:
        self._require_active(operation)
        require_role(role, _SETTLEMENT_ROLES, operation)
        if account is not None:
            self._require_whitelisted(account)

    def _resolve_placement(self, account: str, placement: OrderPlacement) -> Optional[OrderRecord]:
        if isinstance(placement, Append):
            return None
        if not isinstance(placement, OverwriteAt):
            raise InvalidOrderIndex(f"Unsupported order placement: {placement!r}.")
        history = self._store.account_orders(account)
        index = placement.index
        if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < len(history):
            raise InvalidOrderIndex(
                f"Order index {index} out of range for account {account} (size {len(history)})."
            )
        return history[index]

    # Order records

    def _place_order(
        self,
        order_type: OrderType,
        account: str,
        tokens_given: int,
        tokens_received: int,
        fee: int,
        price: int,
        replaced: Optional[OrderRecord],
    ) -> OrderRecord:
        created_at = self._clock.now_utc()
        if replaced is None:
            sequence_index = self._store.order_count()
            account_index = len(self._store.account_orders(account))
        else:
            sequence_index = replaced.sequence_index
            account_index = replaced.account_index
        row_hash = stable_hash(
            (
                order_type,
                account,
                tokens_given,
                tokens_received,
                fee,
                price,
                created_at,
                sequence_index,
                account_index,
            )
        )
        record = OrderRecord(
            order_type=order_type,
            account=account,
            tokens_given=tokens_given,
            tokens_received=tokens_received,
            fee=fee,
            price=price,
            created_at_utc=created_at,
            sequence_index=sequence_index,
            account_index=account_index,
            row_hash=row_hash,
        )
        if replaced is None:
            self._store.append_order(record)
        else:
            self._store.replace_order(record)
        return record

    # Creation and redemption

    def create_order(
        self,
        role: CallerRole,
        reported_success: bool,
        tokens_given: int,
        tokens_received_claimed: int,
        fee: int,
        execution_price: int,
        account: str,
        placement: OrderPlacement = Append(),
    ) -> SettlementOutcome:
        """Settle a creation: ``tokens_given`` is cash in, the claim is tokens out."""
        self._admit(role, "create_order", account)
        require_amount(tokens_given, "tokens_given")
        require_amount(tokens_received_claimed, "tokens_received_claimed")
        require_amount(fee, "fee")
        require_amount(execution_price, "execution_price")

        if not reported_success:
            with self._store.transaction():
                _require_collaborator(
                    self._custody.move_funds_out(CustodyAsset.CASH, account, tokens_given),
                    "cash refund",
                )
            logger.warning(
                "Creation rejected after failed execution; cash refunded",
                extra={"account": account, "amount": tokens_given},
            )
            return SettlementOutcome(state=OrderState.REJECTED)

        if execution_price == 0:
            raise ZeroPrice("Execution price must be non-zero.")
        minimum_trade = self._ledger.minimum_trade()
        if tokens_given < minimum_trade:
            raise BelowMinimumTrade(f"Creation of {tokens_given} is below minimum trade {minimum_trade}.")
        replaced = self._resolve_placement(account, placement)

        expected = self._calculator.tokens_for_cash(tokens_given, execution_price)
        if expected != tokens_received_claimed:
            logger.warning(
                "Creation token amount mismatch",
                extra={"account": account, "expected": expected, "claimed": tokens_received_claimed},
            )
            raise SettlementMismatch("tokens_received", expected, tokens_received_claimed)

        with self._store.transaction():
            record = self._place_order(
                OrderType.CREATE,
                account,
                tokens_given,
                tokens_received_claimed,
                fee,
                execution_price,
                replaced,
            )
            _require_collaborator(self._supply.mint(account, tokens_received_claimed), "mint")

        logger.info(
            "Creation committed",
            extra={
                "account": account,
                "sequence_index": record.sequence_index,
                "tokens": tokens_received_claimed,
            },
        )
        return SettlementOutcome(state=OrderState.COMMITTED, order=record)

    def redeem_order(
        self,
        role: CallerRole,
        reported_success: bool,
        tokens_given: int,
        tokens_received_claimed: int,
        fee: int,
        execution_price: int,
        account: str,
        placement: OrderPlacement = Append(),
    ) -> SettlementOutcome:
        """Settle a redemption: ``tokens_given`` is tokens in, the claim is cash out.

        When the hot wallet cannot cover the claim, whatever is available is
        paid and the shortfall is queued as a delayed redemption.
        """
        self._admit(role, "redeem_order", account)
        require_amount(tokens_given, "tokens_given")
        require_amount(tokens_received_claimed, "tokens_received_claimed")
        require_amount(fee, "fee")
        require_amount(execution_price, "execution_price")

        if not reported_success:
            with self._store.transaction():
                _require_collaborator(
                    self._custody.move_funds_out(CustodyAsset.SYNTHETIC, account, tokens_given),
                    "token refund",
                )
            logger.warning(
                "Redemption rejected after failed execution; tokens refunded",
                extra={"account": account, "amount": tokens_given},
            )
            return SettlementOutcome(state=OrderState.REJECTED)

        locked = self.locked_amount(account)
        if locked and tokens_given >= locked:
            raise TokensLocked(
                f"Cannot redeem locked tokens: {tokens_given} requested, {locked} locked for {account}."
            )
        if execution_price == 0:
            raise ZeroPrice("Execution price must be non-zero.")
        replaced = self._resolve_placement(account, placement)

        expected = self._calculator.cash_for_tokens(tokens_given, execution_price)
        if expected != tokens_received_claimed:
            logger.warning(
                "Redemption cash amount mismatch",
                extra={"account": account, "expected": expected, "claimed": tokens_received_claimed},
            )
            raise SettlementMismatch("cash_received", expected, tokens_received_claimed)

        available = self._custody.balance(CustodyAsset.CASH)
        if available >= tokens_received_claimed:
            paid, shortfall = tokens_received_claimed, 0
            order_type = OrderType.REDEEM
        else:
            paid, shortfall = available, tokens_received_claimed - available
            order_type = OrderType.REDEEM_NO_SETTLEMENT

        with self._store.transaction():
            record = self._place_order(
                order_type,
                account,
                tokens_given,
                tokens_received_claimed,
                fee,
                execution_price,
                replaced,
            )
            if shortfall:
                outstanding = self._store.delayed_redemption(account)
                self._store.set_delayed_redemption(account, add(outstanding, shortfall))
            if paid:
                _require_collaborator(
                    self._custody.move_funds_out(CustodyAsset.CASH, account, paid),
                    "cash payout",
                )
            if not self._supply.burn(self._custody_account, tokens_given):
                # Burn is the last external effect; only the payout needs reversing.
                if paid and not self._custody.move_funds_in(CustodyAsset.CASH, account, paid):
                    logger.error(
                        "Redemption payout reversal rejected",
                        extra={"account": account, "amount": paid},
                    )
                raise CollaboratorFailure("Collaborator rejected burn.")

        if shortfall:
            logger.info(
                "Redemption committed with delayed settlement",
                extra={"account": account, "paid": paid, "delayed": shortfall},
            )
        else:
            logger.info(
                "Redemption committed",
                extra={"account": account, "sequence_index": record.sequence_index, "paid": paid},
            )
        return SettlementOutcome(
            state=OrderState.COMMITTED,
            order=record,
            paid_amount=paid,
            delayed_amount=shortfall,
        )

    def settle_delayed_funds(self, role: CallerRole, account: str, amount: int) -> int:
        """Pay down a delayed redemption; returns the remaining outstanding amount."""
        self._admit(role, "settle_delayed_funds", account)
        require_amount(amount, "amount")
        outstanding = self._store.delayed_redemption(account)
        if amount > outstanding:
            raise ArithmeticUnderflow(
                f"Settlement {amount} exceeds outstanding delayed redemption {outstanding}."
            )
        available = self._custody.balance(CustodyAsset.CASH)
        if available < amount:
            raise InsufficientHotWalletFunds(
                f"Hot wallet holds {available}, cannot settle {amount} for {account}."
            )
        remaining = sub(outstanding, amount)
        with self._store.transaction():
            self._store.set_delayed_redemption(account, remaining)
            _require_collaborator(
                self._custody.move_funds_out(CustodyAsset.CASH, account, amount),
                "delayed payout",
            )
        logger.info(
            "Delayed redemption settled",
            extra={"account": account, "amount": amount, "remaining": remaining},
        )
        return remaining

    # Rebalances

    def daily_rebalance(
        self,
        role: CallerRole,
        price: int,
        lending_fee: int,
        expected_end_cash_position: int,
        expected_end_balance: int,
        expected_total_supply: int,
    ) -> RebalanceRecord:
        """Accrue lending fees since the last active day and start a new day."""
        self._admit(role, "daily_rebalance")
        total_supply = self._verified_supply(expected_total_supply)
        require_amount(lending_fee, "lending_fee")
        result = self._calculator.preview_daily_rebalance(price, lending_fee)
        self._verify_rebalance(result, expected_end_cash_position, expected_end_balance)
        return self._commit_rebalance(RebalanceKind.DAILY, price, lending_fee, total_supply, result)

    def threshold_rebalance(
        self,
        role: CallerRole,
        price: int,
        lending_fee: int,
        expected_end_cash_position: int,
        expected_end_balance: int,
        expected_total_supply: int,
    ) -> RebalanceRecord:
        """Intra-day rebalance at ``price`` under the current last active day."""
        self._admit(role, "threshold_rebalance")
        total_supply = self._verified_supply(expected_total_supply)
        require_amount(lending_fee, "lending_fee")
        result = self._calculator.preview_threshold_rebalance(price)
        self._verify_rebalance(result, expected_end_cash_position, expected_end_balance)
        return self._commit_rebalance(RebalanceKind.THRESHOLD, price, lending_fee, total_supply, result)

    def _verified_supply(self, expected_total_supply: int) -> int:
        require_amount(expected_total_supply, "expected_total_supply")
        total_supply = self._supply.total_supply()
        if total_supply == 0:
            raise ZeroSupply("Total supply must be non-zero.")
        if total_supply != expected_total_supply:
            logger.warning(
                "Rebalance supply mismatch",
                extra={"expected": total_supply, "reported": expected_total_supply},
            )
            raise RebalanceMismatch("total_supply", total_supply, expected_total_supply)
        return total_supply

    @staticmethod
    def _verify_rebalance(
        result: RebalanceResult,
        expected_end_cash_position: int,
        expected_end_balance: int,
    ) -> None:
        checks = (
            ("end_cash_position", result.end_cash_position, expected_end_cash_position),
            ("end_balance", result.end_balance, expected_end_balance),
        )
        for quantity, recomputed, reported in checks:
            if recomputed != reported:
                logger.warning(
                    "Rebalance end-state mismatch",
                    extra={"quantity": quantity, "expected": recomputed, "reported": reported},
                )
                raise RebalanceMismatch(quantity, recomputed, reported)

    def _commit_rebalance(
        self,
        kind: RebalanceKind,
        price: int,
        lending_fee: int,
        total_supply: int,
        result: RebalanceResult,
    ) -> RebalanceRecord:
        cash_per_unit = scaled_div(result.end_cash_position, total_supply)
        balance_per_unit = scaled_div(result.end_balance, total_supply)
        created_at = self._clock.now_utc()
        with self._store.transaction():
            if kind is RebalanceKind.DAILY:
                snapshot = self._ledger.append_snapshot(
                    CallerRole.SETTLEMENT, price, cash_per_unit, balance_per_unit, lending_fee
                )
            else:
                snapshot = self._ledger.append_snapshot_to_last_active_day(
                    CallerRole.SETTLEMENT, price, cash_per_unit, balance_per_unit, lending_fee
                )
            record = RebalanceRecord(
                kind=kind,
                day_key=snapshot.day_key,
                price=price,
                lending_fee=lending_fee,
                total_supply=total_supply,
                end_cash_position=result.end_cash_position,
                end_balance=result.end_balance,
                end_net_value=result.end_net_value,
                fee_in_fiat=result.fee_in_fiat,
                change_in_balance=result.change_in_balance,
                change_is_negative=result.change_is_negative,
                created_at_utc=created_at,
                row_hash=stable_hash(
                    (
                        kind,
                        snapshot.day_key,
                        snapshot.sequence,
                        price,
                        lending_fee,
                        total_supply,
                        result.end_cash_position,
                        result.end_balance,
                        result.end_net_value,
                        result.fee_in_fiat,
                        result.change_in_balance,
                        result.change_is_negative,
                        created_at,
                    )
                ),
            )
            self._store.append_rebalance_record(record)
        logger.info(
            "Rebalance committed",
            extra={
                "kind": kind.value,
                "day_key": snapshot.day_key,
                "change_in_balance": result.change_in_balance,
                "change_is_negative": result.change_is_negative,
            },
        )
        return record

    # Queries

    def delayed_redemption(self, account: str) -> int:
        return self._store.delayed_redemption(account)

    def account_orders(self, account: str) -> tuple[OrderRecord, ...]:
        return self._store.account_orders(account)

    def orders(self) -> tuple[OrderRecord, ...]:
        return self._store.orders()

    def rebalance_records(self) -> tuple[RebalanceRecord, ...]:
        return self._store.rebalance_records()

    def locked_amount(self, account: str) -> int:
        """Tokens created by ``account`` within the lock window; not yet redeemable."""
        cutoff = self._clock.now_utc() - self._lock_window
        locked = 0
        for order in self._store.account_orders(account):
            if order.order_type is OrderType.CREATE and order.created_at_utc > cutoff:
                locked = add(locked, order.tokens_received)
        return locked
