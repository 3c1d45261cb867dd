"""Accounting, fee and settlement engine for the inverse token pool."""

from engine.accounting_ledger import AccountingLedger
from engine.collaborators import (
    AdminControls,
    CallerRole,
    CustodyAsset,
    CustodyPool,
    IdentityVerifier,
    TokenSupply,
)
from engine.common import EngineClock, stable_hash
from engine.composition_calculator import (
    CompositionCalculator,
    RebalanceResult,
    cash_from_tokens,
    compute_rebalance,
    lending_fee_in_crypto,
    net_value,
    rebalance_delta,
    remove_minting_fee,
    tokens_from_cash,
)
from engine.config import EngineConfig, MinRebalanceFloor, RebalancePolicy, load_engine_config
from engine.errors import EngineError
from engine.ledger_store import (
    AccountingSnapshot,
    InMemoryLedgerStore,
    LedgerStore,
    MintingFeeBracket,
    OrderRecord,
    RebalanceRecord,
)
from engine.settlement_coordinator import (
    Append,
    OrderState,
    OverwriteAt,
    SettlementCoordinator,
    SettlementOutcome,
)
from engine.sql_ledger_store import LedgerDatabase, SqlLedgerStore

__all__ = [
    "AccountingLedger",
    "AccountingSnapshot",
    "AdminControls",
    "Append",
    "CallerRole",
    "CompositionCalculator",
    "CustodyAsset",
    "CustodyPool",
    "EngineClock",
    "EngineConfig",
    "EngineError",
    "IdentityVerifier",
    "InMemoryLedgerStore",
    "LedgerDatabase",
    "LedgerStore",
    "MinRebalanceFloor",
    "MintingFeeBracket",
    "OrderRecord",
    "OrderState",
    "OverwriteAt",
    "RebalancePolicy",
    "RebalanceRecord",
    "RebalanceResult",
    "SettlementCoordinator",
    "SettlementOutcome",
    "TokenSupply",
    "cash_from_tokens",
    "compute_rebalance",
    "lending_fee_in_crypto",
    "load_engine_config",
    "net_value",
    "rebalance_delta",
    "remove_minting_fee",
    "stable_hash",
    "tokens_from_cash",
]
