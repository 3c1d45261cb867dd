"""Model module imports for SQLAlchemy metadata registration."""

from __future__ import annotations

import logging

from backend.db.models.accounting import AccountingSnapshot, EngineParameter, MintingFeeBracket
from backend.db.models.settlement import DelayedRedemption, RebalanceEvent, SettlementOrder

logger = logging.getLogger(__name__)

__all__ = [
    "AccountingSnapshot",
    "DelayedRedemption",
    "EngineParameter",
    "MintingFeeBracket",
    "RebalanceEvent",
    "SettlementOrder",
]
