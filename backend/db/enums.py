"""PostgreSQL native enum contracts for the engine database schema."""

from __future__ import annotations

import enum
import logging

from sqlalchemy.dialects.postgresql import ENUM as PGEnum

logger = logging.getLogger(__name__)


class OrderType(str, enum.Enum):
    """Settled order kind."""

    CREATE = "CREATE"
    REDEEM = "REDEEM"
    REDEEM_NO_SETTLEMENT = "REDEEM_NO_SETTLEMENT"


class RebalanceKind(str, enum.Enum):
    """Rebalance trigger."""

    DAILY = "DAILY"
    THRESHOLD = "THRESHOLD"


order_type_enum = PGEnum(OrderType, name="order_type_enum")
rebalance_kind_enum = PGEnum(RebalanceKind, name="rebalance_kind_enum")
