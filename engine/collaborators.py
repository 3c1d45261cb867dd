"""Narrow contracts for the collaborators the engine consumes."""

from __future__ import annotations

import enum
from typing import Protocol


class CallerRole(str, enum.Enum):
    """Explicit caller capability passed into every mutating call."""

    OWNER = "OWNER"
    BRIDGE = "BRIDGE"
    SETTLEMENT = "SETTLEMENT"
    PUBLIC = "PUBLIC"


class CustodyAsset(str, enum.Enum):
    """Assets held by the custody pool."""

    CASH = "CASH"
    SYNTHETIC = "SYNTHETIC"


class CustodyPool(Protocol):
    """Cash/collateral pool holding user funds and burnable tokens."""

    def move_funds_in(self, asset: CustodyAsset, from_account: str, amount: int) -> bool:
        """Pull ``amount`` of ``asset`` from an account into the pool."""

    def move_funds_out(self, asset: CustodyAsset, to_account: str, amount: int) -> bool:
        """Pay ``amount`` of ``asset`` from the hot wallet to an account."""

    def balance(self, asset: CustodyAsset) -> int:
        """Return the liquid hot-wallet balance of ``asset``."""


class IdentityVerifier(Protocol):
    """Whitelist/KYC predicate."""

    def is_whitelisted(self, account: str) -> bool:
        """Return True when the account may place orders."""


class TokenSupply(Protocol):
    """The synthetic token; only aggregate supply is visible to the engine."""

    def mint(self, account: str, amount: int) -> bool:
        """Mint ``amount`` to ``account``."""

    def burn(self, from_custody: str, amount: int) -> bool:
        """Burn ``amount`` held by the custody pool."""

    def total_supply(self) -> int:
        """Return outstanding supply."""


class AdminControls(Protocol):
    """Administrative pause and shutdown flags."""

    def is_paused(self) -> bool:
        """Return True while mutating calls are suspended."""

    def is_shutdown(self) -> bool:
        """Return True once the product is permanently shut down."""
