"""In-memory collaborator fakes for engine unit tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable

from engine.collaborators import CustodyAsset
from engine.common import EngineClock


class FrozenClock(EngineClock):
    """Mutable test clock; ``advance`` moves it forward."""

    def __init__(self, now: datetime) -> None:
        object.__setattr__(self, "_now", now)

    def now_utc(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> None:
        object.__setattr__(self, "_now", self._now + timedelta(**kwargs))


@dataclass
class FakeCustody:
    cash: int = 0
    synthetic: int = 0
    fail_moves: bool = False
    moves_out: list[tuple[CustodyAsset, str, int]] = field(default_factory=list)
    moves_in: list[tuple[CustodyAsset, str, int]] = field(default_factory=list)

    def move_funds_in(self, asset: CustodyAsset, from_account: str, amount: int) -> bool:
        if self.fail_moves:
            return False
        self.moves_in.append((asset, from_account, amount))
        if asset is CustodyAsset.CASH:
            self.cash += amount
        else:
            self.synthetic += amount
        return True

    def move_funds_out(self, asset: CustodyAsset, to_account: str, amount: int) -> bool:
        if self.fail_moves:
            return False
        self.moves_out.append((asset, to_account, amount))
        if asset is CustodyAsset.CASH:
            self.cash -= amount
        else:
            self.synthetic -= amount
        return True

    def balance(self, asset: CustodyAsset) -> int:
        return self.cash if asset is CustodyAsset.CASH else self.synthetic


@dataclass
class FakeSupply:
    total: int = 0
    fail: bool = False
    minted: list[tuple[str, int]] = field(default_factory=list)
    burned: list[tuple[str, int]] = field(default_factory=list)

    def mint(self, account: str, amount: int) -> bool:
        if self.fail:
            return False
        self.minted.append((account, amount))
        self.total += amount
        return True

    def burn(self, from_custody: str, amount: int) -> bool:
        if self.fail:
            return False
        self.burned.append((from_custody, amount))
        self.total -= amount
        return True

    def total_supply(self) -> int:
        return self.total


class FakeIdentity:
    def __init__(self, whitelisted: Iterable[str] = ()) -> None:
        self.whitelisted = set(whitelisted)

    def is_whitelisted(self, account: str) -> bool:
        return account in self.whitelisted


@dataclass
class FakeAdmin:
    paused: bool = False
    shutdown: bool = False

    def is_paused(self) -> bool:
        return self.paused

    def is_shutdown(self) -> bool:
        return self.shutdown
