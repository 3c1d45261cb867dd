"""Pytest fixtures shared across unit and integration tests."""

from __future__ import annotations

from datetime import datetime, timezone
import os
from typing import Any

import pytest

from engine.accounting_ledger import AccountingLedger
from engine.collaborators import CallerRole
from engine.composition_calculator import CompositionCalculator
from engine.config import RebalancePolicy
from engine.fixed_point import ONE
from engine.ledger_store import InMemoryLedgerStore
from engine.settlement_coordinator import SettlementCoordinator
from tests.utils.fakes import (
    FakeAdmin,
    FakeCustody,
    FakeIdentity,
    FakeSupply,
    FrozenClock,
)


@pytest.fixture(scope="session")
def pg_conn() -> Any:
    """Session-scoped psycopg connection for integration tests."""
    host = os.getenv("TEST_DB_HOST")
    port = os.getenv("TEST_DB_PORT")
    dbname = os.getenv("TEST_DB_NAME")
    user = os.getenv("TEST_DB_USER")
    password = os.getenv("TEST_DB_PASSWORD")

    if not all([host, port, dbname, user, password]):
        pytest.skip("Integration DB env vars are missing; set TEST_DB_* to run them")

    import psycopg

    conn = psycopg.connect(
        host=host,
        port=port,
        dbname=dbname,
        user=user,
        password=password,
        autocommit=False,
    )
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def ledger(store: InMemoryLedgerStore, clock: FrozenClock) -> AccountingLedger:
    return AccountingLedger(store, clock)


@pytest.fixture
def supply() -> FakeSupply:
    return FakeSupply(total=ONE)


@pytest.fixture
def custody() -> FakeCustody:
    return FakeCustody(cash=10_000_000 * ONE)


@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity(whitelisted={"alice", "bob"})


@pytest.fixture
def admin() -> FakeAdmin:
    return FakeAdmin()


@pytest.fixture
def calculator(ledger: AccountingLedger, supply: FakeSupply, clock: FrozenClock) -> CompositionCalculator:
    return CompositionCalculator(ledger, supply, clock, RebalancePolicy())


@pytest.fixture
def coordinator(
    ledger: AccountingLedger,
    calculator: CompositionCalculator,
    custody: FakeCustody,
    identity: FakeIdentity,
    supply: FakeSupply,
    admin: FakeAdmin,
    clock: FrozenClock,
) -> SettlementCoordinator:
    return SettlementCoordinator(
        ledger,
        calculator,
        custody,
        identity,
        supply,
        admin,
        clock=clock,
    )


@pytest.fixture
def seeded_ledger(ledger: AccountingLedger) -> AccountingLedger:
    """Pool of 2,000,000 cash and 1,000 crypto debt per token at price 1,000."""
    ledger.append_snapshot(CallerRole.OWNER, 1000 * ONE, 2_000_000 * ONE, 1000 * ONE, 0)
    ledger.add_bracket(CallerRole.OWNER, 50_000 * ONE, 3 * ONE // 1000)
    ledger.add_bracket(CallerRole.OWNER, 100_000 * ONE, 2 * ONE // 1000)
    ledger.set_last_minting_fee(CallerRole.OWNER, ONE // 1000)
    return ledger
