"""Unit tests for scripts/engine_cli.py."""

from __future__ import annotations

import argparse
import importlib.util
import json
from pathlib import Path
import runpy
import sys
from typing import Any

import pytest

from engine.accounting_ledger import AccountingLedger
from engine.config import RebalancePolicy
from engine.errors import NoData
from engine.fixed_point import ONE


ROOT = Path(__file__).resolve().parents[1]
SCRIPT_PATH = ROOT / "scripts" / "engine_cli.py"


def _load_cli_module(module_name: str) -> Any:
    spec = importlib.util.spec_from_file_location(module_name, SCRIPT_PATH)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)
    return module


class _FakeCursor:
    def __init__(self, conn: "_FakeConnection", row_factory: Any = None) -> None:
        self._conn = conn
        self._row_factory = row_factory

    def __enter__(self) -> "_FakeCursor":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        return None

    def execute(self, sql: str, params: Any = None) -> None:
        self._conn.executed.append((sql, params, self._row_factory))

    def fetchall(self) -> list[dict[str, Any]]:
        return list(self._conn.fetchall_rows)


class _FakeConnection:
    def __init__(self, rows: list[dict[str, Any]] | None = None) -> None:
        self.fetchall_rows = rows or []
        self.executed: list[tuple[str, Any, Any]] = []
        self.committed = False
        self.rolled_back = False
        self.closed = False

    def cursor(self, row_factory: Any = None) -> _FakeCursor:
        return _FakeCursor(self, row_factory=row_factory)

    def commit(self) -> None:
        self.committed = True

    def rollback(self) -> None:
        self.rolled_back = True

    def close(self) -> None:
        self.closed = True


class _StubParser:
    def __init__(self, args: argparse.Namespace) -> None:
        self._args = args

    def parse_args(self) -> argparse.Namespace:
        return self._args


def test_import_main_guard_branch_executes(monkeypatch: pytest.MonkeyPatch) -> None:
    root = str(ROOT)
    monkeypatch.setattr(sys, "path", [root, *[entry for entry in sys.path if entry != root]])
    monkeypatch.setattr(sys, "argv", [str(SCRIPT_PATH), "--help"])
    with pytest.raises(SystemExit) as exc:
        runpy.run_path(str(SCRIPT_PATH), run_name="__main__")
    assert exc.value.code == 0


def test_convert_named_params_and_parse_helpers() -> None:
    cli = _load_cli_module("engine_cli_mod_parse")
    assert cli._convert_named_params("x=:x AND y=:y AND z::int=1") == "x=%(x)s AND y=%(y)s AND z::int=1"

    assert cli._parse_amount(" 1.5 ") == 3 * ONE // 2
    with pytest.raises(argparse.ArgumentTypeError, match="Invalid amount"):
        cli._parse_amount("lots")
    with pytest.raises(argparse.ArgumentTypeError, match="Invalid amount"):
        cli._parse_amount("-1")

    parsed = cli._parse_ts("2024-01-15T12:00:00Z")
    assert parsed.isoformat() == "2024-01-15T12:00:00+00:00"
    with pytest.raises(argparse.ArgumentTypeError, match="Invalid timestamp"):
        cli._parse_ts("yesterday")
    with pytest.raises(argparse.ArgumentTypeError, match="must include timezone"):
        cli._parse_ts("2024-01-15T12:00:00")

    assert cli._amount(3 * ONE // 2) == {"scaled": str(3 * ONE // 2), "decimal": "1.5"}


def test_psycopg_ledger_db_adapter_paths() -> None:
    cli = _load_cli_module("engine_cli_mod_db")
    conn = _FakeConnection(rows=[{"value": 1}])
    db = cli.PsycopgLedgerDB(conn)

    db.begin()
    db.begin()
    assert [call[0] for call in conn.executed].count("BEGIN") == 1

    db.commit()
    db.rollback()
    assert conn.committed is True
    assert conn.rolled_back is True

    assert db.fetch_one("SELECT :value", {"value": 1}) == {"value": 1}
    conn.fetchall_rows = []
    assert db.fetch_one("SELECT :value", {"value": 1}) is None

    db.execute("UPDATE x SET y = :y WHERE z = :z", {"y": 3, "z": 4})
    assert conn.executed[-1][0] == "UPDATE x SET y = %(y)s WHERE z = %(z)s"


def test_static_supply_refuses_mutation() -> None:
    cli = _load_cli_module("engine_cli_mod_supply")
    supply = cli.StaticSupply(7 * ONE)
    assert supply.total_supply() == 7 * ONE
    assert supply.mint("alice", ONE) is False
    assert supply.burn("custody_pool", ONE) is False


def test_resolve_connection_from_env_and_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    cli = _load_cli_module("engine_cli_mod_conn")
    expected = _FakeConnection()
    seen: dict[str, Any] = {}

    def _connect(*args: Any, **kwargs: Any) -> _FakeConnection:
        seen["args"] = args
        seen["kwargs"] = kwargs
        return expected

    monkeypatch.setattr(cli.psycopg, "connect", _connect)
    monkeypatch.setenv("DB_HOST", "localhost")
    monkeypatch.setenv("DB_PORT", "5432")
    monkeypatch.setenv("DB_NAME", "engine")
    monkeypatch.setenv("DB_USER", "postgres")
    monkeypatch.setenv("DB_PASSWORD", "postgres")

    args = argparse.Namespace(dsn=None, host=None, port=None, dbname=None, user=None, password=None)
    assert cli._resolve_connection(args) is expected
    assert seen["args"] == ()
    assert seen["kwargs"]["dbname"] == "engine"
    assert seen["kwargs"]["autocommit"] is False

    dsn_args = argparse.Namespace(dsn="postgresql://test", host=None, port=None, dbname=None, user=None, password=None)
    cli._resolve_connection(dsn_args)
    assert seen["args"] == ("postgresql://test",)

    for key in ("DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD"):
        monkeypatch.delenv(key, raising=False)
    with pytest.raises(SystemExit, match="Missing DB connection args"):
        cli._resolve_connection(args)


def test_build_parser_parses_commands() -> None:
    cli = _load_cli_module("engine_cli_mod_parser")
    parsed = cli._build_parser().parse_args(
        [
            "--now",
            "2024-01-15T12:00:00Z",
            "preview-rebalance",
            "--kind",
            "DAILY",
            "--price",
            "1000",
            "--total-supply",
            "1",
        ]
    )
    assert parsed.command == "preview-rebalance"
    assert parsed.price == 1000 * ONE
    assert parsed.lending_fee is None
    assert parsed.now.isoformat() == "2024-01-15T12:00:00+00:00"


def test_run_command_show_state(seeded_ledger: AccountingLedger, clock: Any) -> None:
    cli = _load_cli_module("engine_cli_mod_show_state")
    args = argparse.Namespace(command="show-state", total_supply=ONE)

    payload = cli._run_command(args, seeded_ledger, clock, RebalancePolicy())

    assert payload["evaluated_at_utc"] == "2024-01-15T12:00:00Z"
    assert payload["last_active_day"] == 20240115
    assert payload["price"]["decimal"] == "1000"
    assert payload["last_minting_fee"]["decimal"] == "0.001"
    assert [bracket["rate"]["decimal"] for bracket in payload["fee_brackets"]] == ["0.003", "0.002"]
    assert payload["net_value"]["decimal"] == "1000000"
    assert payload["days_since_last_rebalance"] == 0


@pytest.mark.parametrize(("cash", "rate"), [("10", "0.003"), ("75000", "0.002"), ("250000", "0.001")])
def test_run_command_minting_fee(seeded_ledger: AccountingLedger, clock: Any, cash: str, rate: str) -> None:
    cli = _load_cli_module(f"engine_cli_mod_fee_{cash}")
    args = argparse.Namespace(command="minting-fee", cash=cli._parse_amount(cash))

    payload = cli._run_command(args, seeded_ledger, clock, RebalancePolicy())

    assert payload["rate"]["decimal"] == rate


def test_run_command_previews(seeded_ledger: AccountingLedger, clock: Any) -> None:
    cli = _load_cli_module("engine_cli_mod_previews")
    policy = RebalancePolicy()

    create = cli._run_command(
        argparse.Namespace(command="preview-create", cash=10 * ONE, price=1000 * ONE, total_supply=ONE),
        seeded_ledger,
        clock,
        policy,
    )
    assert create["tokens"]["scaled"] == str(9_970_000_000_000)

    redeem = cli._run_command(
        argparse.Namespace(command="preview-redeem", tokens=ONE // 1000, price=1000 * ONE, total_supply=ONE),
        seeded_ledger,
        clock,
        policy,
    )
    assert redeem["days_charged"] == 1
    assert redeem["cash"]["decimal"] == "997"

    rebalance = cli._run_command(
        argparse.Namespace(
            command="preview-rebalance",
            kind="THRESHOLD",
            price=1000 * ONE,
            lending_fee=None,
            total_supply=ONE,
        ),
        seeded_ledger,
        clock,
        policy,
    )
    assert rebalance["kind"] == "THRESHOLD"
    assert rebalance["fee_in_fiat"]["scaled"] == "0"
    assert rebalance["end_cash_position"]["decimal"] == "2000000"


def test_main_prints_payload_and_closes(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    cli = _load_cli_module("engine_cli_mod_main_ok")
    args = argparse.Namespace(command="minting-fee", cash=ONE, now=None)
    conn = _FakeConnection()
    monkeypatch.setattr(cli, "_build_parser", lambda: _StubParser(args))
    monkeypatch.setattr(cli, "_resolve_connection", lambda _: conn)
    monkeypatch.setattr(cli, "configure_logging", lambda config: None)
    monkeypatch.setattr(cli, "_run_command", lambda *_: {"rate": {"scaled": "1"}})

    assert cli.main() == 0
    payload = json.loads(capsys.readouterr().out.strip())
    assert payload == {"rate": {"scaled": "1"}}
    assert conn.closed is True


def test_main_reports_engine_errors(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    cli = _load_cli_module("engine_cli_mod_main_error")
    args = argparse.Namespace(command="show-state", total_supply=None, now=cli._parse_ts("2024-01-15T00:00:00Z"))
    conn = _FakeConnection()
    monkeypatch.setattr(cli, "_build_parser", lambda: _StubParser(args))
    monkeypatch.setattr(cli, "_resolve_connection", lambda _: conn)
    monkeypatch.setattr(cli, "configure_logging", lambda config: None)

    def _raise(*_: Any) -> dict[str, Any]:
        raise NoData("No accounting snapshot has been recorded.")

    monkeypatch.setattr(cli, "_run_command", _raise)

    assert cli.main() == 2
    payload = json.loads(capsys.readouterr().out.strip())
    assert payload["error"] == "NoData"
    assert conn.closed is True
