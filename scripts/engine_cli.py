#!/usr/bin/env python3
"""Read-only engine CLI: ledger state, minting fees and settlement previews."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
import os
from pathlib import Path
import re
import sys
from typing import Any, Mapping, Optional, Sequence

import psycopg
from psycopg.rows import dict_row

# Ensure repository root is importable when script is executed by path.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from engine.accounting_ledger import AccountingLedger
from engine.common import EngineClock, normalize_timestamp
from engine.composition_calculator import CompositionCalculator, RebalanceResult
from engine.config import configure_logging, load_engine_config
from engine.errors import EngineError
from engine.fixed_point import from_scaled, to_scaled
from engine.sql_ledger_store import SqlLedgerStore

logger = logging.getLogger(__name__)

_NAMED_PARAM_RE = re.compile(r"(?<!:):([a-zA-Z_][a-zA-Z0-9_]*)")


def _convert_named_params(sql: str) -> str:
    return _NAMED_PARAM_RE.sub(r"%(\1)s", sql)


def _parse_amount(value: str) -> int:
    try:
        return to_scaled(value.strip())
    except EngineError as exc:
        raise argparse.ArgumentTypeError(f"Invalid amount: {value}") from exc


def _parse_ts(value: str) -> datetime:
    normalized = value.strip().replace("Z", "+00:00")
    try:
        ts = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid timestamp: {value}") from exc
    if ts.tzinfo is None:
        raise argparse.ArgumentTypeError("Timestamp must include timezone offset.")
    return ts.astimezone(timezone.utc)


def _amount(value: int) -> dict[str, str]:
    return {"scaled": str(value), "decimal": format(from_scaled(value).normalize(), "f")}


@dataclass(frozen=True)
class FixedClock(EngineClock):
    """Clock pinned to a caller-supplied instant."""

    at: datetime = datetime(1970, 1, 1, tzinfo=timezone.utc)

    def now_utc(self) -> datetime:
        return self.at


class StaticSupply:
    """Read-only supply view for previews; mint and burn are refused."""

    def __init__(self, total: int) -> None:
        self._total = total

    def mint(self, account: str, amount: int) -> bool:
        return False

    def burn(self, from_custody: str, amount: int) -> bool:
        return False

    def total_supply(self) -> int:
        return self._total


class PsycopgLedgerDB:
    """Minimal ledger DB adapter implementing the SQL store protocol."""

    def __init__(self, conn: psycopg.Connection[Any]) -> None:
        self.conn = conn
        self._tx_started = False

    def begin(self) -> None:
        if self._tx_started:
            return
        with self.conn.cursor() as cur:
            cur.execute("BEGIN")
        self._tx_started = True

    def commit(self) -> None:
        self.conn.commit()
        self._tx_started = False

    def rollback(self) -> None:
        self.conn.rollback()
        self._tx_started = False

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def fetch_all(self, sql: str, params: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        converted = _convert_named_params(sql)
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute(converted, dict(params))
            return [dict(row) for row in cur.fetchall()]

    def execute(self, sql: str, params: Mapping[str, Any]) -> None:
        converted = _convert_named_params(sql)
        with self.conn.cursor() as cur:
            cur.execute(converted, dict(params))


def _resolve_connection(args: argparse.Namespace) -> psycopg.Connection[Any]:
    if args.dsn:
        return psycopg.connect(args.dsn, autocommit=False)

    host = args.host or os.getenv("DB_HOST")
    port = args.port or os.getenv("DB_PORT")
    dbname = args.dbname or os.getenv("DB_NAME")
    user = args.user or os.getenv("DB_USER")
    password = args.password or os.getenv("DB_PASSWORD")

    missing = [
        key
        for key, value in (
            ("host", host),
            ("port", port),
            ("dbname", dbname),
            ("user", user),
            ("password", password),
        )
        if not value
    ]
    if missing:
        raise SystemExit(
            "Missing DB connection args. Provide --dsn or set --host/--port/--dbname/--user/--password "
            f"(missing: {', '.join(missing)})."
        )

    return psycopg.connect(
        host=host,
        port=port,
        dbname=dbname,
        user=user,
        password=password,
        autocommit=False,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inverse token engine read-only CLI")
    parser.add_argument("--dsn", help="PostgreSQL DSN (optional)")
    parser.add_argument("--host", help="DB host")
    parser.add_argument("--port", help="DB port")
    parser.add_argument("--dbname", help="DB name")
    parser.add_argument("--user", help="DB user")
    parser.add_argument("--password", help="DB password")
    parser.add_argument("--now", type=_parse_ts, default=None, help="Evaluate at this UTC instant")

    subparsers = parser.add_subparsers(dest="command", required=True)

    state_cmd = subparsers.add_parser("show-state", help="Current accounting snapshot and parameters")
    state_cmd.add_argument("--total-supply", type=_parse_amount, default=None)

    fee_cmd = subparsers.add_parser("minting-fee", help="Minting fee rate for a cash amount")
    fee_cmd.add_argument("--cash", required=True, type=_parse_amount)

    rebalance_cmd = subparsers.add_parser("preview-rebalance", help="Recompute a rebalance end state")
    rebalance_cmd.add_argument("--kind", required=True, choices=("DAILY", "THRESHOLD"))
    rebalance_cmd.add_argument("--price", required=True, type=_parse_amount)
    rebalance_cmd.add_argument("--lending-fee", type=_parse_amount, default=None)
    rebalance_cmd.add_argument("--total-supply", required=True, type=_parse_amount)

    create_cmd = subparsers.add_parser("preview-create", help="Tokens created for a cash amount")
    create_cmd.add_argument("--cash", required=True, type=_parse_amount)
    create_cmd.add_argument("--price", required=True, type=_parse_amount)
    create_cmd.add_argument("--total-supply", required=True, type=_parse_amount)

    redeem_cmd = subparsers.add_parser("preview-redeem", help="Cash paid for a token amount")
    redeem_cmd.add_argument("--tokens", required=True, type=_parse_amount)
    redeem_cmd.add_argument("--price", required=True, type=_parse_amount)
    redeem_cmd.add_argument("--total-supply", required=True, type=_parse_amount)

    return parser


def _rebalance_payload(result: RebalanceResult) -> dict[str, Any]:
    return {
        "end_net_value": _amount(result.end_net_value),
        "end_balance": _amount(result.end_balance),
        "end_cash_position": _amount(result.end_cash_position),
        "fee_in_fiat": _amount(result.fee_in_fiat),
        "change_in_balance": _amount(result.change_in_balance),
        "change_is_negative": result.change_is_negative,
    }


def _run_command(
    args: argparse.Namespace,
    ledger: AccountingLedger,
    clock: EngineClock,
    policy: Any,
) -> dict[str, Any]:
    if args.command == "show-state":
        snapshot = ledger.current_snapshot()
        payload: dict[str, Any] = {
            "evaluated_at_utc": normalize_timestamp(clock.now_utc()),
            "last_active_day": ledger.last_active_day(),
            "sequence": snapshot.sequence,
            "price": _amount(snapshot.price),
            "cash_per_unit": _amount(snapshot.cash_per_unit),
            "balance_per_unit": _amount(snapshot.balance_per_unit),
            "lending_fee": _amount(snapshot.lending_fee),
            "min_rebalance_amount": _amount(ledger.min_rebalance_amount()),
            "minimum_minting_fee": _amount(ledger.minimum_minting_fee()),
            "minimum_trade": _amount(ledger.minimum_trade()),
            "last_minting_fee": _amount(ledger.last_minting_fee()),
            "fee_brackets": [
                {"threshold": _amount(bracket.threshold), "rate": _amount(bracket.rate)}
                for bracket in ledger.fee_brackets()
            ],
        }
        if args.total_supply is not None:
            calculator = CompositionCalculator(ledger, StaticSupply(args.total_supply), clock, policy)
            payload["total_cash_position"] = _amount(calculator.total_cash_position())
            payload["total_balance"] = _amount(calculator.total_balance())
            payload["net_value"] = _amount(calculator.current_net_value())
            payload["days_since_last_rebalance"] = calculator.days_since_last_rebalance()
        return payload

    if args.command == "minting-fee":
        return {"cash": _amount(args.cash), "rate": _amount(ledger.lookup_minting_fee(args.cash))}

    calculator = CompositionCalculator(ledger, StaticSupply(args.total_supply), clock, policy)
    if args.command == "preview-rebalance":
        if args.kind == "DAILY":
            lending_fee = ledger.current_lending_fee() if args.lending_fee is None else args.lending_fee
            result = calculator.preview_daily_rebalance(args.price, lending_fee)
        else:
            result = calculator.preview_threshold_rebalance(args.price)
        payload = _rebalance_payload(result)
        payload["kind"] = args.kind
        return payload

    if args.command == "preview-create":
        return {
            "cash": _amount(args.cash),
            "minting_fee_rate": _amount(calculator.minting_fee_for(args.cash)),
            "tokens": _amount(calculator.tokens_for_cash(args.cash, args.price)),
        }

    return {
        "tokens": _amount(args.tokens),
        "days_charged": calculator.days_since_last_rebalance(for_redemption=True),
        "cash": _amount(calculator.cash_for_tokens(args.tokens, args.price)),
    }


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()

    config = load_engine_config()
    configure_logging(config)

    conn = _resolve_connection(args)
    db = PsycopgLedgerDB(conn)
    clock: EngineClock = FixedClock(at=args.now) if args.now is not None else EngineClock()
    ledger = AccountingLedger(SqlLedgerStore(db), clock)

    try:
        try:
            payload = _run_command(args, ledger, clock, config.policy())
        except EngineError as exc:
            logger.warning("Engine query rejected: %s", exc)
            print(json.dumps({"error": type(exc).__name__, "detail": str(exc)}, sort_keys=True))
            return 2
        print(json.dumps(payload, sort_keys=True))
        return 0
    finally:
        conn.close()


if __name__ == "__main__":
    raise SystemExit(main())
