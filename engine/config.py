"""Environment-backed configuration for the settlement engine."""

from __future__ import annotations

from dataclasses import dataclass
import enum
import logging
import os


class MinRebalanceFloor(str, enum.Enum):
    """Which net value the minimum-rebalance threshold is compared against."""

    AFTER_FEE = "AFTER_FEE"
    BEFORE_FEE = "BEFORE_FEE"


@dataclass(frozen=True)
class RebalancePolicy:
    min_rebalance_floor: MinRebalanceFloor = MinRebalanceFloor.AFTER_FEE
    redemption_extra_day: bool = True


@dataclass(frozen=True)
class EngineConfig:
    """Canonical configuration surface for the engine runtime."""

    lock_window_seconds: int
    min_rebalance_floor: MinRebalanceFloor
    redemption_extra_day: bool
    log_level: str

    def policy(self) -> RebalancePolicy:
        return RebalancePolicy(
            min_rebalance_floor=self.min_rebalance_floor,
            redemption_extra_day=self.redemption_extra_day,
        )


_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def _read_env(name: str, default: str | None = None) -> str:
    value = os.getenv(name, default)
    if value is None or value.strip() == "":
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value.strip()


def _read_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise RuntimeError(f"Invalid boolean value for {name}: {raw}")


def _read_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"Invalid integer value for {name}: {raw}") from exc
    return value


def load_engine_config() -> EngineConfig:
    """Load and validate engine configuration from environment."""
    lock_window_seconds = _read_int("ENGINE_LOCK_WINDOW_SECONDS", 3600)
    if lock_window_seconds < 0:
        raise RuntimeError("ENGINE_LOCK_WINDOW_SECONDS must be non-negative")

    raw_floor = _read_env("ENGINE_MIN_REBALANCE_FLOOR", MinRebalanceFloor.AFTER_FEE.value).upper()
    try:
        floor = MinRebalanceFloor(raw_floor)
    except ValueError as exc:
        raise RuntimeError(f"Invalid value for ENGINE_MIN_REBALANCE_FLOOR: {raw_floor}") from exc

    log_level = _read_env("ENGINE_LOG_LEVEL", "INFO").upper()
    if log_level not in _LOG_LEVELS:
        raise RuntimeError(f"Invalid value for ENGINE_LOG_LEVEL: {log_level}")

    return EngineConfig(
        lock_window_seconds=lock_window_seconds,
        min_rebalance_floor=floor,
        redemption_extra_day=_read_bool("ENGINE_REDEMPTION_EXTRA_DAY", True),
        log_level=log_level,
    )


def configure_logging(config: EngineConfig) -> None:
    """Install a root handler at the configured level (entry points only)."""
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
