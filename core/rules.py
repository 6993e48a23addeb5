"""
Warden rules and runtime configuration.

Two layers:
- WARDEN_RULES: hardcoded constants (frozen dataclass, immutable at runtime)
- WardenConfig: deployment settings read from the environment once at startup

WardenConfig.from_env() is the only place that reads os.environ. Everything
downstream receives the config object by reference.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Final, Mapping, Optional

from .errors import ConfigError


# ============================================================
# RULES - hardcoded, not configurable
# ============================================================

@dataclass(frozen=True)
class WardenRules:
    """Frozen dataclass = immutable at runtime."""

    # --- SCHEDULING ---
    DEFAULT_SCAN_INTERVAL_SECONDS: Final[int] = 60     # One cycle per minute
    MIN_SCAN_INTERVAL_SECONDS: Final[int] = 5          # Refuse to hammer the node
    CYCLE_HISTORY_SIZE: Final[int] = 50                # Cycle reports kept for /status

    # --- NETWORK BOUNDS ---
    DEFAULT_RPC_TIMEOUT_SECONDS: Final[float] = 30.0
    DEFAULT_RECEIPT_TIMEOUT_SECONDS: Final[float] = 120.0
    DEFAULT_QUERY_TIMEOUT_SECONDS: Final[float] = 15.0

    # --- GAS (integer wei end to end) ---
    GAS_BUFFER_PERCENT: Final[int] = 20                # Estimate + 20%
    FALLBACK_GAS_LIMIT: Final[int] = 200_000           # Used when estimation is unavailable

    # --- CHAIN ---
    DEFAULT_CHAIN_ID: Final[int] = 10143               # Monad testnet


WARDEN_RULES = WardenRules()

SNAPSHOT_SOURCES: Final[tuple] = ("indexer", "local")


# ============================================================
# ENV PARSING HELPERS
# ============================================================

def _int_env(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")


def _float_env(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigError(f"{key} must be positive, got {raw!r}")
    return value


def normalize_private_key(raw: str) -> str:
    """Accept keys with or without the 0x prefix."""
    raw = raw.strip()
    return raw if raw.startswith("0x") else f"0x{raw}"


class SecretMaskingFilter(logging.Filter):
    """
    Redact bare 64-char hex strings (private keys) from all log output.

    0x-prefixed values are transaction hashes and pass through untouched.
    """
    _PATTERN = re.compile(r'(?<!0x)(?<!0X)(?<![0-9a-fA-F])([0-9a-fA-F]{64})(?![0-9a-fA-F])')

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if isinstance(record.msg, str):
            record.msg = self._PATTERN.sub('[REDACTED]', record.msg)
        if record.args:
            try:
                formatted = record.getMessage()
            except (TypeError, ValueError):
                return True
            if self._PATTERN.search(formatted):
                record.msg = self._PATTERN.sub('[REDACTED]', formatted)
                record.args = None
        return True


# ============================================================
# CONFIG
# ============================================================

@dataclass(frozen=True)
class WardenConfig:
    """Deployment settings. Constructed once at startup."""
    private_key: str = field(repr=False)
    rpc_url: str
    indexer_url: str = ""
    snapshot_source: str = "indexer"
    chain_id: int = WARDEN_RULES.DEFAULT_CHAIN_ID
    factory_address: str = ""
    scan_interval_seconds: int = WARDEN_RULES.DEFAULT_SCAN_INTERVAL_SECONDS
    rpc_timeout_seconds: float = WARDEN_RULES.DEFAULT_RPC_TIMEOUT_SECONDS
    receipt_timeout_seconds: float = WARDEN_RULES.DEFAULT_RECEIPT_TIMEOUT_SECONDS
    query_timeout_seconds: float = WARDEN_RULES.DEFAULT_QUERY_TIMEOUT_SECONDS
    max_concurrency: int = 1
    max_gas_price_wei: int = 0        # 0 = no cap
    events_token: str = ""            # Bearer token for POST endpoints; "" = open

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "WardenConfig":
        """
        Build config from environment variables.

        Raises:
            ConfigError: if a required variable is missing or any value is malformed.
        """
        env = os.environ if env is None else env

        private_key = env.get("WARDEN_PRIVATE_KEY", "").strip()
        rpc_url = (env.get("RPC_URL", "") or env.get("MONAD_RPC_URL", "")).strip()
        indexer_url = env.get("INDEXER_GRAPHQL_URL", "").strip()
        snapshot_source = env.get("SNAPSHOT_SOURCE", "indexer").strip().lower() or "indexer"

        if snapshot_source not in SNAPSHOT_SOURCES:
            raise ConfigError(
                f"SNAPSHOT_SOURCE must be one of {SNAPSHOT_SOURCES}, got {snapshot_source!r}"
            )

        missing = []
        if not private_key:
            missing.append("WARDEN_PRIVATE_KEY")
        if not rpc_url:
            missing.append("RPC_URL")
        if snapshot_source == "indexer" and not indexer_url:
            missing.append("INDEXER_GRAPHQL_URL")
        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}. "
                f"Please check your .env file."
            )

        scan_interval = _int_env(
            env, "SCAN_INTERVAL_SECONDS", WARDEN_RULES.DEFAULT_SCAN_INTERVAL_SECONDS
        )
        if scan_interval < WARDEN_RULES.MIN_SCAN_INTERVAL_SECONDS:
            raise ConfigError(
                f"SCAN_INTERVAL_SECONDS must be >= {WARDEN_RULES.MIN_SCAN_INTERVAL_SECONDS}"
            )

        max_concurrency = _int_env(env, "WARDEN_MAX_CONCURRENCY", 1)
        if max_concurrency < 1:
            raise ConfigError("WARDEN_MAX_CONCURRENCY must be >= 1")

        max_gas_price_wei = _int_env(env, "MAX_GAS_PRICE_WEI", 0)
        if max_gas_price_wei < 0:
            raise ConfigError("MAX_GAS_PRICE_WEI must be >= 0")

        return cls(
            private_key=normalize_private_key(private_key),
            rpc_url=rpc_url,
            indexer_url=indexer_url,
            snapshot_source=snapshot_source,
            chain_id=_int_env(env, "CHAIN_ID", WARDEN_RULES.DEFAULT_CHAIN_ID),
            factory_address=env.get("FACTORY_ADDRESS", "").strip(),
            scan_interval_seconds=scan_interval,
            rpc_timeout_seconds=_float_env(
                env, "RPC_TIMEOUT_SECONDS", WARDEN_RULES.DEFAULT_RPC_TIMEOUT_SECONDS
            ),
            receipt_timeout_seconds=_float_env(
                env, "RECEIPT_TIMEOUT_SECONDS", WARDEN_RULES.DEFAULT_RECEIPT_TIMEOUT_SECONDS
            ),
            query_timeout_seconds=_float_env(
                env, "QUERY_TIMEOUT_SECONDS", WARDEN_RULES.DEFAULT_QUERY_TIMEOUT_SECONDS
            ),
            max_concurrency=max_concurrency,
            max_gas_price_wei=max_gas_price_wei,
            events_token=env.get("EVENTS_API_TOKEN", "").strip(),
        )

    def redacted(self) -> dict:
        """Config summary safe for logs and /status."""
        return {
            "rpc_url": self.rpc_url,
            "indexer_url": self.indexer_url,
            "snapshot_source": self.snapshot_source,
            "chain_id": self.chain_id,
            "factory_address": self.factory_address,
            "scan_interval_seconds": self.scan_interval_seconds,
            "rpc_timeout_seconds": self.rpc_timeout_seconds,
            "receipt_timeout_seconds": self.receipt_timeout_seconds,
            "max_concurrency": self.max_concurrency,
            "max_gas_price_wei": self.max_gas_price_wei,
            "events_auth": bool(self.events_token),
        }
