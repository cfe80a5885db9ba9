"""
Configuration management for SiaLedger.

Handles loading configuration from environment variables and validation.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, fields
from typing import Any

from sialedger.core.exceptions import ConfigurationError

_OCTET = r"(25[0-5]|2[0-4][0-9]|1[0-9]{2}|[1-9]?[0-9])"
_RPC_ADDRESS_RE = re.compile(rf"^({_OCTET}\.){{3}}{_OCTET}:([0-9]{{1,5}})$")

STORAGE_BACKENDS = ("memory", "redis", "sql")


def _get_env_var(name: str, default: str | None = None, required: bool = False) -> str | None:
    """Get environment variable with optional default."""
    value = os.environ.get(name, default)
    if required and not value:
        raise ConfigurationError(f"Required environment variable {name} is not set")
    return value


def _parse_bool(value: str | bool) -> bool:
    if isinstance(value, bool):
        return value
    return value.strip().lower() in ("1", "true", "yes", "on")


def is_valid_rpc_address(rpc_address: str) -> bool:
    """Check an ``IPv4:port`` daemon address."""
    match = _RPC_ADDRESS_RE.match(rpc_address or "")
    if not match:
        return False
    return 0 < int(match.group(3)) <= 65535


@dataclass(frozen=True)
class Config:
    """Library configuration."""

    rpc_address: str = "127.0.0.1:9980"
    # Lowest block the scanner visits; blocks below predate the ledger
    floor_height: int = 0
    process_all: bool = False
    storage_backend: str = "memory"
    redis_url: str | None = None
    database_url: str | None = None
    # Seconds until a receivable registered without an explicit expiry lapses
    receivable_ttl: int = 86400
    log_level: str = "INFO"
    log_json: bool = False
    request_timeout: float = 30.0
    scan_lock_ttl: int = 300
    user_agent: str = "Sia-Agent"

    def __post_init__(self) -> None:
        if not is_valid_rpc_address(self.rpc_address):
            raise ConfigurationError(f"rpc_address is invalid: {self.rpc_address!r}")
        if self.floor_height < 0:
            raise ConfigurationError("floor_height must be non-negative")
        if self.storage_backend not in STORAGE_BACKENDS:
            raise ConfigurationError(
                f"storage_backend must be one of {', '.join(STORAGE_BACKENDS)}"
            )
        if self.receivable_ttl <= 0:
            raise ConfigurationError("receivable_ttl must be positive")
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")
        if self.scan_lock_ttl <= 0:
            raise ConfigurationError("scan_lock_ttl must be positive")

    @property
    def base_url(self) -> str:
        return f"http://{self.rpc_address}"

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Load configuration from environment variables."""
        rpc_address = overrides.get("rpc_address") or _get_env_var(
            "SIA_RPC_ADDRESS", default=cls.rpc_address
        )

        floor_height = overrides.get("floor_height")
        if floor_height is None:
            floor_height = int(_get_env_var("SIALEDGER_FLOOR_HEIGHT", default="0"))  # type: ignore

        process_all = overrides.get("process_all")
        if process_all is None:
            process_all = _parse_bool(_get_env_var("SIALEDGER_PROCESS_ALL", default="false"))  # type: ignore

        storage_backend = overrides.get("storage_backend") or _get_env_var(
            "SIALEDGER_STORAGE_BACKEND", default="memory"
        )

        redis_url = overrides.get("redis_url") or _get_env_var("SIALEDGER_REDIS_URL")
        database_url = overrides.get("database_url") or _get_env_var("SIALEDGER_DATABASE_URL")

        receivable_ttl = overrides.get("receivable_ttl")
        if receivable_ttl is None:
            receivable_ttl = int(_get_env_var("SIALEDGER_RECEIVABLE_TTL", default="86400"))  # type: ignore

        log_level = overrides.get("log_level") or _get_env_var(
            "SIALEDGER_LOG_LEVEL", default="INFO"
        )

        log_json = overrides.get("log_json")
        if log_json is None:
            log_json = _parse_bool(_get_env_var("SIALEDGER_LOG_JSON", default="false"))  # type: ignore

        return cls(
            rpc_address=rpc_address,  # type: ignore
            floor_height=floor_height,
            process_all=process_all,
            storage_backend=storage_backend,  # type: ignore
            redis_url=redis_url,
            database_url=database_url,
            receivable_ttl=receivable_ttl,
            log_level=log_level,  # type: ignore
            log_json=log_json,
            request_timeout=overrides.get("request_timeout", cls.request_timeout),
            scan_lock_ttl=overrides.get("scan_lock_ttl", cls.scan_lock_ttl),
        )

    def with_updates(self, **updates: Any) -> Config:
        """Create a new Config with updated values."""
        current = {f.name: getattr(self, f.name) for f in fields(self)}
        current.update(updates)
        return Config(**current)
