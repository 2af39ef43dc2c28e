"""Gateway configuration from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from .errors import ConfigError
from .facilitator import DEFAULT_FACILITATOR_URL, DEFAULT_TIMEOUT_SECONDS


PAYBOUND_HOST_ENV = "PAYBOUND_HOST"
PAYBOUND_PORT_ENV = "PAYBOUND_PORT"
PAYBOUND_POLICY_FILE_ENV = "PAYBOUND_POLICY_FILE"
PAYBOUND_UPSTREAM_ENV = "PAYBOUND_UPSTREAM"
PAYBOUND_DB_ENV = "PAYBOUND_DB"
PAYBOUND_UPSTREAM_TIMEOUT_ENV = "PAYBOUND_UPSTREAM_TIMEOUT"
PAYBOUND_UPSTREAM_AUTH_ENV = "PAYBOUND_UPSTREAM_AUTH"

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 4020
DEFAULT_LEDGER_PATH = Path.home() / ".paybound" / "ledger.sqlite3"

UPSTREAM_AUTH_NONE = "none"
UPSTREAM_AUTH_CDP = "cdp"
UPSTREAM_AUTH_MODES = (UPSTREAM_AUTH_NONE, UPSTREAM_AUTH_CDP)


@dataclass(frozen=True)
class GatewayConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    policy_file: Optional[Path] = None
    upstream_url: str = DEFAULT_FACILITATOR_URL
    ledger_path: str = str(DEFAULT_LEDGER_PATH)
    upstream_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    upstream_auth: str = UPSTREAM_AUTH_NONE

    def __post_init__(self):
        if not 0 <= self.port <= 65535:
            raise ConfigError(f"Port out of range: {self.port}")
        if self.upstream_timeout_seconds <= 0:
            raise ConfigError("Upstream timeout must be positive")
        if self.upstream_auth not in UPSTREAM_AUTH_MODES:
            raise ConfigError(
                f"Unknown upstream auth mode {self.upstream_auth!r} "
                f"(expected one of: {', '.join(UPSTREAM_AUTH_MODES)})"
            )

    @classmethod
    def from_env(cls, **overrides) -> GatewayConfig:
        """Read PAYBOUND_* variables; non-None keyword overrides win."""
        policy_file = os.getenv(PAYBOUND_POLICY_FILE_ENV)
        config = cls(
            host=os.getenv(PAYBOUND_HOST_ENV, DEFAULT_HOST),
            port=_env_number(PAYBOUND_PORT_ENV, DEFAULT_PORT, int),
            policy_file=Path(policy_file) if policy_file else None,
            upstream_url=os.getenv(PAYBOUND_UPSTREAM_ENV, DEFAULT_FACILITATOR_URL),
            ledger_path=os.getenv(PAYBOUND_DB_ENV, str(DEFAULT_LEDGER_PATH)),
            upstream_timeout_seconds=_env_number(
                PAYBOUND_UPSTREAM_TIMEOUT_ENV, DEFAULT_TIMEOUT_SECONDS, float
            ),
            upstream_auth=os.getenv(PAYBOUND_UPSTREAM_AUTH_ENV, UPSTREAM_AUTH_NONE).lower(),
        )
        explicit = {k: v for k, v in overrides.items() if v is not None}
        return replace(config, **explicit) if explicit else config


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
