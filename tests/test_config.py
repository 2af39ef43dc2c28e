"""Environment configuration tests."""

from pathlib import Path

import pytest

from paybound.config import (
    DEFAULT_LEDGER_PATH,
    DEFAULT_PORT,
    GatewayConfig,
)
from paybound.errors import ConfigError
from paybound.facilitator import DEFAULT_FACILITATOR_URL


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "PAYBOUND_HOST", "PAYBOUND_PORT", "PAYBOUND_POLICY_FILE", "PAYBOUND_UPSTREAM",
        "PAYBOUND_DB", "PAYBOUND_UPSTREAM_TIMEOUT", "PAYBOUND_UPSTREAM_AUTH",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = GatewayConfig.from_env()
    assert config.host == "127.0.0.1"
    assert config.port == DEFAULT_PORT == 4020
    assert config.policy_file is None
    assert config.upstream_url == DEFAULT_FACILITATOR_URL
    assert config.ledger_path == str(DEFAULT_LEDGER_PATH)
    assert config.upstream_timeout_seconds == 30.0
    assert config.upstream_auth == "none"


def test_reads_env(monkeypatch):
    monkeypatch.setenv("PAYBOUND_HOST", "0.0.0.0")
    monkeypatch.setenv("PAYBOUND_PORT", "8080")
    monkeypatch.setenv("PAYBOUND_POLICY_FILE", "/etc/paybound/policies.yaml")
    monkeypatch.setenv("PAYBOUND_UPSTREAM", "http://localhost:9000")
    monkeypatch.setenv("PAYBOUND_DB", "/tmp/ledger.db")
    monkeypatch.setenv("PAYBOUND_UPSTREAM_TIMEOUT", "2.5")
    monkeypatch.setenv("PAYBOUND_UPSTREAM_AUTH", "CDP")

    config = GatewayConfig.from_env()
    assert config.host == "0.0.0.0"
    assert config.port == 8080
    assert config.policy_file == Path("/etc/paybound/policies.yaml")
    assert config.upstream_url == "http://localhost:9000"
    assert config.ledger_path == "/tmp/ledger.db"
    assert config.upstream_timeout_seconds == 2.5
    assert config.upstream_auth == "cdp"


def test_overrides_win_and_none_is_ignored(monkeypatch):
    monkeypatch.setenv("PAYBOUND_PORT", "8080")
    config = GatewayConfig.from_env(port=9090, host=None)
    assert config.port == 9090
    assert config.host == "127.0.0.1"


@pytest.mark.parametrize(
    "name, value",
    [
        ("PAYBOUND_PORT", "abc"),
        ("PAYBOUND_PORT", "70000"),
        ("PAYBOUND_UPSTREAM_TIMEOUT", "soon"),
        ("PAYBOUND_UPSTREAM_TIMEOUT", "0"),
        ("PAYBOUND_UPSTREAM_AUTH", "basic"),
    ],
)
def test_invalid_values(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ConfigError):
        GatewayConfig.from_env()


def test_blank_number_uses_default(monkeypatch):
    monkeypatch.setenv("PAYBOUND_PORT", " ")
    assert GatewayConfig.from_env().port == DEFAULT_PORT
