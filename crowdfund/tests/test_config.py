"""Tests for configuration loading and validation."""

import logging

import pytest

from crowdfund.config import Config


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("DB_URL", "MNEMONIC", "DERIVATION_URL", "BALANCE_SOURCE", "NOTIFIER", "POLL_INTERVAL_SECONDS"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_db_url_required(clean_env):
    with pytest.raises(ValueError):
        Config.from_env()


def test_from_env_defaults(clean_env):
    clean_env.setenv("DB_URL", "sqlite://")
    config = Config.from_env()
    config.validate()

    assert config.chain_id == 8453
    assert config.currency_decimals == 6
    assert config.default_min_pledge == 1_000_000
    assert config.poll_interval_seconds == 5.0
    assert config.balance_source == "rpc"
    assert config.notifier == "log"


def test_from_env_overrides(clean_env):
    clean_env.setenv("DB_URL", "postgresql://localhost/crowdfund")
    clean_env.setenv("POLL_INTERVAL_SECONDS", "2.5")
    clean_env.setenv("BALANCE_SOURCE", "MEMORY")
    clean_env.setenv("NOTIFIER", "rabbitmq")
    config = Config.from_env()
    config.validate()

    assert config.poll_interval_seconds == 2.5
    assert config.balance_source == "memory"
    assert config.get_rabbitmq_connection_params()["host"] == "localhost"


@pytest.mark.parametrize(
    "overrides",
    [
        {"poll_interval_seconds": 0},
        {"balance_source": "graphql"},
        {"notifier": "email"},
        {"mnemonic": "test junk", "derivation_url": "https://derive.example"},
        {"default_min_pledge": -1},
        {"chain_id": 0},
    ],
)
def test_validate_rejects(overrides):
    config = Config(db_url="sqlite://", **overrides)
    with pytest.raises(ValueError):
        config.validate()


def test_resolve_level():
    from crowdfund.log import resolve_level

    assert resolve_level("debug") == logging.DEBUG
    assert resolve_level(None) == logging.INFO
    assert resolve_level("loud") == logging.INFO
