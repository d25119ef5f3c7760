"""Configuration, provider selection and seed data."""

import random

import pytest

from agents.llm_provider import ModelTier, get_llm
from config import EngineConfig
from market import MarketStatus
from seed import SAMPLE_MARKETS, seed

PROVIDER_KEYS = ["GROQ_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY"]


@pytest.fixture
def no_provider_keys(monkeypatch):
    for key in PROVIDER_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_config_reads_environment(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("MARKET_DB_PATH", str(tmp_path / "m.db"))
    monkeypatch.setenv("ORACLE_TIMEOUT_SECONDS", "12.5")
    monkeypatch.setenv("LEADERBOARD_SIZE", "25")
    monkeypatch.setenv("ADMIN_API_KEY", "secret")
    monkeypatch.setenv("INITIAL_BALANCE", "")

    config = EngineConfig.from_env()

    assert config.db_path == str(tmp_path / "m.db")
    assert config.oracle_timeout_seconds == 12.5
    assert config.leaderboard_size == 25
    assert config.admin_api_key == "secret"
    assert config.initial_balance == 0
    assert config.leaderboard_ttl_seconds == 60
    assert ModelTier(config.oracle_model_tier) == ModelTier.RESOLUTION


def test_no_api_keys_means_no_llm(no_provider_keys):
    assert get_llm(ModelTier.RESOLUTION) is None
    assert get_llm("RESOLUTION") is None


def test_unknown_tier_is_rejected():
    with pytest.raises(ValueError):
        get_llm("turbo")


def test_seed_creates_open_funded_markets(manager):
    markets = seed(manager, random.Random(7))

    assert len(markets) == len(SAMPLE_MARKETS)
    for market in manager.list_markets(MarketStatus.OPEN):
        assert all(1000 <= o.total_points <= 5999 for o in market.outcomes)
    assert manager.get_platform_stats()["total_bets"] == 0


def test_groq_is_tried_first_with_deterministic_settings(no_provider_keys, monkeypatch):
    monkeypatch.setenv("GROQ_API_KEY", "gsk-test")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    llm = get_llm()

    assert type(llm).__name__ == "ChatGroq"
    assert llm.temperature == 0.0
    assert llm.max_tokens == 512
