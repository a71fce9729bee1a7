"""Tests for signalforge.config — environment variable loading and validation."""

import os

import pytest

from signalforge.config import Config, load_config
from signalforge.errors import InvalidConfigurationError

_VARS = [
    "CANDLE_API_URL",
    "CANDLE_API_TOKEN",
    "CANDLE_API_TIMEOUT",
    "SYMBOLS",
    "DEFAULT_PROFILE",
    "SCAN_INTERVAL_SECONDS",
    "SCAN_BATCH_SIZE",
    "SCAN_TIMEFRAME",
    "SCAN_MIN_CONFIDENCE",
    "SCAN_MIN_RISK_REWARD",
    "DRIVER_TIMEFRAME",
    "CONFIRMATION_TIMEFRAME",
    "ENTRY_TIMEFRAME",
    "INITIAL_CAPITAL",
    "RISK_PER_TRADE",
    "MAX_DAILY_LOSS",
    "MAX_DAILY_TRADES",
    "MIN_RISK_REWARD",
    "BACKTEST_LOOKBACK",
    "DEMO_MODE",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Ensure config env vars are cleared between tests."""
    for var in _VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def env_path(tmp_path):
    """A .env path that does not exist, so no stray file is picked up."""
    return str(tmp_path / "missing.env")


class TestLoadConfig:
    def test_defaults(self, env_path):
        cfg = load_config(env_path)
        assert isinstance(cfg, Config)
        assert cfg.symbols == ("R_100", "R_75", "R_50")
        assert cfg.default_profile == "day_trading"
        assert cfg.scan_timeframe == "1m"
        assert cfg.scan_batch_size == 5
        assert cfg.scan_interval_seconds == 300
        assert cfg.driver_timeframe == "4h"
        assert cfg.confirmation_timeframe == "15m"
        assert cfg.entry_timeframe == "1m"
        assert cfg.initial_capital == 10_000.0
        assert cfg.risk_per_trade == 0.01
        assert cfg.backtest_lookback == 30
        assert cfg.demo_mode is False
        assert cfg.has_candle_api is False

    def test_overrides(self, monkeypatch, env_path):
        monkeypatch.setenv("CANDLE_API_URL", "https://candles.example")
        monkeypatch.setenv("SYMBOLS", " EURUSD , GBPUSD,,")
        monkeypatch.setenv("DEFAULT_PROFILE", "scalping")
        monkeypatch.setenv("DEMO_MODE", "yes")
        monkeypatch.setenv("MAX_DAILY_TRADES", "8")
        cfg = load_config(env_path)
        assert cfg.has_candle_api
        assert cfg.symbols == ("EURUSD", "GBPUSD")
        assert cfg.default_profile == "scalping"
        assert cfg.demo_mode is True
        assert cfg.max_daily_trades == 8

    def test_reads_dotenv_file(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text("SCAN_TIMEFRAME=5m\nRISK_PER_TRADE=0.02\n")
        try:
            cfg = load_config(str(path))
        finally:
            # load_dotenv writes straight into os.environ
            os.environ.pop("SCAN_TIMEFRAME", None)
            os.environ.pop("RISK_PER_TRADE", None)
        assert cfg.scan_timeframe == "5m"
        assert cfg.risk_per_trade == 0.02

    def test_frozen(self, env_path):
        cfg = load_config(env_path)
        with pytest.raises(AttributeError):
            cfg.symbols = ("X",)


class TestValidation:
    def test_unknown_timeframe(self, monkeypatch, env_path):
        monkeypatch.setenv("SCAN_TIMEFRAME", "2h")
        with pytest.raises(InvalidConfigurationError, match="SCAN_TIMEFRAME"):
            load_config(env_path)

    def test_unknown_profile(self, monkeypatch, env_path):
        monkeypatch.setenv("DEFAULT_PROFILE", "yolo")
        with pytest.raises(InvalidConfigurationError, match="DEFAULT_PROFILE"):
            load_config(env_path)

    def test_not_a_number(self, monkeypatch, env_path):
        monkeypatch.setenv("INITIAL_CAPITAL", "lots")
        with pytest.raises(ValueError, match="INITIAL_CAPITAL"):
            load_config(env_path)

    def test_not_an_integer(self, monkeypatch, env_path):
        monkeypatch.setenv("SCAN_BATCH_SIZE", "2.5")
        with pytest.raises(InvalidConfigurationError, match="SCAN_BATCH_SIZE"):
            load_config(env_path)

    def test_non_positive(self, monkeypatch, env_path):
        monkeypatch.setenv("BACKTEST_LOOKBACK", "0")
        with pytest.raises(InvalidConfigurationError, match="BACKTEST_LOOKBACK must be positive"):
            load_config(env_path)
