"""SignalForge — application configuration.

Loads .env variables into a typed config object.
Validates values on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from signalforge.errors import InvalidConfigurationError
from signalforge.models.strategy_profile import PROFILES
from signalforge.strategy.models import TIMEFRAMES


_PROFILE_NAMES = tuple(PROFILES)


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    candle_api_url: str
    candle_api_token: str
    candle_api_timeout: float
    symbols: tuple[str, ...]
    default_profile: str
    scan_interval_seconds: int
    scan_batch_size: int
    scan_timeframe: str
    scan_min_confidence: float
    scan_min_risk_reward: float
    driver_timeframe: str
    confirmation_timeframe: str
    entry_timeframe: str
    initial_capital: float
    risk_per_trade: float
    max_daily_loss: float
    max_daily_trades: int
    min_risk_reward: float
    backtest_lookback: int
    demo_mode: bool
    log_level: str

    @property
    def has_candle_api(self) -> bool:
        """True when an upstream candle API is configured."""
        return bool(self.candle_api_url)


def _get_float(name: str, default: str) -> float:
    raw = os.environ.get(name, default)
    try:
        return float(raw)
    except ValueError:
        raise InvalidConfigurationError(f"{name} must be a number, got {raw!r}") from None


def _get_int(name: str, default: str) -> int:
    raw = os.environ.get(name, default)
    try:
        return int(raw)
    except ValueError:
        raise InvalidConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _get_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


def _get_timeframe(name: str, default: str) -> str:
    value = os.environ.get(name, default)
    if value not in TIMEFRAMES:
        raise InvalidConfigurationError(
            f"{name} must be one of {', '.join(TIMEFRAMES)}, got {value!r}"
        )
    return value


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``InvalidConfigurationError`` (a ``ValueError``) with a message
    naming the offending variable when a value is malformed or out of range.
    """
    load_dotenv(dotenv_path=env_path)

    symbols = tuple(
        s.strip() for s in os.environ.get("SYMBOLS", "R_100,R_75,R_50").split(",")
        if s.strip()
    )
    profile = os.environ.get("DEFAULT_PROFILE", "day_trading")
    if profile not in _PROFILE_NAMES:
        raise InvalidConfigurationError(
            f"DEFAULT_PROFILE must be one of {', '.join(_PROFILE_NAMES)}, got {profile!r}"
        )

    config = Config(
        candle_api_url=os.environ.get("CANDLE_API_URL", ""),
        candle_api_token=os.environ.get("CANDLE_API_TOKEN", ""),
        candle_api_timeout=_get_float("CANDLE_API_TIMEOUT", "10.0"),
        symbols=symbols,
        default_profile=profile,
        scan_interval_seconds=_get_int("SCAN_INTERVAL_SECONDS", "300"),
        scan_batch_size=_get_int("SCAN_BATCH_SIZE", "5"),
        scan_timeframe=_get_timeframe("SCAN_TIMEFRAME", "1m"),
        scan_min_confidence=_get_float("SCAN_MIN_CONFIDENCE", "0.6"),
        scan_min_risk_reward=_get_float("SCAN_MIN_RISK_REWARD", "1.5"),
        driver_timeframe=_get_timeframe("DRIVER_TIMEFRAME", "4h"),
        confirmation_timeframe=_get_timeframe("CONFIRMATION_TIMEFRAME", "15m"),
        entry_timeframe=_get_timeframe("ENTRY_TIMEFRAME", "1m"),
        initial_capital=_get_float("INITIAL_CAPITAL", "10000"),
        risk_per_trade=_get_float("RISK_PER_TRADE", "0.01"),
        max_daily_loss=_get_float("MAX_DAILY_LOSS", "0.05"),
        max_daily_trades=_get_int("MAX_DAILY_TRADES", "5"),
        min_risk_reward=_get_float("MIN_RISK_REWARD", "1.5"),
        backtest_lookback=_get_int("BACKTEST_LOOKBACK", "30"),
        demo_mode=_get_bool("DEMO_MODE", "false"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
    )

    for name, value in (
        ("SCAN_INTERVAL_SECONDS", config.scan_interval_seconds),
        ("SCAN_BATCH_SIZE", config.scan_batch_size),
        ("INITIAL_CAPITAL", config.initial_capital),
        ("RISK_PER_TRADE", config.risk_per_trade),
        ("BACKTEST_LOOKBACK", config.backtest_lookback),
        ("CANDLE_API_TIMEOUT", config.candle_api_timeout),
    ):
        if value <= 0:
            raise InvalidConfigurationError(f"{name} must be positive, got {value}")

    return config
