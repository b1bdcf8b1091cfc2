# Configuration for the alerts hub

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from typing import Any, Dict, List, Optional

# Timeframes the hub checks (the kline service only serves 1h snapshots)
TIMEFRAMES = ["1h"]
TIMEFRAME_MS = {
    "1h": 3600 * 1000,
}

# Quote asset appended to bare symbols ("SOL" -> "SOLUSDT") when resolving candles
DEFAULT_QUOTE_ASSET = "USDT"

# Triggered alerts older than this are removed by the cleanup job (3 days)
CLEANUP_AGE_MS = 3 * 24 * 3600 * 1000

# Seconds to wait after the hourly close before fetching, so the kline cache is fresh
CHECK_DELAY_AFTER_CLOSE = 60
CLEANUP_INTERVAL = 24 * 3600
RETRY_INTERVAL = 30

# Display timezone: all comparisons use epoch ms; messages show this zone (UTC+3)
DISPLAY_TIMEZONE = timezone(timedelta(hours=3))
DISPLAY_FORMAT = "%Y-%m-%d %H:%M:%S"


def load_env(path: str = ".env") -> None:
    """Load KEY=VALUE lines from a .env file into the process environment."""
    try:
        with open(path) as f:
            for line in f:
                if "=" in line and not line.startswith("#"):
                    key, value = line.strip().split("=", 1)
                    os.environ[key] = value
    except FileNotFoundError:
        pass


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, built once at startup and passed to each component."""

    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "alerts"
    db_user: str = "postgres"
    db_password: str = ""
    kline_fetcher_url: Optional[str] = None
    coin_sifter_url: Optional[str] = None
    secret_token: Optional[str] = None
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    quote_asset: str = DEFAULT_QUOTE_ASSET
    timeframes: List[str] = field(default_factory=lambda: list(TIMEFRAMES))
    cleanup_age_ms: int = CLEANUP_AGE_MS
    check_delay_after_close: int = CHECK_DELAY_AFTER_CLOSE

    @classmethod
    def from_env(cls, env_file: Optional[str] = ".env") -> "Settings":
        if env_file:
            load_env(env_file)
        return cls(
            db_host=os.getenv("DB_HOST", "localhost"),
            db_port=int(os.getenv("DB_PORT", "5432")),
            db_name=os.getenv("DB_NAME", "alerts"),
            db_user=os.getenv("DB_USER", "postgres"),
            db_password=os.getenv("DB_PASSWORD", ""),
            kline_fetcher_url=os.getenv("KLINE_FETCHER_URL") or None,
            coin_sifter_url=os.getenv("COIN_SIFTER_URL") or None,
            secret_token=os.getenv("SECRET_TOKEN") or None,
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN") or None,
            telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID") or None,
            quote_asset=os.getenv("QUOTE_ASSET", DEFAULT_QUOTE_ASSET),
            cleanup_age_ms=int(os.getenv("CLEANUP_AGE_MS", str(CLEANUP_AGE_MS))),
            check_delay_after_close=int(
                os.getenv("CHECK_DELAY_AFTER_CLOSE", str(CHECK_DELAY_AFTER_CLOSE))
            ),
        )

    def db_config(self) -> Dict[str, Any]:
        return {
            "host": self.db_host,
            "port": self.db_port,
            "dbname": self.db_name,
            "user": self.db_user,
            "password": self.db_password,
        }


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def get_current_candle_time(timeframe: str, at_ms: Optional[int] = None) -> int:
    """Open time (ms) of the candle bucket that contains at_ms (default: now)."""
    step = TIMEFRAME_MS[timeframe]
    ts = now_ms() if at_ms is None else at_ms
    return ts - ts % step


def seconds_until_next_check(timeframe: str, delay: int = CHECK_DELAY_AFTER_CLOSE) -> float:
    """Seconds from now until `delay` seconds after the next candle close for this timeframe."""
    step = TIMEFRAME_MS[timeframe]
    current = now_ms()
    target = current - current % step + delay * 1000
    if target <= current:
        target += step
    return (target - current) / 1000


def format_ms_for_display(ms: Optional[int], fmt: str = DISPLAY_FORMAT) -> str:
    """Render epoch milliseconds in the display timezone (UTC+3). Cosmetic only."""
    if ms is None:
        return "N/A"
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return dt.astimezone(DISPLAY_TIMEZONE).strftime(fmt)


def format_utc_for_display(dt, fmt: str = DISPLAY_FORMAT) -> str:
    """Convert a UTC datetime to UTC+3 and return formatted string. Accepts naive (assumed UTC) or aware."""
    if dt is None:
        return "N/A"
    if getattr(dt, "tzinfo", None) is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(DISPLAY_TIMEZONE).strftime(fmt)
