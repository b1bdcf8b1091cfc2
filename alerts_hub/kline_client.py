"""
Sync clients for the upstream data services:
- kline cache service: one MarketSnapshot of closed candles per timeframe;
- coin sifter: the list of coins currently tracked.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import requests
from pydantic import ValidationError

from .config import Settings
from .models import CoinMarketData, MarketSnapshot

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30
MAX_RETRIES = 3
RETRY_DELAY = 1

SUPPORTED_TIMEFRAMES = ("1h",)


def _get_json(url: str, headers: Dict[str, str], label: str) -> Optional[Any]:
    """GET with retries. Returns parsed JSON or None after the last failed attempt."""
    for attempt in range(MAX_RETRIES):
        try:
            resp = requests.get(url, headers=headers, timeout=REQUEST_TIMEOUT)
            if resp.status_code == 200:
                return resp.json()
            logger.warning(f"{label}: HTTP {resp.status_code} - {resp.text[:200]}")
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"{label} attempt {attempt + 1}: {e}")
        if attempt < MAX_RETRIES - 1:
            time.sleep(RETRY_DELAY)
    return None


def parse_snapshot(payload: Any) -> Optional[MarketSnapshot]:
    """Validate a kline service response {success, data: MarketSnapshot}."""
    if not isinstance(payload, dict) or not payload.get("success"):
        error = payload.get("error") if isinstance(payload, dict) else None
        logger.error(f"[Kline Fetcher] Unsuccessful response: {error or payload!r:.200}")
        return None
    data = payload.get("data")
    if not isinstance(data, dict) or not isinstance(data.get("data"), list):
        logger.error("[Kline Fetcher] Invalid response format: missing data.data list")
        return None
    try:
        snapshot = MarketSnapshot.model_validate({**data, "data": []})
    except ValidationError as e:
        logger.error(f"[Kline Fetcher] Invalid snapshot: {e}")
        return None

    # Validated coin by coin; an invalid coin is dropped and recorded
    for i, raw in enumerate(data["data"]):
        try:
            snapshot.data.append(CoinMarketData.model_validate(raw))
        except ValidationError as e:
            symbol = raw.get("symbol") if isinstance(raw, dict) else None
            snapshot.invalid_symbols.append(symbol or f"#{i}")
            logger.warning(f"[Kline Fetcher] Skipping invalid coin {symbol or i}: {e}")
    return snapshot


def fetch_market_snapshot(settings: Settings, timeframe: str = "1h") -> Optional[MarketSnapshot]:
    """Fetch the cached snapshot for a timeframe. Returns None on any failure."""
    if timeframe not in SUPPORTED_TIMEFRAMES:
        logger.error(f"[Kline Fetcher] Only {SUPPORTED_TIMEFRAMES} supported. Got: {timeframe}")
        return None
    if not settings.kline_fetcher_url:
        logger.error("[Kline Fetcher] KLINE_FETCHER_URL is not set")
        return None

    url = f"{settings.kline_fetcher_url.rstrip('/')}/api/cache/{timeframe}"
    headers = {"Accept": "application/json"}
    if settings.secret_token:
        headers["Authorization"] = f"Bearer {settings.secret_token}"
    else:
        logger.warning("[Kline Fetcher] SECRET_TOKEN missing")

    logger.info(f"[Kline Fetcher] Loading snapshot [{timeframe}]")
    payload = _get_json(url, headers, f"Kline snapshot {timeframe}")
    if payload is None:
        return None
    snapshot = parse_snapshot(payload)
    if snapshot is not None:
        logger.info(
            f"[Kline Fetcher] Loaded snapshot. Coins: {snapshot.coins_number}, "
            f"updatedAt: {snapshot.updated_at}"
        )
    return snapshot


def fetch_coins(settings: Settings) -> List[Dict[str, Any]]:
    """Tracked coins from the coin sifter. Raises on HTTP or format errors."""
    if not settings.coin_sifter_url:
        raise RuntimeError("COIN_SIFTER_URL is not set")
    url = f"{settings.coin_sifter_url.rstrip('/')}/coins/formatted-symbols"
    headers = {"X-Auth-Token": settings.secret_token or ""}
    resp = requests.get(url, headers=headers, timeout=REQUEST_TIMEOUT)
    resp.raise_for_status()
    symbols = resp.json().get("symbols")
    if not isinstance(symbols, list):
        raise ValueError("Coin sifter response has no 'symbols' list")
    return symbols
