"""
Alert rules. Each checker takes the symbol -> candles map built from the current
snapshot plus the active alerts of one kind, and returns NEW triggered copies.

Contract:
- klines_map: symbol -> candles (oldest first) for the run's timeframe. Read only.
- alerts: working, active alerts from storage. Never mutated.
- A triggered copy gets a fresh id and activation time; the working original
  stays where it is. Storing the copy is the caller's job.
- One bad alert never breaks the batch: any error evaluating it is logged and
  the alert counts as not triggered.
"""

import logging
import uuid
from typing import Dict, List, Optional, Sequence

from ..config import DEFAULT_QUOTE_ASSET, format_ms_for_display, now_ms as _now_ms
from ..models import Candle, LineAlert, VwapAlert
from .vwap import calculate_vwap

logger = logging.getLogger(__name__)

KlinesMap = Dict[str, List[Candle]]


def resolve_candles(
    klines_map: KlinesMap, symbol: str, quote_asset: str = DEFAULT_QUOTE_ASSET
) -> Optional[List[Candle]]:
    """Candles for `symbol`, trying the bare key first, then symbol + quote asset. None if absent or empty."""
    if not symbol:
        return None
    candles = klines_map.get(symbol)
    if candles is None:
        candles = klines_map.get(f"{symbol}{quote_asset}")
    if not candles:
        return None
    return candles


def is_crossed(level: float, candle: Candle) -> bool:
    """True if level lies inside the candle body [min(open, close), max(open, close)], either direction."""
    open_price = candle.open_price
    close_price = candle.close_price
    return min(open_price, close_price) <= level <= max(open_price, close_price)


def normalize_anchor_time(anchor_time) -> int:
    """Anchor time in ms. A 10-digit value is taken as seconds, anything else as ms."""
    value = int(anchor_time)
    if len(str(value)) == 10:
        return value * 1000
    return value


def _new_trigger_fields(activation_ms: int) -> dict:
    return {
        "id": str(uuid.uuid4()),
        "activation_time": activation_ms,
        "activation_time_str": format_ms_for_display(activation_ms),
    }


def _check_line_alert(
    klines_map: KlinesMap, alert: LineAlert, quote_asset: str, activation_ms: int
) -> Optional[LineAlert]:
    candles = resolve_candles(klines_map, alert.symbol, quote_asset)
    if not candles:
        return None
    last = candles[-1]
    if last.open_price is None or last.close_price is None:
        return None
    if not is_crossed(alert.price, last):
        return None
    update = _new_trigger_fields(activation_ms)
    update["high_price"] = last.high_price
    update["low_price"] = last.low_price
    return alert.model_copy(update=update, deep=True)


def _check_vwap_alert(
    klines_map: KlinesMap, alert: VwapAlert, quote_asset: str, activation_ms: int
) -> Optional[VwapAlert]:
    if not alert.symbol or not alert.anchor_time:
        return None
    candles = resolve_candles(klines_map, alert.symbol, quote_asset)
    if not candles:
        return None

    anchor_ms = normalize_anchor_time(alert.anchor_time)

    # History has to reach back to the anchor, otherwise the VWAP would be wrong
    if candles[0].open_time > anchor_ms:
        logger.debug(
            f"[ALERT_CHECKER] VWAP {alert.id} ({alert.symbol}): first candle after anchor, skipped"
        )
        return None

    last = candles[-1]
    window = [c for c in candles if anchor_ms <= c.open_time <= last.open_time]
    if not window:
        return None

    vwap = calculate_vwap(window)
    if vwap == 0:
        return None

    if last.open_price is None or last.close_price is None:
        return None
    if not is_crossed(vwap, last):
        return None

    update = _new_trigger_fields(activation_ms)
    update["anchor_price"] = vwap
    update["price"] = vwap
    if not alert.anchor_time_str:
        update["anchor_time_str"] = format_ms_for_display(anchor_ms)
    return alert.model_copy(update=update, deep=True)


def _run_checks(check, klines_map, alerts, quote_asset, activation_ms) -> list:
    triggered = []
    for alert in alerts:
        try:
            matched = check(klines_map, alert, quote_asset, activation_ms)
        except Exception as e:
            logger.warning(f"[ALERT_CHECKER] Skipping alert {getattr(alert, 'id', '?')}: {e}")
            continue
        if matched is not None:
            triggered.append(matched)
    return triggered


def check_line_alerts(
    klines_map: KlinesMap,
    alerts: Sequence[LineAlert],
    quote_asset: str = DEFAULT_QUOTE_ASSET,
    now_ms: Optional[int] = None,
) -> List[LineAlert]:
    """Line alerts whose price is crossed by the body of the latest candle."""
    activation_ms = _now_ms() if now_ms is None else now_ms
    return _run_checks(_check_line_alert, klines_map, alerts, quote_asset, activation_ms)


def check_vwap_alerts(
    klines_map: KlinesMap,
    alerts: Sequence[VwapAlert],
    quote_asset: str = DEFAULT_QUOTE_ASSET,
    now_ms: Optional[int] = None,
) -> List[VwapAlert]:
    """VWAP alerts whose anchored VWAP is crossed by the body of the latest candle."""
    activation_ms = _now_ms() if now_ms is None else now_ms
    return _run_checks(_check_vwap_alert, klines_map, alerts, quote_asset, activation_ms)
