"""VWAP over a candle window."""

from typing import Iterable

from ..models import Candle


def calculate_vwap(candles: Iterable[Candle]) -> float:
    """
    Volume-weighted average of each candle's typical price (high + low + close) / 3.

    Candles with zero or missing volume are skipped; missing prices count as 0.
    Returns 0.0 when there is no volume at all, which callers treat as "no VWAP".
    """
    cumulative_pv = 0.0
    cumulative_volume = 0.0
    for candle in candles:
        volume = candle.volume or 0.0
        if volume == 0:
            continue
        high = candle.high_price or 0.0
        low = candle.low_price or 0.0
        close = candle.close_price or 0.0
        typical_price = (high + low + close) / 3
        cumulative_pv += typical_price * volume
        cumulative_volume += volume
    if cumulative_volume == 0:
        return 0.0
    return cumulative_pv / cumulative_volume
