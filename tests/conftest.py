"""Shared fixtures: in-memory alert storage, recording notifier, candle builders."""

from typing import Dict, List, Optional

import pytest

from alerts_hub.config import Settings
from alerts_hub.models import Candle, CoinMarketData, LineAlert, MarketSnapshot, VwapAlert

HOUR_MS = 3600 * 1000
# 2023-11-14 23:00:00 UTC, aligned to the hour
ANCHOR_MS = 1_700_002_800_000


def make_candle(open_, high, low, close, open_time, volume=1000.0) -> Candle:
    return Candle(
        open_time=open_time,
        close_time=open_time + HOUR_MS - 1,
        open_price=open_,
        high_price=high,
        low_price=low,
        close_price=close,
        volume=volume,
    )


def make_snapshot(series: Dict[str, List[Candle]], timeframe: str = "1h") -> MarketSnapshot:
    data = [
        CoinMarketData(symbol=symbol, exchanges=["BINANCE"], candles=candles)
        for symbol, candles in series.items()
    ]
    first = next((c[0].open_time for c in series.values() if c), 0)
    return MarketSnapshot(
        timeframe=timeframe,
        open_time=first,
        updated_at=first,
        coins_number=len(data),
        data=data,
    )


def make_line_alert(price: Optional[float] = 100.0, symbol: str = "BTCUSDT", **kwargs) -> LineAlert:
    fields = dict(
        id=kwargs.pop("id", f"line-{symbol}-{price}"),
        symbol=symbol,
        alert_name=f"Line {price}",
        action="BUY",
        price=price,
        exchanges=["BINANCE"],
        is_active=True,
        category=1,
    )
    fields.update(kwargs)
    return LineAlert(**fields)


def make_vwap_alert(anchor_time: Optional[int] = ANCHOR_MS, symbol: str = "BTCUSDT", **kwargs) -> VwapAlert:
    fields = dict(
        id=kwargs.pop("id", f"vwap-{symbol}-{anchor_time}"),
        symbol=symbol,
        alert_name="VWAP Test",
        action="BUY",
        price=0,
        exchanges=["BINANCE"],
        is_active=True,
        category=2,
        anchor_time=anchor_time,
    )
    fields.update(kwargs)
    return VwapAlert(**fields)


def vwap_history(final: Candle) -> List[Candle]:
    """Three candles from ANCHOR_MS with typical prices summing to 300, then `final`."""
    return [
        make_candle(95, 105, 90, 100, ANCHOR_MS),
        make_candle(98, 108, 93, 103, ANCHOR_MS + HOUR_MS),
        make_candle(97, 107, 92, 102, ANCHOR_MS + 2 * HOUR_MS),
        final,
    ]


class FakeAlertStorage:
    """Same interface the checker and jobs use, backed by dicts."""

    def __init__(self):
        self.partitions: Dict[tuple, Dict[str, object]] = {}
        self.fail_get = set()
        self.fail_add = set()
        self.opened = 0
        self.closed = 0
        self.cleaned = {}

    def open(self):
        self.opened += 1

    def close(self):
        self.closed += 1

    def _part(self, kind, status):
        return self.partitions.setdefault((kind, status), {})

    def get_alerts(self, kind, status="working", is_active=True):
        if kind in self.fail_get:
            raise RuntimeError(f"{kind} storage unavailable")
        alerts = list(self._part(kind, status).values())
        if is_active is None:
            return alerts
        return [a for a in alerts if a.is_active == is_active]

    def add_alert(self, kind, status, alert):
        if kind in self.fail_add:
            raise RuntimeError(f"{kind} insert failed")
        part = self._part(kind, status)
        if alert.id in part:
            return False
        part[alert.id] = alert
        return True

    def clean_old_triggered_alerts(self, kind, max_age_ms):
        self.cleaned[kind] = max_age_ms
        return {"line": 2, "vwap": 1}[kind]


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.calls = []
        self.fail = fail

    def send_combined_report(self, line_alerts, vwap_alerts):
        if self.fail:
            raise RuntimeError("telegram down")
        self.calls.append((list(line_alerts), list(vwap_alerts)))
        return True


@pytest.fixture
def storage():
    return FakeAlertStorage()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def settings():
    return Settings(
        kline_fetcher_url="http://klines.local",
        coin_sifter_url="http://coins.local",
        secret_token="secret",
        telegram_bot_token="123456:ABCdef",
        telegram_chat_id="42",
    )
