"""
Data models for candles, market snapshots and alerts.

Stored alert documents and the kline service both use camelCase keys, so every
model aliases its snake_case fields to camelCase and accepts either form.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

AlertKind = Literal["line", "vwap"]
AlertStatus = Literal["working", "triggered", "archived"]

ALERT_KINDS = ("line", "vwap")
ALERT_STATUSES = ("working", "triggered", "archived")


class Candle(BaseModel):
    """One closed OHLCV candle. Prices may be missing in upstream data."""

    open_time: int = Field(..., description="Bucket start, ms since epoch")
    close_time: Optional[int] = Field(default=None, description="Bucket end, ms since epoch")
    open_price: Optional[float] = Field(default=None, ge=0)
    high_price: Optional[float] = Field(default=None, ge=0)
    low_price: Optional[float] = Field(default=None, ge=0)
    close_price: Optional[float] = Field(default=None, ge=0)
    volume: Optional[float] = Field(default=None, ge=0)
    volume_delta: Optional[float] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class CoinMarketData(BaseModel):
    """Candle series for one symbol."""

    symbol: str = ""
    exchanges: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    candles: List[Candle] = Field(default_factory=list)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MarketSnapshot(BaseModel):
    """All per-symbol candle series fetched for one timeframe in one run."""

    timeframe: str = "1h"
    open_time: int = 0
    updated_at: int = 0
    coins_number: int = 0
    data: List[CoinMarketData] = Field(default_factory=list)
    # Symbols dropped while parsing because their candles failed validation
    invalid_symbols: List[str] = Field(default_factory=list)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AlertBase(BaseModel):
    """Fields shared by line and VWAP alerts."""

    id: str
    symbol: str = ""
    alert_name: str = ""
    action: str = ""
    price: Optional[float] = None
    description: Optional[str] = None
    tv_screens_urls: Optional[List[str]] = None
    exchanges: List[str] = Field(default_factory=list)
    category: Optional[int] = None

    creation_time: Optional[int] = None
    activation_time: Optional[int] = None
    activation_time_str: Optional[str] = None
    high_price: Optional[float] = None
    low_price: Optional[float] = None
    is_active: bool = True

    tv_link: Optional[str] = None
    cg_link: Optional[str] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_document(self) -> dict:
        """camelCase dict used for storage and JSON payloads."""
        return self.model_dump(by_alias=True, exclude_none=True)


class LineAlert(AlertBase):
    """Fixed price level; fires when the latest candle body crosses `price`."""

    images_urls: Optional[List[str]] = None


class VwapAlert(AlertBase):
    """Anchored VWAP; fires when the latest candle body crosses the VWAP since `anchor_time`."""

    anchor_time: Optional[int] = None
    anchor_time_str: Optional[str] = None
    anchor_price: Optional[float] = None
    image_url: Optional[str] = None


ALERT_MODELS = {
    "line": LineAlert,
    "vwap": VwapAlert,
}
