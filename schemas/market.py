from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class MarketSnapshot(BaseModel):
    """Point-in-time prices (USD, upper-case tickers) plus the USD/JPY rate."""

    prices: Dict[str, float] = Field(default_factory=dict)
    usd_jpy: Optional[float] = None


class NewsItem(BaseModel):
    headline: str
    summary: str
    source: Optional[str] = None
    url: Optional[str] = None


class PortfolioSummary(BaseModel):
    total_value: float
    total_cost: float
    total_gain: float
    gain_percentage: float
    total_value_jpy: float


class HistoryPoint(BaseModel):
    label: str
    value: float


class ExchangeRateUpdate(BaseModel):
    usd_jpy: float = Field(gt=0, le=10000)


class RefreshResult(BaseModel):
    snapshot_received: bool
    updated_tickers: List[str] = Field(default_factory=list)
    usd_jpy: float
