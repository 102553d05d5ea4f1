# services/portfolio/metrics.py
from __future__ import annotations

import random
from datetime import date
from typing import Iterable, List, Optional

from schemas.asset import AssetRecord, AssetView
from schemas.market import HistoryPoint, PortfolioSummary

# Mock chart: each earlier month is the later one divided by (1 + u).
HISTORY_CHANGE_LOW = -0.05
HISTORY_CHANGE_HIGH = 0.10


def _pct(gain: float, cost: float) -> float:
    return (gain / cost) * 100 if cost > 0 else 0.0


def compute_summary(assets: Iterable[AssetRecord], usd_jpy: float) -> PortfolioSummary:
    total_value = 0.0
    total_cost = 0.0
    for a in assets:
        total_value += a.quantity * a.current_price
        total_cost += a.quantity * a.avg_price
    total_gain = total_value - total_cost
    return PortfolioSummary(
        total_value=total_value,
        total_cost=total_cost,
        total_gain=total_gain,
        gain_percentage=_pct(total_gain, total_cost),
        total_value_jpy=total_value * usd_jpy,
    )


def asset_view(asset: AssetRecord, usd_jpy: float) -> AssetView:
    market_value = asset.quantity * asset.current_price
    cost_basis = asset.quantity * asset.avg_price
    gain = market_value - cost_basis
    return AssetView(
        **asset.model_dump(),
        market_value=market_value,
        cost_basis=cost_basis,
        gain=gain,
        gain_percentage=_pct(asset.current_price - asset.avg_price, asset.avg_price),
        market_value_jpy=market_value * usd_jpy,
    )


def _months_back(today: date, n: int) -> int:
    """Calendar month number (1-12) n months before today."""
    return (today.month - 1 - n) % 12 + 1


def mock_history(
    total_value: float,
    *,
    months: int = 6,
    today: Optional[date] = None,
    rng: Optional[random.Random] = None,
) -> List[HistoryPoint]:
    """
    Fabricate a month-by-month valuation curve ending at the current total.

    There is no stored history; this only gives the dashboard chart a shape.
    Points are oldest first and the last one equals ``total_value``.
    """
    if total_value <= 0 or months <= 0:
        return []
    today = today or date.today()
    rng = rng or random.Random()

    points: List[HistoryPoint] = []
    value = total_value
    for i in range(months):
        points.insert(0, HistoryPoint(label=f"{_months_back(today, i)}月", value=value))
        value = value / (1 + rng.uniform(HISTORY_CHANGE_LOW, HISTORY_CHANGE_HIGH))
    return points
