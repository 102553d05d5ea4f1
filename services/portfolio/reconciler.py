from __future__ import annotations

import asyncio
import json
import logging
import math
import random
import uuid
from datetime import datetime
from typing import Callable, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

from config.settings import DEFAULT_USD_JPY
from schemas.asset import AssetCreate, AssetRecord, AssetView, utcnow
from schemas.market import HistoryPoint, MarketSnapshot, NewsItem, PortfolioSummary, RefreshResult
from services.portfolio.metrics import asset_view, compute_summary, mock_history
from services.portfolio.state_events import StateNotifier

logger = logging.getLogger(__name__)


class MarketGateway(Protocol):
    async def synthesize_icon(self, ticker: str) -> Optional[str]: ...

    async def fetch_market_snapshot(self, tickers: Sequence[str]) -> Optional[MarketSnapshot]: ...

    async def fetch_news(self, tickers: Iterable[str]) -> List[NewsItem]: ...


def merge_prices(
    assets: Sequence[AssetRecord],
    prices: Mapping[str, float],
    now: datetime,
) -> List[AssetRecord]:
    """
    Return a new collection with snapshot prices applied.

    Tickers match case-insensitively and every lot of a ticker gets the same
    price. Lots without a quote are returned as-is.
    """
    lookup = {str(k).strip().upper(): float(v) for k, v in prices.items()}
    merged: List[AssetRecord] = []
    for asset in assets:
        price = lookup.get(asset.ticker.upper())
        if price is None:
            merged.append(asset)
        else:
            merged.append(asset.model_copy(update={"current_price": price, "last_updated": now}))
    return merged


class PortfolioReconciler:
    """Holds the holdings, the USD/JPY rate and the latest news for one session."""

    def __init__(
        self,
        gateway: MarketGateway,
        notifier: Optional[StateNotifier] = None,
        *,
        usd_jpy: float = DEFAULT_USD_JPY,
        price_jitter: float = 0.0,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._gateway = gateway
        self._notifier = notifier or StateNotifier()
        self._rng = rng or random.Random()
        self._clock = clock
        self._price_jitter = max(0.0, price_jitter)

        self._assets: Tuple[AssetRecord, ...] = ()
        self._usd_jpy = usd_jpy
        self._news: Tuple[NewsItem, ...] = ()

        self._collection_lock = asyncio.Lock()
        self._refresh_lock = asyncio.Lock()
        self._news_lock = asyncio.Lock()

    # ── reads ───────────────────────────────────────────────────────

    @property
    def assets(self) -> List[AssetRecord]:
        return list(self._assets)

    @property
    def usd_jpy(self) -> float:
        return self._usd_jpy

    @property
    def news(self) -> List[NewsItem]:
        return list(self._news)

    @property
    def is_refreshing(self) -> bool:
        return self._refresh_lock.locked()

    @property
    def tickers(self) -> List[str]:
        return sorted({a.ticker for a in self._assets})

    def summary(self) -> PortfolioSummary:
        return compute_summary(self._assets, self._usd_jpy)

    def asset_views(self) -> List[AssetView]:
        rate = self._usd_jpy
        return [asset_view(a, rate) for a in self._assets]

    def history(self, months: int = 6) -> List[HistoryPoint]:
        return mock_history(self.summary().total_value, months=months, rng=self._rng)

    def chat_context(self) -> Tuple[str, float]:
        holdings = [
            {
                "ticker": a.ticker,
                "qty": a.quantity,
                "avg_cost": a.avg_price,
                "current_val": a.current_price * a.quantity,
            }
            for a in self._assets
        ]
        return json.dumps(holdings, ensure_ascii=False), self._usd_jpy

    # ── writes ──────────────────────────────────────────────────────

    def seed(self, records: Iterable[AssetRecord]) -> None:
        self._assets = self._assets + tuple(records)
        self._notifier.notify("assets", {"count": len(self._assets)})

    def _seed_price(self, avg_price: float) -> float:
        if not self._price_jitter:
            return avg_price
        return avg_price * (1 + self._rng.uniform(-self._price_jitter, self._price_jitter))

    async def add_asset(self, payload: AssetCreate) -> AssetRecord:
        # The record only becomes visible once icon synthesis has settled.
        icon_url = await self._gateway.synthesize_icon(payload.ticker)
        current = payload.current_price
        if current is None:
            current = self._seed_price(payload.avg_price)
        record = AssetRecord(
            id=uuid.uuid4().hex,
            ticker=payload.ticker,
            company_name=payload.company_name or payload.ticker,
            quantity=payload.quantity,
            avg_price=payload.avg_price,
            current_price=current,
            source=payload.source,
            icon_url=icon_url,
            last_updated=self._clock(),
        )
        async with self._collection_lock:
            self._assets = self._assets + (record,)
            count = len(self._assets)
        logger.info("portfolio.asset.added ticker=%s has_icon=%s lots=%s", record.ticker, icon_url is not None, count)
        self._notifier.notify("assets", {"count": count, "added": record.id})
        return record

    def set_exchange_rate(self, usd_jpy: float) -> float:
        if isinstance(usd_jpy, bool) or not math.isfinite(usd_jpy) or usd_jpy <= 0:
            raise ValueError("Exchange rate must be a positive finite number")
        self._usd_jpy = float(usd_jpy)
        self._notifier.notify("exchange_rate", {"usd_jpy": self._usd_jpy, "origin": "user"})
        return self._usd_jpy

    async def refresh_market_data(self) -> RefreshResult:
        """Fetch a snapshot and merge it. Overlapping calls run one after another."""
        async with self._refresh_lock:
            tickers = self.tickers
            snapshot = await self._gateway.fetch_market_snapshot(tickers)
            if snapshot is None:
                logger.warning("portfolio.refresh.no_snapshot tickers=%s", len(tickers))
                return RefreshResult(snapshot_received=False, usd_jpy=self._usd_jpy)

            async with self._collection_lock:
                current = self._assets
                merged = merge_prices(current, snapshot.prices, self._clock()) if snapshot.prices else list(current)
                updated = sorted({new.ticker for old, new in zip(current, merged) if old is not new})
                if snapshot.usd_jpy is not None:
                    self._usd_jpy = snapshot.usd_jpy
                self._assets = tuple(merged)

        logger.info(
            "portfolio.refresh.done requested=%s updated=%s usd_jpy=%s",
            len(tickers), len(updated), self._usd_jpy,
        )
        if snapshot.usd_jpy is not None:
            self._notifier.notify("exchange_rate", {"usd_jpy": self._usd_jpy, "origin": "refresh"})
        if updated:
            self._notifier.notify("assets", {"count": len(merged), "repriced": updated})
        return RefreshResult(snapshot_received=True, updated_tickers=updated, usd_jpy=self._usd_jpy)

    async def refresh_news(self) -> List[NewsItem]:
        async with self._news_lock:
            items = await self._gateway.fetch_news(self.tickers)
            self._news = tuple(items)
        self._notifier.notify("news", {"count": len(items)})
        return list(items)
