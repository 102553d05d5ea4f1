import asyncio
import json
import random
import unittest
from datetime import datetime, timedelta, timezone

from schemas.asset import AISource, AssetCreate, AssetRecord
from schemas.market import MarketSnapshot, NewsItem
from services.portfolio.reconciler import PortfolioReconciler, merge_prices
from services.portfolio.state_events import StateNotifier


class _FakeGateway:
    def __init__(self, snapshot=None, icon="data:image/png;base64,AAAA", news=None):
        self.snapshot = snapshot
        self.icon = icon
        self.news = news or []
        self.snapshot_calls = []
        self.news_calls = []
        self.icon_calls = []

    async def synthesize_icon(self, ticker):
        self.icon_calls.append(ticker)
        return self.icon

    async def fetch_market_snapshot(self, tickers):
        self.snapshot_calls.append(list(tickers))
        return self.snapshot

    async def fetch_news(self, tickers):
        self.news_calls.append(list(tickers))
        return list(self.news)


class _TickingClock:
    def __init__(self):
        self.now = datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


def _lot(ticker, price, qty=1.0, avg=None):
    return AssetRecord(
        id=f"id-{ticker}-{price}",
        ticker=ticker,
        company_name=ticker,
        quantity=qty,
        avg_price=avg if avg is not None else price,
        current_price=price,
    )


def _tuples(reconciler):
    return [(a.ticker, a.quantity, a.avg_price, a.current_price) for a in reconciler.assets]


class MergePricesTests(unittest.TestCase):
    def test_selective_merge(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        aaa, bbb = _lot("AAA", 10), _lot("BBB", 20)
        merged = merge_prices([aaa, bbb], {"AAA": 15}, now)
        self.assertEqual(merged[0].current_price, 15)
        self.assertEqual(merged[0].last_updated, now)
        self.assertIs(merged[1], bbb)

    def test_case_insensitive_keys(self):
        merged = merge_prices([_lot("AAA", 10)], {"aaa": 12.5}, datetime.now(timezone.utc))
        self.assertEqual(merged[0].current_price, 12.5)

    def test_every_lot_of_a_ticker_is_repriced(self):
        lots = [_lot("AAA", 10, qty=1), _lot("AAA", 11, qty=2), _lot("CCC", 5)]
        merged = merge_prices(lots, {"AAA": 13}, datetime.now(timezone.utc))
        self.assertEqual([m.current_price for m in merged], [13, 13, 5])

    def test_input_collection_is_not_mutated(self):
        lots = [_lot("AAA", 10)]
        merge_prices(lots, {"AAA": 99}, datetime.now(timezone.utc))
        self.assertEqual(lots[0].current_price, 10)


class RefreshMarketDataTests(unittest.TestCase):
    def _reconciler(self, snapshot, assets=()):
        gateway = _FakeGateway(snapshot=snapshot)
        reconciler = PortfolioReconciler(gateway, usd_jpy=154.5, clock=_TickingClock())
        reconciler.seed(assets)
        return reconciler, gateway

    def test_applies_prices_and_rate(self):
        reconciler, gateway = self._reconciler(
            MarketSnapshot(prices={"AAA": 15}, usd_jpy=150.0),
            [_lot("AAA", 10), _lot("BBB", 20)],
        )
        result = asyncio.run(reconciler.refresh_market_data())
        self.assertTrue(result.snapshot_received)
        self.assertEqual(result.updated_tickers, ["AAA"])
        self.assertEqual(_tuples(reconciler), [("AAA", 1.0, 10.0, 15.0), ("BBB", 1.0, 20.0, 20.0)])
        self.assertEqual(reconciler.usd_jpy, 150.0)
        self.assertEqual(gateway.snapshot_calls, [["AAA", "BBB"]])

    def test_idempotent_up_to_timestamps(self):
        reconciler, _ = self._reconciler(
            MarketSnapshot(prices={"AAA": 15, "BBB": 21}, usd_jpy=150.0),
            [_lot("AAA", 10), _lot("BBB", 20)],
        )
        asyncio.run(reconciler.refresh_market_data())
        first = _tuples(reconciler)
        stamps = [a.last_updated for a in reconciler.assets]
        asyncio.run(reconciler.refresh_market_data())
        self.assertEqual(_tuples(reconciler), first)
        self.assertTrue(all(b > a for a, b in zip(stamps, [x.last_updated for x in reconciler.assets])))

    def test_absent_snapshot_changes_nothing(self):
        reconciler, _ = self._reconciler(None, [_lot("AAA", 10)])
        before = reconciler.assets
        result = asyncio.run(reconciler.refresh_market_data())
        self.assertFalse(result.snapshot_received)
        self.assertEqual(reconciler.assets, before)
        self.assertEqual(reconciler.usd_jpy, 154.5)

    def test_rate_only_snapshot_keeps_prices(self):
        reconciler, _ = self._reconciler(MarketSnapshot(usd_jpy=149.0), [_lot("AAA", 10)])
        asyncio.run(reconciler.refresh_market_data())
        self.assertEqual(_tuples(reconciler), [("AAA", 1.0, 10.0, 10.0)])
        self.assertEqual(reconciler.usd_jpy, 149.0)

    def test_empty_portfolio_still_refreshes_rate(self):
        reconciler, gateway = self._reconciler(MarketSnapshot(usd_jpy=148.0))
        asyncio.run(reconciler.refresh_market_data())
        self.assertEqual(gateway.snapshot_calls, [[]])
        self.assertEqual(reconciler.usd_jpy, 148.0)

    def test_lot_added_during_refresh_is_kept_and_priced(self):
        class _SlowGateway(_FakeGateway):
            def __init__(self):
                super().__init__(snapshot=MarketSnapshot(prices={"AAA": 30, "NEW": 7}))
                self.release = asyncio.Event()

            async def fetch_market_snapshot(self, tickers):
                await self.release.wait()
                return await super().fetch_market_snapshot(tickers)

        async def _run():
            gateway = _SlowGateway()
            reconciler = PortfolioReconciler(gateway)
            reconciler.seed([_lot("AAA", 10)])
            refresh = asyncio.create_task(reconciler.refresh_market_data())
            await asyncio.sleep(0)
            self.assertTrue(reconciler.is_refreshing)
            await reconciler.add_asset(AssetCreate(ticker="new", quantity=1, avg_price=5, current_price=5))
            gateway.release.set()
            await refresh
            self.assertFalse(reconciler.is_refreshing)
            return reconciler

        reconciler = asyncio.run(_run())
        self.assertEqual([(a.ticker, a.current_price) for a in reconciler.assets], [("AAA", 30.0), ("NEW", 7.0)])

    def test_overlapping_refreshes_run_in_order(self):
        class _QueuedGateway(_FakeGateway):
            def __init__(self):
                super().__init__()
                self.snapshots = [MarketSnapshot(prices={"AAA": 11}), MarketSnapshot(prices={"BBB": 22})]
                self.release_first = asyncio.Event()

            async def fetch_market_snapshot(self, tickers):
                self.snapshot_calls.append(list(tickers))
                snapshot = self.snapshots.pop(0)
                if len(self.snapshot_calls) == 1:
                    await self.release_first.wait()
                return snapshot

        async def _run():
            gateway = _QueuedGateway()
            reconciler = PortfolioReconciler(gateway)
            reconciler.seed([_lot("AAA", 10), _lot("BBB", 20)])
            first = asyncio.create_task(reconciler.refresh_market_data())
            second = asyncio.create_task(reconciler.refresh_market_data())
            await asyncio.sleep(0)
            # second refresh waits for the first to finish
            self.assertEqual(len(gateway.snapshot_calls), 1)
            gateway.release_first.set()
            results = await asyncio.gather(first, second)
            return reconciler, gateway, results

        reconciler, gateway, results = asyncio.run(_run())
        self.assertEqual(len(gateway.snapshot_calls), 2)
        self.assertEqual([r.updated_tickers for r in results], [["AAA"], ["BBB"]])
        self.assertEqual([(a.ticker, a.current_price) for a in reconciler.assets], [("AAA", 11.0), ("BBB", 22.0)])


class AddAssetTests(unittest.TestCase):
    def test_icon_is_ready_before_record_is_visible(self):
        seen = []

        class _ObservingGateway(_FakeGateway):
            async def synthesize_icon(self, ticker):
                seen.append(len(reconciler.assets))
                return None

        reconciler = PortfolioReconciler(_ObservingGateway())
        record = asyncio.run(
            reconciler.add_asset(AssetCreate(ticker=" msft ", quantity=3, avg_price=400, current_price=410))
        )
        self.assertEqual(seen, [0])
        self.assertEqual(record.ticker, "MSFT")
        self.assertEqual(record.company_name, "MSFT")
        self.assertIsNone(record.icon_url)
        self.assertEqual(reconciler.assets, [record])

    def test_same_ticker_adds_independent_lots(self):
        reconciler = PortfolioReconciler(_FakeGateway())
        payload = AssetCreate(ticker="AAPL", quantity=1, avg_price=100, source=AISource.CLAUDE)
        first = asyncio.run(reconciler.add_asset(payload))
        second = asyncio.run(reconciler.add_asset(payload))
        self.assertNotEqual(first.id, second.id)
        self.assertEqual(len(reconciler.assets), 2)
        self.assertEqual(first.source, AISource.CLAUDE)
        self.assertEqual(first.icon_url, "data:image/png;base64,AAAA")

    def test_seed_price_jitter_is_bounded(self):
        reconciler = PortfolioReconciler(_FakeGateway(), price_jitter=0.05, rng=random.Random(7))
        record = asyncio.run(reconciler.add_asset(AssetCreate(ticker="AAPL", quantity=1, avg_price=100)))
        self.assertGreaterEqual(record.current_price, 95)
        self.assertLessEqual(record.current_price, 105)

    def test_without_jitter_current_equals_cost(self):
        reconciler = PortfolioReconciler(_FakeGateway())
        record = asyncio.run(reconciler.add_asset(AssetCreate(ticker="AAPL", quantity=1, avg_price=100)))
        self.assertEqual(record.current_price, 100)


class ReconcilerStateTests(unittest.TestCase):
    def test_exchange_rate_edit(self):
        reconciler = PortfolioReconciler(_FakeGateway())
        self.assertEqual(reconciler.set_exchange_rate(160.25), 160.25)
        with self.assertRaises(ValueError):
            reconciler.set_exchange_rate(0)
        for bad in (float("nan"), float("inf"), float("-inf"), -1.0):
            with self.assertRaises(ValueError):
                reconciler.set_exchange_rate(bad)
        self.assertEqual(reconciler.usd_jpy, 160.25)

    def test_news_is_replaced_wholesale(self):
        gateway = _FakeGateway(news=[NewsItem(headline="h1", summary="s1")])
        reconciler = PortfolioReconciler(gateway)
        reconciler.seed([_lot("bbb", 1), _lot("AAA", 2)])
        asyncio.run(reconciler.refresh_news())
        gateway.news = [NewsItem(headline="h2", summary="s2")]
        asyncio.run(reconciler.refresh_news())
        self.assertEqual([n.headline for n in reconciler.news], ["h2"])
        self.assertEqual(gateway.news_calls[0], ["AAA", "BBB"])

    def test_summary_is_recomputed_on_every_read(self):
        reconciler = PortfolioReconciler(_FakeGateway(snapshot=MarketSnapshot(prices={"AAA": 20})), usd_jpy=100)
        reconciler.seed([_lot("AAA", 15, qty=2, avg=10)])
        self.assertEqual(reconciler.summary().total_value, 30)
        asyncio.run(reconciler.refresh_market_data())
        summary = reconciler.summary()
        self.assertEqual(summary.total_value, 40)
        self.assertEqual(summary.total_value_jpy, 4000)

    def test_chat_context_shape(self):
        reconciler = PortfolioReconciler(_FakeGateway(), usd_jpy=151.0)
        reconciler.seed([_lot("AAA", 15, qty=2, avg=10)])
        context, rate = reconciler.chat_context()
        self.assertEqual(json.loads(context), [{"ticker": "AAA", "qty": 2.0, "avg_cost": 10.0, "current_val": 30.0}])
        self.assertEqual(rate, 151.0)

    def test_changes_are_published(self):
        notifier = StateNotifier()
        events = []
        notifier.subscribe(lambda topic, payload: events.append(topic))
        reconciler = PortfolioReconciler(
            _FakeGateway(snapshot=MarketSnapshot(prices={"AAA": 11}, usd_jpy=150)), notifier
        )
        reconciler.seed([_lot("AAA", 10)])
        asyncio.run(reconciler.refresh_market_data())
        self.assertEqual(events, ["assets", "exchange_rate", "assets"])


if __name__ == "__main__":
    unittest.main()
