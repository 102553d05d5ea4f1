from __future__ import annotations

import logging
import random
import uuid
from typing import Any, Dict, Optional

from config.settings import Settings
from schemas.asset import AISource, AssetRecord
from services.ai.gemini_gateway import GeminiConfig, GeminiGateway
from services.chat.chat_session import ChatSession
from services.portfolio.reconciler import PortfolioReconciler
from services.portfolio.state_events import StateNotifier, Topic

logger = logging.getLogger(__name__)


def demo_assets() -> list[AssetRecord]:
    return [
        AssetRecord(
            id=f"demo-{uuid.uuid4().hex[:8]}",
            ticker="ITUB",
            company_name="Itau Unibanco Holding",
            quantity=1,
            avg_price=7.52,
            current_price=7.52,
            source=AISource.GEMINI,
        )
    ]


def _log_state_change(topic: Topic, payload: Dict[str, Any]) -> None:
    logger.debug("state.changed topic=%s payload=%s", topic, payload)


class DashboardSession:
    """
    Everything one running dashboard needs, built once and closed once.

    The gateway is passed in explicitly; there is no module-level client.
    """

    def __init__(
        self,
        gateway: Any,
        settings: Optional[Settings] = None,
        *,
        notifier: Optional[StateNotifier] = None,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings or Settings()
        self.gateway = gateway
        self.notifier = notifier or StateNotifier()
        self.portfolio = PortfolioReconciler(
            gateway,
            self.notifier,
            usd_jpy=self.settings.default_usd_jpy,
            price_jitter=self.settings.price_jitter,
            rng=rng,
        )
        self.chat = ChatSession(gateway, self.portfolio.chat_context, self.notifier)
        self._closed = False

    @classmethod
    def from_env(cls, settings: Optional[Settings] = None) -> "DashboardSession":
        return cls(GeminiGateway(GeminiConfig.from_env()), settings or Settings.from_env())

    async def start(self) -> None:
        self.notifier.subscribe(_log_state_change)
        if self.settings.seed_demo_portfolio:
            self.portfolio.seed(demo_assets())
        if self.settings.refresh_on_startup:
            await self.portfolio.refresh_market_data()
        logger.info(
            "dashboard.session.started lots=%s usd_jpy=%s",
            len(self.portfolio.assets), self.portfolio.usd_jpy,
        )

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.notifier.clear()
        closer = getattr(self.gateway, "close", None)
        if callable(closer):
            closer()
        logger.info("dashboard.session.closed")
