# main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from config.logging_config import configure_logging
from config.settings import Settings
from middleware.rate_limit import limiter
from middleware.request_logging import RequestLoggingMiddleware
from routers.ai_chat_routes import router as chat_router
from routers.news_routes import router as news_router
from routers.portfolio_routes import router as portfolio_router
from services.dashboard_session import DashboardSession

configure_logging()
logger = logging.getLogger(__name__)


def create_app(
    session: Optional[DashboardSession] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    settings = settings or (session.settings if session else Settings.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        dashboard = session or DashboardSession.from_env(settings)
        app.state.dashboard = dashboard
        await dashboard.start()
        try:
            yield
        finally:
            await dashboard.aclose()

    app = FastAPI(title="Stock Dashboard API", lifespan=lifespan)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(portfolio_router, prefix="/api/portfolio")
    app.include_router(news_router, prefix="/api/news")
    app.include_router(chat_router, prefix="/api/chat")

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    return app


app = create_app()
