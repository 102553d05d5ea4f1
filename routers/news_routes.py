from typing import List

from fastapi import APIRouter, Depends, Request

from middleware.rate_limit import GEMINI_RATE_LIMIT, limiter
from routers.portfolio_routes import get_dashboard_session
from schemas.market import NewsItem
from services.dashboard_session import DashboardSession

router = APIRouter()


@router.get("", response_model=List[NewsItem])
def latest_news(session: DashboardSession = Depends(get_dashboard_session)):
    return session.portfolio.news


@router.post("/refresh", response_model=List[NewsItem])
@limiter.limit(GEMINI_RATE_LIMIT)
async def refresh_news(
    request: Request,
    session: DashboardSession = Depends(get_dashboard_session),
):
    return await session.portfolio.refresh_news()
