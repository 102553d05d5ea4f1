# routers/portfolio_routes.py
import logging
from typing import List, Optional

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    UploadFile,
)

from middleware.rate_limit import GEMINI_RATE_LIMIT, REFRESH_RATE_LIMIT, limiter
from schemas.asset import AISource, AssetCreate, AssetView, TradeDraft
from schemas.market import ExchangeRateUpdate, HistoryPoint, RefreshResult
from services.ai.gemini_gateway import ReceiptParseError
from services.dashboard_session import DashboardSession
from services.portfolio.metrics import asset_view
from services.portfolio.trade_draft import apply_trade_fields

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_RECEIPT_BYTES = 10 * 1024 * 1024
RECEIPT_UNREADABLE_DETAIL = "画像の解析に失敗しました。"


def get_dashboard_session(request: Request) -> DashboardSession:
    return request.app.state.dashboard


@router.get("/assets", response_model=List[AssetView])
def list_assets(session: DashboardSession = Depends(get_dashboard_session)):
    return session.portfolio.asset_views()


@router.post("/assets", response_model=AssetView, status_code=201)
@limiter.limit(GEMINI_RATE_LIMIT)
async def add_asset(
    request: Request,
    payload: AssetCreate,
    bg: BackgroundTasks,
    session: DashboardSession = Depends(get_dashboard_session),
):
    record = await session.portfolio.add_asset(payload)
    # news follows the holdings list
    bg.add_task(session.portfolio.refresh_news)
    return asset_view(record, session.portfolio.usd_jpy)


@router.post("/assets/receipt")
@limiter.limit(GEMINI_RATE_LIMIT)
async def extract_receipt(
    request: Request,
    file: UploadFile = File(...),
    ticker: str = Form(""),
    company_name: str = Form(""),
    quantity: Optional[float] = Form(None, ge=0),
    avg_price: Optional[float] = Form(None, ge=0),
    source: AISource = Form(AISource.GEMINI),
    session: DashboardSession = Depends(get_dashboard_session),
):
    """
    Read a trade confirmation screenshot and patch the add-asset draft.

    Fields the image does not show keep whatever the user already typed.
    """
    draft = TradeDraft(
        ticker=ticker,
        company_name=company_name,
        quantity=quantity,
        avg_price=avg_price,
        source=source,
    )
    try:
        image = await file.read(MAX_RECEIPT_BYTES + 1)
        mime_type = file.content_type or "image/png"
    finally:
        await file.close()

    if not image:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if len(image) > MAX_RECEIPT_BYTES:
        raise HTTPException(status_code=413, detail="Uploaded file is too large")

    try:
        fields = await session.gateway.extract_trade_fields(image, mime_type)
    except ReceiptParseError:
        raise HTTPException(status_code=422, detail=RECEIPT_UNREADABLE_DETAIL)

    if fields is None:
        return {"status": "empty", "draft": draft}
    return {"status": "extracted", "draft": apply_trade_fields(draft, fields)}


@router.post("/refresh", response_model=RefreshResult)
@limiter.limit(REFRESH_RATE_LIMIT)
async def refresh_market_data(
    request: Request,
    session: DashboardSession = Depends(get_dashboard_session),
):
    if session.portfolio.is_refreshing:
        raise HTTPException(status_code=409, detail="Market refresh already in progress")
    return await session.portfolio.refresh_market_data()


@router.get("/summary")
def portfolio_summary(session: DashboardSession = Depends(get_dashboard_session)):
    return {
        "summary": session.portfolio.summary(),
        "usd_jpy": session.portfolio.usd_jpy,
        "lots": len(session.portfolio.assets),
    }


@router.get("/history", response_model=List[HistoryPoint])
def portfolio_history(
    months: Optional[int] = Query(None, ge=1, le=24),
    session: DashboardSession = Depends(get_dashboard_session),
):
    return session.portfolio.history(months or session.settings.history_months)


@router.get("/exchange-rate")
def get_exchange_rate(session: DashboardSession = Depends(get_dashboard_session)):
    return {"usd_jpy": session.portfolio.usd_jpy}


@router.put("/exchange-rate")
def update_exchange_rate(
    body: ExchangeRateUpdate,
    session: DashboardSession = Depends(get_dashboard_session),
):
    try:
        rate = session.portfolio.set_exchange_rate(body.usd_jpy)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"usd_jpy": rate}
