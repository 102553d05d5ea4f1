import logging
from typing import AsyncGenerator, List

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from middleware.rate_limit import CHAT_RATE_LIMIT, limiter
from routers.portfolio_routes import get_dashboard_session
from schemas.chat import ChatMessage, ChatSendRequest, format_sse
from services.chat.chat_session import ChatBusyError
from services.dashboard_session import DashboardSession

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/messages", response_model=List[ChatMessage])
def chat_messages(session: DashboardSession = Depends(get_dashboard_session)):
    return session.chat.messages


@router.get("/status")
def chat_status(session: DashboardSession = Depends(get_dashboard_session)):
    return {"state": session.chat.turn_state, "can_send": session.chat.can_send}


@router.post("/stream")
@limiter.limit(CHAT_RATE_LIMIT)
async def chat_stream_endpoint(
    request: Request,
    req: ChatSendRequest,
    session: DashboardSession = Depends(get_dashboard_session),
):
    if not session.chat.can_send:
        raise HTTPException(status_code=409, detail="A reply is still streaming")

    async def event_stream() -> AsyncGenerator[str, None]:
        try:
            async for event in session.chat.send(req.message):
                yield format_sse(event.event, event.data)
        except ChatBusyError as exc:
            # lost the race with another request between the check and the stream
            yield format_sse("error", {"message": str(exc)})

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
