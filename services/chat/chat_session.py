"""Chat history for the dashboard's analyst sidebar and the streaming turn loop."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import AsyncIterator, Callable, List, Optional, Protocol, Sequence, Tuple

from schemas.chat import ChatMessage, SSEEvent, TurnState
from services.portfolio.state_events import StateNotifier

logger = logging.getLogger(__name__)

GREETING_MESSAGE = (
    "こんにちは！Geminiポートフォリオアシスタントです。"
    "保有している米国株について質問するか、購入レシートをアップロードして資産を更新してください。"
)
CHAT_ERROR_MESSAGE = "申し訳ありません。リクエストの処理中にエラーが発生しました。"

ContextProvider = Callable[[], Tuple[str, float]]


class ChatGateway(Protocol):
    def stream_chat_reply(
        self,
        history: Sequence[Tuple[str, str]],
        message: str,
        portfolio_context: str,
        exchange_rate: float,
    ) -> AsyncIterator[str]: ...


class ChatBusyError(RuntimeError):
    """A reply is still being streamed."""


class ChatSession:
    def __init__(
        self,
        gateway: ChatGateway,
        context_provider: ContextProvider,
        notifier: Optional[StateNotifier] = None,
        greeting: Optional[str] = GREETING_MESSAGE,
    ):
        self._gateway = gateway
        self._context_provider = context_provider
        self._notifier = notifier or StateNotifier()
        self._lock = asyncio.Lock()
        self._messages: List[ChatMessage] = []
        self.turn_state = TurnState.IDLE
        if greeting:
            self._messages.append(ChatMessage(role="assistant", text=greeting))

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages)

    @property
    def can_send(self) -> bool:
        return not self._lock.locked() and self.turn_state in (TurnState.IDLE, TurnState.SETTLED)

    def _append(self, message: ChatMessage) -> int:
        self._messages.append(message)
        self._notifier.notify("chat", {"count": len(self._messages), "role": message.role})
        return len(self._messages) - 1

    async def send(self, text: str) -> AsyncIterator[SSEEvent]:
        """
        Run one turn and yield its events: ``thinking`` once, ``token`` per
        fragment, then ``done`` or ``error``.

        Raises ValueError for blank input and ChatBusyError while another
        turn is still streaming.
        """
        message = (text or "").strip()
        if not message:
            raise ValueError("Message is required")
        if not self.can_send:
            raise ChatBusyError("A reply is still streaming")

        async with self._lock:
            history = [(m.role, m.text) for m in self._messages]
            portfolio_context, usd_jpy = self._context_provider()

            self._append(ChatMessage(role="user", text=message))
            reply = ChatMessage(
                role="assistant",
                state=TurnState.AWAITING_FIRST_FRAGMENT,
                in_progress=True,
            )
            reply_index = self._append(reply)
            self.turn_state = TurnState.AWAITING_FIRST_FRAGMENT
            started = time.perf_counter()

            try:
                yield SSEEvent(event="thinking", data={})
                try:
                    async for fragment in self._gateway.stream_chat_reply(
                        history, message, portfolio_context, usd_jpy
                    ):
                        if not fragment:
                            continue
                        reply.text += fragment
                        reply.state = TurnState.STREAMING
                        self.turn_state = TurnState.STREAMING
                        yield SSEEvent(event="token", data={"text": fragment})
                except Exception:
                    logger.exception("chat.turn.error chars_received=%s", len(reply.text))
                    reply = ChatMessage(role="assistant", text=CHAT_ERROR_MESSAGE)
                    self._messages[reply_index] = reply
                    self.turn_state = TurnState.IDLE
                    self._notifier.notify("chat", {"count": len(self._messages), "error": True})
                    yield SSEEvent(event="error", data={"message": CHAT_ERROR_MESSAGE})
                    return

                reply.state = TurnState.SETTLED
                reply.in_progress = False
                self.turn_state = TurnState.SETTLED
                elapsed_ms = int((time.perf_counter() - started) * 1000)
                logger.info("chat.turn.done chars=%s elapsed_ms=%s", len(reply.text), elapsed_ms)
                self._notifier.notify("chat", {"count": len(self._messages), "settled": True})
                yield SSEEvent(event="done", data={"message": reply.model_dump(mode="json")})
            finally:
                # Consumer went away mid-turn: keep what arrived and release the session.
                if reply.in_progress:
                    reply.state = TurnState.SETTLED
                    reply.in_progress = False
                    self.turn_state = TurnState.IDLE
                    logger.warning("chat.turn.abandoned chars=%s", len(reply.text))
