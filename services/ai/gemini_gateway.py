from __future__ import annotations

import asyncio
import base64
import logging
import math
import os
import threading
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from schemas.asset import TradeFields, normalize_ticker
from schemas.market import MarketSnapshot, NewsItem
from services.ai import prompts
from services.ai.json_helpers import extract_json
from services.ai.news_parser import NEWS_MAX_ITEMS, Source, parse_news_text

logger = logging.getLogger(__name__)

ChatTurn = Tuple[str, str]  # (role, text), role is "user" or "assistant"


class ReceiptParseError(Exception):
    """Gemini answered, but not with a readable set of trade fields."""


class ChatStreamError(Exception):
    """The chat stream broke before it finished."""


@dataclass
class GeminiConfig:
    api_key: str = ""
    project_id: str = ""
    location: str = "us-central1"
    model: str = "gemini-2.5-flash"
    icon_model: str = "gemini-2.5-flash-image"
    vision_model: str = "gemini-3-pro-preview"
    temperature: float = 0.3

    @staticmethod
    def from_env() -> "GeminiConfig":
        return GeminiConfig(
            api_key=(os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY") or "").strip(),
            project_id=(os.getenv("GCP_PROJECT_ID") or os.getenv("GOOGLE_CLOUD_PROJECT") or "").strip(),
            location=(os.getenv("GCP_LOCATION") or "us-central1").strip(),
            model=os.getenv("GEMINI_MODEL") or "gemini-2.5-flash",
            icon_model=os.getenv("GEMINI_ICON_MODEL") or "gemini-2.5-flash-image",
            vision_model=os.getenv("GEMINI_VISION_MODEL") or "gemini-3-pro-preview",
            temperature=float(os.getenv("AI_TEMPERATURE", "0.3")),
        )


def _build_client(config: GeminiConfig):
    from google import genai

    if config.api_key:
        return genai.Client(api_key=config.api_key)
    if config.project_id:
        return genai.Client(vertexai=True, project=config.project_id, location=config.location)
    raise ValueError("Missing GEMINI_API_KEY (or GCP_PROJECT_ID for Vertex AI)")


def _first_candidate(resp: Any) -> Any:
    candidates = getattr(resp, "candidates", None) or []
    return candidates[0] if candidates else None


def _response_text(resp: Any) -> str:
    text = getattr(resp, "text", None)
    return text if isinstance(text, str) else ""


def _image_data_uri(resp: Any) -> Optional[str]:
    candidate = _first_candidate(resp)
    content = getattr(candidate, "content", None)
    for part in getattr(content, "parts", None) or []:
        inline = getattr(part, "inline_data", None)
        data = getattr(inline, "data", None)
        if not data:
            continue
        if isinstance(data, (bytes, bytearray)):
            encoded = base64.b64encode(bytes(data)).decode("ascii")
        else:
            encoded = str(data)
        mime = getattr(inline, "mime_type", None) or "image/png"
        return f"data:{mime};base64,{encoded}"
    return None


def _grounding_sources(resp: Any) -> List[Source]:
    candidate = _first_candidate(resp)
    metadata = getattr(candidate, "grounding_metadata", None)
    sources: List[Source] = []
    for chunk in getattr(metadata, "grounding_chunks", None) or []:
        web = getattr(chunk, "web", None)
        if web is None:
            continue
        sources.append((getattr(web, "uri", None), getattr(web, "title", None)))
    return sources


def _positive_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def snapshot_from_payload(payload: Dict[str, Any]) -> MarketSnapshot:
    """Keep only well-formed entries of a {"prices": {...}, "usdJpy": n} payload."""
    prices: Dict[str, float] = {}
    raw_prices = payload.get("prices")
    if isinstance(raw_prices, dict):
        for ticker, price in raw_prices.items():
            symbol = normalize_ticker(ticker) if isinstance(ticker, str) else ""
            value = _positive_number(price)
            if symbol and value is not None:
                prices[symbol] = value
    usd_jpy = _positive_number(payload.get("usdJpy", payload.get("usd_jpy")))
    return MarketSnapshot(prices=prices, usd_jpy=usd_jpy)


class GeminiGateway:
    """
    Every Gemini capability the dashboard uses, one method each.

    Failures stay inside this class: callers get None or [] back. The two
    exceptions are receipt extraction (ReceiptParseError when the reply is
    unreadable) and chat streaming (ChatStreamError), whose callers report
    those cases to the user.
    """

    def __init__(self, config: Optional[GeminiConfig] = None, client: Any = None):
        self.config = config or GeminiConfig.from_env()
        self._client = client if client is not None else _build_client(self.config)

    def close(self) -> None:
        closer = getattr(self._client, "close", None)
        if callable(closer):
            try:
                closer()
            except Exception:
                logger.exception("gemini.close.error")

    def _generate(self, *, model: str, contents: Any, config: Any) -> Any:
        return self._client.models.generate_content(model=model, contents=contents, config=config)

    async def _generate_async(self, *, model: str, contents: Any, config: Any) -> Any:
        return await asyncio.to_thread(self._generate, model=model, contents=contents, config=config)

    # ── icon synthesis ─────────────────────────────────────────────

    async def synthesize_icon(self, ticker: str) -> Optional[str]:
        from google.genai import types

        symbol = normalize_ticker(ticker)
        if not symbol:
            return None
        started = time.perf_counter()
        try:
            resp = await self._generate_async(
                model=self.config.icon_model,
                contents=prompts.icon_prompt(symbol),
                config=types.GenerateContentConfig(response_modalities=["IMAGE"]),
            )
            uri = _image_data_uri(resp)
        except Exception:
            logger.exception("gemini.icon.error ticker=%s", symbol)
            return None
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        if uri is None:
            logger.warning("gemini.icon.empty ticker=%s elapsed_ms=%s", symbol, elapsed_ms)
        else:
            logger.info("gemini.icon.done ticker=%s elapsed_ms=%s", symbol, elapsed_ms)
        return uri

    # ── receipt extraction ─────────────────────────────────────────

    @staticmethod
    def _receipt_schema():
        from google.genai import types

        return types.Schema(
            type=types.Type.OBJECT,
            properties={
                "ticker": types.Schema(type=types.Type.STRING),
                "companyName": types.Schema(type=types.Type.STRING),
                "quantity": types.Schema(type=types.Type.NUMBER),
                "avgPrice": types.Schema(type=types.Type.NUMBER),
            },
        )

    async def extract_trade_fields(self, image: bytes, mime_type: str) -> Optional[TradeFields]:
        from google.genai import types

        if not image:
            return None
        mime = (mime_type or "image/png").strip()
        logger.info("gemini.receipt.start bytes=%s mime=%s", len(image), mime)
        try:
            resp = await self._generate_async(
                model=self.config.vision_model,
                contents=[
                    types.Part.from_bytes(data=image, mime_type=mime),
                    types.Part.from_text(text=prompts.RECEIPT_PROMPT),
                ],
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=self._receipt_schema(),
                    temperature=0.0,
                ),
            )
            text = _response_text(resp).strip()
        except Exception:
            logger.exception("gemini.receipt.error")
            return None

        if not text:
            logger.info("gemini.receipt.empty")
            return None
        try:
            fields = TradeFields.model_validate(extract_json(text))
        except (ValueError, ValidationError) as exc:
            logger.warning("gemini.receipt.unreadable chars=%s err=%s", len(text), type(exc).__name__)
            raise ReceiptParseError("Could not read trade details from the response") from exc

        if fields.is_empty():
            logger.info("gemini.receipt.no_fields")
            return None
        return fields

    # ── news ────────────────────────────────────────────────────────

    async def fetch_news(self, tickers: Iterable[str]) -> List[NewsItem]:
        from google.genai import types

        symbols = sorted({normalize_ticker(t) for t in tickers if normalize_ticker(t)})
        if not symbols:
            return []
        started = time.perf_counter()
        try:
            resp = await self._generate_async(
                model=self.config.model,
                contents=prompts.news_prompt(symbols, NEWS_MAX_ITEMS),
                config=types.GenerateContentConfig(
                    tools=[types.Tool(google_search=types.GoogleSearch())],
                    temperature=self.config.temperature,
                ),
            )
            text = _response_text(resp)
            sources = _grounding_sources(resp)
        except Exception:
            logger.exception("gemini.news.error tickers=%s", len(symbols))
            return []
        items = parse_news_text(text, sources)
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "gemini.news.done tickers=%s items=%s sources=%s elapsed_ms=%s",
            len(symbols), len(items), len(sources), elapsed_ms,
        )
        return items

    # ── market snapshot ────────────────────────────────────────────

    async def fetch_market_snapshot(self, tickers: Sequence[str]) -> Optional[MarketSnapshot]:
        from google.genai import types

        symbols = sorted({normalize_ticker(t) for t in tickers if normalize_ticker(t)})
        started = time.perf_counter()
        try:
            # Structured output cannot be combined with the search tool, so
            # the JSON comes back as free text.
            resp = await self._generate_async(
                model=self.config.model,
                contents=prompts.snapshot_prompt(symbols),
                config=types.GenerateContentConfig(
                    tools=[types.Tool(google_search=types.GoogleSearch())],
                    temperature=0.0,
                ),
            )
            text = _response_text(resp)
        except Exception:
            logger.exception("gemini.snapshot.error tickers=%s", len(symbols))
            return None

        if not text.strip():
            logger.warning("gemini.snapshot.empty tickers=%s", len(symbols))
            return None
        try:
            payload = extract_json(text)
        except ValueError:
            logger.warning("gemini.snapshot.unparseable chars=%s", len(text))
            return None

        snapshot = snapshot_from_payload(payload)
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "gemini.snapshot.done requested=%s priced=%s has_fx=%s elapsed_ms=%s",
            len(symbols), len(snapshot.prices), snapshot.usd_jpy is not None, elapsed_ms,
        )
        return snapshot

    # ── chat ────────────────────────────────────────────────────────

    @staticmethod
    def _chat_contents(history: Sequence[ChatTurn], message: str) -> List[Any]:
        from google.genai import types

        contents = []
        for role, text in history:
            if not text:
                continue
            contents.append(
                types.Content(
                    role="model" if role == "assistant" else "user",
                    parts=[types.Part.from_text(text=text)],
                )
            )
        contents.append(types.Content(role="user", parts=[types.Part.from_text(text=message)]))
        return contents

    async def stream_chat_reply(
        self,
        history: Sequence[ChatTurn],
        message: str,
        portfolio_context: str,
        exchange_rate: float,
    ) -> AsyncIterator[str]:
        from google.genai import types

        contents = self._chat_contents(history, message)
        config = types.GenerateContentConfig(
            system_instruction=prompts.chat_system_prompt(portfolio_context, exchange_rate),
            temperature=self.config.temperature,
        )
        logger.info(
            "gemini.stream.start model=%s turns=%s prompt_len=%s",
            self.config.model, len(contents), len(message or ""),
        )
        loop = asyncio.get_running_loop()
        q: asyncio.Queue[Any] = asyncio.Queue()
        started = time.perf_counter()

        def _worker() -> None:
            try:
                stream = self._client.models.generate_content_stream(
                    model=self.config.model,
                    contents=contents,
                    config=config,
                )
                for chunk in stream:
                    text = getattr(chunk, "text", None)
                    if text:
                        loop.call_soon_threadsafe(q.put_nowait, text)
            except Exception as exc:
                loop.call_soon_threadsafe(q.put_nowait, exc)
            finally:
                loop.call_soon_threadsafe(q.put_nowait, None)

        threading.Thread(target=_worker, daemon=True).start()

        emitted = 0
        while True:
            item = await q.get()
            if item is None:
                break
            if isinstance(item, Exception):
                logger.warning(
                    "gemini.stream.error chunks_emitted=%s err=%s", emitted, type(item).__name__,
                )
                raise ChatStreamError("Chat stream failed") from item
            emitted += 1
            yield item

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info("gemini.stream.done elapsed_ms=%s chunks=%s", elapsed_ms, emitted)
