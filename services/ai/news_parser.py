from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from schemas.market import NewsItem

STORY_SEPARATOR = "|||"
HEADLINE_SEPARATOR = "::"
NEWS_MAX_ITEMS = 10

DEFAULT_HEADLINE = "関連ニュース"
FALLBACK_HEADLINE = "市場ニュース"
DEFAULT_SOURCE = "Google Search"

# (url, title) as found in grounding metadata
Source = Tuple[Optional[str], Optional[str]]


def _source_for(index: int, sources: Sequence[Source]) -> Source:
    # Grounding chunks are not aligned with the generated stories; index modulo
    # count is a best-effort pairing only.
    if not sources:
        return None, None
    return sources[index % len(sources)]


def parse_news_text(
    text: str,
    sources: Sequence[Source] = (),
    limit: int = NEWS_MAX_ITEMS,
) -> List[NewsItem]:
    """Turn "HEADLINE :: SUMMARY ||| ..." model output into news items."""
    text = text or ""
    segments = [s.strip() for s in text.split(STORY_SEPARATOR)]
    segments = [s for s in segments if s]

    items: List[NewsItem] = []
    for index, raw in enumerate(segments[:limit]):
        parts = raw.split(HEADLINE_SEPARATOR)
        headline = parts[0].strip() or DEFAULT_HEADLINE
        summary = parts[1].strip() if len(parts) > 1 else ""
        url, title = _source_for(index, sources)
        items.append(
            NewsItem(
                headline=headline,
                summary=summary or raw,
                url=url,
                source=title or DEFAULT_SOURCE,
            )
        )

    if not items and text.strip():
        url, _ = _source_for(0, sources)
        items.append(
            NewsItem(headline=FALLBACK_HEADLINE, summary=text, url=url, source=DEFAULT_SOURCE)
        )
    return items
