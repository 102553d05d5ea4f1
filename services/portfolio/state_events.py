"""Change notifications for dashboard state, consumed by whatever renders it."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Literal

logger = logging.getLogger(__name__)

Topic = Literal["assets", "exchange_rate", "news", "chat"]
Listener = Callable[[Topic, Dict[str, Any]], None]


class StateNotifier:
    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; the returned callable removes it again."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def notify(self, topic: Topic, payload: Dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(topic, payload)
            except Exception:
                logger.exception("state.listener.error topic=%s", topic)

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)
