"""In-process refresh notifications.

Open views subscribe to a section (or to ``None`` for every section) and are
told to re-pull data after local mutations or background refreshes. Events
published for ``None`` (global data) reach every subscriber.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable

from roster_sync.domain.models import Section

logger = logging.getLogger(__name__)

DATA_REFRESHED = "datarefreshed"
LOGS_REFRESHED = "logsrefreshed"
ROLES_REFRESHED = "userrolerefresh"


@dataclass(frozen=True)
class RefreshEvent:
    section: Section | None
    topic: str


Handler = Callable[[RefreshEvent], None]


class RefreshNotifier:
    """Section-scoped observer registry."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[Section | None, list[Handler]] = defaultdict(list)

    def subscribe(self, section: Section | None, handler: Handler) -> Callable[[], None]:
        """Register ``handler``; returns a callable that unsubscribes it."""
        with self._lock:
            self._subscribers[section].append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                handlers = self._subscribers.get(section, [])
                if handler in handlers:
                    handlers.remove(handler)

        return _unsubscribe

    def publish(self, section: Section | None, topic: str = DATA_REFRESHED) -> None:
        event = RefreshEvent(section=section, topic=topic)
        handlers: list[Handler] = []
        with self._lock:
            if section is None:
                # Global changes reach every subscriber.
                for subscribed in self._subscribers.values():
                    handlers.extend(subscribed)
            else:
                handlers.extend(self._subscribers.get(section, []))
                handlers.extend(self._subscribers.get(None, []))
        for handler in handlers:
            try:
                handler(event)
            except Exception as exc:
                logger.error("Refresh handler failed for %s/%s: %s", section, topic, exc)
