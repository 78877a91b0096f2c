"""Recent raw capture entries, evicted by age."""

from __future__ import annotations

import logging

from .models import CaptureEntry

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 120.0


class ActivityBuffer:
    """Holds capture entries received within the last *window* seconds.

    Eviction runs on every ``add()`` relative to that entry's receipt time,
    so growth is bounded by time rather than by a count cap.
    """

    def __init__(self, *, window: float = DEFAULT_WINDOW_SECONDS) -> None:
        self._window = window
        self._entries: list[CaptureEntry] = []

    def add(self, entry: CaptureEntry) -> None:
        self._entries.append(entry)
        cutoff = entry.received_at - self._window
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.received_at > cutoff]
        evicted = before - len(self._entries)
        if evicted:
            logger.debug("Evicted %d capture entries older than %.0fs", evicted, self._window)

    def entries_since(self, timestamp: float) -> list[CaptureEntry]:
        """Entries received strictly after *timestamp*."""
        return [e for e in self._entries if e.received_at > timestamp]

    def recent(self, count: int) -> list[CaptureEntry]:
        return self._entries[-count:] if count > 0 else []

    def all(self) -> list[CaptureEntry]:
        return list(self._entries)

    @property
    def last_activity(self) -> float | None:
        """Receipt time of the newest entry, or None when empty."""
        return self._entries[-1].received_at if self._entries else None

    def clear(self) -> None:
        self._entries = []

    def __len__(self) -> int:
        return len(self._entries)
