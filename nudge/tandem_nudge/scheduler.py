"""Seal decisions for the activity buffer.

On every poll tick the scheduler looks at what arrived since the last seal
and decides whether to turn it into a batch now:

    1. nothing new since the last seal   -> wait
    2. idle for max_wait                 -> seal (hard ceiling)
    3. last seal younger than min_wait   -> wait
    4. idle for thought_complete         -> seal
    5. natural break in the activity     -> seal
    6. urgent signals in recent entries  -> seal
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum

from .buffer import ActivityBuffer
from .models import CaptureEntry

logger = logging.getLogger(__name__)


class SealReason(str, Enum):
    MAX_WAIT = "max_wait"
    THOUGHT_COMPLETE = "thought_complete"
    NATURAL_BREAK = "natural_break"
    URGENT_SIGNALS = "urgent_signals"
    FORCED = "forced"


@dataclass(frozen=True)
class SealDecision:
    reason: SealReason
    description: str


class BatchScheduler:
    """Decides when buffered entries should be sealed into a batch."""

    COMPLETION_INDICATORS = (
        "done",
        "finished",
        "complete",
        "solved",
        "got it",
        "understand now",
        "that works",
        "perfect",
        "success",
        "correct",
    )
    COMPLETION_RE = re.compile(
        r"\b(?:" + "|".join(re.escape(w) for w in COMPLETION_INDICATORS) + r")\b"
    )
    URGENT_KEYWORDS = (
        "error",
        "stuck",
        "help",
        "confused",
        "problem",
        "issue",
        "broken",
        "not working",
        "failed",
        "wrong",
    )

    def __init__(
        self,
        buffer: ActivityBuffer,
        *,
        min_wait: float = 15.0,
        max_wait: float = 45.0,
        thought_complete: float = 10.0,
        break_window: int = 5,
        urgent_window: int = 3,
        urgent_min_hits: int = 2,
    ) -> None:
        self._buffer = buffer
        self.min_wait = min_wait
        self.max_wait = max_wait
        self.thought_complete = thought_complete
        self._break_window = break_window
        self._urgent_window = urgent_window
        self._urgent_min_hits = urgent_min_hits
        self.last_seal_time = 0.0

    def pending(self) -> list[CaptureEntry]:
        """Entries received since the last seal."""
        return self._buffer.entries_since(self.last_seal_time)

    def evaluate(self, now: float) -> SealDecision | None:
        """Return a seal decision for this tick, or None to keep waiting."""
        last_activity = self._buffer.last_activity
        if last_activity is None or not self.pending():
            return None

        since_activity = now - last_activity
        since_seal = now - self.last_seal_time

        if since_activity >= self.max_wait:
            return SealDecision(
                SealReason.MAX_WAIT,
                f"Max wait time ({self.max_wait:.0f} seconds) reached",
            )
        if since_seal < self.min_wait:
            return None
        if since_activity >= self.thought_complete:
            return SealDecision(
                SealReason.THOUGHT_COMPLETE,
                f"Thought appears complete ({self.thought_complete:.0f}s pause)",
            )
        if self.detect_natural_break():
            return SealDecision(SealReason.NATURAL_BREAK, "Natural break detected")
        if self.has_urgent_signals():
            return SealDecision(SealReason.URGENT_SIGNALS, "Urgent signals detected")
        return None

    def mark_sealed(self, now: float) -> None:
        self.last_seal_time = now

    def detect_natural_break(self) -> bool:
        """A completion word in the last diff, or a URL change among recent entries."""
        if len(self._buffer) < 3:
            return False
        recent = self._buffer.recent(self._break_window)

        last_diff = recent[-1].diff.lower()
        if self.COMPLETION_RE.search(last_diff):
            return True

        urls = {e.url for e in recent if e.url}
        return len(urls) > 1

    def has_urgent_signals(self) -> bool:
        hits = 0
        for entry in self._buffer.recent(self._urgent_window):
            text = entry.diff.lower()
            if text and any(word in text for word in self.URGENT_KEYWORDS):
                hits += 1
        return hits >= self._urgent_min_hits

    def reset(self) -> None:
        self.last_seal_time = 0.0
