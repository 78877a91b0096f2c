"""Turns a selection of capture entries into one annotated batch."""

from __future__ import annotations

import logging
import math
import re
from collections import Counter
from collections.abc import Sequence
from datetime import datetime
from urllib.parse import urlsplit

from .markup import (
    BatchDocument,
    BehaviorSegment,
    BehaviorType,
    ChangeSegment,
    ContentTag,
    ContextSegment,
    DelaySegment,
    Segment,
    parse_diff_markers,
)
from .models import Batch, CaptureEntry

logger = logging.getLogger(__name__)


class BatchComposer:
    """Builds the structured batch document for a set of entries.

    Content tags are applied to each diff in a fixed order, each one
    wrapping whatever was applied before it.
    """

    ERROR_KEYWORDS = ("error", "problem", "issue", "stuck", "failed", "wrong", "broken")
    CONFUSION_KEYWORDS = ("confused", "dont understand", "don't get", "lost", "help", "unclear")
    SEARCH_KEYWORDS = ("search", "find", "looking for", "query", "google", "stack overflow")
    MATH_KEYWORDS = (
        "probability",
        "calculate",
        "dice",
        "roll",
        "fraction",
        "answer is",
        "equation",
        "formula",
        "solve",
        "result",
        "solution",
        "theorem",
    )
    INCORRECT_ANSWERS = ("1/89", "1/90", "1/88", "2/89")
    INCORRECT_PATTERNS = (
        re.compile(r"answer is 0\b", re.I),
        re.compile(r"answer is 1\b", re.I),
        re.compile(r"\b1/89\b"),
        re.compile(r"divide by 0", re.I),
    )
    FRACTION_RE = re.compile(r"\b\d+/\d+\b")
    MATH_SYMBOLS_RE = re.compile(r"[=+\-*/()^√∫∑∏]")

    def __init__(
        self,
        *,
        delay_threshold: float = 5.0,
        repetition_ratio: float = 0.3,
        context_switch_urls: int = 3,
        rapid_change_count: int = 5,
        rapid_change_length: int = 50,
        prolonged_focus_seconds: float = 60.0,
        frequent_error_count: int = 2,
    ) -> None:
        self._delay_threshold = delay_threshold
        self._repetition_ratio = repetition_ratio
        self._context_switch_urls = context_switch_urls
        self._rapid_change_count = rapid_change_count
        self._rapid_change_length = rapid_change_length
        self._prolonged_focus_seconds = prolonged_focus_seconds
        self._frequent_error_count = frequent_error_count

    def compose(
        self,
        entries: Sequence[CaptureEntry],
        sealed_at: datetime,
    ) -> Batch | None:
        """Compose a batch, or return None for an empty selection."""
        if not entries:
            return None

        ordered = sorted(entries, key=lambda e: e.captured_at)
        segments: list[Segment] = []
        previous: datetime | None = None
        for entry in ordered:
            if previous is not None:
                gap = (entry.captured_at - previous).total_seconds()
                if gap > self._delay_threshold:
                    segments.append(DelaySegment(_round_half_up(gap)))
            change = self.tag_diff(entry.diff, timestamp=entry.captured_at.isoformat())
            if change is not None:
                segments.append(change)
            previous = entry.captured_at

        last_url = ordered[-1].url
        if last_url:
            segments.append(ContextSegment(self.sanitize_url(last_url)))

        segments.extend(self.behavior_markers(ordered))

        document = BatchDocument(
            segments=segments,
            timestamp=sealed_at.isoformat(),
            entries=len(ordered),
        )
        structured_text = document.render()
        logger.debug(
            "Composed batch with %d entries (%d chars)", len(ordered), len(structured_text)
        )
        return Batch(
            batch_id=f"batch_{int(sealed_at.timestamp() * 1000)}",
            timestamp=sealed_at,
            structured_text=structured_text,
            raw_entry_count=len(ordered),
            timespan=self.timespan(ordered),
            document=document,
        )

    # ---- content tagging ----

    def tag_diff(self, diff: str, *, timestamp: str | None = None) -> ChangeSegment | None:
        """Normalize diff markers and attach content tags; None for blank diffs."""
        if not diff or not diff.strip():
            return None
        fragments = parse_diff_markers(diff)
        text = "".join(f.plain_text for f in fragments)

        tags: list[ContentTag] = []
        if self.is_repetitive(text):
            tags.append(ContentTag.REPETITIVE)
        if self.contains_error_keywords(text):
            tags.append(ContentTag.ERROR_SIGNAL)
        if self.contains_confusion_keywords(text):
            tags.append(ContentTag.CONFUSION_SIGNAL)
        if self.is_search_activity(text):
            tags.append(ContentTag.SEARCH_ACTIVITY)
        if self.is_mathematical_content(text):
            tags.append(ContentTag.MATHEMATICAL_CONTENT)
        if self.has_incorrect_answer(text):
            tags.append(ContentTag.INCORRECT_ANSWER_SIGNAL)
        return ChangeSegment(fragments=fragments, tags=tuple(tags), timestamp=timestamp)

    def is_repetitive(self, text: str) -> bool:
        """True when one word longer than 3 chars makes up >30% of all words."""
        if not text or len(text) < 20:
            return False
        words = text.lower().split()
        counts = Counter(w for w in words if len(w) > 3)
        if not counts:
            return False
        return max(counts.values()) > len(words) * self._repetition_ratio

    @classmethod
    def contains_error_keywords(cls, text: str) -> bool:
        return _contains_any(text, cls.ERROR_KEYWORDS)

    @classmethod
    def contains_confusion_keywords(cls, text: str) -> bool:
        return _contains_any(text, cls.CONFUSION_KEYWORDS)

    @classmethod
    def is_search_activity(cls, text: str) -> bool:
        return _contains_any(text, cls.SEARCH_KEYWORDS)

    @classmethod
    def is_mathematical_content(cls, text: str) -> bool:
        if not text:
            return False
        return (
            _contains_any(text, cls.MATH_KEYWORDS)
            or cls.FRACTION_RE.search(text) is not None
            or cls.MATH_SYMBOLS_RE.search(text) is not None
        )

    @classmethod
    def has_incorrect_answer(cls, text: str) -> bool:
        if not text:
            return False
        return any(answer in text for answer in cls.INCORRECT_ANSWERS) or any(
            p.search(text) for p in cls.INCORRECT_PATTERNS
        )

    # ---- batch level ----

    def behavior_markers(self, entries: Sequence[CaptureEntry]) -> list[BehaviorSegment]:
        markers: list[BehaviorSegment] = []

        urls = {e.url for e in entries if e.url}
        if len(urls) > self._context_switch_urls:
            markers.append(BehaviorSegment(BehaviorType.CONTEXT_SWITCHING, count=len(urls)))

        rapid = [e for e in entries if e.diff and len(e.diff) < self._rapid_change_length]
        if len(rapid) > self._rapid_change_count:
            markers.append(BehaviorSegment(BehaviorType.RAPID_CHANGES, count=len(rapid)))

        timespan = self.timespan(entries)
        if timespan > self._prolonged_focus_seconds:
            markers.append(
                BehaviorSegment(BehaviorType.PROLONGED_FOCUS, duration=_round_half_up(timespan))
            )

        errors = sum(1 for e in entries if self.contains_error_keywords(e.diff))
        if errors > self._frequent_error_count:
            markers.append(BehaviorSegment(BehaviorType.FREQUENT_ERRORS, count=errors))

        return markers

    @staticmethod
    def timespan(entries: Sequence[CaptureEntry]) -> float:
        """Seconds between the earliest and latest capture."""
        if len(entries) < 2:
            return 0.0
        times = [e.captured_at for e in entries]
        return (max(times) - min(times)).total_seconds()

    @staticmethod
    def sanitize_url(url: str) -> str:
        """Hostname and path only; query, fragment and credentials are dropped."""
        try:
            parts = urlsplit(url)
            hostname = parts.hostname
        except ValueError:
            hostname = None
        if not hostname:
            return url[:50]
        return f"{hostname}{parts.path}"


def _contains_any(text: str, keywords: Sequence[str]) -> bool:
    if not text:
        return False
    lower = text.lower()
    return any(keyword in lower for keyword in keywords)


def _round_half_up(seconds: float) -> int:
    # half up: 30.5s renders as 31s
    return math.floor(seconds + 0.5)
