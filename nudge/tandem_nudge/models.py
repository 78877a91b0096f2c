"""Data models shared across the nudge pipeline."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .markup import BatchDocument

logger = logging.getLogger(__name__)


def parse_timestamp(value: Any, fallback: float) -> datetime:
    """Parse an ISO 8601 capture timestamp, falling back to *fallback* (epoch s)."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            logger.debug("Unparsable capturedAt %r, using receipt time", value)
        else:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return datetime.fromtimestamp(fallback, tz=UTC)


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Signal(str, Enum):
    """Named patterns the analyzer can detect in a batch."""

    ERRORS = "errors"
    CONFUSION = "confusion"
    REPETITION = "repetition"
    LONG_DELAYS = "long_delays"
    CONTEXT_SWITCHING = "context_switching"
    FREQUENT_ERRORS = "frequent_errors"
    PROLONGED_FOCUS = "prolonged_focus"
    INCORRECT_MATH = "incorrect_math"
    INCORRECT_ANSWER = "incorrect_answer"
    COMPLETION = "completion"
    CORRECT_ANSWER = "correct_answer"


@dataclass(frozen=True)
class CaptureEntry:
    """One observed textual delta on the page."""

    sequence_id: int
    diff: str
    full_text: str
    url: str
    captured_at: datetime
    received_at: float

    @property
    def display_id(self) -> str:
        return f"{self.sequence_id:02d}"

    @classmethod
    def from_payload(
        cls,
        payload: dict[str, Any],
        *,
        sequence_id: int,
        received_at: float,
    ) -> CaptureEntry:
        """Build an entry from the wire dict ``{diff, fullText, url, capturedAt}``.

        Missing or non-string text fields become empty strings.
        """

        def _text(key: str) -> str:
            value = payload.get(key)
            return value if isinstance(value, str) else ""

        return cls(
            sequence_id=sequence_id,
            diff=_text("diff"),
            full_text=_text("fullText"),
            url=_text("url"),
            captured_at=parse_timestamp(payload.get("capturedAt"), received_at),
            received_at=received_at,
        )


@dataclass(frozen=True)
class Batch:
    """A sealed, annotated window of capture entries."""

    batch_id: str
    timestamp: datetime
    structured_text: str
    raw_entry_count: int
    timespan: float
    document: BatchDocument | None = field(default=None, compare=False, repr=False)

    def summary(self) -> dict[str, Any]:
        return {
            "batchId": self.batch_id,
            "timestamp": self.timestamp.isoformat(),
            "entryCount": self.raw_entry_count,
            "timespan": self.timespan,
            "textLength": len(self.structured_text),
        }


@dataclass(frozen=True)
class SignalPatterns:
    has_errors: bool = False
    has_confusion: bool = False
    has_repetition: bool = False
    has_long_delays: bool = False
    has_context_switching: bool = False
    has_frequent_errors: bool = False
    has_prolonged_focus: bool = False
    has_mathematical_content: bool = False
    has_potential_incorrect_answer: bool = False
    has_completion_signals: bool = False
    has_success_indicators: bool = False

    def to_dict(self) -> dict[str, bool]:
        # camelCase keys for the UI push contract
        return {
            "".join(
                part if i == 0 else part.capitalize()
                for i, part in enumerate(name.split("_"))
            ): value
            for name, value in asdict(self).items()
        }


@dataclass(frozen=True)
class SignalAnalysis:
    """Concern score and pattern flags derived from one batch."""

    concerning_signals: int = 0
    signal_types: tuple[Signal, ...] = ()
    urgency: Urgency = Urgency.LOW
    patterns: SignalPatterns = field(default_factory=SignalPatterns)

    @property
    def has_problems(self) -> bool:
        return self.concerning_signals > 0

    @property
    def is_success_only(self) -> bool:
        """Corroborated success with nothing concerning alongside it."""
        return self.patterns.has_success_indicators and not self.has_problems

    def to_dict(self) -> dict[str, Any]:
        return {
            "concerningSignals": self.concerning_signals,
            "signalTypes": [s.value for s in self.signal_types],
            "urgency": self.urgency.value,
            "patterns": self.patterns.to_dict(),
        }


@dataclass(frozen=True)
class Nudge:
    """An advisory emitted to the UI."""

    id: str
    timestamp: datetime
    level: int
    text: str
    analysis: SignalAnalysis
    batch_id: str
    manual_trigger: bool = False
    forced: bool = False

    def to_event(self) -> dict[str, Any]:
        """Push payload consumed by the UI collaborator."""
        event: dict[str, Any] = {
            "message": self.text,
            "level": self.level,
            "timestamp": self.timestamp.isoformat(),
            "analysis": self.analysis.to_dict(),
        }
        if self.manual_trigger:
            event["manualTrigger"] = True
        return event
