"""Concern scoring for composed batches.

Scoring is data driven: each ``Signal`` has a detector and a weight in
``SCORING_TABLE``.  Detection order is the order signals are reported in.

    errors              +1    error tag present
    confusion           +2    confusion tag present
    repetition          +1    repetition tag present
    long_delays         +1    any delay > 30s
    context_switching   +1    behaviour marker
    frequent_errors     +2    behaviour marker
    prolonged_focus     +1    behaviour marker lasting > 300s
    incorrect_math      +2    math content with a known-wrong answer
    incorrect_answer    +3    composer's incorrect-answer tag

Completion and correct-answer detection never add to the score.  For
mathematical content a bare "done" is not trusted: success needs a match
from the configured ``AnswerVerifier``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Protocol

from .markup import BatchDocument, BehaviorType, ContentTag
from .models import Batch, Signal, SignalAnalysis, SignalPatterns, Urgency

logger = logging.getLogger(__name__)


SCORING_TABLE: dict[Signal, int] = {
    Signal.ERRORS: 1,
    Signal.CONFUSION: 2,
    Signal.REPETITION: 1,
    Signal.LONG_DELAYS: 1,
    Signal.CONTEXT_SWITCHING: 1,
    Signal.FREQUENT_ERRORS: 2,
    Signal.PROLONGED_FOCUS: 1,
    Signal.INCORRECT_MATH: 2,
    Signal.INCORRECT_ANSWER: 3,
}

HIGH_URGENCY = 6
MEDIUM_URGENCY = 3


class AnswerVerifier(Protocol):
    def verify(self, text: str) -> bool: ...


class PatternAnswerVerifier:
    """Accepts text matching any of a set of known-correct answer patterns."""

    def __init__(self, patterns: Iterable[str | re.Pattern[str]]) -> None:
        self._patterns = [re.compile(p) if isinstance(p, str) else p for p in patterns]

    def verify(self, text: str) -> bool:
        lower = text.lower()
        return any(p.search(lower) for p in self._patterns)


# Two-dice probability exercise: P(sum of two dice > 7) = 15/36.
DICE_PROBABILITY_PATTERNS = (
    r"\b15/36\b",
    r"\b5/12\b",
    r"answer.*15",
    r"answer.*36",
    r"15.*out.*36",
    r"probability.*15",
    r"probability.*5/12",
)


def dice_probability_verifier() -> PatternAnswerVerifier:
    return PatternAnswerVerifier(DICE_PROBABILITY_PATTERNS)


@dataclass(frozen=True)
class _BatchView:
    """Everything the detectors need, derived once per batch."""

    document: BatchDocument
    text: str
    has_math: bool
    has_incorrect_math: bool


class SignalAnalyzer:
    """Produces a ``SignalAnalysis`` from a batch or its structured text."""

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
        "proof",
        "derivative",
        "integral",
        "matrix",
        "vector",
        "function",
    )
    SUSPICIOUS_DICE_FRACTIONS = ("1/89", "1/90", "1/88", "2/89")
    MATH_ERROR_PATTERNS = (
        re.compile(r"answer is 0\b", re.I),
        re.compile(r"answer is 1\b", re.I),
        re.compile(r"\b1/89\b"),
        re.compile(r"divide by 0", re.I),
        re.compile(r"infinity", re.I),
    )
    COMPLETION_KEYWORDS = (
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
        "right answer",
        "final answer",
        "solution is",
        "answer is",
        "result is",
        "equals",
    )
    COMPLETION_RE = re.compile(
        r"\b(?:" + "|".join(re.escape(k) for k in COMPLETION_KEYWORDS) + r")\b"
    )
    LONG_DELAY_SECONDS = 30
    PROLONGED_FOCUS_SECONDS = 300
    FRACTION_RE = re.compile(r"\b\d+/\d+\b")
    MATH_SYMBOLS_RE = re.compile(r"[=+\-*/()^√∫∑∏]")

    def __init__(
        self,
        *,
        verifier: AnswerVerifier | None = None,
        scoring_table: dict[Signal, int] | None = None,
    ) -> None:
        self._verifier = verifier or dice_probability_verifier()
        self._weights = dict(SCORING_TABLE if scoring_table is None else scoring_table)
        self._detectors: list[tuple[Signal, Callable[[_BatchView], bool]]] = [
            (Signal.ERRORS, lambda v: v.document.has_tag(ContentTag.ERROR_SIGNAL)),
            (Signal.CONFUSION, lambda v: v.document.has_tag(ContentTag.CONFUSION_SIGNAL)),
            (Signal.REPETITION, lambda v: v.document.has_tag(ContentTag.REPETITIVE)),
            (Signal.LONG_DELAYS, self._has_long_delay),
            (
                Signal.CONTEXT_SWITCHING,
                lambda v: v.document.behavior(BehaviorType.CONTEXT_SWITCHING) is not None,
            ),
            (
                Signal.FREQUENT_ERRORS,
                lambda v: v.document.behavior(BehaviorType.FREQUENT_ERRORS) is not None,
            ),
            (Signal.PROLONGED_FOCUS, self._has_prolonged_focus),
            (Signal.INCORRECT_MATH, lambda v: v.has_incorrect_math),
            (
                Signal.INCORRECT_ANSWER,
                lambda v: v.document.has_tag(ContentTag.INCORRECT_ANSWER_SIGNAL),
            ),
        ]

    def analyze(self, batch: Batch | BatchDocument | str) -> SignalAnalysis:
        view = self._view(self._document(batch))

        score = 0
        detected: list[Signal] = []
        for signal, detector in self._detectors:
            if detector(view):
                detected.append(signal)
                score += self._weights.get(signal, 0)

        has_completion = self.has_completion_words(view.text)
        if has_completion:
            detected.append(Signal.COMPLETION)

        has_success = False
        if has_completion:
            if not view.has_math:
                has_success = True
            elif self._verifier.verify(view.text):
                has_success = True
                detected.append(Signal.CORRECT_ANSWER)

        found = set(detected)
        patterns = SignalPatterns(
            has_errors=Signal.ERRORS in found,
            has_confusion=Signal.CONFUSION in found,
            has_repetition=Signal.REPETITION in found,
            has_long_delays=Signal.LONG_DELAYS in found,
            has_context_switching=Signal.CONTEXT_SWITCHING in found,
            has_frequent_errors=Signal.FREQUENT_ERRORS in found,
            has_prolonged_focus=Signal.PROLONGED_FOCUS in found,
            has_mathematical_content=view.has_math,
            has_potential_incorrect_answer=bool(
                found & {Signal.INCORRECT_MATH, Signal.INCORRECT_ANSWER}
            ),
            has_completion_signals=has_completion,
            has_success_indicators=has_success,
        )
        analysis = SignalAnalysis(
            concerning_signals=score,
            signal_types=tuple(detected),
            urgency=self.urgency_for(score),
            patterns=patterns,
        )
        logger.debug(
            "Analysis: score=%d urgency=%s signals=%s",
            score,
            analysis.urgency.value,
            [s.value for s in detected],
        )
        return analysis

    @staticmethod
    def urgency_for(score: int) -> Urgency:
        if score >= HIGH_URGENCY:
            return Urgency.HIGH
        if score >= MEDIUM_URGENCY:
            return Urgency.MEDIUM
        return Urgency.LOW

    # ---- detectors ----

    def _has_long_delay(self, view: _BatchView) -> bool:
        return any(d.seconds > self.LONG_DELAY_SECONDS for d in view.document.delays)

    def _has_prolonged_focus(self, view: _BatchView) -> bool:
        marker = view.document.behavior(BehaviorType.PROLONGED_FOCUS)
        return (
            marker is not None
            and marker.duration is not None
            and marker.duration > self.PROLONGED_FOCUS_SECONDS
        )

    # ---- content checks ----

    def is_mathematical(self, text: str) -> bool:
        lower = text.lower()
        return (
            any(keyword in lower for keyword in self.MATH_KEYWORDS)
            or self.FRACTION_RE.search(text) is not None
            or self.MATH_SYMBOLS_RE.search(text) is not None
        )

    def has_incorrect_math_answer(self, text: str) -> bool:
        lower = text.lower()
        if "dice" in lower or "roll" in lower:
            if any(fraction in text for fraction in self.SUSPICIOUS_DICE_FRACTIONS):
                return True
        return any(p.search(text) for p in self.MATH_ERROR_PATTERNS)

    def has_completion_words(self, text: str) -> bool:
        """Whole-word completion phrases, or an equals sign."""
        return "=" in text or self.COMPLETION_RE.search(text.lower()) is not None

    # ---- helpers ----

    @staticmethod
    def _document(batch: Batch | BatchDocument | str) -> BatchDocument:
        if isinstance(batch, BatchDocument):
            return batch
        if isinstance(batch, Batch):
            if batch.document is not None:
                return batch.document
            return BatchDocument.parse(batch.structured_text)
        return BatchDocument.parse(batch)

    def _view(self, document: BatchDocument) -> _BatchView:
        text = document.plain_text()
        has_math = document.has_tag(ContentTag.MATHEMATICAL_CONTENT) or self.is_mathematical(text)
        return _BatchView(
            document=document,
            text=text,
            has_math=has_math,
            has_incorrect_math=has_math and self.has_incorrect_math_answer(text),
        )
