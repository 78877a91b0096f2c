"""Calls the language model and turns its reply into a nudge."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from .errors import InvalidModelResponse
from .escalation import EscalationEngine
from .models import Batch, Nudge, SignalAnalysis
from .prompts import SILENT

logger = logging.getLogger(__name__)

# (prompt) -> reply text
Generate = Callable[[str], Awaitable[str]]


class NudgeDispatcher:
    """Post-processes model replies and records emitted nudges.

    Every failure path degrades to "no nudge": errors from ``generate`` are
    logged and swallowed here so the polling loop keeps running.
    """

    GENERIC_PHRASES = (
        "It's great that you're practicing",
        "Keep up the consistent effort",
        "don't hesitate to reach out",
        "That's a key part of the learning process",
        "You're doing well",
        "Great job",
        "Keep going",
        "You've got this",
    )
    EMPTY_FALLBACK = (
        "Take a closer look at your reasoning and try to identify any "
        "assumptions you may have missed."
    )
    FORCED_FALLBACK = "Keep doing what you're doing - you're on the right track!"

    def __init__(
        self,
        generate: Generate,
        engine: EscalationEngine,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._generate = generate
        self._engine = engine
        self._clock = clock

    async def dispatch(
        self,
        batch: Batch,
        analysis: SignalAnalysis,
        prompt: str,
        *,
        level: int,
        forced: bool = False,
        congratulatory: bool = False,
    ) -> Nudge | None:
        try:
            reply = await self._generate(prompt)
            if not isinstance(reply, str):
                raise InvalidModelResponse(
                    f"expected text from model, got {type(reply).__name__}"
                )
        except Exception:
            logger.exception("Nudge generation failed for %s", batch.batch_id)
            return None

        text = self.clean(reply, analysis, level=level, forced=forced, congratulatory=congratulatory)
        if text is None:
            return None

        now = self._clock()
        prefix = "forced_nudge" if forced else "nudge"
        nudge = Nudge(
            id=f"{prefix}_{int(now * 1000)}",
            timestamp=datetime.fromtimestamp(now, tz=UTC),
            level=level,
            text=text,
            analysis=analysis,
            batch_id=batch.batch_id,
            manual_trigger=forced,
            forced=forced,
        )
        # manual nudges leave the automatic cooldown clock alone
        self._engine.record_nudge(nudge, now=now, touch_clock=not forced)
        logger.info("Generated level %d nudge for %s", level, batch.batch_id)
        return nudge

    def clean(
        self,
        reply: str,
        analysis: SignalAnalysis,
        *,
        level: int,
        forced: bool = False,
        congratulatory: bool = False,
    ) -> str | None:
        """Final nudge text for *reply*, or None when the nudge is suppressed."""
        text = reply.strip()

        if text.upper() == SILENT:
            if forced:
                logger.warning("Model answered %s to a manual request", SILENT)
                return self.FORCED_FALLBACK
            logger.info("Model chose to stay silent")
            return None

        if text and not congratulatory and self.is_generic(text):
            logger.warning("Generic response detected, using fallback: %r", text[:100])
            text = self.level_fallback(level)

        if not text:
            if analysis.has_problems:
                logger.warning("Empty response with concerning signals, using fallback")
                return self.EMPTY_FALLBACK
            if forced:
                return self.FORCED_FALLBACK
            logger.info("Empty response and no problems, skipping nudge")
            return None

        return text

    @classmethod
    def is_generic(cls, text: str) -> bool:
        lower = text.lower()
        return any(phrase.lower() in lower for phrase in cls.GENERIC_PHRASES)

    @staticmethod
    def level_fallback(level: int) -> str:
        if level >= 3:
            return "Check the error message carefully - it usually tells you exactly what's wrong."
        if level >= 2:
            return "Try breaking the problem into smaller steps."
        return "Take a step back and review what you're trying to accomplish."
