"""Per-user nudge pipeline.

Architecture:
    ingest() → ActivityBuffer
    poll tick    → BatchScheduler → BatchComposer → batch history
    analyze tick → SignalAnalyzer → EscalationEngine → PromptBuilder
                 → generate() → NudgeDispatcher → sink (UI push)

A session owns all of its state.  Two periodic tasks drive it on the event
loop; the awaited ``generate`` call is the only suspension point, and the
escalation state only moves after that call has returned.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from .analyzer import SignalAnalyzer
from .buffer import ActivityBuffer
from .composer import BatchComposer
from .config import NudgeSettings
from .dispatcher import Generate, NudgeDispatcher
from .errors import TriggerError
from .escalation import EscalationEngine
from .models import Batch, CaptureEntry, Nudge
from .prompts import PromptBuilder
from .scheduler import BatchScheduler
from .timers import PeriodicTask

logger = logging.getLogger(__name__)

# (event) -> None; receives Nudge.to_event() payloads
NudgeSink = Callable[[dict[str, Any]], Awaitable[None]]

_ANALYZED_MAX = 50
_ANALYZED_KEEP = 25


class NudgeSession:
    """One user's capture → batch → analysis → nudge pipeline."""

    def __init__(
        self,
        session_id: str,
        generate: Generate,
        *,
        settings: NudgeSettings | None = None,
        sink: NudgeSink | None = None,
        analyzer: SignalAnalyzer | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        settings = settings or NudgeSettings()
        timing = settings.timing
        esc = settings.escalation

        self.session_id = session_id
        self._clock = clock
        self._sink = sink

        self.buffer = ActivityBuffer(window=timing.buffer_window)
        self.scheduler = BatchScheduler(
            self.buffer,
            min_wait=timing.min_wait,
            max_wait=timing.max_wait,
            thought_complete=timing.thought_complete,
        )
        self.composer = BatchComposer()
        self.analyzer = analyzer or SignalAnalyzer()
        self.engine = EscalationEngine(
            thresholds=esc.thresholds,
            cooldowns=esc.cooldowns,
            success_cooldown=esc.success_cooldown,
            math_cooldown_cap=esc.math_cooldown_cap,
            decay_after=esc.decay_after,
            history_size=esc.history_size,
            clock=clock,
        )
        self.prompts = PromptBuilder()
        self.dispatcher = NudgeDispatcher(generate, self.engine, clock=clock)

        self._batches: deque[Batch] = deque(maxlen=settings.batch_history)
        self._analyzed: dict[str, None] = {}
        self._sequence = 0
        self.last_seen = clock()

        self._poll_task = PeriodicTask(f"{session_id}:poll", timing.poll_interval, self._poll_tick)
        self._analyze_task = PeriodicTask(
            f"{session_id}:analyze", timing.analyze_interval, self.analyze_pending
        )

    # ---- capture ----

    def ingest(self, payload: dict[str, Any]) -> CaptureEntry | None:
        """Add one wire entry to the buffer; blank diffs are skipped."""
        self.touch()
        diff = payload.get("diff")
        if not isinstance(diff, str) or not diff.strip():
            logger.debug("Skipping capture without a meaningful diff (%s)", self.session_id)
            return None
        self._sequence += 1
        entry = CaptureEntry.from_payload(
            payload, sequence_id=self._sequence, received_at=self._clock()
        )
        self.buffer.add(entry)
        logger.debug("Capture %s: %r", entry.display_id, entry.diff[:100])
        return entry

    def touch(self) -> None:
        """Record client activity for idle eviction."""
        self.last_seen = self._clock()

    # ---- batching ----

    def poll(self, now: float | None = None) -> Batch | None:
        """Seal a batch if the scheduler says so."""
        now = self._clock() if now is None else now
        decision = self.scheduler.evaluate(now)
        if decision is None:
            return None
        logger.info("Processing batch for %s - Reason: %s", self.session_id, decision.description)
        batch = self._seal(self.scheduler.pending(), now)
        self.scheduler.mark_sealed(now)
        return batch

    def force_seal(self, now: float | None = None) -> Batch | None:
        """Seal everything buffered, ignoring timing; the seal clock is not moved."""
        now = self._clock() if now is None else now
        entries = self.buffer.all()
        if not entries:
            logger.info("No data to force process for %s", self.session_id)
            return None
        logger.info("Force processing batch with %d entries", len(entries))
        return self._seal(entries, now)

    def _seal(self, entries: list[CaptureEntry], now: float) -> Batch | None:
        batch = self.composer.compose(entries, datetime.fromtimestamp(now, tz=UTC))
        if batch is None:
            return None
        self._batches.append(batch)
        logger.info(
            "Processed batch %s with %d entries", batch.batch_id, batch.raw_entry_count
        )
        return batch

    async def _poll_tick(self) -> None:
        self.poll()

    # ---- analysis ----

    async def analyze_pending(self, now: float | None = None) -> Nudge | None:
        """Analyze the latest sealed batch once and emit a nudge if warranted."""
        batch = self.latest_batch()
        if batch is None or batch.batch_id in self._analyzed:
            return None
        self._mark_analyzed(batch.batch_id)

        now = self._clock() if now is None else now
        analysis = self.analyzer.analyze(batch)
        level = self.engine.update(analysis, now)
        if not self.engine.should_nudge(analysis, now):
            logger.debug(
                "No nudge for %s (concern=%d, level=%d)",
                batch.batch_id,
                analysis.concerning_signals,
                level,
            )
            return None

        prompt = self.prompts.build(batch, analysis, level)
        nudge = await self.dispatcher.dispatch(
            batch,
            analysis,
            prompt,
            level=level,
            congratulatory=analysis.is_success_only,
        )
        if nudge is not None:
            await self._deliver(nudge)
        return nudge

    async def trigger_now(self, now: float | None = None) -> Nudge:
        """Manual request: bypass timing and cooldowns, always answer.

        Raises:
            TriggerError: nothing has been captured, or no nudge could be
                generated.
        """
        batch = self.force_seal(now)
        if batch is None:
            raise TriggerError("No data to analyze - try using the extension on a webpage first")
        self._mark_analyzed(batch.batch_id)

        analysis = self.analyzer.analyze(batch)
        level = self.engine.force()
        prompt = self.prompts.build_forced(batch, analysis)
        nudge = await self.dispatcher.dispatch(batch, analysis, prompt, level=level, forced=True)
        if nudge is None:
            raise TriggerError("Could not generate a nudge - the language model request failed")
        await self._deliver(nudge)
        return nudge

    async def _deliver(self, nudge: Nudge) -> None:
        if self._sink is None:
            return
        try:
            await self._sink(nudge.to_event())
        except Exception:
            logger.exception("Failed to deliver nudge %s", nudge.id)

    def _mark_analyzed(self, batch_id: str) -> None:
        self._analyzed[batch_id] = None
        if len(self._analyzed) > _ANALYZED_MAX:
            self._analyzed = dict.fromkeys(list(self._analyzed)[-_ANALYZED_KEEP:])

    # ---- lifecycle ----

    async def start(self) -> None:
        await self._poll_task.start()
        await self._analyze_task.start()
        logger.info("Nudge session '%s' started", self.session_id)

    async def stop(self) -> None:
        await self._poll_task.stop()
        await self._analyze_task.stop()
        logger.info("Nudge session '%s' stopped", self.session_id)

    @property
    def is_running(self) -> bool:
        return self._poll_task.is_running

    # ---- introspection ----

    def latest_batch(self) -> Batch | None:
        return self._batches[-1] if self._batches else None

    def recent_batches(self, count: int = 3) -> list[Batch]:
        return list(self._batches)[-count:] if count > 0 else []

    def recent_nudges(self, count: int = 5) -> list[Nudge]:
        return self.engine.recent_nudges(count)

    def stats(self) -> dict[str, Any]:
        last_seal = self.scheduler.last_seal_time
        return {
            "rawDataCount": len(self.buffer),
            "structuredBatchCount": len(self._batches),
            "lastProcessTime": (
                datetime.fromtimestamp(last_seal, tz=UTC).isoformat() if last_seal else None
            ),
        }

    def status(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "running": self.is_running,
            **self.engine.status(self._clock()),
            **self.stats(),
        }

    def reset(self) -> None:
        self.buffer.clear()
        self._batches.clear()
        self._analyzed.clear()
        self.scheduler.reset()
        self.engine.reset()
