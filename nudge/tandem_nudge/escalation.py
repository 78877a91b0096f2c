"""Interference level state machine and nudge gating.

Levels run from 0 (silent baseline) to 3 (full interference).  Each new
analysis is applied once with ``update()``:

* success with zero concern steps the level down by one and stops there;
* otherwise concern crossing 2 / 4 / 6 raises the level to at least 1 / 2 / 3;
* after more than five quiet minutes since the last nudge, a low-concern
  update steps the level down by one.

``should_nudge()`` gates emission on per-level cooldowns.  The state lives
in an ``EscalationState`` owned by one session; nothing here is global.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from .models import Nudge, SignalAnalysis

logger = logging.getLogger(__name__)

MIN_LEVEL = 0
MAX_LEVEL = 3

DEFAULT_THRESHOLDS: dict[int, int] = {1: 2, 2: 4, 3: 6}
DEFAULT_COOLDOWNS: dict[int, float] = {0: 10.0, 1: 15.0, 2: 20.0, 3: 30.0}


@dataclass
class EscalationState:
    """Per-session escalation state."""

    interference_level: int = 0
    last_nudge_time: float = 0.0
    nudge_history: list[Nudge] = field(default_factory=list)


class EscalationEngine:
    def __init__(
        self,
        state: EscalationState | None = None,
        *,
        thresholds: dict[int, int] | None = None,
        cooldowns: dict[int, float] | None = None,
        fallback_cooldown: float = 30.0,
        success_cooldown: float = 5.0,
        math_cooldown_cap: float = 8.0,
        decay_after: float = 300.0,
        decay_max_signals: int = 2,
        history_size: int = 20,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.state = state or EscalationState()
        self._thresholds = dict(thresholds or DEFAULT_THRESHOLDS)
        self._cooldowns = dict(cooldowns or DEFAULT_COOLDOWNS)
        self._fallback_cooldown = fallback_cooldown
        self._success_cooldown = success_cooldown
        self._math_cooldown_cap = math_cooldown_cap
        self._decay_after = decay_after
        self._decay_max_signals = decay_max_signals
        self._history_size = history_size
        self._clock = clock

    @property
    def level(self) -> int:
        return self.state.interference_level

    def update(self, analysis: SignalAnalysis, now: float | None = None) -> int:
        """Apply one analysis to the level and return the new level."""
        now = self._clock() if now is None else now
        previous = self.state.interference_level
        concern = analysis.concerning_signals

        if analysis.patterns.has_success_indicators and concern == 0:
            self._set_level(previous - 1)
            self._log_change(previous, "success")
            return self.state.interference_level

        for level in sorted(self._thresholds, reverse=True):
            if concern >= self._thresholds[level]:
                self._set_level(max(self.state.interference_level, level))
                break

        if (
            now - self.state.last_nudge_time > self._decay_after
            and concern < self._decay_max_signals
        ):
            self._set_level(self.state.interference_level - 1)

        self._log_change(previous, f"concern={concern}")
        return self.state.interference_level

    def cooldown_for(self, analysis: SignalAnalysis) -> float:
        """Seconds that must pass since the last nudge before the next one."""
        if analysis.is_success_only:
            cooldown = self._success_cooldown
        else:
            cooldown = self._cooldowns.get(
                self.state.interference_level, self._fallback_cooldown
            )
        if analysis.patterns.has_mathematical_content and analysis.has_problems:
            cooldown = min(cooldown, self._math_cooldown_cap)
        return cooldown

    def should_nudge(self, analysis: SignalAnalysis, now: float | None = None) -> bool:
        now = self._clock() if now is None else now
        if not (analysis.has_problems or analysis.patterns.has_success_indicators):
            return False
        return now - self.state.last_nudge_time > self.cooldown_for(analysis)

    def force(self) -> int:
        """Manual requests always run at level 1 or higher."""
        if self.state.interference_level == MIN_LEVEL:
            self._set_level(1)
            logger.info("Interference level forced to 1 for manual request")
        return self.state.interference_level

    def record_nudge(self, nudge: Nudge, *, now: float | None = None, touch_clock: bool = True) -> None:
        """Append *nudge* to the bounded history.

        ``touch_clock=False`` keeps the cooldown clock where it was, so a
        manual nudge does not delay the next automatic one.
        """
        history = self.state.nudge_history
        history.append(nudge)
        if len(history) > self._history_size:
            self.state.nudge_history = history[-self._history_size:]
        if touch_clock:
            self.state.last_nudge_time = self._clock() if now is None else now

    def recent_nudges(self, count: int = 5) -> list[Nudge]:
        return self.state.nudge_history[-count:] if count > 0 else []

    def status(self, now: float | None = None) -> dict[str, object]:
        now = self._clock() if now is None else now
        last = self.state.last_nudge_time
        return {
            "interferenceLevel": self.state.interference_level,
            "lastNudgeTime": last or None,
            "nudgeCount": len(self.state.nudge_history),
            "timeSinceLastNudge": (now - last) if last else None,
        }

    def reset(self) -> None:
        self.state.interference_level = MIN_LEVEL
        self.state.last_nudge_time = 0.0
        self.state.nudge_history = []

    def _set_level(self, level: int) -> None:
        self.state.interference_level = max(MIN_LEVEL, min(MAX_LEVEL, level))

    def _log_change(self, previous: int, reason: str) -> None:
        current = self.state.interference_level
        if current != previous:
            logger.info("Interference level %d -> %d (%s)", previous, current, reason)
