"""Tests for the interference level state machine."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from tandem_nudge.escalation import EscalationEngine, EscalationState
from tandem_nudge.models import Nudge, SignalAnalysis, SignalPatterns

T0 = 1_700_000_000.0


def _make_analysis(
    concern: int = 0,
    *,
    success: bool = False,
    math: bool = False,
) -> SignalAnalysis:
    return SignalAnalysis(
        concerning_signals=concern,
        patterns=SignalPatterns(
            has_success_indicators=success,
            has_completion_signals=success,
            has_mathematical_content=math,
        ),
    )


def _make_nudge(n: int) -> Nudge:
    return Nudge(
        id=f"nudge_{n}",
        timestamp=datetime.fromtimestamp(T0 + n, tz=UTC),
        level=1,
        text=f"hint {n}",
        analysis=_make_analysis(2),
        batch_id=f"batch_{n}",
    )


def _make_engine(level: int = 0, last_nudge: float = T0) -> EscalationEngine:
    return EscalationEngine(
        EscalationState(interference_level=level, last_nudge_time=last_nudge),
        clock=lambda: T0,
    )


# ---------------------------------------------------------------------------
# Level transitions
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("concern, expected", [(1, 0), (2, 1), (3, 1), (4, 2), (5, 2), (6, 3), (12, 3)])
def test_thresholds_raise_level(concern, expected):
    """Concern scores map onto levels through the thresholds."""
    engine = _make_engine()
    assert engine.update(_make_analysis(concern), now=T0 + 1) == expected


def test_thresholds_never_lower_level():
    """A low score does not pull a high level down."""
    engine = _make_engine(level=3)
    assert engine.update(_make_analysis(2), now=T0 + 1) == 3


def test_success_steps_down_once():
    """Each clean success lowers the level by one, stopping at zero."""
    engine = _make_engine(level=2)
    assert engine.update(_make_analysis(0, success=True), now=T0 + 1) == 1
    assert engine.update(_make_analysis(0, success=True), now=T0 + 2) == 0
    assert engine.update(_make_analysis(0, success=True), now=T0 + 3) == 0


def test_success_with_concern_does_not_step_down():
    """Success alongside a concern keeps the level."""
    engine = _make_engine(level=2)
    assert engine.update(_make_analysis(1, success=True), now=T0 + 1) == 2


def test_quiet_period_decays_level():
    """Five quiet minutes since the last nudge lower the level."""
    engine = _make_engine(level=2)
    assert engine.update(_make_analysis(1), now=T0 + 301) == 1


def test_quiet_period_ignored_with_concern():
    """Decay waits while concerns are still at two or more."""
    engine = _make_engine(level=2)
    assert engine.update(_make_analysis(2), now=T0 + 301) == 2


def test_force_raises_level_zero_only():
    """Forcing lifts level zero to one and leaves higher levels alone."""
    engine = _make_engine(level=0)
    assert engine.force() == 1
    engine = _make_engine(level=2)
    assert engine.force() == 2


# ---------------------------------------------------------------------------
# Cooldown gating
# ---------------------------------------------------------------------------


def test_no_nudge_without_problems_or_success():
    """A batch with no concern and no success never nudges."""
    engine = _make_engine(last_nudge=0.0)
    assert not engine.should_nudge(_make_analysis(0), now=T0)


def test_level_cooldowns():
    """The level cooldown must fully pass before the next nudge."""
    engine = _make_engine(level=1)
    analysis = _make_analysis(2)
    assert engine.cooldown_for(analysis) == 15
    assert not engine.should_nudge(analysis, now=T0 + 15)
    assert engine.should_nudge(analysis, now=T0 + 15.5)


def test_success_cooldown_is_short():
    """Successes use the short congratulation cooldown."""
    engine = _make_engine(level=2)
    analysis = _make_analysis(0, success=True, math=True)
    engine.update(analysis, now=T0 + 1)

    assert engine.level == 1
    assert engine.cooldown_for(analysis) == 5
    assert not engine.should_nudge(analysis, now=T0 + 4)
    assert engine.should_nudge(analysis, now=T0 + 6)


def test_math_problems_cap_cooldown():
    """Math content caps the cooldown at eight seconds."""
    engine = _make_engine(level=3)
    assert engine.cooldown_for(_make_analysis(3, math=True)) == 8
    assert engine.cooldown_for(_make_analysis(3)) == 30


def test_unknown_level_uses_fallback_cooldown():
    """Levels missing from the cooldown table fall back to 30s."""
    engine = EscalationEngine(cooldowns={0: 10.0}, clock=lambda: T0)
    engine.state.interference_level = 2
    assert engine.cooldown_for(_make_analysis(4)) == 30.0


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


def test_record_nudge_caps_history_and_sets_clock():
    """History keeps only the newest nudges and moves the cooldown clock."""
    engine = EscalationEngine(history_size=3, clock=lambda: T0)
    for n in range(5):
        engine.record_nudge(_make_nudge(n), now=T0 + n)

    assert [n.id for n in engine.recent_nudges(10)] == ["nudge_2", "nudge_3", "nudge_4"]
    assert engine.state.last_nudge_time == T0 + 4


def test_record_nudge_without_touching_clock():
    """Manual nudges join the history without moving the clock."""
    engine = _make_engine(last_nudge=T0 - 100)
    engine.record_nudge(_make_nudge(1), now=T0, touch_clock=False)
    assert engine.state.last_nudge_time == T0 - 100
    assert len(engine.recent_nudges()) == 1


def test_status_and_reset():
    """Status reports level and timing; reset clears both."""
    engine = _make_engine(level=2, last_nudge=T0 - 20)
    status = engine.status(now=T0)
    assert status == {
        "interferenceLevel": 2,
        "lastNudgeTime": T0 - 20,
        "nudgeCount": 0,
        "timeSinceLastNudge": 20,
    }

    engine.reset()
    assert engine.level == 0
    assert engine.status(now=T0)["lastNudgeTime"] is None


def test_sessions_do_not_share_state():
    """Each engine owns its own state."""
    first = EscalationEngine()
    second = EscalationEngine()
    first.update(_make_analysis(6), now=T0)
    assert first.level == 3
    assert second.level == 0
