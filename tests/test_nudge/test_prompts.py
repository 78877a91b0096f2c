"""Tests for prompt construction."""

from __future__ import annotations

from datetime import UTC, datetime

from tandem_nudge.models import Batch, Signal, SignalAnalysis, SignalPatterns, Urgency
from tandem_nudge.prompts import SILENT, PromptBuilder


def _make_batch(text: str = "<batch>\n<change>\nstuck\n</change>\n</batch>") -> Batch:
    return Batch(
        batch_id="batch_1",
        timestamp=datetime(2024, 1, 1, tzinfo=UTC),
        structured_text=text,
        raw_entry_count=1,
        timespan=0.0,
    )


PROBLEM = SignalAnalysis(
    concerning_signals=3,
    signal_types=(Signal.CONFUSION, Signal.LONG_DELAYS),
    urgency=Urgency.MEDIUM,
    patterns=SignalPatterns(has_confusion=True, has_long_delays=True),
)

SUCCESS = SignalAnalysis(
    signal_types=(Signal.COMPLETION, Signal.CORRECT_ANSWER),
    patterns=SignalPatterns(has_completion_signals=True, has_success_indicators=True),
)


def test_success_gets_congratulation_prompt():
    """A success-only analysis asks for a congratulation."""
    prompt = PromptBuilder().build(_make_batch(), SUCCESS, level=1)
    assert "completed something successfully" in prompt
    assert "completion, correct_answer" in prompt
    assert SILENT not in prompt


def test_problem_prompt_includes_batch_and_signals():
    """Problem prompts carry the batch text, signals and urgency."""
    batch = _make_batch()
    prompt = PromptBuilder().build(batch, PROBLEM, level=1)
    assert batch.structured_text in prompt
    assert "Detected concerning signals: confusion, long_delays" in prompt
    assert "Urgency level: medium" in prompt
    assert f'respond with exactly: "{SILENT}"' in prompt


def test_each_level_has_its_own_instruction():
    """Levels 1 to 3 and the baseline use distinct instructions."""
    builder = PromptBuilder()
    batch = _make_batch()
    assert "very brief nudge only" in builder.build(batch, PROBLEM, level=1)
    assert "brief specific hint" in builder.build(batch, PROBLEM, level=2)
    assert "brief direct guidance" in builder.build(batch, PROBLEM, level=3)

    baseline = builder.build(batch, PROBLEM, level=0)
    assert baseline.endswith(f'If they\'re doing fine, respond "{SILENT}". '
                             "If they need help, give a very brief hint (1 sentence). Your response:")


def test_forced_prompt_forbids_silence():
    """Manual prompts demand a real hint."""
    prompt = PromptBuilder().build_forced(_make_batch(), PROBLEM)
    assert "MANUALLY requested" in prompt
    assert f"do not say {SILENT}" in prompt


def test_braces_in_batch_text_are_kept():
    """Braces in user text survive prompt formatting."""
    batch = _make_batch("<change>\nf = {x: 1}\n</change>")
    assert "f = {x: 1}" in PromptBuilder().build(batch, PROBLEM, level=2)


def test_custom_persona():
    """The persona line can be replaced."""
    prompt = PromptBuilder(persona="You are Coach").build(_make_batch(), SUCCESS, level=0)
    assert prompt.startswith("You are Coach.")
