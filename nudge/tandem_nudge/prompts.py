"""Instruction text sent to the language model."""

from __future__ import annotations

from .models import Batch, SignalAnalysis

SILENT = "SILENT"

_PERSONA = "You are Tandem, an AI study companion"

_CONGRATULATE = """\
{persona}. The user just completed something successfully!

Real-time learning data: {structured_text}

Detected success signals: {signals}

Give a brief congratulatory message (1 sentence). Examples:
- "Great job getting the right answer!"
- "Perfect! You solved it correctly."
- "Excellent work figuring that out!"

Your congratulatory response:"""

_GENERAL = """\
{persona} that monitors real-time learning activity. Your job is to either \
give helpful hints when the user is struggling OR stay completely silent \
when they're doing fine.

CRITICAL RULES:
1. If the user is making progress or doing well, respond with exactly: "{silent}" (nothing else)
2. Only give hints when there are clear signs of struggle, confusion, or errors
3. When you do give hints, be specific and actionable, not generic encouragement
4. Focus on the actual content/problem they're working on

Real-time learning data: {structured_text}

Detected concerning signals: {signals}
Urgency level: {urgency}

"""

_LEVEL_INSTRUCTIONS: dict[int, str] = {
    1: """\
Give a very brief nudge (1 short sentence max). Only hint at the direction, \
don't give solutions. Examples:
- "Check your syntax carefully."
- "Consider the sample space size."
- "Review your variable scope."

Your response (very brief nudge only):""",
    2: """\
Give a specific but brief hint (1-2 short sentences). Point toward the \
issue without solving it. Examples:
- "That error suggests a variable scope issue."
- "For probability problems, always count total outcomes first."
- "Check if your loop condition is correct."

Your response (brief specific hint):""",
    3: """\
They're stuck. Give a direct but brief suggestion (2 sentences max). Guide \
them without giving the full answer. Examples:
- "Your loop isn't incrementing. Add the counter update."
- "For dice probability: count all possible pairs first, then favorable ones."
- "That fraction looks wrong - there are only 36 total outcomes with two dice."

Your response (brief direct guidance):""",
}

_BASELINE_INSTRUCTION = (
    'Analyze the activity. If they\'re doing fine, respond "{silent}". '
    "If they need help, give a very brief hint (1 sentence). Your response:"
)

_FORCED = """\
{persona}. The user has MANUALLY requested your input, so you MUST provide \
a helpful response (you cannot stay silent).

Real-time learning data: {structured_text}

Detected signals: {signals}
Urgency level: {urgency}

Since this is a manual request, you must either:
1. Give a specific hint if you see any areas for improvement
2. Give encouragement like "Keep doing what you're doing - you're on the right track!" if they're doing well

Your response (you MUST respond, do not say {silent}):"""


class PromptBuilder:
    """Builds the prompt for one nudge decision."""

    def __init__(self, *, persona: str = _PERSONA) -> None:
        self._persona = persona

    def build(self, batch: Batch, analysis: SignalAnalysis, level: int) -> str:
        """Congratulation for unproblematic success, otherwise a level-specific hint request."""
        fields = self._fields(batch, analysis)
        if analysis.is_success_only:
            return _CONGRATULATE.format(**fields)

        prompt = _GENERAL.format(**fields)
        instruction = _LEVEL_INSTRUCTIONS.get(level)
        if instruction is None:
            instruction = _BASELINE_INSTRUCTION.format(silent=SILENT)
        return prompt + instruction

    def build_forced(self, batch: Batch, analysis: SignalAnalysis) -> str:
        """Manual-request prompt; the model may not answer with the silence sentinel."""
        return _FORCED.format(**self._fields(batch, analysis))

    def _fields(self, batch: Batch, analysis: SignalAnalysis) -> dict[str, str]:
        return {
            "persona": self._persona,
            "structured_text": batch.structured_text,
            "signals": ", ".join(s.value for s in analysis.signal_types),
            "urgency": analysis.urgency.value,
            "silent": SILENT,
        }
