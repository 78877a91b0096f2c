"""Tandem nudge service: batches live capture activity and emits advisory nudges."""

from .analyzer import SignalAnalyzer
from .buffer import ActivityBuffer
from .composer import BatchComposer
from .config import NudgeSettings, load_settings
from .dispatcher import NudgeDispatcher
from .errors import InvalidModelResponse, ModelAPIError, NudgeError, TriggerError
from .escalation import EscalationEngine
from .models import Batch, CaptureEntry, Nudge, SignalAnalysis, Urgency
from .prompts import PromptBuilder
from .scheduler import BatchScheduler
from .session import NudgeSession

__version__ = "0.1.0"

__all__ = [
    "ActivityBuffer",
    "Batch",
    "BatchComposer",
    "BatchScheduler",
    "CaptureEntry",
    "EscalationEngine",
    "InvalidModelResponse",
    "ModelAPIError",
    "Nudge",
    "NudgeDispatcher",
    "NudgeError",
    "NudgeSession",
    "NudgeSettings",
    "PromptBuilder",
    "SignalAnalysis",
    "SignalAnalyzer",
    "TriggerError",
    "Urgency",
    "load_settings",
]
