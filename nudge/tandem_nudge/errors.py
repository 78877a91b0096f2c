"""Exception types raised across the nudge pipeline."""

from __future__ import annotations


class NudgeError(Exception):
    """Base class for pipeline errors."""


class TriggerError(NudgeError):
    """A manual trigger could not produce a nudge.

    Manual requests imply the user expects feedback, so the reason is
    meant to be shown to them.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ModelAPIError(NudgeError):
    """The text-generation endpoint rejected the request."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class InvalidModelResponse(NudgeError):
    """The model replied, but without the expected text content."""
