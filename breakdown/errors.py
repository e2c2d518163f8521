"""Error types raised by the breakdown editor."""

from __future__ import annotations


class BreakdownError(Exception):
    """Base class for editor errors."""


class ValidationError(BreakdownError, ValueError):
    """User input rejected before any state change."""


class AttachmentTooLargeError(ValidationError):
    """File exceeds the attachment size ceiling."""

    def __init__(self, name: str, size: int, limit: int):
        self.name = name
        self.size = size
        self.limit = limit
        limit_mb = limit / (1024 * 1024)
        super().__init__(
            f"File '{name}' is too large ({size} bytes). Choose a file smaller than {limit_mb:g}MB."
        )


class AttachmentReadError(ValidationError):
    """File could not be read or produced a malformed result."""


class GenerationError(BreakdownError):
    """An external proposal or report generator failed."""


class SessionClosedError(BreakdownError, RuntimeError):
    """Operation attempted on an editing session that was already closed."""
