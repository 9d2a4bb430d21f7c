from __future__ import annotations


class AnalysisError(Exception):
    """Base class for recoverable image analysis failures.

    The message is meant to be shown to the user as the failure cause.
    """


class ValidationError(AnalysisError, ValueError):
    """Upload rejected before any decode work (MIME type or size)."""


class DecodeError(AnalysisError, ValueError):
    """Image bytes are corrupt or decode to an empty image."""


class ExtractionError(AnalysisError, RuntimeError):
    """Pixel buffer is malformed or could not be read back."""


class ExtractionCancelled(ExtractionError):
    pass


class AnalysisTimeoutError(AnalysisError, TimeoutError):
    pass


class SessionStateError(AnalysisError, RuntimeError):
    """Session operation called while the session is in the wrong state."""


class SelectionError(AnalysisError, ValueError):
    pass
