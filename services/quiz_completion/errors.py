"""Error taxonomy for the quiz completion pipeline.

Every error carries the HTTP status it maps to and an optional `details`
payload; the app's exception handlers render them as
`{"success": false, "error": ..., "details": ...}`.
"""

from typing import Any


class QuizPipelineError(Exception):
    """Base class for errors surfaced to the HTTP caller."""

    status_code = 500

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": False, "error": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(QuizPipelineError):
    """Malformed or missing request fields."""

    status_code = 400


class UnsupportedTypeError(ValidationError):
    """Quiz type outside the supported set."""

    def __init__(self, quiz_type: Any) -> None:
        super().__init__(
            f"Unsupported quiz type: {quiz_type}",
            {"type": quiz_type, "supportedTypes": ["mcq", "code", "openended", "blanks", "flashcard"]},
        )
        self.quiz_type = quiz_type


class NotFoundError(QuizPipelineError):
    """A quiz or user row the pipeline needs does not exist."""

    status_code = 404


class AuthenticationError(QuizPipelineError):
    """No authenticated user for the request."""

    status_code = 401

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message, {"requiresAuth": True})


class TransientDbError(QuizPipelineError):
    """Lock or serialization conflict worth another attempt."""


class ProcessingError(QuizPipelineError):
    """Any other failure while recording the attempt."""
