"""
Error taxonomy for the task board.

Every error is request-scoped. The HTTP layer maps each class to a status
code via ``status_code``; nothing here is fatal to the process.
"""


class TaskboardError(Exception):
    """Base class for all errors surfaced to API callers."""
    status_code = 500


class ConfigError(TaskboardError):
    """Raised when configuration is invalid or incomplete."""
    status_code = 500


class Unauthorized(TaskboardError):
    """No valid caller identity on the request."""
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class ValidationError(TaskboardError):
    """Malformed or missing required fields."""
    status_code = 400


class InvalidInput(TaskboardError):
    """Empty or missing natural-language / audio input."""
    status_code = 400


class NotFound(TaskboardError):
    """Record does not exist or is not owned by the caller."""
    status_code = 404

    def __init__(self, kind: str = "Record"):
        super().__init__(f"{kind} not found")
        self.kind = kind


class ExternalServiceError(TaskboardError):
    """Any failure from text-generation, calendar or speech-to-text backends."""
    status_code = 502


class TranscriptionFailed(ExternalServiceError):
    """Speech-to-text backend failed to produce a transcript."""

    def __init__(self, message: str = "Transcription failed"):
        super().__init__(message)
