"""
Shared exceptions for the analysis pipeline and its collaborators.
"""

from typing import Any


class PipelineError(Exception):
    """Base class for every failure the pipeline reports to its caller."""

    pass


class NotFoundError(PipelineError):
    """Raised when a file or document does not exist."""

    pass


class TooLargeError(PipelineError):
    """Raised when a file exceeds the configured size bound."""

    def __init__(self, size_bytes: int, max_bytes: int):
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes
        super().__init__(
            f"File too large: {size_bytes} bytes. Maximum allowed: {max_bytes} bytes"
        )


class ConversionError(PipelineError):
    """Raised when a file cannot be converted into an image."""

    pass


class AnalysisError(PipelineError):
    """Raised when every inference attempt has failed."""

    def __init__(self, message: str, attempts: int = 0, last_error: Exception | None = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(message)


class ParseError(PipelineError):
    """Raised when the inference output holds no usable JSON object."""

    pass


class ValidationError(PipelineError):
    """Raised when the inference output violates the analysis schema."""

    def __init__(self, violations: list[str]):
        self.violations = list(violations)
        super().__init__(f"Invalid AI response structure: {'; '.join(self.violations)}")


class PersistenceError(PipelineError):
    """
    Raised when saving a finished analysis fails.

    The analysis itself succeeded; it is kept on ``envelope`` so callers
    can still use it.
    """

    def __init__(self, message: str, envelope: Any = None):
        self.envelope = envelope
        super().__init__(message)
