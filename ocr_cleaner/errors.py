"""Exception hierarchy for the cleaning pipeline.

Errors fall into four families that the orchestrator treats differently:

- input validation (``DocumentTooShortError``, ``EmptyInputError``): fatal for
  the phase, never retried and never converted into a fallback
- parse/format (``ResponseParseError``, ``PromptError``): fallback if allowed
- service (``CompletionServiceError`` and subclasses): fallback if allowed
- invariant (``WordCountMismatchError`` subclasses): fallback to the pre-phase
  snapshot, or fatal when fallback is disabled
"""

from __future__ import annotations

from typing import Any


class CleaningError(Exception):
    """Base class for every error raised by ``ocr_cleaner``."""


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class InputValidationError(CleaningError):
    pass


class DocumentTooShortError(InputValidationError):
    def __init__(self, actual: int, minimum: int, unit: str = "words") -> None:
        self.actual = actual
        self.minimum = minimum
        self.unit = unit
        super().__init__(
            f"document too short: {actual} {unit} (minimum {minimum})"
        )


class EmptyInputError(InputValidationError):
    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"{operation}: input text is empty")


# ---------------------------------------------------------------------------
# Parse / format
# ---------------------------------------------------------------------------


class ResponseParseError(CleaningError):
    """Structured response could not be parsed.

    ``reason`` is one of the ``ParseFailureReason`` values from
    :mod:`ocr_cleaner.response_parser`; ``field`` names the offending key
    where one applies.
    """

    def __init__(self, reason: str, detail: str = "", field: str | None = None) -> None:
        self.reason = reason
        self.detail = detail
        self.field = field
        where = f" ({field})" if field else ""
        super().__init__(f"{reason}{where}: {detail}" if detail else f"{reason}{where}")


class PromptError(CleaningError):
    def __init__(self, kind: str, message: str) -> None:
        self.kind = kind
        super().__init__(message)

    @classmethod
    def template_not_found(cls, name: str) -> "PromptError":
        return cls("templateNotFound", f"prompt template not found: {name}")

    @classmethod
    def load_failed(cls, name: str, exc: Exception) -> "PromptError":
        return cls("loadFailed", f"failed to load prompt template {name}: {exc}")

    @classmethod
    def missing_parameter(cls, name: str) -> "PromptError":
        return cls("missingParameter", f"missing prompt parameter: {name}")


class InvalidPatternError(CleaningError):
    def __init__(self, pattern: str, exc: Exception) -> None:
        self.pattern = pattern
        super().__init__(f"invalid regex {pattern!r}: {exc}")


# ---------------------------------------------------------------------------
# Completion service
# ---------------------------------------------------------------------------


class CompletionServiceError(CleaningError):
    """The completion service failed or returned nothing usable."""


class CompletionUnavailableError(CompletionServiceError):
    def __init__(self, message: str = "completion service unavailable") -> None:
        super().__init__(message)


class CompletionTimeoutError(CompletionServiceError):
    def __init__(self, seconds: float) -> None:
        self.seconds = seconds
        super().__init__(f"completion call timed out after {seconds:g}s")


# ---------------------------------------------------------------------------
# Invariant violations
# ---------------------------------------------------------------------------


class WordCountMismatchError(CleaningError):
    operation = "processing"

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{self.operation} changed word count: expected {expected}, got {actual}"
        )


class ReflowError(WordCountMismatchError):
    operation = "reflow"


class ParagraphOptimizationError(WordCountMismatchError):
    operation = "paragraph optimization"


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class PipelineError(CleaningError):
    """Terminal pipeline outcome carrying the partial context for diagnostics."""

    def __init__(self, message: str, context: Any = None) -> None:
        self.context = context
        super().__init__(message)


class PipelineFailedError(PipelineError):
    def __init__(self, phase: str, original: BaseException, context: Any = None) -> None:
        self.phase = phase
        self.original = original
        super().__init__(f"cleaning failed during {phase}: {original}", context)


class PipelineCancelledError(PipelineError):
    def __init__(self, phase: str, context: Any = None) -> None:
        self.phase = phase
        super().__init__(f"cleaning cancelled before {phase}", context)


class DocumentBusyError(CleaningError):
    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        super().__init__(f"a cleaning run is already active for document {document_id}")


FALLBACK_TRIGGERS: tuple[type[BaseException], ...] = (
    CompletionServiceError,
    ResponseParseError,
    PromptError,
)
"""Errors that a fallback-capable phase converts into a degraded result."""
