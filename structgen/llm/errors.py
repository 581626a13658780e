"""Errors raised to callers when no valid output exists.

Recoverable problems inside one choice or one retry step (unparseable
arguments, unknown function names, schema violations) are data: see
DropReason and FunctionArguments.parse_errors. Only the conditions below
cross a component boundary.
"""

from typing import Optional

from structgen.schemas.messages import ChoiceDiagnostic, ValidationIssue


class GenerationError(Exception):
    """Base class for structgen failures."""


class InvalidGenerationError(GenerationError):
    """Raised when the feedback budget is spent and the output is still invalid."""

    def __init__(
        self,
        message: str,
        errors: Optional[list[ValidationIssue]] = None,
        raw_output: Optional[str] = None,
        attempts: int = 0,
    ):
        super().__init__(message)
        self.errors = errors or []
        self.raw_output = raw_output
        self.attempts = attempts


class TransportFailure(GenerationError):
    """Raised when the provider kept failing or timing out. Retry later."""

    def __init__(
        self,
        message: str,
        model: Optional[str] = None,
        attempts: int = 0,
        last_error: Optional[str] = None,
    ):
        super().__init__(message)
        self.model = model
        self.attempts = attempts
        self.last_error = last_error


class EmptyResultError(GenerationError):
    """Raised when a response has no usable choice left."""

    def __init__(
        self,
        message: str,
        diagnostics: Optional[list[ChoiceDiagnostic]] = None,
    ):
        super().__init__(message)
        self.diagnostics = diagnostics or []


class ModelResolutionError(GenerationError, ValueError):
    """Raised when no model can be selected from the request and context."""
