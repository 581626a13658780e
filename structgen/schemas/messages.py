"""Pydantic schemas for model responses, function calls and chat messages.

These are the provider-neutral shapes every adapter translates into:

  ModelResponse
    └── Choice (one per candidate answer)
          └── AssistantMessage
                ├── content        (plain answer), or
                └── function_call  (name + FunctionArguments{raw, parsed, parse_errors})

A choice is validated on its own. When the response validator drops one,
the reason is recorded as a ChoiceDiagnostic on the response instead of
being raised.
"""

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# VALIDATION RESULTS
# =============================================================================

class ValidationIssue(BaseModel):
    """One schema violation, located by a JSON-path-like string."""
    path: str = Field(default="$", description="Location of the problem, e.g. $.genres[0]")
    message: str


class ValidationResult(BaseModel):
    """Outcome of validating a value against a schema."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    valid: bool
    errors: list[ValidationIssue] = Field(default_factory=list)
    value: Any = Field(
        default=None,
        description="Coerced value: a model instance for pydantic schemas, the input otherwise",
    )

    def summary(self) -> str:
        """Render all issues on one line (for prompts and logs)."""
        return "; ".join(f"{e.path}: {e.message}" for e in self.errors)


# =============================================================================
# FUNCTION CALLS
# =============================================================================

class FunctionDeclaration(BaseModel):
    """A function the model may call.

    `parameters` is a Schema: a pydantic model class or a JSON-Schema dict.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    name: str
    description: str = ""
    parameters: Any


class FunctionArguments(BaseModel):
    """Arguments of a function call, before and after parsing.

    `raw` is always the verbatim provider string, even when parsing failed.
    """
    raw: str = ""
    parsed: Optional[Any] = None
    parse_errors: list[str] = Field(default_factory=list)


class FunctionCall(BaseModel):
    name: Optional[str] = None
    arguments: Optional[FunctionArguments] = None


class AssistantMessage(BaseModel):
    """A single assistant answer. `content` is None when a function was called."""
    role: Literal["assistant"] = "assistant"
    content: Optional[str] = None
    function_call: Optional[FunctionCall] = None


class Choice(BaseModel):
    index: Optional[int] = None
    message: Optional[AssistantMessage] = None
    finish_reason: Optional[str] = None

    @property
    def function_call(self) -> Optional[FunctionCall]:
        return self.message.function_call if self.message else None

    @property
    def content(self) -> Optional[str]:
        return self.message.content if self.message else None


# =============================================================================
# RESPONSES
# =============================================================================

class DropReason(str, Enum):
    """Why the response validator removed a choice."""
    NO_FUNCTIONS_DECLARED = "no_functions_declared"
    MISSING_NAME = "missing_name"
    UNRESOLVED_FUNCTION_CALL = "unresolved_function_call"
    MISSING_ARGUMENTS = "missing_arguments"
    SCHEMA_VALIDATION_FAILURE = "schema_validation_failure"
    UNEXPECTED_ERROR = "unexpected_error"


class ChoiceDiagnostic(BaseModel):
    """Record of a dropped choice. `index` is its position in the original list."""
    index: int
    reason: DropReason
    message: str
    function_name: Optional[str] = None
    errors: list[ValidationIssue] = Field(default_factory=list)
    raw_arguments: Optional[str] = None


class ModelResponse(BaseModel):
    """All choices returned for one request."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    choices: list[Choice] = Field(default_factory=list)
    dropped: list[ChoiceDiagnostic] = Field(default_factory=list)
    provider_response: Optional[Any] = Field(
        default=None,
        description="Provider-native metadata (usage, ids), kept for auditing",
    )


# =============================================================================
# CHAT MESSAGES
# =============================================================================

class ToolCallRecord(BaseModel):
    """A function call made earlier in a conversation."""
    id: str
    name: str
    args: Any = None


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant", "tool"]
    content: str = ""
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
