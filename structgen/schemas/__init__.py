"""Pydantic schemas for structured data validation.

This package contains:
- messages.py: Model responses, choices, function calls, chat messages
- generation.py: Generation requests, provider requests, results
- llm_outputs.py: Schemas for validating structgen's own LLM calls

Every object handed back to a caller has been validated against one of
these models (or the caller's own schema) first.
"""

from structgen.schemas.messages import (
    ValidationIssue,
    ValidationResult,
    FunctionDeclaration,
    FunctionArguments,
    FunctionCall,
    AssistantMessage,
    Choice,
    DropReason,
    ChoiceDiagnostic,
    ModelResponse,
    ToolCallRecord,
    ChatMessage,
)

from structgen.schemas.generation import (
    GenerationMode,
    ModelPicking,
    ThinkingConfig,
    ModelProps,
    ProviderRequest,
    GenerationRequest,
    GenObjectResult,
)

from structgen.schemas.llm_outputs import (
    FeedbackOutput,
    LatexFix,
    LatexTriageOutput,
    LatexFixResult,
)

__all__ = [
    # Messages
    "ValidationIssue",
    "ValidationResult",
    "FunctionDeclaration",
    "FunctionArguments",
    "FunctionCall",
    "AssistantMessage",
    "Choice",
    "DropReason",
    "ChoiceDiagnostic",
    "ModelResponse",
    "ToolCallRecord",
    "ChatMessage",
    # Generation
    "GenerationMode",
    "ModelPicking",
    "ThinkingConfig",
    "ModelProps",
    "ProviderRequest",
    "GenerationRequest",
    "GenObjectResult",
    # LLM outputs
    "FeedbackOutput",
    "LatexFix",
    "LatexTriageOutput",
    "LatexFixResult",
]
