"""Pydantic schemas for generation requests and results.

GenerationRequest is built per call and consumed within it. Nothing here
is persisted.
"""

from dataclasses import dataclass
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from structgen.schemas.messages import ChatMessage, FunctionDeclaration, ModelResponse


GenerationMode = Literal["auto", "json", "tool"]

ModelPicking = Literal["speed", "quality", "balance"]


@dataclass(frozen=True)
class ThinkingConfig:
    """Ask the model for an auxiliary reasoning object next to the result."""
    schema: Any


class ModelProps(BaseModel):
    """Per-model metadata used for model picking and alias resolution."""
    quality: float = 0.0
    speed: float = 0.0
    context_length: Optional[int] = None
    tool_optimized: bool = False
    alt_tags: list[str] = Field(
        default_factory=list,
        description="Aliases, e.g. 'fastest' so that 'openai:fastest' resolves here",
    )


class ProviderRequest(BaseModel):
    """What a ModelProvider receives for one round trip."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    model: str = Field(..., description="Resolved model id, 'provider:modelTag'")
    messages: list[ChatMessage]
    functions: list[FunctionDeclaration] = Field(default_factory=list)
    function_call: Optional[str] = Field(
        default=None,
        description="'auto', 'none', 'required', or the name of the function to force",
    )
    num_choices: int = Field(default=1, ge=1, le=100)
    temperature: Optional[float] = None
    json_mode: bool = False
    provider_args: dict[str, Any] = Field(default_factory=dict)


class GenerationRequest(BaseModel):
    """Everything gen_object needs to produce one schema-conforming object."""

    model_config = ConfigDict(
        arbitrary_types_allowed=True, extra="forbid", protected_namespaces=()
    )

    output_schema: Any = Field(..., description="pydantic model class or JSON-Schema dict")
    prompt: Optional[str] = None
    system: Optional[str] = None
    messages: list[ChatMessage] = Field(default_factory=list)
    ctx_messages: list[ChatMessage] = Field(default_factory=list)

    model: Optional[str] = None
    models: Optional[list[str]] = None
    model_picking: Optional[ModelPicking] = None

    mode: GenerationMode = "auto"
    function_name: Optional[str] = None
    function_description: Optional[str] = None
    thinking: Optional[ThinkingConfig] = None

    max_feedback_loops: int = Field(default=0, ge=0)
    feedback_model: Optional[str] = None
    feedback_prompt: Optional[str] = None

    temperature: Optional[float] = None
    timeout_s: Optional[float] = Field(default=None, gt=0)
    provider_args: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_model_selection(self) -> "GenerationRequest":
        if self.model and self.models:
            raise ValueError("Cannot specify both 'model' and 'models'")
        return self

    def resolved_mode(self) -> Literal["json", "tool"]:
        """'auto' means tool mode when the caller named the function."""
        if self.mode != "auto":
            return self.mode
        if self.function_name or self.function_description:
            return "tool"
        return "json"


class GenObjectResult(BaseModel):
    """A validated object plus the response it came from."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    object: Any
    thinking: Optional[Any] = None
    raw_response: ModelResponse = Field(default_factory=ModelResponse)
    raw_output: str = ""
    model: str = ""
    attempts: int = 1
    feedback: list[str] = Field(
        default_factory=list,
        description="Critic feedback applied during the run, oldest first",
    )
