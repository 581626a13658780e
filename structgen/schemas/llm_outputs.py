"""Pydantic schemas for the library's own LLM calls.

These define the EXACT structure expected back from the model when
structgen itself is the caller: the critic in the feedback loop, and the
LaTeX fixer's triage pass.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# FEEDBACK (critic)
# =============================================================================

class FeedbackOutput(BaseModel):
    """Output of the critic that reviews a generated object."""
    feedback: Optional[str] = Field(
        default=None,
        description="Clear, actionable feedback for the other AI. Null when none is needed.",
    )
    feedback_needed: bool = Field(
        ...,
        description="Whether the output should be regenerated with this feedback",
    )

    @field_validator("feedback")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v


# =============================================================================
# LATEX TRIAGE
# =============================================================================

class LatexFix(BaseModel):
    """Corrected text for one input string, keyed by its position."""
    index: int = Field(..., ge=0, description="Index of the input string this fix replaces")
    fixed: str = Field(..., description="The full corrected string")


class LatexTriageOutput(BaseModel):
    """Either 'nothing needs fixing' or the corrected strings."""
    needs_fix: bool = Field(
        ...,
        description="False when every string is already correct",
    )
    fixes: list[LatexFix] = Field(
        default_factory=list,
        description="Only the strings that changed. Leave empty when needs_fix is false.",
    )


class LatexFixResult(BaseModel):
    """Result of fix_latex: same length and order as the input."""
    fixed_strings: list[str]
    fixes_applied: int = 0
