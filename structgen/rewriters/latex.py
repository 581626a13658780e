"""LaTeX fixer: rewrite math notation into <latex> tags, touch nothing else.

  result = await fix_latex([
      "The fraction $\\frac{1}{2}$ is correct",
      "Here's code: `console.log('hi')`",
  ])
  result.fixed_strings
  → ["The fraction <latex>\\frac{1}{2}</latex> is correct",
     "Here's code: `console.log('hi')`"]

Two phases:

  1. TRIAGE: strings without math signals outside code are never sent.
     If none are left, the batch comes back verbatim with no model call.
     The rest (deduplicated) go to the model in ONE call, keyed by index.
     The model answers "nothing to fix" or the corrected strings.
  2. APPLY: each fix maps back to its input by index, and to every other
     input with the same text. Anything not fixed stays verbatim. A fix
     that changed a code span is rejected.

Output has the same length and order as the input. If the model call
fails, the error propagates: callers never get half-fixed text.
"""

import json
import os
from typing import Optional, Sequence

from structgen.llm.context import GenerationContext
from structgen.llm.invoker import gen_object
from structgen.prompts.latex import LATEX_FIX_SYSTEM, LATEX_FIX_USER
from structgen.schemas.llm_outputs import LatexFixResult, LatexTriageOutput
from structgen.schemas.messages import ChatMessage
from structgen.utils.logging import log, get_logger
from structgen.utils.text_cleanup import needs_latex_review, preserves_code_spans

MODULE = "latex"
logger = get_logger()

# None → the context's default model
LATEX_FIX_MODEL = os.getenv("LATEX_FIX_MODEL")

FUNCTION_NAME = "reportLatexFixes"
FUNCTION_DESCRIPTION = "Report whether any string needs a math formatting fix, and the fixed strings."


async def fix_latex(
    strings: Sequence[str],
    *,
    model: Optional[str] = None,
    context: Optional[GenerationContext] = None,
    max_feedback_loops: int = 1,
) -> LatexFixResult:
    """Fix math formatting in a batch of strings.

    Args:
        strings: Input strings, returned in the same order
        model: Model id (default: LATEX_FIX_MODEL, then the context default)
        context: Generation context (default: from environment)
        max_feedback_loops: Correction budget for an invalid triage answer

    Raises:
        InvalidGenerationError, TransportFailure, EmptyResultError
    """
    strings = list(strings)

    # text → index of its first occurrence
    candidates: dict[str, int] = {}
    for idx, text in enumerate(strings):
        if text not in candidates and needs_latex_review(text):
            candidates[text] = idx

    if not candidates:
        log.info(logger, MODULE, "triage_skipped",
                 "No math notation found, returning input unchanged",
                 strings=len(strings))
        return LatexFixResult(fixed_strings=strings)

    log.info(logger, MODULE, "fix_start", "Sending strings to LaTeX triage",
             strings=len(strings), candidates=len(candidates))

    payload = json.dumps(
        {str(idx): text for text, idx in candidates.items()},
        ensure_ascii=False,
        indent=2,
    )
    result = await gen_object(
        LatexTriageOutput,
        system=LATEX_FIX_SYSTEM,
        messages=[ChatMessage(role="user", content=LATEX_FIX_USER.format(payload=payload))],
        model=model or LATEX_FIX_MODEL,
        mode="tool",
        function_name=FUNCTION_NAME,
        function_description=FUNCTION_DESCRIPTION,
        temperature=0,
        max_feedback_loops=max_feedback_loops,
        context=context,
        activity_name="fix_latex",
    )
    triage: LatexTriageOutput = result.object

    if not triage.needs_fix:
        log.info(logger, MODULE, "fix_done", "Triage found nothing to fix",
                 strings=len(strings), fixes_applied=0)
        return LatexFixResult(fixed_strings=strings)

    replacements = _collect_replacements(strings, candidates, triage)
    fixed_strings = [replacements.get(text, text) for text in strings]
    fixes_applied = sum(1 for before, after in zip(strings, fixed_strings) if before != after)

    log.info(logger, MODULE, "fix_done", "LaTeX fixes applied",
             strings=len(strings), fixes_reported=len(triage.fixes),
             fixes_applied=fixes_applied)
    return LatexFixResult(fixed_strings=fixed_strings, fixes_applied=fixes_applied)


def _collect_replacements(
    strings: list[str],
    candidates: dict[str, int],
    triage: LatexTriageOutput,
) -> dict[str, str]:
    """Original text → fixed text, for every fix that is safe to apply."""
    replacements: dict[str, str] = {}
    for fix in triage.fixes:
        original = strings[fix.index] if fix.index < len(strings) else None
        if original is None or original not in candidates:
            log.warning(logger, MODULE, "fix_ignored",
                        "Fix refers to a string that was not sent",
                        index=fix.index)
            continue
        if not preserves_code_spans(original, fix.fixed):
            log.warning(logger, MODULE, "fix_rejected",
                        "Fix altered a code span, keeping original",
                        index=fix.index)
            continue
        replacements[original] = fix.fixed
    return replacements
