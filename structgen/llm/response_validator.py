"""Validation of function-call choices in a model response.

Each choice is checked on its own:

  1. No function call            → kept unchanged
  2. No functions declared       → dropped
  3. Name missing / not declared → dropped
  4. Arguments did not parse     → dropped (raw + parse errors kept in the diagnostic)
  5. Arguments fail the schema   → dropped (issues logged)
  6. Anything unexpected         → dropped

A dropped choice never takes its siblings down with it. The filtered
response keeps surviving choices in their original relative order and
lists a ChoiceDiagnostic for every choice it removed.
"""

from typing import Optional, Sequence

from structgen.llm.errors import EmptyResultError
from structgen.llm.validators import validate
from structgen.schemas.messages import (
    Choice,
    ChoiceDiagnostic,
    DropReason,
    FunctionDeclaration,
    ModelResponse,
)
from structgen.utils.logging import log, get_logger

MODULE = "llm.response"
logger = get_logger()


def validate_response(
    response: ModelResponse,
    declared_functions: Optional[Sequence[FunctionDeclaration]],
) -> ModelResponse:
    """Drop every choice whose function call can't be trusted.

    Returns:
        A copy of the response with only the surviving choices. If every
        choice was dropped the list is empty; deciding what that means is
        the caller's job (see require_choices).
    """
    declared = list(declared_functions or [])
    kept: list[Choice] = []
    dropped: list[ChoiceDiagnostic] = list(response.dropped)

    for idx, choice in enumerate(response.choices):
        try:
            diagnostic = _check_choice(idx, choice, declared)
        except Exception as e:
            diagnostic = ChoiceDiagnostic(
                index=idx,
                reason=DropReason.UNEXPECTED_ERROR,
                message=f"Unexpected error while validating choice: {e}",
            )

        if diagnostic is None:
            kept.append(choice)
            continue

        log.warning(logger, MODULE, "choice_dropped",
                    diagnostic.message,
                    index=idx, reason=diagnostic.reason.value,
                    function=diagnostic.function_name,
                    errors=[f"{e.path}: {e.message}" for e in diagnostic.errors] or None)
        dropped.append(diagnostic)

    if len(kept) != len(response.choices):
        log.info(logger, MODULE, "response_filtered",
                 "Filtered model response",
                 received=len(response.choices), kept=len(kept))

    return response.model_copy(update={"choices": kept, "dropped": dropped})


def _check_choice(
    idx: int,
    choice: Choice,
    declared: list[FunctionDeclaration],
) -> Optional[ChoiceDiagnostic]:
    """Return None if the choice survives, else why it doesn't."""
    function_call = choice.function_call
    if function_call is None:
        return None

    name = function_call.name
    args = function_call.arguments
    raw = args.raw if args else None

    if not declared:
        return ChoiceDiagnostic(
            index=idx,
            reason=DropReason.NO_FUNCTIONS_DECLARED,
            message="Model requested a function call, but no functions were declared",
            function_name=name,
            raw_arguments=raw,
        )

    if not name:
        return ChoiceDiagnostic(
            index=idx,
            reason=DropReason.MISSING_NAME,
            message="Function call did not provide a name",
            raw_arguments=raw,
        )

    matches = [f for f in declared if f.name == name]
    if len(matches) != 1:
        detail = "was not found in" if not matches else "matches more than one of"
        return ChoiceDiagnostic(
            index=idx,
            reason=DropReason.UNRESOLVED_FUNCTION_CALL,
            message=f"Function '{name}' {detail} the declared functions",
            function_name=name,
            raw_arguments=raw,
        )

    if args is None or args.parsed is None:
        parse_errors = args.parse_errors if args else []
        detail = f" ({'; '.join(parse_errors)})" if parse_errors else ""
        return ChoiceDiagnostic(
            index=idx,
            reason=DropReason.MISSING_ARGUMENTS,
            message=f"Function call '{name}' did not provide parsed arguments{detail}",
            function_name=name,
            raw_arguments=raw,
        )

    result = validate(matches[0].parameters, args.parsed)
    if not result.valid:
        return ChoiceDiagnostic(
            index=idx,
            reason=DropReason.SCHEMA_VALIDATION_FAILURE,
            message=f"Function call '{name}' did not match its schema",
            function_name=name,
            errors=result.errors,
            raw_arguments=raw,
        )

    return None


def require_choices(response: ModelResponse) -> list[Choice]:
    """Return the choices, or raise EmptyResultError when none are left."""
    if not response.choices:
        raise EmptyResultError(
            f"No usable choice in model response ({len(response.dropped)} dropped)",
            diagnostics=response.dropped,
        )
    return response.choices
