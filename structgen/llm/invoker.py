"""Schema-validated object generation with feedback loops.

This module provides the single entry point for structured LLM output:

  result = await gen_object(
      BookOutput,
      prompt="Generate a book about JavaScript",
      model="openai:gpt-4o-mini",
      max_feedback_loops=2,
  )
  result.object      → BookOutput instance
  result.thinking    → auxiliary reasoning object (only with thinking=...)

It handles the full lifecycle:

  1. SELECT: Pick exactly one model from model / models / model_picking
  2. INVOKE: Tool mode forces a call to one function whose parameters are
     the schema; json mode puts the schema in the prompt
  3. PARSE: Function arguments or JSON content → candidate value
  4. VALIDATE: Schema check, then the optional semantic validator
  5. CORRECT: On failure, while max_feedback_loops budget remains, send the
     errors back and ask for a corrected object
  6. CRITIQUE: With a feedback_model, a valid object is reviewed and
     regenerated when the critic asks for it (same budget)

Budget exhausted with no valid object → InvalidGenerationError. A model
that is always invalid sees at most max_feedback_loops + 1 calls.
"""

import asyncio
import copy
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Optional

from langchain_core.utils.json import parse_partial_json

from structgen.llm.client import split_model_id
from structgen.llm.context import GenerationContext, default_context
from structgen.llm.driver import ChatDriver, call_with_retries
from structgen.llm.errors import (
    EmptyResultError,
    GenerationError,
    InvalidGenerationError,
    TransportFailure,
)
from structgen.llm.messages import (
    SECTION_SEPARATOR,
    consolidate_messages,
    format_issues,
    messages_to_transcript,
    tool_call_messages,
)
from structgen.llm.parser import parse_function_arguments, safe_extract_json
from structgen.llm.response_validator import require_choices
from structgen.llm.validators import to_json_schema, validate, wrap_with_thinking
from structgen.prompts.generation import (
    CORRECTION_JSON_INSTRUCTIONS,
    CORRECTION_TOOL_INSTRUCTIONS,
    CORRECTION_USER,
    FEEDBACK_APPLY_USER,
    FEEDBACK_ROLE,
    FEEDBACK_TASK,
    JSON_MODE_INSTRUCTION,
)
from structgen.schemas.generation import GenerationRequest, GenObjectResult, ProviderRequest
from structgen.schemas.llm_outputs import FeedbackOutput
from structgen.schemas.messages import (
    AssistantMessage,
    ChatMessage,
    Choice,
    ChoiceDiagnostic,
    FunctionCall,
    FunctionDeclaration,
    ModelResponse,
    ValidationIssue,
)
from structgen.utils.logging import log, get_logger

MODULE = "llm.invoker"
logger = get_logger()

DEFAULT_FUNCTION_NAME = "writeOutput"
DEFAULT_FUNCTION_DESCRIPTION = "Output a response."
FEEDBACK_FUNCTION_NAME = "giveFeedback"
FEEDBACK_FUNCTION_DESCRIPTION = "Provide feedback to the AI."

# Providers that reject a conversation without a user turn.
USER_MESSAGE_PROVIDERS = {"anthropic"}

SemanticValidator = Callable[[Any], tuple[bool, str]]


@dataclass
class _Plan:
    """Everything decided once per call, before the first round trip."""
    model_id: str
    mode: str
    function_name: str
    function_description: str
    wire_schema: Any
    base_messages: list[ChatMessage]
    feedback_model: Optional[str] = None


@dataclass
class _Attempt:
    valid: bool
    response: ModelResponse
    raw_output: str = ""
    candidate: Any = None
    object: Any = None
    thinking: Any = None
    issues: list[ValidationIssue] = field(default_factory=list)


# =============================================================================
# PUBLIC API
# =============================================================================

async def gen_object(
    schema: Any,
    *,
    context: Optional[GenerationContext] = None,
    semantic_validator: Optional[SemanticValidator] = None,
    activity_name: str = "gen_object",
    **fields: Any,
) -> GenObjectResult:
    """Generate one object that conforms to schema.

    Args:
        schema: pydantic model class or JSON-Schema dict
        context: providers and model metadata (default: from environment)
        semantic_validator: Optional function (object) -> (is_valid, error_msg)
        activity_name: Name for logging context
        **fields: Any GenerationRequest field (prompt, system, messages,
            model, models, model_picking, mode, function_name, thinking,
            max_feedback_loops, feedback_model, feedback_prompt, ...)

    Raises:
        InvalidGenerationError: no valid object within the feedback budget
        TransportFailure: provider kept failing
        EmptyResultError: provider returned no choices at all
        ModelResolutionError: no usable model
    """
    request = GenerationRequest(output_schema=schema, **fields)
    return await run_generation(
        request,
        context=context,
        semantic_validator=semantic_validator,
        activity_name=activity_name,
    )


async def run_generation(
    request: GenerationRequest,
    *,
    context: Optional[GenerationContext] = None,
    semantic_validator: Optional[SemanticValidator] = None,
    activity_name: str = "gen_object",
) -> GenObjectResult:
    ctx = context or default_context()
    plan = _prepare(request, ctx)

    log.info(logger, MODULE, "invoke_start",
             f"Generating object for {activity_name}",
             model=plan.model_id, mode=plan.mode,
             max_feedback_loops=request.max_feedback_loops,
             feedback_model=plan.feedback_model)

    history: list[ChatMessage] = []
    loops_left = request.max_feedback_loops
    attempts = 0
    feedback_notes: list[str] = []
    best: Optional[GenObjectResult] = None

    while True:
        attempts += 1
        attempt = await _generate_once(
            ctx, request, plan, plan.base_messages + history,
            semantic_validator, activity_name,
        )

        if attempt.valid:
            best = _to_result(attempt, plan, attempts, feedback_notes)
            if plan.feedback_model is None or loops_left <= 0:
                log.info(logger, MODULE, "invoke_done",
                         f"Object generated for {activity_name}",
                         model=plan.model_id, attempts=attempts)
                return best

            try:
                feedback = await _request_feedback(
                    ctx, request, plan,
                    plan.base_messages + history + _echo_output(attempt, plan),
                    activity_name,
                )
            except (InvalidGenerationError, EmptyResultError) as e:
                log.warning(logger, MODULE, "feedback_fallback",
                            f"Critic gave no usable answer for {activity_name}, keeping object",
                            error=str(e), feedback_model=plan.feedback_model)
                return best

            if not feedback.feedback_needed:
                log.info(logger, MODULE, "feedback_skipped",
                         f"Critic accepted output for {activity_name}",
                         attempts=attempts, loops_left=loops_left)
                return best

            loops_left -= 1
            feedback_notes.append(feedback.feedback or "")
            log.info(logger, MODULE, "feedback_applied",
                     f"Critic requested changes for {activity_name}",
                     loops_left=loops_left, feedback=(feedback.feedback or "")[:200])
            history = history + _echo_output(attempt, plan) + [
                ChatMessage(
                    role="user",
                    content=FEEDBACK_APPLY_USER.format(feedback=feedback.feedback or ""),
                ),
            ]
            continue

        if loops_left <= 0:
            if best is not None:
                log.warning(logger, MODULE, "invoke_fallback",
                            f"Regenerated output invalid for {activity_name}, keeping last valid object",
                            attempts=attempts)
                return best
            log.error(logger, MODULE, "invoke_failed",
                      f"No valid object for {activity_name}",
                      error=format_issues(attempt.issues)[:500],
                      model=plan.model_id, attempts=attempts)
            raise InvalidGenerationError(
                f"Generation for {activity_name} produced no valid object after {attempts} attempts",
                errors=attempt.issues,
                raw_output=attempt.raw_output,
                attempts=attempts,
            )

        loops_left -= 1
        log.warning(logger, MODULE, "validation_failed",
                    f"Invalid output for {activity_name}, requesting correction",
                    attempt=attempts, loops_left=loops_left,
                    issues=len(attempt.issues))
        history = history + _correction_messages(attempt, plan)


async def stream_gen_object(
    schema: Any,
    *,
    context: Optional[GenerationContext] = None,
    semantic_validator: Optional[SemanticValidator] = None,
    activity_name: str = "stream_gen_object",
    **fields: Any,
) -> "ObjectStream":
    """Start streaming an object. Iterate for partial objects, then await result().

      stream = await stream_gen_object(BookOutput, prompt="...")
      async for partial in stream:
          render(partial)            # dict, grows as tokens arrive
      result = await stream.result() # validated GenObjectResult

    Streams get no feedback loop and no transport retries: a stream that
    fails part way can't be replayed.
    """
    request = GenerationRequest(output_schema=schema, **fields)
    ctx = context or default_context()
    plan = _prepare(request, ctx)
    provider = ctx.provider_for(plan.model_id)

    log.info(logger, MODULE, "stream_start",
             f"Streaming object for {activity_name}",
             model=plan.model_id, mode=plan.mode)

    chunks = provider.stream(_provider_request(request, plan, plan.base_messages))
    return ObjectStream(
        chunks,
        request=request,
        plan=plan,
        timeout_s=request.timeout_s or ctx.timeout_s,
        semantic_validator=semantic_validator,
        activity_name=activity_name,
    )


class ObjectStream:
    """Partial objects while streaming, a validated result at the end."""

    def __init__(
        self,
        chunks: AsyncIterator[str],
        *,
        request: GenerationRequest,
        plan: _Plan,
        timeout_s: float,
        semantic_validator: Optional[SemanticValidator],
        activity_name: str,
    ):
        self._iterator = chunks.__aiter__()
        self._request = request
        self._plan = plan
        self._timeout_s = timeout_s
        self._semantic_validator = semantic_validator
        self._activity_name = activity_name
        self._parts: list[str] = []
        self._done = False
        self._result: Optional[GenObjectResult] = None

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def __aiter__(self) -> AsyncIterator[Any]:
        return self._partials()

    async def _partials(self) -> AsyncIterator[Any]:
        last = None
        async for _ in self._drain():
            partial = _parse_partial(self.text)
            if self._request.thinking is not None:
                partial = partial.get("result") if isinstance(partial, dict) else None
            if partial is not None and partial != last:
                last = copy.deepcopy(partial)
                yield partial

    async def _drain(self) -> AsyncIterator[str]:
        while not self._done:
            try:
                chunk = await asyncio.wait_for(self._iterator.__anext__(), timeout=self._timeout_s)
            except StopAsyncIteration:
                self._done = True
                break
            except asyncio.TimeoutError as e:
                raise TransportFailure(
                    f"Stream for {self._activity_name} stalled for {self._timeout_s}s",
                    model=self._plan.model_id, attempts=1,
                ) from e
            except GenerationError:
                raise
            except Exception as e:
                raise TransportFailure(
                    f"Stream for {self._activity_name} failed",
                    model=self._plan.model_id, attempts=1,
                    last_error=f"{type(e).__name__}: {e}",
                ) from e
            self._parts.append(chunk)
            yield chunk

    async def result(self) -> GenObjectResult:
        """Finish the stream and validate the complete object."""
        if self._result is not None:
            return self._result

        async for _ in self._drain():
            pass

        raw = self.text
        if self._plan.mode == "tool":
            arguments = parse_function_arguments(raw)
            response = ModelResponse(choices=[Choice(
                index=0,
                message=AssistantMessage(function_call=FunctionCall(
                    name=self._plan.function_name, arguments=arguments,
                )),
            )])
            if arguments.parsed is None:
                issues = [ValidationIssue(path="$", message=e) for e in arguments.parse_errors]
                attempt = _Attempt(valid=False, response=response, raw_output=raw, issues=issues)
            else:
                attempt = _check_candidate(
                    self._request, arguments.parsed, response, raw, self._semantic_validator,
                )
        else:
            response = ModelResponse(choices=[Choice(index=0, message=AssistantMessage(content=raw))])
            attempt = _attempt_from_text(self._request, response, raw, self._semantic_validator)

        if not attempt.valid:
            log.error(logger, MODULE, "stream_failed",
                      f"Streamed output invalid for {self._activity_name}",
                      error=format_issues(attempt.issues)[:500], model=self._plan.model_id)
            raise InvalidGenerationError(
                f"Streamed output for {self._activity_name} is not a valid object",
                errors=attempt.issues,
                raw_output=raw,
                attempts=1,
            )

        self._result = _to_result(attempt, self._plan, 1, [])
        log.info(logger, MODULE, "stream_done",
                 f"Streamed object complete for {self._activity_name}",
                 model=self._plan.model_id, raw_length=len(raw))
        return self._result


# =============================================================================
# PLANNING
# =============================================================================

def _prepare(request: GenerationRequest, ctx: GenerationContext) -> _Plan:
    model_id = ctx.pick_model(request.model, request.models, request.model_picking)
    feedback_model = ctx.pick_model(request.feedback_model) if request.feedback_model else None

    mode = request.resolved_mode()
    wire_schema = (
        wrap_with_thinking(request.output_schema, request.thinking.schema)
        if request.thinking is not None
        else request.output_schema
    )

    system = request.system
    if mode == "json":
        instruction = JSON_MODE_INSTRUCTION.format(
            schema=json.dumps(to_json_schema(wire_schema), indent=2),
        )
        system = SECTION_SEPARATOR.join(s for s in (system, instruction) if s)

    provider_name, _ = split_model_id(model_id)
    base_messages = consolidate_messages(
        prompt=request.prompt,
        system=system,
        messages=request.messages,
        ctx_messages=request.ctx_messages,
        requires_user_message=provider_name in USER_MESSAGE_PROVIDERS,
    )

    return _Plan(
        model_id=model_id,
        mode=mode,
        function_name=request.function_name or DEFAULT_FUNCTION_NAME,
        function_description=request.function_description or DEFAULT_FUNCTION_DESCRIPTION,
        wire_schema=wire_schema,
        base_messages=base_messages,
        feedback_model=feedback_model,
    )


def _provider_request(
    request: GenerationRequest,
    plan: _Plan,
    messages: list[ChatMessage],
) -> ProviderRequest:
    if plan.mode == "tool":
        return ProviderRequest(
            model=plan.model_id,
            messages=messages,
            functions=[FunctionDeclaration(
                name=plan.function_name,
                description=plan.function_description,
                parameters=plan.wire_schema,
            )],
            function_call=plan.function_name,
            temperature=request.temperature,
            provider_args=request.provider_args,
        )
    return ProviderRequest(
        model=plan.model_id,
        messages=messages,
        temperature=request.temperature,
        json_mode=True,
        provider_args=request.provider_args,
    )


# =============================================================================
# ONE ROUND TRIP
# =============================================================================

async def _generate_once(
    ctx: GenerationContext,
    request: GenerationRequest,
    plan: _Plan,
    messages: list[ChatMessage],
    semantic_validator: Optional[SemanticValidator],
    activity_name: str,
) -> _Attempt:
    provider_request = _provider_request(request, plan, messages)

    if plan.mode == "tool":
        response = await ChatDriver(ctx).run(
            provider_request, timeout_s=request.timeout_s, activity_name=activity_name,
        )
        if not response.choices:
            if not response.dropped:
                raise EmptyResultError(f"Provider returned no choices for {activity_name}")
            return _Attempt(
                valid=False,
                response=response,
                raw_output=response.dropped[-1].raw_arguments or "",
                issues=_issues_from_dropped(response.dropped),
            )

        choice = response.choices[0]
        if choice.function_call is None:
            return _Attempt(
                valid=False,
                response=response,
                raw_output=choice.content or "",
                issues=[ValidationIssue(
                    path="$",
                    message=f"Expected a call to '{plan.function_name}', got a text answer",
                )],
            )
        arguments = choice.function_call.arguments
        return _check_candidate(
            request, arguments.parsed, response, arguments.raw, semantic_validator,
        )

    response = await call_with_retries(
        ctx, provider_request, timeout_s=request.timeout_s, activity_name=activity_name,
    )
    choice = require_choices(response)[0]
    if choice.function_call is not None and choice.function_call.arguments is not None:
        raw = choice.function_call.arguments.raw
    else:
        raw = choice.content or ""
    return _attempt_from_text(request, response, raw, semantic_validator)


def _attempt_from_text(
    request: GenerationRequest,
    response: ModelResponse,
    raw: str,
    semantic_validator: Optional[SemanticValidator],
) -> _Attempt:
    candidate, error = safe_extract_json(raw)
    if error is not None:
        return _Attempt(
            valid=False,
            response=response,
            raw_output=raw,
            issues=[ValidationIssue(path="$", message=f"Output is not valid JSON: {error}")],
        )
    return _check_candidate(request, candidate, response, raw, semantic_validator)


def _check_candidate(
    request: GenerationRequest,
    candidate: Any,
    response: ModelResponse,
    raw: str,
    semantic_validator: Optional[SemanticValidator],
) -> _Attempt:
    """Schema check (thinking and result separately), then semantic check."""
    thinking_value = None

    if request.thinking is not None:
        if not isinstance(candidate, dict) or "thinking" not in candidate or "result" not in candidate:
            return _Attempt(
                valid=False, response=response, raw_output=raw, candidate=candidate,
                issues=[ValidationIssue(
                    path="$", message="Expected an object with 'thinking' and 'result'",
                )],
            )
        thinking_check = validate(request.thinking.schema, candidate["thinking"])
        result_check = validate(request.output_schema, candidate["result"])
        issues = (
            [_nest(issue, "thinking") for issue in thinking_check.errors]
            + [_nest(issue, "result") for issue in result_check.errors]
        )
        thinking_value = thinking_check.value
    else:
        result_check = validate(request.output_schema, candidate)
        issues = list(result_check.errors)

    if issues:
        return _Attempt(
            valid=False, response=response, raw_output=raw, candidate=candidate, issues=issues,
        )

    if semantic_validator is not None:
        is_valid, semantic_error = semantic_validator(result_check.value)
        if not is_valid:
            return _Attempt(
                valid=False, response=response, raw_output=raw, candidate=candidate,
                issues=[ValidationIssue(path="$", message=f"Semantic: {semantic_error}")],
            )

    return _Attempt(
        valid=True,
        response=response,
        raw_output=raw,
        candidate=candidate,
        object=result_check.value,
        thinking=thinking_value,
    )


def _to_result(
    attempt: _Attempt,
    plan: _Plan,
    attempts: int,
    feedback_notes: list[str],
) -> GenObjectResult:
    return GenObjectResult(
        object=attempt.object,
        thinking=attempt.thinking,
        raw_response=attempt.response,
        raw_output=attempt.raw_output,
        model=plan.model_id,
        attempts=attempts,
        feedback=list(feedback_notes),
    )


# =============================================================================
# FEEDBACK
# =============================================================================

def _echo_output(attempt: _Attempt, plan: _Plan) -> list[ChatMessage]:
    """The previous valid output, as the model would have produced it."""
    if plan.mode == "tool":
        return tool_call_messages(attempt.candidate, plan.function_name)
    return [ChatMessage(role="assistant", content=attempt.raw_output)]


def _correction_messages(attempt: _Attempt, plan: _Plan) -> list[ChatMessage]:
    if plan.mode == "tool":
        instructions = CORRECTION_TOOL_INSTRUCTIONS.format(function_name=plan.function_name)
        echo: list[ChatMessage] = []
    else:
        instructions = CORRECTION_JSON_INSTRUCTIONS
        echo = [ChatMessage(role="assistant", content=attempt.raw_output)] if attempt.raw_output else []

    return echo + [ChatMessage(
        role="user",
        content=CORRECTION_USER.format(
            previous_output=attempt.raw_output or "(no output)",
            errors=format_issues(attempt.issues),
            instructions=instructions,
        ),
    )]


async def _request_feedback(
    ctx: GenerationContext,
    request: GenerationRequest,
    plan: _Plan,
    messages: list[ChatMessage],
    activity_name: str,
) -> FeedbackOutput:
    task = FEEDBACK_TASK.format(
        task_prompt="\n--------\n".join(s for s in (request.system, request.prompt) if s),
        transcript=messages_to_transcript(messages),
        function_name=plan.function_name,
        function_description=plan.function_description,
        schema=json.dumps(to_json_schema(plan.wire_schema), indent=2),
    )
    result = await gen_object(
        FeedbackOutput,
        system=SECTION_SEPARATOR.join([request.feedback_prompt or FEEDBACK_ROLE, task]),
        prompt="Review the AI's latest output.",
        model=plan.feedback_model,
        mode="tool",
        function_name=FEEDBACK_FUNCTION_NAME,
        function_description=FEEDBACK_FUNCTION_DESCRIPTION,
        timeout_s=request.timeout_s,
        context=ctx,
        activity_name=f"{activity_name}.feedback",
    )
    return result.object


# =============================================================================
# HELPERS
# =============================================================================

def _issues_from_dropped(dropped: list[ChoiceDiagnostic]) -> list[ValidationIssue]:
    """Validation issues of the dropped choices, or their messages when they have none."""
    issues: list[ValidationIssue] = []
    for diagnostic in dropped:
        if diagnostic.errors:
            issues.extend(diagnostic.errors)
        else:
            issues.append(ValidationIssue(path="$", message=diagnostic.message))
    return issues


def _nest(issue: ValidationIssue, key: str) -> ValidationIssue:
    """'$.title' under 'result' → '$.result.title'"""
    suffix = issue.path[1:] if issue.path.startswith("$") else f".{issue.path}"
    return ValidationIssue(path=f"$.{key}{suffix}", message=issue.message)


def _parse_partial(text: str) -> Any:
    """Best-effort parse of an incomplete JSON document."""
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    if not text:
        return None
    try:
        return parse_partial_json(text)
    except (ValueError, RecursionError):
        return None
