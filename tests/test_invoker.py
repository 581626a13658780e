"""Tests for gen_object / stream_gen_object with a scripted provider."""

import asyncio

import pytest

from fakes import FakeProvider, text_response, tool_response
from structgen.llm.context import GenerationContext
from structgen.llm.errors import (
    EmptyResultError,
    InvalidGenerationError,
    TransportFailure,
)
from structgen.llm.invoker import gen_object, stream_gen_object
from structgen.llm.messages import START_MESSAGE
from structgen.schemas.generation import ThinkingConfig
from structgen.schemas.messages import ModelResponse

BOOK_JSON_SCHEMA = {
    "type": "object",
    "properties": {"title": {"type": "string"}},
    "required": ["title"],
}

STEPS_SCHEMA = {
    "type": "object",
    "properties": {"steps": {"type": "string"}},
    "required": ["steps"],
}


def _scripted(gen_outputs, critic_outputs=()):
    """Handler answering generation calls and critic calls from two scripts."""
    gen = iter(gen_outputs)
    critic = iter(critic_outputs)

    def handler(request):
        if request.functions and request.functions[0].name == "giveFeedback":
            return tool_response(next(critic), name="giveFeedback")
        return tool_response(next(gen))

    return handler


# =============================================================================
# TOOL MODE
# =============================================================================

@pytest.mark.asyncio
async def test_tool_mode_returns_validated_object(context, provider, book_schema):
    provider.responses = [tool_response({"title": "JS", "genres": ["tech"]}, name="writeBook")]

    result = await gen_object(
        book_schema,
        prompt="Generate a book about JavaScript",
        function_name="writeBook",
        context=context,
    )

    assert result.object == book_schema(title="JS", genres=["tech"])
    assert result.attempts == 1
    assert result.model == "fake:model"

    request = provider.requests[0]
    assert request.functions[0].name == "writeBook"
    assert request.function_call == "writeBook"
    assert request.messages[0].role == "system"
    assert "JavaScript" in request.messages[0].content


@pytest.mark.asyncio
async def test_tool_mode_default_function_name(context, provider, book_schema):
    provider.responses = [tool_response({"title": "JS"})]
    await gen_object(book_schema, prompt="p", mode="tool", context=context)
    assert provider.requests[0].functions[0].name == "writeOutput"


@pytest.mark.asyncio
async def test_correction_after_invalid_output(context, provider, book_schema):
    provider.responses = [tool_response({"genres": []}), tool_response({"title": "JS"})]

    result = await gen_object(
        book_schema, prompt="p", mode="tool", max_feedback_loops=1, context=context,
    )

    assert result.object.title == "JS"
    assert result.attempts == 2
    correction = provider.requests[1].messages[-1]
    assert correction.role == "user"
    assert "$.title" in correction.content


@pytest.mark.asyncio
async def test_always_invalid_makes_n_plus_one_calls(context, provider, book_schema):
    provider.handler = lambda request: tool_response({"genres": []})

    with pytest.raises(InvalidGenerationError) as exc:
        await gen_object(
            book_schema, prompt="p", mode="tool", max_feedback_loops=2, context=context,
        )

    assert len(provider.requests) == 3
    assert exc.value.attempts == 3
    assert exc.value.errors[0].path == "$.title"
    assert exc.value.raw_output == '{"genres": []}'


@pytest.mark.asyncio
async def test_no_budget_means_single_call(context, provider, book_schema):
    provider.handler = lambda request: tool_response("{broken")

    with pytest.raises(InvalidGenerationError):
        await gen_object(book_schema, prompt="p", mode="tool", context=context)

    assert len(provider.requests) == 1


@pytest.mark.asyncio
async def test_text_answer_in_tool_mode_is_invalid(context, provider, book_schema):
    provider.responses = [text_response("I'd rather not call tools")]

    with pytest.raises(InvalidGenerationError) as exc:
        await gen_object(book_schema, prompt="p", mode="tool", context=context)

    assert "text answer" in exc.value.errors[0].message


@pytest.mark.asyncio
async def test_semantic_validator_triggers_correction(context, provider, book_schema):
    provider.responses = [tool_response({"title": "bad"}), tool_response({"title": "good"})]

    result = await gen_object(
        book_schema,
        prompt="p",
        mode="tool",
        max_feedback_loops=1,
        semantic_validator=lambda book: (book.title != "bad", "title is bad"),
        context=context,
    )

    assert result.object.title == "good"
    assert "title is bad" in provider.requests[1].messages[-1].content


@pytest.mark.asyncio
async def test_thinking_is_returned_separately(context, provider, book_schema):
    provider.responses = [tool_response({
        "thinking": {"steps": "pick a short title"},
        "result": {"title": "JS"},
    })]

    result = await gen_object(
        book_schema,
        prompt="p",
        mode="tool",
        thinking=ThinkingConfig(schema=STEPS_SCHEMA),
        context=context,
    )

    assert result.object == book_schema(title="JS")
    assert result.thinking == {"steps": "pick a short title"}
    parameters = provider.requests[0].functions[0].parameters
    assert parameters["required"] == ["thinking", "result"]


@pytest.mark.asyncio
async def test_invalid_thinking_is_reported(context, provider, book_schema):
    provider.responses = [tool_response({"thinking": {}, "result": {"title": "JS"}})]

    with pytest.raises(InvalidGenerationError) as exc:
        await gen_object(
            book_schema,
            prompt="p",
            mode="tool",
            thinking=ThinkingConfig(schema=STEPS_SCHEMA),
            context=context,
        )

    assert exc.value.errors


# =============================================================================
# JSON MODE
# =============================================================================

@pytest.mark.asyncio
async def test_json_mode_parses_content(context, provider, book_schema):
    provider.responses = [text_response('```json\n{"title": "JS"}\n```')]

    result = await gen_object(book_schema, prompt="p", context=context)

    assert result.object.title == "JS"
    request = provider.requests[0]
    assert request.json_mode
    assert request.functions == []
    assert "OUTPUT_FORMAT" in request.messages[0].content


@pytest.mark.asyncio
async def test_json_mode_with_dict_schema(context, provider):
    provider.responses = [text_response("not json"), text_response('{"title": "JS"}')]

    result = await gen_object(
        BOOK_JSON_SCHEMA, prompt="p", mode="json", max_feedback_loops=1, context=context,
    )

    assert result.object == {"title": "JS"}
    retry_messages = provider.requests[1].messages
    assert retry_messages[-2].role == "assistant"
    assert retry_messages[-2].content == "not json"


# =============================================================================
# CRITIC LOOP
# =============================================================================

@pytest.mark.asyncio
async def test_critic_feedback_regenerates(context, provider, book_schema):
    provider.handler = _scripted(
        gen_outputs=[{"title": "JS"}, {"title": "JavaScript"}],
        critic_outputs=[
            {"feedback": "Use the full language name", "feedback_needed": True},
            {"feedback": None, "feedback_needed": False},
        ],
    )

    result = await gen_object(
        book_schema,
        prompt="p",
        mode="tool",
        feedback_model="fake:critic",
        max_feedback_loops=3,
        context=context,
    )

    assert result.object.title == "JavaScript"
    assert result.feedback == ["Use the full language name"]
    assert result.attempts == 2
    assert len(provider.requests) == 4

    critic_request = provider.requests[1]
    assert critic_request.model == "fake:critic"
    assert "critical thinker" in critic_request.messages[0].content
    assert "Use the full language name" in provider.requests[2].messages[-1].content


@pytest.mark.asyncio
async def test_custom_feedback_prompt(context, provider, book_schema):
    provider.handler = _scripted(
        gen_outputs=[{"title": "JS"}],
        critic_outputs=[{"feedback_needed": False}],
    )

    await gen_object(
        book_schema,
        prompt="p",
        mode="tool",
        feedback_model="fake:critic",
        feedback_prompt="You are a strict editor.",
        max_feedback_loops=1,
        context=context,
    )

    assert provider.requests[1].messages[0].content.startswith("You are a strict editor.")


@pytest.mark.asyncio
async def test_critic_shares_the_loop_budget(context, provider, book_schema):
    provider.handler = _scripted(
        gen_outputs=[{"title": "A"}, {"title": "B"}],
        critic_outputs=[{"feedback": "again", "feedback_needed": True}],
    )

    result = await gen_object(
        book_schema,
        prompt="p",
        mode="tool",
        feedback_model="fake:critic",
        max_feedback_loops=1,
        context=context,
    )

    assert result.object.title == "B"
    assert len(provider.requests) == 3


@pytest.mark.asyncio
async def test_invalid_regeneration_keeps_last_valid_object(context, provider, book_schema):
    provider.handler = _scripted(
        gen_outputs=[{"title": "A"}, {"genres": []}],
        critic_outputs=[{"feedback": "again", "feedback_needed": True}],
    )

    result = await gen_object(
        book_schema,
        prompt="p",
        mode="tool",
        feedback_model="fake:critic",
        max_feedback_loops=1,
        context=context,
    )

    assert result.object.title == "A"


@pytest.mark.asyncio
async def test_unusable_critic_keeps_valid_object(context, provider, book_schema):
    def handler(request):
        if request.functions[0].name == "giveFeedback":
            return tool_response({"feedback": "no flag"}, name="giveFeedback")
        return tool_response({"title": "A"})

    provider.handler = handler

    result = await gen_object(
        book_schema,
        prompt="p",
        mode="tool",
        feedback_model="fake:critic",
        max_feedback_loops=2,
        context=context,
    )

    assert result.object.title == "A"
    assert len(provider.requests) == 2


# =============================================================================
# FAILURES AND MESSAGES
# =============================================================================

@pytest.mark.asyncio
async def test_zero_choices_raises_empty_result(context, provider, book_schema):
    provider.responses = [ModelResponse(choices=[])]
    with pytest.raises(EmptyResultError):
        await gen_object(book_schema, prompt="p", mode="tool", context=context)


@pytest.mark.asyncio
async def test_transport_failure_propagates(context, provider, book_schema):
    provider.responses = [ConnectionError("down"), ConnectionError("still down")]
    with pytest.raises(TransportFailure):
        await gen_object(book_schema, prompt="p", context=context)


@pytest.mark.asyncio
async def test_cancellation_propagates_without_retry(context, provider, book_schema):
    never = asyncio.Event()

    async def hang(request):
        provider.requests.append(request)
        await never.wait()

    provider.complete = hang
    task = asyncio.create_task(gen_object(book_schema, prompt="p", context=context))
    while not provider.requests:
        await asyncio.sleep(0)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(provider.requests) == 1


@pytest.mark.asyncio
async def test_model_and_models_rejected(context, book_schema):
    with pytest.raises(ValueError):
        await gen_object(
            book_schema, prompt="p", model="fake:a", models=["fake:b"], context=context,
        )


@pytest.mark.asyncio
async def test_start_message_for_providers_needing_a_user_turn(book_schema):
    provider = FakeProvider(responses=[tool_response({"title": "JS"})])
    ctx = GenerationContext(providers={"anthropic": provider}, retry_delay_s=0)

    await gen_object(
        book_schema, prompt="p", mode="tool", model="anthropic:claude", context=ctx,
    )

    messages = provider.requests[0].messages
    assert messages[-1].role == "user"
    assert messages[-1].content == START_MESSAGE


# =============================================================================
# STREAMING
# =============================================================================

@pytest.mark.asyncio
async def test_stream_yields_partials_then_result(context, provider, book_schema):
    provider.chunks = ['{"title": "Ja', 'vaScript", "gen', 'res": ["tech"]}']

    stream = await stream_gen_object(book_schema, prompt="p", context=context)
    partials = [partial async for partial in stream]
    result = await stream.result()

    assert partials[0] == {"title": "Ja"}
    assert partials[-1] == {"title": "JavaScript", "genres": ["tech"]}
    assert result.object == book_schema(title="JavaScript", genres=["tech"])
    assert provider.requests[0].json_mode


@pytest.mark.asyncio
async def test_stream_result_without_iterating(context, provider, book_schema):
    provider.chunks = ['{"title": ', '"JS"}']

    stream = await stream_gen_object(book_schema, prompt="p", mode="tool", context=context)
    result = await stream.result()

    assert result.object.title == "JS"
    assert provider.requests[0].functions[0].name == "writeOutput"


@pytest.mark.asyncio
async def test_stream_invalid_final_object(context, provider, book_schema):
    provider.chunks = ['{"genres": []}']

    stream = await stream_gen_object(book_schema, prompt="p", context=context)
    with pytest.raises(InvalidGenerationError):
        await stream.result()


@pytest.mark.asyncio
async def test_stream_provider_error_becomes_transport_failure(context, provider, book_schema):
    provider.chunks = ['{"title": "J', ConnectionError("reset")]

    stream = await stream_gen_object(book_schema, prompt="p", context=context)
    with pytest.raises(TransportFailure):
        async for _ in stream:
            pass
