"""Tests for the chat driver and transport retries."""

import asyncio

import pytest

from fakes import response, text_choice, tool_choice
from structgen.llm.driver import ChatDriver, ChatRequest, call_with_retries
from structgen.llm.errors import TransportFailure
from structgen.schemas.messages import ChatMessage, FunctionDeclaration


def _request(**kwargs):
    return ChatRequest(
        model="fake:model",
        messages=[ChatMessage(role="user", content="hi")],
        **kwargs,
    )


@pytest.mark.asyncio
async def test_run_filters_invalid_choices(context, provider, book_schema):
    provider.responses = [response(
        tool_choice({"title": "JS"}, index=0),
        tool_choice({"title": 1, "genres": "x"}, index=1),
        tool_choice({"title": "JS"}, name="other", index=2),
    )]
    request = _request(
        functions=[FunctionDeclaration(name="writeOutput", parameters=book_schema)],
        function_call="writeOutput",
        num_choices=3,
    )

    result = await ChatDriver(context).run(request)

    assert [c.index for c in result.choices] == [0]
    assert len(result.dropped) == 2
    assert provider.requests[0].num_choices == 3


@pytest.mark.asyncio
async def test_plain_choices_pass_through(context, provider):
    provider.responses = [response(text_choice("hello"))]
    result = await ChatDriver(context).run(_request())
    assert result.choices[0].content == "hello"


@pytest.mark.asyncio
async def test_transport_error_is_retried(context, provider):
    provider.responses = [ConnectionError("reset"), response(text_choice("ok"))]
    result = await call_with_retries(context, _request())
    assert result.choices[0].content == "ok"
    assert len(provider.requests) == 2


@pytest.mark.asyncio
async def test_transport_failure_after_retries(context, provider):
    provider.responses = [ConnectionError("reset"), ConnectionError("reset again")]
    with pytest.raises(TransportFailure) as exc:
        await call_with_retries(context, _request())
    assert exc.value.attempts == 2
    assert "reset again" in exc.value.last_error


@pytest.mark.asyncio
async def test_timeout_becomes_transport_failure(context, provider):
    async def slow(request):
        await asyncio.sleep(1)

    provider.complete = slow
    context.max_transport_retries = 0
    with pytest.raises(TransportFailure) as exc:
        await call_with_retries(context, _request(), timeout_s=0.01)
    assert "Timed out" in exc.value.last_error
