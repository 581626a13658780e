"""Tests for the LangChain provider adapter."""

import json

import pytest
from langchain_core.language_models.fake_chat_models import FakeMessagesListChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from structgen.llm.client import (
    LangChainProvider,
    _call_kwargs,
    choice_from_message,
    get_llm,
    split_model_id,
    to_langchain_messages,
)
from structgen.llm.messages import tool_call_messages
from structgen.schemas.generation import ProviderRequest
from structgen.schemas.messages import ChatMessage, FunctionDeclaration


def _provider(*messages):
    built = []

    def factory(model_tag, temperature=None, num_choices=1):
        built.append((model_tag, temperature, num_choices))
        return FakeMessagesListChatModel(responses=list(messages))

    provider = LangChainProvider(llm_factory=factory)
    provider.built = built
    return provider


def _request(**kwargs):
    return ProviderRequest(
        model="openai:gpt-4o-mini",
        messages=[ChatMessage(role="user", content="hi")],
        **kwargs,
    )


def test_split_model_id():
    assert split_model_id("openai:gpt-4o-mini") == ("openai", "gpt-4o-mini")
    assert split_model_id("local:org/model:q4") == ("local", "org/model:q4")
    with pytest.raises(ValueError):
        split_model_id("gpt-4o-mini")


def test_get_llm_sets_choices():
    llm = get_llm("gpt-4o-mini", api_key="test", num_choices=3)
    assert llm.model_name == "gpt-4o-mini"
    assert llm.n == 3


@pytest.mark.asyncio
async def test_complete_translates_tool_calls(book_schema):
    provider = _provider(AIMessage(
        content="",
        tool_calls=[{"name": "writeOutput", "args": {"title": "JS"}, "id": "call_1"}],
    ))
    request = _request(
        functions=[FunctionDeclaration(name="writeOutput", parameters=book_schema)],
        function_call="writeOutput",
        temperature=0.2,
    )

    result = await provider.complete(request)

    call = result.choices[0].function_call
    assert call.name == "writeOutput"
    assert call.arguments.parsed == {"title": "JS"}
    assert provider.built == [("gpt-4o-mini", 0.2, 1)]


@pytest.mark.asyncio
async def test_complete_translates_text():
    provider = _provider(AIMessage(content="hello"))
    result = await provider.complete(_request())
    assert result.choices[0].content == "hello"
    assert result.choices[0].function_call is None


def test_raw_arguments_are_preferred():
    message = AIMessage(content="", additional_kwargs={"tool_calls": [{
        "id": "call_1",
        "type": "function",
        "function": {"name": "writeOutput", "arguments": '{"title": "JS"}'},
    }]})
    choice = choice_from_message(message, 0)
    assert choice.function_call.arguments.raw == '{"title": "JS"}'
    assert choice.function_call.arguments.parsed == {"title": "JS"}


def test_invalid_tool_call_keeps_raw_text():
    message = AIMessage(content="", invalid_tool_calls=[{
        "name": "writeOutput", "args": '{"title": ', "id": "call_1", "error": None,
    }])
    choice = choice_from_message(message, 0)
    assert choice.function_call.name == "writeOutput"
    assert choice.function_call.arguments.raw == '{"title": '
    assert choice.function_call.arguments.parsed is None
    assert choice.function_call.arguments.parse_errors


def test_empty_message_is_skipped():
    assert choice_from_message(AIMessage(content=""), 0) is None


def test_content_blocks_are_joined():
    message = AIMessage(content=[{"type": "text", "text": "a"}, {"type": "text", "text": "b"}])
    assert choice_from_message(message, 0).content == "ab"


def test_forced_function_call_kwargs(book_schema):
    kwargs = _call_kwargs(_request(
        functions=[FunctionDeclaration(name="writeOutput", description="Out", parameters=book_schema)],
        function_call="writeOutput",
    ))
    tool = kwargs["tools"][0]["function"]
    assert tool["name"] == "writeOutput"
    assert tool["parameters"]["required"] == ["title"]
    assert kwargs["tool_choice"] == {"type": "function", "function": {"name": "writeOutput"}}
    assert "response_format" not in kwargs


def test_json_mode_kwargs():
    kwargs = _call_kwargs(_request(json_mode=True, provider_args={"seed": 7}))
    assert kwargs == {"seed": 7, "response_format": {"type": "json_object"}}


def test_to_langchain_messages():
    history = [
        ChatMessage(role="system", content="rules"),
        ChatMessage(role="user", content="hi"),
        *tool_call_messages({"title": "JS"}, "writeOutput", tool_call_id="call_1"),
    ]
    converted = to_langchain_messages(history)

    assert isinstance(converted[0], SystemMessage)
    assert isinstance(converted[1], HumanMessage)
    assert isinstance(converted[2], AIMessage)
    assert converted[2].tool_calls[0]["args"] == {"title": "JS"}
    assert isinstance(converted[3], ToolMessage)
    assert json.loads(converted[3].content) == {"success": True}
