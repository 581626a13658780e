"""LLM client configuration and the default provider adapter.

The rest of structgen only talks to a ModelProvider:

  complete(ProviderRequest) → ModelResponse
  stream(ProviderRequest)   → async iterator of text deltas

LangChainProvider implements it with LangChain's ChatOpenAI, which works
against OpenAI itself and any OpenAI-compatible endpoint (llama.cpp,
vLLM, OpenRouter). It translates AIMessages into Choices at the boundary:
raw tool-call argument strings are kept verbatim and parsed with
parse_function_arguments(), so a malformed call still reaches the
response validator with its raw text and parse errors attached.

Configuration comes from the environment:
  LLM_BASE_URL, LLM_API_KEY / OPENAI_API_KEY  → provider "openai"
  LLAMA_URL                                   → provider "local"
  LLM_DEFAULT_MODEL, LLM_TIMEOUT_S, LLM_MAX_TRANSPORT_RETRIES
"""

import json
import os
from typing import Any, AsyncIterator, Callable, Optional, Protocol

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from langchain_openai import ChatOpenAI

from structgen.llm.parser import parse_function_arguments
from structgen.llm.validators import to_json_schema
from structgen.schemas.generation import ProviderRequest
from structgen.schemas.messages import (
    AssistantMessage,
    ChatMessage,
    Choice,
    FunctionCall,
    ModelResponse,
)
from structgen.utils.logging import log, get_logger

MODULE = "llm"
logger = get_logger()

LLM_BASE_URL = os.getenv("LLM_BASE_URL", "https://api.openai.com/v1")
LLM_API_KEY = os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY", "not-needed")
LLAMA_URL = os.getenv("LLAMA_URL", "http://localhost:8080")
DEFAULT_MODEL = os.getenv("LLM_DEFAULT_MODEL", "openai:gpt-4o-mini")
LLM_TIMEOUT_S = float(os.getenv("LLM_TIMEOUT_S", "60"))
LLM_MAX_TRANSPORT_RETRIES = int(os.getenv("LLM_MAX_TRANSPORT_RETRIES", "2"))


class ModelProvider(Protocol):
    """Anything that can answer a ProviderRequest."""

    async def complete(self, request: ProviderRequest) -> ModelResponse:
        ...

    def stream(self, request: ProviderRequest) -> AsyncIterator[str]:
        ...


def split_model_id(model_id: str) -> tuple[str, str]:
    """'openai:gpt-4o-mini' → ('openai', 'gpt-4o-mini')"""
    provider, sep, tag = model_id.partition(":")
    if not sep or not provider or not tag:
        raise ValueError(f"Model id must look like 'provider:modelTag', got '{model_id}'")
    return provider, tag


def get_llm(
    model_tag: str,
    *,
    base_url: str = LLM_BASE_URL,
    api_key: str = LLM_API_KEY,
    temperature: Optional[float] = 0.1,
    num_choices: int = 1,
    max_tokens: int = 4096,
) -> ChatOpenAI:
    """Get a ChatOpenAI client for one request.

    Args:
        model_tag: Model name as the endpoint knows it (no provider prefix)
        temperature: None keeps the endpoint default
        num_choices: How many candidate answers to ask for (OpenAI 'n')
    """
    client = ChatOpenAI(
        base_url=base_url,
        api_key=api_key,
        model=model_tag,
        temperature=temperature,
        max_tokens=max_tokens,
        n=num_choices,
    )
    log.debug(logger, MODULE, "llm_init", "LLM client created",
              base_url=base_url, model=model_tag, temperature=temperature,
              n=num_choices)
    return client


class LangChainProvider:
    """ModelProvider backed by a LangChain chat model."""

    def __init__(
        self,
        base_url: str = LLM_BASE_URL,
        api_key: str = LLM_API_KEY,
        llm_factory: Optional[Callable[..., BaseChatModel]] = None,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self._llm_factory = llm_factory

    def _build(self, request: ProviderRequest) -> BaseChatModel:
        _, model_tag = split_model_id(request.model)
        if self._llm_factory is not None:
            return self._llm_factory(
                model_tag,
                temperature=request.temperature,
                num_choices=request.num_choices,
            )
        return get_llm(
            model_tag,
            base_url=self.base_url,
            api_key=self.api_key,
            temperature=request.temperature,
            num_choices=request.num_choices,
        )

    async def complete(self, request: ProviderRequest) -> ModelResponse:
        llm = self._build(request)
        result = await llm.agenerate(
            [to_langchain_messages(request.messages)],
            **_call_kwargs(request),
        )

        choices = []
        for idx, generation in enumerate(result.generations[0]):
            info = generation.generation_info or {}
            choice = choice_from_message(generation.message, idx, info.get("finish_reason"))
            if choice is not None:
                choices.append(choice)

        return ModelResponse(choices=choices, provider_response=result.llm_output)

    async def stream(self, request: ProviderRequest) -> AsyncIterator[str]:
        llm = self._build(request)
        async for chunk in llm.astream(
            to_langchain_messages(request.messages),
            **_call_kwargs(request),
        ):
            tool_chunks = getattr(chunk, "tool_call_chunks", None) or []
            if tool_chunks:
                for tool_chunk in tool_chunks:
                    if tool_chunk.get("args"):
                        yield tool_chunk["args"]
                continue
            text = _content_text(chunk.content)
            if text:
                yield text


def _call_kwargs(request: ProviderRequest) -> dict[str, Any]:
    """Per-call options passed through to the chat completion payload."""
    kwargs: dict[str, Any] = dict(request.provider_args)

    if request.functions:
        kwargs["tools"] = [
            {
                "type": "function",
                "function": {
                    "name": f.name,
                    "description": f.description,
                    "parameters": to_json_schema(f.parameters),
                },
            }
            for f in request.functions
        ]
        if request.function_call in ("auto", "none", "required"):
            kwargs["tool_choice"] = request.function_call
        elif request.function_call:
            kwargs["tool_choice"] = {
                "type": "function",
                "function": {"name": request.function_call},
            }

    if request.json_mode and not request.functions:
        kwargs.setdefault("response_format", {"type": "json_object"})

    return kwargs


def to_langchain_messages(messages: list[ChatMessage]) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    for m in messages:
        if m.role == "system":
            converted.append(SystemMessage(content=m.content))
        elif m.role == "user":
            converted.append(HumanMessage(content=m.content))
        elif m.role == "assistant":
            converted.append(AIMessage(
                content=m.content,
                tool_calls=[
                    {
                        "name": tc.name,
                        "args": tc.args if isinstance(tc.args, dict) else {"value": tc.args},
                        "id": tc.id,
                    }
                    for tc in m.tool_calls
                ],
            ))
        else:
            converted.append(ToolMessage(content=m.content, tool_call_id=m.tool_call_id or ""))
    return converted


def choice_from_message(
    message: BaseMessage,
    index: int,
    finish_reason: Optional[str] = None,
) -> Optional[Choice]:
    """Translate a LangChain message into a Choice.

    Prefers the provider's raw argument string (OpenAI puts it under
    additional_kwargs) so nothing is lost before our own parser sees it.
    Returns None for an empty message with neither content nor a call.
    """
    raw_calls = message.additional_kwargs.get("tool_calls") or []
    tool_calls = getattr(message, "tool_calls", None) or []
    invalid_calls = getattr(message, "invalid_tool_calls", None) or []

    function_call = None
    if raw_calls:
        fn = raw_calls[0].get("function") or {}
        function_call = FunctionCall(
            name=fn.get("name"),
            arguments=parse_function_arguments(fn.get("arguments")),
        )
    elif tool_calls:
        function_call = FunctionCall(
            name=tool_calls[0].get("name"),
            arguments=parse_function_arguments(json.dumps(tool_calls[0].get("args"))),
        )
    elif invalid_calls:
        function_call = FunctionCall(
            name=invalid_calls[0].get("name"),
            arguments=parse_function_arguments(invalid_calls[0].get("args")),
        )

    if function_call is not None:
        return Choice(
            index=index,
            message=AssistantMessage(content=None, function_call=function_call),
            finish_reason=finish_reason,
        )

    text = _content_text(message.content)
    if not text:
        log.debug(logger, MODULE, "empty_message_skipped",
                  "Provider returned an empty message", index=index)
        return None

    return Choice(
        index=index,
        message=AssistantMessage(content=text),
        finish_reason=finish_reason,
    )


def _content_text(content: Any) -> str:
    """Message content may be a string or a list of content blocks."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return ""
