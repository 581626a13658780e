"""Tests for message consolidation and history helpers."""

import json

from structgen.llm.messages import (
    SECTION_SEPARATOR,
    START_MESSAGE,
    consolidate_messages,
    format_issues,
    messages_to_transcript,
    tool_call_messages,
)
from structgen.schemas.messages import ChatMessage, ValidationIssue


def test_system_sections_are_joined_in_order():
    messages = consolidate_messages(
        system="You write books.",
        prompt="Write one about JavaScript.",
        messages=[
            ChatMessage(role="system", content="Be brief."),
            ChatMessage(role="user", content="hello"),
        ],
    )
    assert messages[0].role == "system"
    assert messages[0].content == SECTION_SEPARATOR.join(
        ["You write books.", "Be brief.", "Write one about JavaScript."]
    )
    assert [m.role for m in messages] == ["system", "user"]


def test_ctx_messages_come_before_history():
    messages = consolidate_messages(
        prompt="p",
        messages=[ChatMessage(role="user", content="question")],
        ctx_messages=[ChatMessage(role="user", content="context")],
    )
    assert [m.content for m in messages[1:]] == ["context", "question"]


def test_start_message_added_when_required():
    messages = consolidate_messages(prompt="p", requires_user_message=True)
    assert messages[-1] == ChatMessage(role="user", content=START_MESSAGE)


def test_start_message_not_added_when_user_present():
    messages = consolidate_messages(
        prompt="p",
        messages=[ChatMessage(role="user", content="hi")],
        requires_user_message=True,
    )
    assert all(m.content != START_MESSAGE for m in messages)


def test_system_message_disabled_becomes_user():
    messages = consolidate_messages(system="rules", system_message_disabled=True)
    assert messages[0].role == "user"
    assert "rules" in messages[0].content


def test_tool_call_messages_pair(book_schema):
    messages = tool_call_messages(book_schema(title="JS"), "writeOutput", tool_call_id="call_1")
    call, result = messages
    assert call.tool_calls[0].args == {"title": "JS", "genres": []}
    assert result.role == "tool"
    assert result.tool_call_id == "call_1"
    assert json.loads(result.content) == {"success": True}


def test_format_issues():
    text = format_issues([ValidationIssue(path="$.title", message="Field required")])
    assert text == "- $.title: Field required"


def test_transcript_renders_calls():
    transcript = messages_to_transcript(tool_call_messages({"a": 1}, "writeOutput"))
    assert "<ASSISTANT-MSG>" in transcript
    assert "<TOOL_NAME>writeOutput</TOOL_NAME>" in transcript
