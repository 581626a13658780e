"""Message assembly for generation calls.

consolidate_messages() folds the system text, any system messages from the
history and the prompt into ONE leading system message:

  <system>
  --------------------------------
  <system messages from history>
  --------------------------------
  <prompt>

followed by context messages and then the rest of the history in order.
"""

import json
import uuid
from typing import Any, Optional

from pydantic import BaseModel

from structgen.schemas.messages import ChatMessage, ToolCallRecord, ValidationIssue

SECTION_SEPARATOR = "\n\n--------------------------------\n\n"

# Some providers reject a conversation without a user turn.
START_MESSAGE = "[START]"


def consolidate_messages(
    *,
    prompt: Optional[str] = None,
    system: Optional[str] = None,
    messages: Optional[list[ChatMessage]] = None,
    ctx_messages: Optional[list[ChatMessage]] = None,
    requires_user_message: bool = False,
    system_message_disabled: bool = False,
) -> list[ChatMessage]:
    history = list(messages or [])
    system_from_history = [m.content for m in history if m.role == "system"]
    rest = [m for m in history if m.role != "system"]

    sections = [s for s in (system, *system_from_history, prompt) if s]
    system_text = SECTION_SEPARATOR.join(sections)

    if requires_user_message and not any(m.role == "user" for m in rest):
        rest.append(ChatMessage(role="user", content=START_MESSAGE))

    result: list[ChatMessage] = []
    if system_text.strip():
        if system_message_disabled:
            result.append(ChatMessage(
                role="user",
                content=f"<SYSTEM_PROMPT>\n{system_text}\n</SYSTEM_PROMPT>",
            ))
        else:
            result.append(ChatMessage(role="system", content=system_text))

    result.extend(ctx_messages or [])
    result.extend(rest)
    return result


def to_plain(value: Any) -> Any:
    """Model instances → dicts, so they can travel as tool-call args."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


def tool_call_messages(
    args: Any,
    tool_name: str,
    tool_call_id: Optional[str] = None,
) -> list[ChatMessage]:
    """An assistant tool call plus its (fake) successful tool result.

    Used to put a previous output back into the history so the next call
    can see what it produced.
    """
    call_id = tool_call_id or f"call_{uuid.uuid4().hex}"
    return [
        ChatMessage(
            role="assistant",
            tool_calls=[ToolCallRecord(id=call_id, name=tool_name, args=to_plain(args))],
        ),
        ChatMessage(
            role="tool",
            tool_call_id=call_id,
            name=tool_name,
            content=json.dumps({"success": True}),
        ),
    ]


def format_issues(issues: list[ValidationIssue]) -> str:
    return "\n".join(f"- {issue.path}: {issue.message}" for issue in issues)


def messages_to_transcript(messages: list[ChatMessage]) -> str:
    """Render a history as tagged text for a reviewer model."""
    parts = []
    for m in messages:
        tag = f"{m.role.upper()}-MSG"
        body = []
        if m.content:
            body.append(f"<TEXT>{m.content}</TEXT>")
        for tc in m.tool_calls:
            body.append(
                f"<TOOL_CALL><TOOL_NAME>{tc.name}</TOOL_NAME>"
                f"<ARGS>{json.dumps(tc.args, default=str)}</ARGS></TOOL_CALL>"
            )
        parts.append(f"<{tag}>\n" + "\n".join(body) + f"\n</{tag}>")
    return "\n".join(parts)
