"""JSON extraction from LLM responses and function-call arguments.

LLMs often wrap JSON in markdown code blocks, <think> tags, or preamble text.
This module extracts clean JSON from raw LLM output.

Two entry points:
  extract_json()              → raises JSONExtractionError (json-mode content)
  parse_function_arguments()  → never raises, returns FunctionArguments
"""

import json
import re
from typing import Any, Optional

from structgen.schemas.messages import FunctionArguments
from structgen.utils.logging import log, get_logger

MODULE = "llm.parser"
logger = get_logger()


class JSONExtractionError(Exception):
    """Raised when JSON cannot be extracted from LLM output."""

    def __init__(self, message: str, raw_output: str):
        super().__init__(message)
        self.raw_output = raw_output


def strip_think_tags(raw: str) -> tuple[str, Optional[str]]:
    """Strip <think>...</think> tags from reasoning model output.

    Returns:
        Tuple of (content_after_think, thinking_content). When no tags are
        present: (raw, None).
    """
    think_match = re.search(r"<think>(.*?)</think>", raw, re.DOTALL)
    if think_match:
        thinking = think_match.group(1)
        after = raw[think_match.end():].strip()
        return after, thinking
    return raw, None


def extract_json(raw: str) -> Any:
    """Extract JSON from LLM output, handling common wrapper formats.

    Handles:
    - Raw JSON: {"key": "value"}
    - Markdown blocks: ```json\\n{"key": "value"}\\n```
    - <think> tags: <think>...</think>{"key": "value"}
    - Preamble text: "Here is the result:\\n{"key": "value"}"
    - Trailing text: {"key": "value"}\\nLet me know if you need anything else.

    Raises:
        JSONExtractionError: If no valid JSON can be extracted
    """
    original_raw = raw
    raw = raw.strip()

    raw, thinking = strip_think_tags(raw)
    if thinking:
        log.debug(logger, MODULE, "stripped_think", "Stripped <think> tags from response")

    # Direct parse (ideal case)
    try:
        return json.loads(raw, strict=False)
    except json.JSONDecodeError:
        pass

    # Markdown code block: ```json\n...\n``` or just ```\n...\n```
    code_block_match = re.search(
        r'```(?:json)?\s*\n?(.*?)\n?```',
        raw,
        re.DOTALL | re.IGNORECASE
    )
    if code_block_match:
        try:
            return json.loads(code_block_match.group(1).strip(), strict=False)
        except json.JSONDecodeError:
            pass

    # Outermost balanced object, then array
    for open_char, close_char in (("{", "}"), ("[", "]")):
        start = raw.find(open_char)
        if start == -1:
            continue
        candidate = _extract_balanced(raw[start:], open_char, close_char)
        if candidate:
            try:
                return json.loads(candidate, strict=False)
            except json.JSONDecodeError:
                pass

    # <think> tags ate everything: scan the original for the first object
    if thinking and not raw:
        decoder = json.JSONDecoder(strict=False)
        for i, char in enumerate(original_raw):
            if char == '{':
                try:
                    parsed_candidate, _ = decoder.raw_decode(original_raw[i:])
                    if isinstance(parsed_candidate, dict):
                        return parsed_candidate
                except json.JSONDecodeError:
                    continue

    raise JSONExtractionError(
        f"Could not extract valid JSON from LLM output ({len(raw)} chars)",
        raw_output=original_raw
    )


def _extract_balanced(text: str, open_char: str, close_char: str) -> Optional[str]:
    """Extract a balanced bracket expression from the start of text.

    Returns:
        The balanced expression including brackets, or None if unbalanced
    """
    if not text or text[0] != open_char:
        return None

    depth = 0
    in_string = False
    escape_next = False

    for i, char in enumerate(text):
        if escape_next:
            escape_next = False
            continue

        if char == '\\' and in_string:
            escape_next = True
            continue

        if char == '"':
            in_string = not in_string
            continue

        if in_string:
            continue

        if char == open_char:
            depth += 1
        elif char == close_char:
            depth -= 1
            if depth == 0:
                return text[:i + 1]

    return None


def safe_extract_json(raw: str, fallback: Any = None) -> tuple[Any, Optional[str]]:
    """Extract JSON with fallback on failure.

    Returns:
        (parsed_json, None) on success, (fallback, error_message) on failure.
    """
    try:
        return extract_json(raw), None
    except (JSONExtractionError, RecursionError) as e:
        log.warning(logger, MODULE, "extract_failed",
                    "Failed to extract JSON from LLM output",
                    error=str(e), raw_length=len(raw))
        return fallback, str(e)


def parse_function_arguments(raw: Any) -> FunctionArguments:
    """Parse the serialized arguments of a function call.

    Never raises. On failure `parsed` is None and `parse_errors` says why;
    `raw` is always the verbatim input so the call can be audited later.

    Args:
        raw: Argument string from the provider. Providers that already
            decoded the arguments may pass a dict or list.
    """
    if raw is None:
        return FunctionArguments(raw="", parse_errors=["No arguments were provided"])

    if isinstance(raw, (dict, list)):
        try:
            return FunctionArguments(raw=json.dumps(raw), parsed=raw)
        except (TypeError, ValueError) as e:
            return FunctionArguments(raw=str(raw), parse_errors=[f"Arguments are not JSON-serializable: {e}"])

    if not isinstance(raw, str):
        raw = str(raw)

    if not raw.strip():
        return FunctionArguments(raw=raw, parse_errors=["Arguments string is empty"])

    try:
        return FunctionArguments(raw=raw, parsed=json.loads(raw, strict=False))
    except (json.JSONDecodeError, RecursionError) as e:
        first_error = str(e)

    # Models sometimes fence or annotate the arguments; try the lenient path.
    parsed, extract_error = safe_extract_json(raw)
    if extract_error is None:
        log.debug(logger, MODULE, "arguments_recovered",
                  "Recovered function arguments from wrapped output",
                  raw_length=len(raw))
        return FunctionArguments(raw=raw, parsed=parsed)

    return FunctionArguments(raw=raw, parse_errors=[first_error, extract_error])
