"""Text span utilities for selective rewriting.

A string is split into spans, in the order they appear:

  code   → ```fenced``` blocks and `inline` code
  latex  → already tagged <latex>...</latex>
  math   → untagged math: $...$, $$...$$, \\(...\\), \\[...\\]
  text   → everything else

Code spans are never rewritten. The LaTeX fixer uses these helpers to
decide which strings are worth a model call at all, and to reject any
rewrite that touched code.
"""

import re
from dataclasses import dataclass
from typing import Literal, Optional

SpanKind = Literal["code", "latex", "math", "text"]

# Code is found first, ignoring $ signs, so math can never swallow a backtick.
# Inline code is a run of N backticks closed by a run of exactly N.
_CODE_RE = re.compile(
    r"(?<!`)```[\s\S]*?(?:```|\Z)"
    r"|(?<!`)(?P<ticks>`+)(?!`)[^\n]+?(?<!`)(?P=ticks)(?!`)"
)

# Only matched in the gaps between code spans.
_MARKUP_RE = re.compile(
    r"(?P<latex><latex>[\s\S]*?</latex>)"
    r"|(?P<math>\$\$[\s\S]+?\$\$|\$[^$\n]+?\$|\\\([\s\S]+?\\\)|\\\[[\s\S]+?\\\])"
)

_COMMAND_RE = re.compile(r"\\[A-Za-z]+")

# Programming constructs that do not belong inside <latex> tags.
_CODE_IN_LATEX_RE = re.compile(
    r"\b(?:const|let|var|function|return|def|print|import)\b"
    r"|console\.\w+|=>|;\s*$|\w+\(\)"
)


@dataclass(frozen=True)
class RewriteSpan:
    kind: SpanKind
    text: str
    start: int
    end: int


def split_spans(text: str) -> list[RewriteSpan]:
    """Split text into consecutive spans that cover it exactly."""
    spans: list[RewriteSpan] = []
    pos = 0
    for match in _CODE_RE.finditer(text):
        spans.extend(_markup_spans(text, pos, match.start()))
        spans.append(RewriteSpan("code", match.group(), match.start(), match.end()))
        pos = match.end()
    spans.extend(_markup_spans(text, pos, len(text)))
    return spans


def _markup_spans(text: str, start: int, end: int) -> list[RewriteSpan]:
    """latex, math and text spans covering text[start:end]."""
    spans: list[RewriteSpan] = []
    pos = start
    for match in _MARKUP_RE.finditer(text, start, end):
        if match.start() > pos:
            spans.append(RewriteSpan("text", text[pos:match.start()], pos, match.start()))
        spans.append(RewriteSpan(match.lastgroup, match.group(), match.start(), match.end()))
        pos = match.end()
    if pos < end:
        spans.append(RewriteSpan("text", text[pos:end], pos, end))
    return spans


def code_spans(text: str) -> list[str]:
    return [span.text for span in split_spans(text) if span.kind == "code"]


def latex_body(span: RewriteSpan) -> Optional[str]:
    """Inner text of a <latex> span, None for other kinds."""
    if span.kind != "latex":
        return None
    return span.text[len("<latex>"):-len("</latex>")]


def needs_latex_review(text: Optional[str]) -> bool:
    """Whether a string has anything the LaTeX fixer could change.

    True for untagged math, bare LaTeX commands in plain text, and
    <latex> tags that appear to wrap code. Content of code spans is ignored.
    """
    if not text:
        return False
    for span in split_spans(text):
        if span.kind == "math":
            return True
        if span.kind == "text" and _COMMAND_RE.search(span.text):
            return True
        if span.kind == "latex" and _CODE_IN_LATEX_RE.search(latex_body(span)):
            return True
    return False


def preserves_code_spans(original: str, fixed: str) -> bool:
    """Every code span of original appears in fixed, byte-identical and in order."""
    remaining = iter(code_spans(fixed))
    return all(
        any(candidate == span for candidate in remaining)
        for span in code_spans(original)
    )
