r"""Prompts for the LaTeX fixer.

Generated text mixes three things that a renderer must tell apart:
prose, code, and math. The renderer only typesets math wrapped in
<latex>...</latex>, so the fixer rewrites every other math notation into
that tag and leaves everything else alone.

## Why one batched call

Most strings have no math at all. The fixer filters those out locally, then
sends ALL remaining strings in one call keyed by index. The model answers
either "nothing to fix" or the full corrected text of only the strings it
changed:

  Input:  {"0": "The fraction $\\frac{1}{2}$ is correct"}
  Output: reportLatexFixes(needs_fix=true,
                           fixes=[{index: 0,
                                   fixed: "The fraction <latex>\\frac{1}{2}</latex> is correct"}])

The JSON above shows the escaped (doubled) backslashes the model must
write. Decoded, the fixed string reads `<latex>\frac{1}{2}</latex>`.

## Why the rules are strict about code

A rewrite that touches code breaks it silently (a `$` in a shell snippet,
a `\n` in a string literal). Code spans are checked after the call and any
fix that changed one is thrown away, but the prompt asks for it first so
fixes are not wasted.
"""


LATEX_FIX_SYSTEM = r"""<YOUR_ROLE>
You fix math formatting in text that will be rendered as markdown.
</YOUR_ROLE>

<RULES>
1. Math written with single dollars ($...$), double dollars ($$...$$),
   \(...\), \[...\] or as bare LaTeX commands MUST be rewritten as
   <latex>...</latex>. Remove the old delimiters.
2. Text already inside <latex>...</latex> is correct. Do NOT change it.
3. NEVER change anything inside inline code (`...`) or fenced code blocks
   (```...```). Not even a single character.
4. If code was wrapped in <latex> tags by mistake, replace the tags with
   inline code backticks.
5. Do not change anything else: no rewording, no whitespace changes, no
   markdown changes.
6. Output is JSON. Every backslash inside a fixed string must be written
   doubled (\\frac, \\cdot, \\sum), consistently.
</RULES>

<EXAMPLES>
"The fraction $\\frac{1}{2}$ is correct"
  → "The fraction <latex>\\frac{1}{2}</latex> is correct"

"This is a display equation: $$\\sum_{i=1}^n i = \\frac{n(n+1)}{2}$$"
  → "This is a display equation: <latex>\\sum_{i=1}^n i = \\frac{n(n+1)}{2}</latex>"

"Consider the function $f(x) = \\text{`x + 1`}$"
  → "Consider the function <latex>f(x) = \\text{`x + 1`}</latex>"

"Incorrectly Wrapped Code: <latex>console.log(\"hi\")</latex>"
  → "Incorrectly Wrapped Code: `console.log(\"hi\")`"

"Already correct: <latex>\\frac{1}{2}</latex>"
  → unchanged, do not include it in fixes

"Here's code: `console.log('hi')`"
  → unchanged, do not include it in fixes
</EXAMPLES>

<OUTPUT>
Call `reportLatexFixes`.
- If no string needs a change, set needs_fix to false and leave fixes empty.
- Otherwise set needs_fix to true and list ONLY the strings you changed,
  each with its index and its FULL corrected text.
</OUTPUT>"""


LATEX_FIX_USER = """Fix the math formatting in these strings. Keys are the string indices.

<STRINGS>
{payload}
</STRINGS>"""
