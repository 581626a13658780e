"""Prompts used by the object generator itself.

The caller supplies the task prompt. These templates only wrap it:

  JSON_MODE_INSTRUCTION  → appended in json mode, carries the target schema
  CORRECTION_USER        → sent after an invalid output, lists the problems
  FEEDBACK_ROLE          → default critic prompt for the feedback loop
  FEEDBACK_TASK          → what the critic is reviewing
  FEEDBACK_APPLY_USER    → hands the critic's feedback back to the generator

The templates are filled with str.format(), so literal braces are doubled.
"""


JSON_MODE_INSTRUCTION = """<OUTPUT_FORMAT>
Respond with a single JSON value that conforms to this JSON Schema.
Output ONLY the JSON. No markdown fences, no commentary before or after it.

{schema}
</OUTPUT_FORMAT>"""


CORRECTION_USER = """Your previous output did not match the required schema.

<PREVIOUS_OUTPUT>
{previous_output}
</PREVIOUS_OUTPUT>

<VALIDATION_ERRORS>
{errors}
</VALIDATION_ERRORS>

{instructions}"""


CORRECTION_TOOL_INSTRUCTIONS = (
    "Call `{function_name}` again with corrected arguments. "
    "Keep everything that was already valid."
)

CORRECTION_JSON_INSTRUCTIONS = (
    "Respond again with the corrected JSON only. "
    "Keep everything that was already valid."
)


FEEDBACK_ROLE = """<YOUR_ROLE>
You are a critical thinker and feedback provider, helping another AI improve its response.

Give clear, concise and actionable feedback.

IF NO FEEDBACK IS NEEDED, set `feedback_needed` to false and leave `feedback` null.

<CRITICAL_NOTES>
THE AI IS FORCED TO ANSWER BY CALLING A TOOL.
Do NOT give feedback about whether it should use a tool. It is required to.
</CRITICAL_NOTES>
</YOUR_ROLE>"""


# Appended after the role prompt (default or caller-supplied).
FEEDBACK_TASK = """<THE_AI_TASK>
  <THE_AI_PROMPT>
{task_prompt}
  </THE_AI_PROMPT>
  <THE_MESSAGE_HISTORY description="The message history the AI saw to produce this result.">
{transcript}
  </THE_MESSAGE_HISTORY>
  <TOOL isRequired="true">
    <TOOL_NAME>{function_name}</TOOL_NAME>
    <TOOL_DESCRIPTION>{function_description}</TOOL_DESCRIPTION>
    <TOOL_PARAMETERS>{schema}</TOOL_PARAMETERS>
  </TOOL>
</THE_AI_TASK>"""


FEEDBACK_APPLY_USER = """A reviewer looked at your last output and gave this feedback:

<FEEDBACK>
{feedback}
</FEEDBACK>

Produce the output again, applying the feedback."""
