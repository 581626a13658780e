"""Run the LaTeX fixer over strings from the command line.

    python -m scripts.fix_latex 'The fraction $\\frac{1}{2}$ is correct'
    python -m scripts.fix_latex --model openai:gpt-4o-mini 'a $x^2$' 'b'

Uses the provider configuration from the environment (LLM_BASE_URL,
LLM_API_KEY, LATEX_FIX_MODEL, ...). Prints one JSON string per line.
"""

import argparse
import asyncio
import json

import structlog

from structgen.rewriters.latex import fix_latex
from structgen.utils.logging import configure_logging

logger = structlog.get_logger()


async def run(strings: list[str], model: str | None) -> None:
    logger.info("fix_latex", strings=len(strings), model=model or "default")

    result = await fix_latex(strings, model=model)

    for fixed in result.fixed_strings:
        print(json.dumps(fixed, ensure_ascii=False))
    logger.info("fix_latex.done", fixes_applied=result.fixes_applied)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Fix math formatting in strings")
    parser.add_argument("strings", nargs="+")
    parser.add_argument("--model", default=None, help="Model id, 'provider:modelTag'")
    args = parser.parse_args()

    configure_logging()
    asyncio.run(run(args.strings, args.model))
