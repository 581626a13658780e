"""LLM invocation package.

This package provides a unified interface for structured LLM output:

  from structgen.llm import gen_object, GenerationContext

  # Validated generation (preferred)
  result = await gen_object(
      BookOutput,
      prompt="Generate a book about JavaScript",
      model="openai:gpt-4o-mini",
      function_name="writeBook",
      max_feedback_loops=2,
  )

  # Lower level: one round trip with validated function calls
  response = await ChatDriver(context).run(request)

Architecture:
  client.py             → ModelProvider protocol, ChatOpenAI adapter, env config
  context.py            → GenerationContext: providers, model props, model picking
  parser.py             → JSON extraction and function-argument parsing
  validators.py         → Schema validation (pydantic models and JSON Schema)
  response_validator.py → Drops choices whose function calls can't be trusted
  driver.py             → Provider round trip with transport retries
  messages.py           → Message consolidation and history helpers
  invoker.py            → Generate-validate-correct-critique loop

The invoker layers its checks:
  1. PROMPT: Force a function call (tool mode) or embed the schema (json mode)
  2. PARSE: Function arguments or JSON content, handling markdown wrappers
  3. SCHEMA: Validate against the pydantic model or JSON Schema
  4. SEMANTIC: Optional caller-supplied validation
  5. FEEDBACK: Correct invalid output, then let a critic model review it
"""

# Providers and context
from structgen.llm.client import (
    get_llm,
    LangChainProvider,
    ModelProvider,
    split_model_id,
)
from structgen.llm.context import GenerationContext, default_context

# Generation
from structgen.llm.invoker import (
    gen_object,
    run_generation,
    stream_gen_object,
    ObjectStream,
)
from structgen.llm.driver import ChatDriver, ChatRequest, call_with_retries

# Errors
from structgen.llm.errors import (
    GenerationError,
    InvalidGenerationError,
    TransportFailure,
    EmptyResultError,
    ModelResolutionError,
)

# Parsing and validation
from structgen.llm.parser import (
    extract_json,
    safe_extract_json,
    parse_function_arguments,
    JSONExtractionError,
)
from structgen.llm.validators import validate, wrap_with_thinking
from structgen.llm.response_validator import validate_response

__all__ = [
    # Providers and context
    "get_llm",
    "LangChainProvider",
    "ModelProvider",
    "split_model_id",
    "GenerationContext",
    "default_context",
    # Generation
    "gen_object",
    "run_generation",
    "stream_gen_object",
    "ObjectStream",
    "ChatDriver",
    "ChatRequest",
    "call_with_retries",
    # Errors
    "GenerationError",
    "InvalidGenerationError",
    "TransportFailure",
    "EmptyResultError",
    "ModelResolutionError",
    # Parsing and validation
    "extract_json",
    "safe_extract_json",
    "parse_function_arguments",
    "JSONExtractionError",
    "validate",
    "wrap_with_thinking",
    "validate_response",
]
