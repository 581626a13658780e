"""Chat driver: one provider round trip, then function-call validation.

  driver = ChatDriver(context)
  response = await driver.run(ChatRequest(
      model="openai:gpt-4o-mini",
      messages=[ChatMessage(role="user", content="...")],
      functions=[FunctionDeclaration(name="writeOutput", parameters=BookOutput)],
      function_call="writeOutput",
      num_choices=3,
  ))
  # response.choices   → only choices whose calls validated
  # response.dropped   → why the others were removed

Transport failures (provider exceptions, timeouts) are retried by
call_with_retries() and become TransportFailure once retries run out.
Cancellation is never swallowed.
"""

import asyncio
import time
from typing import Optional

from structgen.llm.context import GenerationContext
from structgen.llm.errors import GenerationError, TransportFailure
from structgen.llm.response_validator import validate_response
from structgen.schemas.generation import ProviderRequest
from structgen.schemas.messages import ModelResponse
from structgen.utils.logging import log, get_logger

MODULE = "llm.driver"
logger = get_logger()


# A chat request has exactly the shape a provider receives.
ChatRequest = ProviderRequest


async def call_with_retries(
    context: GenerationContext,
    request: ProviderRequest,
    *,
    timeout_s: Optional[float] = None,
    activity_name: str = "chat",
) -> ModelResponse:
    """Call the request's provider, retrying transport errors.

    Raises:
        TransportFailure: when every attempt failed or timed out
        ModelResolutionError: when no provider serves the model
    """
    provider = context.provider_for(request.model)
    timeout = timeout_s or context.timeout_s
    attempts = context.max_transport_retries + 1
    last_error: Optional[str] = None

    for attempt in range(attempts):
        _t0 = time.monotonic()
        try:
            response = await asyncio.wait_for(provider.complete(request), timeout=timeout)
        except asyncio.TimeoutError:
            last_error = f"Timed out after {timeout}s"
        except GenerationError:
            raise
        except Exception as e:
            last_error = f"{type(e).__name__}: {e}"
        else:
            log.debug(logger, MODULE, "provider_response",
                      f"Provider call complete for {activity_name}",
                      model=request.model, attempt=attempt + 1,
                      latency_ms=int((time.monotonic() - _t0) * 1000),
                      choices=len(response.choices))
            return response

        log.warning(logger, MODULE, "provider_failed",
                    f"Provider call failed for {activity_name}",
                    model=request.model, attempt=attempt + 1,
                    attempts=attempts, error=last_error)
        if attempt < attempts - 1:
            await asyncio.sleep(context.retry_delay_s)

    log.error(logger, MODULE, "transport_failed",
              f"Provider unavailable for {activity_name}",
              error=last_error, model=request.model, attempts=attempts)
    raise TransportFailure(
        f"Provider call for {activity_name} failed after {attempts} attempts",
        model=request.model,
        attempts=attempts,
        last_error=last_error,
    )


class ChatDriver:
    """Runs chat requests and filters out choices with untrustworthy calls."""

    def __init__(self, context: GenerationContext):
        self.context = context

    async def run(
        self,
        request: ChatRequest,
        *,
        timeout_s: Optional[float] = None,
        activity_name: str = "chat",
    ) -> ModelResponse:
        response = await call_with_retries(
            self.context, request,
            timeout_s=timeout_s, activity_name=activity_name,
        )
        return validate_response(response, request.functions)
