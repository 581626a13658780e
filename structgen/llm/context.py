"""Request-scoped generation context: providers, model metadata, defaults.

A GenerationContext is passed explicitly to every call instead of living
in module globals. It is treated as read-only while a call runs.

Model selection picks exactly one model:
  1. model_picking  → rank the context's model_props (restricted to the
                      explicit candidates when there are any)
  2. model          → [model]
  3. models         → models
  4. otherwise      → context.default_models
Then the first candidate wins, after alias resolution.
"""

import math
from dataclasses import dataclass, field
from typing import Optional

from structgen.llm.client import (
    LLAMA_URL,
    DEFAULT_MODEL,
    LLM_MAX_TRANSPORT_RETRIES,
    LLM_TIMEOUT_S,
    LangChainProvider,
    ModelProvider,
    split_model_id,
)
from structgen.llm.errors import ModelResolutionError
from structgen.schemas.generation import ModelPicking, ModelProps
from structgen.utils.logging import log, get_logger

MODULE = "llm.context"
logger = get_logger()


@dataclass
class GenerationContext:
    providers: dict[str, ModelProvider]
    model_props: dict[str, ModelProps] = field(default_factory=dict)
    default_models: list[str] = field(default_factory=list)
    timeout_s: float = LLM_TIMEOUT_S
    max_transport_retries: int = LLM_MAX_TRANSPORT_RETRIES
    retry_delay_s: float = 1.0

    def provider_for(self, model_id: str) -> ModelProvider:
        provider_name, _ = _split(model_id)
        provider = self.providers.get(provider_name)
        if provider is None:
            raise ModelResolutionError(
                f"No provider registered for '{provider_name}' (model '{model_id}')"
            )
        return provider

    def resolve_alias(self, model_id: str) -> str:
        """'openai:fastest' → the model_props entry of provider openai tagged 'fastest'."""
        provider_name, tag = _split(model_id)
        if model_id in self.model_props:
            return model_id
        for name, props in sorted(self.model_props.items()):
            entry_provider, _ = _split(name)
            if entry_provider == provider_name and (
                model_id in props.alt_tags or tag in props.alt_tags
            ):
                return name
        return model_id

    def candidate_models(
        self,
        model: Optional[str] = None,
        models: Optional[list[str]] = None,
        model_picking: Optional[ModelPicking] = None,
    ) -> list[str]:
        if model and models:
            raise ModelResolutionError("Cannot specify both 'model' and 'models'")

        explicit = [model] if model else list(models or [])

        if model_picking:
            pool = {
                name: props for name, props in self.model_props.items()
                if not explicit or name in {self.resolve_alias(m) for m in explicit}
            }
            if pool:
                return _rank(pool, model_picking)

        if explicit:
            return explicit
        if self.default_models:
            return list(self.default_models)

        raise ModelResolutionError(
            "Model or models not provided and no default models set in context"
        )

    def pick_model(
        self,
        model: Optional[str] = None,
        models: Optional[list[str]] = None,
        model_picking: Optional[ModelPicking] = None,
    ) -> str:
        """Choose exactly one model id. Same inputs, same answer."""
        candidates = self.candidate_models(model, models, model_picking)
        chosen = self.resolve_alias(candidates[0])
        self.provider_for(chosen)
        log.debug(logger, MODULE, "model_picked", "Model selected",
                  model=chosen, candidates=len(candidates), picking=model_picking)
        return chosen


def _split(model_id: str) -> tuple[str, str]:
    try:
        return split_model_id(model_id)
    except ValueError as e:
        raise ModelResolutionError(str(e)) from e


def _rank(pool: dict[str, ModelProps], model_picking: ModelPicking) -> list[str]:
    """Best first. Ties are broken by name so the order is stable."""
    if model_picking == "speed":
        def score(p: ModelProps) -> float:
            return p.speed
    elif model_picking == "quality":
        def score(p: ModelProps) -> float:
            return p.quality
    elif model_picking == "balance":
        def score(p: ModelProps) -> float:
            return math.sqrt(max(p.quality, 0.0) * max(p.speed, 0.0))
    else:
        raise ModelResolutionError(f"Unknown model_picking: {model_picking}")

    return [name for name, _ in sorted(pool.items(), key=lambda kv: (-score(kv[1]), kv[0]))]


def default_context() -> GenerationContext:
    """Context wired from the environment: 'openai' and a local llama.cpp server."""
    return GenerationContext(
        providers={
            "openai": LangChainProvider(),
            "local": LangChainProvider(base_url=f"{LLAMA_URL}/v1", api_key="not-needed"),
        },
        default_models=[DEFAULT_MODEL],
    )
