"""Shared fixtures: a scripted provider behind a GenerationContext."""

import pytest
from pydantic import BaseModel, Field

from fakes import FakeProvider
from structgen.llm.context import GenerationContext


class BookOutput(BaseModel):
    title: str
    genres: list[str] = Field(default_factory=list)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def context(provider):
    return GenerationContext(
        providers={"fake": provider},
        default_models=["fake:model"],
        timeout_s=5,
        max_transport_retries=1,
        retry_delay_s=0,
    )


@pytest.fixture
def book_schema():
    return BookOutput
