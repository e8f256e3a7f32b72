"""Shared fixtures: temp database, encryption secret, and a scripted provider adapter."""

import itertools
from typing import Optional

import pytest

from promptlab.errors import UpstreamError
from promptlab.models.base import (
    DoneEvent, GenerationResult, ProviderAdapter, ProviderRequest, TokenEvent,
)
from promptlab.runner.metrics import set_price_table
from promptlab.storage.repository import Repository, initialize_schema

TEST_SECRET = "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"


@pytest.fixture(autouse=True)
def test_env(monkeypatch, tmp_path):
    """Deterministic environment: fixed key material, temp DB, built-in prices."""
    monkeypatch.setenv("ENCRYPTION_SECRET", TEST_SECRET)
    monkeypatch.setenv("PROMPTLAB_DB", str(tmp_path / "promptlab.db"))
    monkeypatch.delenv("PROMPTLAB_PRICING", raising=False)
    set_price_table(None)
    yield
    set_price_table(None)


@pytest.fixture
def repository(tmp_path):
    db_path = str(tmp_path / "promptlab.db")
    initialize_schema(db_path)
    return Repository(db_path)


@pytest.fixture
def prompt(repository):
    return repository.create_prompt(
        title="Greeting",
        content="Say hello to {{name}}",
        system_prompt="You are {{persona}}.",
    )


def fake_clock(step: float = 0.5):
    ticks = itertools.count(start=100.0, step=step)
    return lambda: next(ticks)


class ScriptedAdapter(ProviderAdapter):
    """Adapter double that replays a fixed token script.

    ``fail_at`` raises UpstreamError after that many tokens have streamed
    (or immediately in ``generate``). ``fail_when`` raises for any request
    whose content contains the given text.
    """

    def __init__(
        self,
        provider: str = "ollama",
        tokens: tuple = ("Hello", ", ", "world"),
        input_tokens: int = 7,
        output_tokens: int = 3,
        cost: Optional[float] = None,
        fail_at: Optional[int] = None,
        fail_when: Optional[str] = None,
        error: Optional[Exception] = None,
    ):
        self.provider = provider
        self.tokens = list(tokens)
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.cost = cost
        self.fail_at = fail_at
        self.fail_when = fail_when
        self.error = error
        self.requests: list[ProviderRequest] = []
        self.closed = False
        self.stream_released = False

    def _should_fail(self, request: ProviderRequest) -> bool:
        return self.fail_when is not None and self.fail_when in request.content

    def _error(self) -> Exception:
        return self.error or UpstreamError("upstream exploded", provider=self.provider, status_code=500)

    async def generate(self, request: ProviderRequest) -> GenerationResult:
        self.requests.append(request)
        if self.fail_at is not None or self._should_fail(request):
            raise self._error()
        return GenerationResult(
            output_text="".join(self.tokens),
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            cost_estimate=self.cost,
        )

    async def generate_stream(self, request: ProviderRequest):
        self.requests.append(request)
        try:
            if self._should_fail(request):
                raise self._error()
            for i, token in enumerate(self.tokens):
                if self.fail_at is not None and i == self.fail_at:
                    raise self._error()
                yield TokenEvent(token)
            yield DoneEvent(self.input_tokens, self.output_tokens, self.cost)
        finally:
            self.stream_released = True

    async def list_models(self) -> list[dict]:
        return [{"name": "scripted"}]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def scripted_adapter():
    return ScriptedAdapter()
