"""Anthropic messages adapter. Streamed usage comes from the final message."""

import time
from typing import AsyncIterator, Optional

import anthropic

from promptlab.config import ANTHROPIC, DEFAULT_MAX_TOKENS, MODEL_CATALOG
from promptlab.errors import UpstreamError, UpstreamTimeout
from promptlab.models.base import (
    DoneEvent, GenerationResult, ProviderAdapter, ProviderRequest, StreamEvent, TokenEvent,
)
from promptlab.runner.metrics import estimate_cost


def _translate_error(e: anthropic.AnthropicError) -> UpstreamError:
    if isinstance(e, anthropic.APITimeoutError):
        return UpstreamTimeout(provider=ANTHROPIC)
    if isinstance(e, anthropic.APIStatusError):
        return UpstreamError(e.message, provider=ANTHROPIC, status_code=e.status_code)
    return UpstreamError(str(e), provider=ANTHROPIC)


class AnthropicAdapter(ProviderAdapter):
    provider = ANTHROPIC

    def __init__(
        self,
        client: Optional[anthropic.AsyncAnthropic] = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout: Optional[float] = None,
    ):
        self._client = client
        self._owns_client = client is None
        self.max_tokens = max_tokens
        self.timeout = timeout

    def _get_client(self, request: ProviderRequest) -> anthropic.AsyncAnthropic:
        if self._client is None:
            kwargs: dict = {"api_key": request.api_key}
            if self.timeout is not None:
                kwargs["timeout"] = self.timeout
            self._client = anthropic.AsyncAnthropic(**kwargs)
        return self._client

    def _kwargs(self, request: ProviderRequest) -> dict:
        kwargs: dict = {
            "model": request.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": request.content}],
        }
        if request.system_prompt:
            kwargs["system"] = request.system_prompt
        return kwargs

    async def generate(self, request: ProviderRequest) -> GenerationResult:
        client = self._get_client(request)
        start_time = time.perf_counter()

        try:
            message = await client.messages.create(**self._kwargs(request))
        except anthropic.AnthropicError as e:
            raise _translate_error(e)

        output = next((b.text for b in message.content if b.type == "text"), "")
        input_tokens = message.usage.input_tokens
        output_tokens = message.usage.output_tokens

        return GenerationResult(
            output_text=output,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_estimate=estimate_cost(request.model, input_tokens, output_tokens, provider=ANTHROPIC),
            elapsed_seconds=time.perf_counter() - start_time,
        )

    async def generate_stream(self, request: ProviderRequest) -> AsyncIterator[StreamEvent]:
        client = self._get_client(request)

        try:
            async with client.messages.stream(**self._kwargs(request)) as stream:
                async for event in stream:
                    if event.type == "content_block_delta" and event.delta.type == "text_delta":
                        yield TokenEvent(event.delta.text)

                # Usage is only known once the event stream is exhausted
                final_message = await stream.get_final_message()
        except anthropic.AnthropicError as e:
            raise _translate_error(e)

        input_tokens = final_message.usage.input_tokens
        output_tokens = final_message.usage.output_tokens
        yield DoneEvent(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_estimate=estimate_cost(request.model, input_tokens, output_tokens, provider=ANTHROPIC),
        )

    async def list_models(self) -> list[dict]:
        return [{"name": name} for name in MODEL_CATALOG[ANTHROPIC]]

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.close()
            self._client = None
