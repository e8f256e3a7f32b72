"""OpenAI chat-completions adapter. Streamed usage arrives on the final chunk."""

import time
from typing import AsyncIterator, Optional

import openai
from openai import AsyncOpenAI

from promptlab.config import OPENAI, MODEL_CATALOG
from promptlab.errors import UpstreamError, UpstreamTimeout
from promptlab.models.base import (
    DoneEvent, GenerationResult, ProviderAdapter, ProviderRequest, StreamEvent, TokenEvent,
)
from promptlab.runner.metrics import estimate_cost


def _translate_error(e: openai.OpenAIError) -> UpstreamError:
    if isinstance(e, openai.APITimeoutError):
        return UpstreamTimeout(provider=OPENAI)
    if isinstance(e, openai.APIStatusError):
        return UpstreamError(e.message, provider=OPENAI, status_code=e.status_code)
    return UpstreamError(str(e), provider=OPENAI)


class OpenAIAdapter(ProviderAdapter):
    provider = OPENAI

    def __init__(self, client: Optional[AsyncOpenAI] = None, timeout: Optional[float] = None):
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout

    def _get_client(self, request: ProviderRequest) -> AsyncOpenAI:
        if self._client is None:
            kwargs: dict = {"api_key": request.api_key}
            if self.timeout is not None:
                kwargs["timeout"] = self.timeout
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    @staticmethod
    def _messages(request: ProviderRequest) -> list[dict]:
        messages = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.content})
        return messages

    async def generate(self, request: ProviderRequest) -> GenerationResult:
        client = self._get_client(request)
        start_time = time.perf_counter()

        try:
            response = await client.chat.completions.create(
                model=request.model,
                messages=self._messages(request),
            )
        except openai.OpenAIError as e:
            raise _translate_error(e)

        output = ""
        if response.choices:
            output = response.choices[0].message.content or ""
        usage = response.usage
        input_tokens = (usage.prompt_tokens or 0) if usage else 0
        output_tokens = (usage.completion_tokens or 0) if usage else 0

        return GenerationResult(
            output_text=output,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_estimate=estimate_cost(request.model, input_tokens, output_tokens, provider=OPENAI),
            elapsed_seconds=time.perf_counter() - start_time,
        )

    async def generate_stream(self, request: ProviderRequest) -> AsyncIterator[StreamEvent]:
        client = self._get_client(request)
        input_tokens = 0
        output_tokens = 0

        try:
            stream = await client.chat.completions.create(
                model=request.model,
                messages=self._messages(request),
                stream=True,
                stream_options={"include_usage": True},
            )
            async with stream:
                async for chunk in stream:
                    if chunk.choices:
                        delta = chunk.choices[0].delta.content
                        if delta:
                            yield TokenEvent(delta)
                    # Only the terminal chunk carries usage when include_usage is set
                    if chunk.usage:
                        input_tokens = chunk.usage.prompt_tokens or 0
                        output_tokens = chunk.usage.completion_tokens or 0
        except openai.OpenAIError as e:
            raise _translate_error(e)

        yield DoneEvent(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_estimate=estimate_cost(request.model, input_tokens, output_tokens, provider=OPENAI),
        )

    async def list_models(self) -> list[dict]:
        return [{"name": name} for name in MODEL_CATALOG[OPENAI]]

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.close()
            self._client = None
