"""
Generation gateway: validate, resolve the key, call the provider, persist once.

One gateway instance is shared; every call keeps its own state, so concurrent
generations never touch each other's buffers.
"""

import asyncio
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum, auto
from typing import AsyncIterator, Callable, Optional

from promptlab.config import OLLAMA, PROVIDER_LABELS, PROVIDERS
from promptlab.credentials import CredentialResolver
from promptlab.errors import (
    CredentialMissingError, PersistenceError, PromptLabError, UpstreamError, ValidationError,
)
from promptlab.models.base import (
    DoneEvent, ErrorEvent, GenerationResult, ProviderAdapter, ProviderRequest,
    StreamEvent, TokenEvent,
)
from promptlab.models.registry import create_adapter
from promptlab.storage.models import StoredResponse

logger = logging.getLogger(__name__)


class GatewayState(Enum):
    IDLE = auto()
    CREDENTIAL_RESOLVED = auto()
    GENERATING = auto()
    PERSISTING = auto()
    COMPLETED = auto()
    FAILED = auto()


@dataclass
class GenerationRequest:
    prompt_id: str
    model: str
    content: str
    provider: str = OLLAMA
    system_prompt: Optional[str] = None
    stream: bool = False


def validate_provider(provider: str) -> None:
    if provider not in PROVIDERS:
        raise ValidationError(f"Unknown provider: {provider}. Available: {PROVIDERS}")


def validate_request(request: GenerationRequest) -> None:
    missing = [
        name for name, value in (
            ("promptId", request.prompt_id),
            ("model", request.model),
            ("content", request.content),
        )
        if not value
    ]
    if missing:
        raise ValidationError(f"{', '.join(missing)} required")
    validate_provider(request.provider)


class GenerationGateway:
    """Runs one generation per call and stores exactly one response on success."""

    def __init__(
        self,
        repository,
        resolver: Optional[CredentialResolver] = None,
        adapter_factory: Callable[[str], ProviderAdapter] = create_adapter,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.repository = repository
        self.resolver = resolver or CredentialResolver(repository)
        self.adapter_factory = adapter_factory
        self.clock = clock

    def _transition(self, request: GenerationRequest, state: GatewayState) -> GatewayState:
        logger.debug("generation %s/%s for prompt %s -> %s",
                     request.provider, request.model, request.prompt_id, state.name)
        return state

    async def resolve_credential(self, provider: str) -> Optional[str]:
        """Plaintext key for a cloud provider; None for the local daemon."""
        if provider == OLLAMA:
            return None
        secret = await asyncio.to_thread(self.resolver.resolve, provider)
        if not secret:
            raise CredentialMissingError(provider, PROVIDER_LABELS.get(provider))
        return secret

    async def _prepare(self, request: GenerationRequest) -> ProviderRequest:
        self._transition(request, GatewayState.IDLE)
        try:
            validate_request(request)
            api_key = await self.resolve_credential(request.provider)
        except PromptLabError:
            self._transition(request, GatewayState.FAILED)
            raise
        self._transition(request, GatewayState.CREDENTIAL_RESOLVED)
        return ProviderRequest(
            model=request.model,
            content=request.content,
            system_prompt=request.system_prompt,
            api_key=api_key,
        )

    async def _persist(
        self, request: GenerationRequest, result: GenerationResult
    ) -> StoredResponse:
        self._transition(request, GatewayState.PERSISTING)
        fields = {
            "prompt_id": request.prompt_id,
            "model_name": request.model,
            "content": result.output_text,
            "token_count": result.total_tokens,
            "execution_time": result.elapsed_seconds,
            "cost_estimate": result.cost_estimate,
            "source": request.provider,
        }
        try:
            stored = await asyncio.to_thread(self.repository.create_response, fields)
        except Exception as e:
            self._transition(request, GatewayState.FAILED)
            logger.error(
                "Generated response was not saved: prompt=%s provider=%s model=%s "
                "input_tokens=%d output_tokens=%d cost=%s elapsed=%.3fs chars=%d error=%s",
                request.prompt_id, request.provider, request.model,
                result.input_tokens, result.output_tokens, result.cost_estimate,
                result.elapsed_seconds, len(result.output_text), e,
            )
            raise PersistenceError(
                f"Response generated but could not be saved: {e}",
                result=result,
                provider=request.provider,
            ) from e
        self._transition(request, GatewayState.COMPLETED)
        logger.info(
            "Stored response %s: %s/%s tokens=%d cost=%s elapsed=%.2fs",
            stored.id, request.provider, request.model,
            result.total_tokens, result.cost_estimate, result.elapsed_seconds,
        )
        return stored

    async def run(self, request: GenerationRequest) -> StoredResponse:
        """Non-streaming generation.

        Raises:
            ValidationError, CredentialMissingError, DecryptionError: before any call
            UpstreamError: provider call failed; nothing is stored
            PersistenceError: generated but not stored
        """
        provider_request = await self._prepare(request)
        adapter = self.adapter_factory(request.provider)
        self._transition(request, GatewayState.GENERATING)

        start_time = self.clock()
        try:
            result = await adapter.generate(provider_request)
        except PromptLabError as e:
            self._transition(request, GatewayState.FAILED)
            logger.warning("Generation failed for %s/%s: %s", request.provider, request.model, e)
            raise
        except Exception as e:
            self._transition(request, GatewayState.FAILED)
            logger.warning("Generation failed for %s/%s: %s", request.provider, request.model, e)
            raise UpstreamError(str(e), provider=request.provider) from e
        finally:
            await adapter.close()

        result.elapsed_seconds = self.clock() - start_time
        return await self._persist(request, result)

    async def open_stream(self, request: GenerationRequest) -> AsyncIterator[StreamEvent]:
        """Validate and resolve the key, then return the event stream.

        Errors detected before the upstream call raise here. Once the stream
        is returned, every failure arrives as a terminal ErrorEvent instead.
        """
        provider_request = await self._prepare(request)
        return self._stream_events(request, provider_request)

    async def _stream_events(
        self, request: GenerationRequest, provider_request: ProviderRequest
    ) -> AsyncIterator[StreamEvent]:
        adapter = self.adapter_factory(request.provider)
        self._transition(request, GatewayState.GENERATING)
        start_time = self.clock()
        parts: list[str] = []
        done: Optional[DoneEvent] = None

        try:
            try:
                async with aclosing(adapter.generate_stream(provider_request)) as upstream:
                    async for event in upstream:
                        if isinstance(event, TokenEvent):
                            parts.append(event.text)
                            yield event
                        elif isinstance(event, DoneEvent):
                            done = event
                            break
                        elif isinstance(event, ErrorEvent):
                            self._transition(request, GatewayState.FAILED)
                            yield event
                            return
            except Exception as e:
                self._transition(request, GatewayState.FAILED)
                logger.warning("Stream failed for %s/%s: %s", request.provider, request.model, e)
                yield ErrorEvent(str(e))
                return
        finally:
            await adapter.close()

        if done is None:
            self._transition(request, GatewayState.FAILED)
            yield ErrorEvent("Stream ended before completion")
            return

        result = GenerationResult(
            output_text="".join(parts),
            input_tokens=done.input_tokens,
            output_tokens=done.output_tokens,
            cost_estimate=done.cost_estimate,
            elapsed_seconds=self.clock() - start_time,
        )
        try:
            stored = await self._persist(request, result)
        except PersistenceError as e:
            yield ErrorEvent(str(e))
            return

        yield DoneEvent(
            input_tokens=done.input_tokens,
            output_tokens=done.output_tokens,
            cost_estimate=done.cost_estimate,
            response_id=stored.id,
        )
