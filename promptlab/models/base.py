"""Abstract ProviderAdapter plus the request, result, and stream event types."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Union


@dataclass
class ProviderRequest:
    """Shared request shape every adapter accepts."""
    model: str
    content: str
    system_prompt: Optional[str] = None
    api_key: Optional[str] = None       # None for the local daemon


@dataclass
class GenerationResult:
    """Captures one completed (non-streamed or fully drained) generation."""
    output_text: str
    input_tokens: int
    output_tokens: int
    cost_estimate: Optional[float]      # None for local models
    elapsed_seconds: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class TokenEvent:
    text: str


@dataclass(frozen=True)
class DoneEvent:
    input_tokens: int
    output_tokens: int
    cost_estimate: Optional[float]
    response_id: Optional[str] = None   # set by the gateway once persisted


@dataclass(frozen=True)
class ErrorEvent:
    message: str


StreamEvent = Union[TokenEvent, DoneEvent, ErrorEvent]


def is_terminal(event: StreamEvent) -> bool:
    return isinstance(event, (DoneEvent, ErrorEvent))


class ProviderAdapter(ABC):
    """Interface every provider backend must implement."""

    provider: str = ""

    @abstractmethod
    async def generate(self, request: ProviderRequest) -> GenerationResult:
        """Single request/response call."""
        ...

    @abstractmethod
    def generate_stream(self, request: ProviderRequest) -> AsyncIterator[StreamEvent]:
        """Lazy, single-pass event stream.

        Yields zero or more TokenEvent followed by exactly one DoneEvent.
        Failures are raised, not yielded; the gateway turns them into ErrorEvent.
        Closing the iterator early releases the upstream connection.
        """
        ...

    @abstractmethod
    async def list_models(self) -> list[dict]:
        ...

    async def close(self) -> None:
        pass
