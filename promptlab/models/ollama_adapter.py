"""Ollama adapter: /api/generate over newline-delimited JSON, /api/tags for the catalog."""

import asyncio
import codecs
import json
import logging
import time
from typing import AsyncIterator, Optional

import aiohttp

from promptlab.config import OLLAMA, MODEL_LIST_TIMEOUT_S, get_ollama_base_url
from promptlab.errors import ProviderUnavailable, UpstreamError, UpstreamTimeout
from promptlab.models.base import (
    DoneEvent, GenerationResult, ProviderAdapter, ProviderRequest, StreamEvent, TokenEvent,
)

logger = logging.getLogger(__name__)


class NDJSONDecoder:
    """Incremental newline-delimited JSON decoder.

    Bytes may arrive split anywhere, including inside a multi-byte character.
    An incomplete trailing line is held back until a later read completes it.
    Lines that are not JSON objects are skipped.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[dict]:
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return self._parse(lines)

    def flush(self) -> list[dict]:
        """Parse whatever is left once the upstream closes."""
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        return self._parse([remainder])

    @staticmethod
    def _parse(lines: list[str]) -> list[dict]:
        objects = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("Skipping malformed NDJSON line: %.80s", line)
                continue
            if isinstance(obj, dict):
                objects.append(obj)
            else:
                logger.debug("Skipping non-object NDJSON line: %.80s", line)
        return objects


class OllamaAdapter(ProviderAdapter):
    provider = OLLAMA

    def __init__(
        self,
        base_url: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or get_ollama_base_url()).rstrip("/")
        self.timeout = timeout     # no client deadline on generation by default
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def _payload(self, request: ProviderRequest, stream: bool) -> dict:
        payload = {
            "model": request.model,
            "prompt": request.content,
            "stream": stream,
        }
        if request.system_prompt:
            payload["system"] = request.system_prompt
        return payload

    def _request_kwargs(self) -> dict:
        if self.timeout is None:
            return {}
        return {"timeout": aiohttp.ClientTimeout(total=self.timeout)}

    async def _raise_for_status(self, resp) -> None:
        if resp.status >= 400:
            body = await resp.text()
            raise UpstreamError(f"Ollama error: {body}", provider=OLLAMA, status_code=resp.status)

    async def generate(self, request: ProviderRequest) -> GenerationResult:
        session = await self._get_session()
        start_time = time.perf_counter()

        try:
            async with session.post(
                f"{self.base_url}/api/generate",
                json=self._payload(request, stream=False),
                **self._request_kwargs(),
            ) as resp:
                await self._raise_for_status(resp)
                data = await resp.json()
        except asyncio.TimeoutError:
            raise UpstreamTimeout(provider=OLLAMA, timeout=self.timeout)
        except (aiohttp.ClientError, json.JSONDecodeError) as e:
            raise UpstreamError(f"Ollama request failed: {e}", provider=OLLAMA)

        return GenerationResult(
            output_text=data.get("response") or "",
            input_tokens=data.get("prompt_eval_count") or 0,
            output_tokens=data.get("eval_count") or 0,
            cost_estimate=None,
            elapsed_seconds=time.perf_counter() - start_time,
        )

    async def generate_stream(self, request: ProviderRequest) -> AsyncIterator[StreamEvent]:
        session = await self._get_session()
        decoder = NDJSONDecoder()

        try:
            async with session.post(
                f"{self.base_url}/api/generate",
                json=self._payload(request, stream=True),
                **self._request_kwargs(),
            ) as resp:
                await self._raise_for_status(resp)

                async for chunk in resp.content.iter_any():
                    for obj in decoder.feed(chunk):
                        token = obj.get("response")
                        if token:
                            yield TokenEvent(token)
                        if obj.get("done"):
                            yield _done_event(obj)
                            return

                for obj in decoder.flush():
                    token = obj.get("response")
                    if token:
                        yield TokenEvent(token)
                    if obj.get("done"):
                        yield _done_event(obj)
                        return
        except asyncio.TimeoutError:
            raise UpstreamTimeout(provider=OLLAMA, timeout=self.timeout)
        except aiohttp.ClientError as e:
            raise UpstreamError(f"Ollama stream failed: {e}", provider=OLLAMA)

        raise UpstreamError("Ollama stream ended without a done marker", provider=OLLAMA)

    async def list_models(self) -> list[dict]:
        """Query the daemon's installed models with a hard 5 second timeout."""
        session = await self._get_session()
        try:
            async with session.get(
                f"{self.base_url}/api/tags",
                timeout=aiohttp.ClientTimeout(total=MODEL_LIST_TIMEOUT_S),
            ) as resp:
                if resp.status >= 400:
                    raise ProviderUnavailable(
                        "Ollama not available", provider=OLLAMA, status_code=resp.status
                    )
                data = await resp.json()
        except asyncio.TimeoutError:
            raise ProviderUnavailable(
                f"Ollama did not answer within {MODEL_LIST_TIMEOUT_S:g}s", provider=OLLAMA
            )
        except (aiohttp.ClientError, json.JSONDecodeError) as e:
            raise ProviderUnavailable(f"Ollama not available: {e}", provider=OLLAMA)

        if not isinstance(data, dict):
            raise ProviderUnavailable("Ollama returned an unexpected model list", provider=OLLAMA)

        return [
            {
                "name": m.get("name"),
                "size": m.get("size"),
                "modified_at": m.get("modified_at"),
            }
            for m in data.get("models", [])
        ]

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()


def _done_event(obj: dict) -> DoneEvent:
    return DoneEvent(
        input_tokens=obj.get("prompt_eval_count") or 0,
        output_tokens=obj.get("eval_count") or 0,
        cost_estimate=None,
    )
