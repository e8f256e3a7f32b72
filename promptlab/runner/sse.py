"""text/event-stream framing for gateway events."""

import json
from contextlib import aclosing
from typing import AsyncGenerator, AsyncIterator

from promptlab.models.base import DoneEvent, ErrorEvent, StreamEvent, TokenEvent, is_terminal

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def format_sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def event_payload(event: StreamEvent) -> dict:
    if isinstance(event, TokenEvent):
        return {"token": event.text}
    if isinstance(event, DoneEvent):
        return {"done": True, "responseId": event.response_id}
    if isinstance(event, ErrorEvent):
        return {"error": event.message}
    raise TypeError(f"Not a stream event: {event!r}")


async def sse_events(events: AsyncGenerator[StreamEvent, None]) -> AsyncIterator[str]:
    """Frame each event; a failure mid-stream becomes a final error frame.

    Closing this generator (client disconnect) closes ``events`` as well.
    """
    try:
        async with aclosing(events) as stream:
            async for event in stream:
                yield format_sse(event_payload(event))
                if is_terminal(event):
                    return
    except Exception as e:
        yield format_sse({"error": str(e)})
