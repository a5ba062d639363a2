"""Client-side decoding of the chat event stream.

``SSEParser`` is incremental: feed it text as it arrives (chunks may split
lines or events anywhere) and it returns every event completed so far.
"""

import json
from collections.abc import AsyncIterator

import httpx
from pydantic import TypeAdapter, ValidationError

from docintake.core.logging import get_logger
from docintake.services.chat_coordinator import ChatEvent

logger = get_logger(__name__)

_EVENT_ADAPTER: TypeAdapter = TypeAdapter(ChatEvent)


class SSEParser:
    """Turns ``event:``/``data:`` framed text back into typed chat events."""

    def __init__(self):
        self._buffer = ""
        self._event_type: str | None = None
        self._data_lines: list[str] = []

    def feed(self, text: str) -> list[ChatEvent]:
        self._buffer += text.replace("\r\n", "\n")
        events = []
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            event = self._line(line)
            if event is not None:
                events.append(event)
        return events

    def close(self) -> list[ChatEvent]:
        """Flush a final event that was not followed by a blank line."""
        events = self.feed("\n") if self._buffer else []
        event = self._dispatch()
        if event is not None:
            events.append(event)
        return events

    def _line(self, line: str) -> ChatEvent | None:
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None  # comment / keep-alive
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._event_type = value
        elif field == "data":
            self._data_lines.append(value)
        return None

    def _dispatch(self) -> ChatEvent | None:
        event_type, data_lines = self._event_type, self._data_lines
        self._event_type, self._data_lines = None, []
        if not data_lines:
            return None

        try:
            payload = json.loads("\n".join(data_lines))
        except json.JSONDecodeError as e:
            logger.warning(f"Skipping malformed stream event {event_type!r}: {e}")
            return None
        if event_type and isinstance(payload, dict):
            payload.setdefault("type", event_type)

        try:
            return _EVENT_ADAPTER.validate_python(payload)
        except ValidationError as e:
            logger.warning(f"Skipping unrecognized stream event {event_type!r}: {e.error_count()} error(s)")
            return None


async def iter_chat_events(chunks: AsyncIterator[str]) -> AsyncIterator[ChatEvent]:
    """Decode an async stream of text chunks into chat events."""
    parser = SSEParser()
    async for chunk in chunks:
        for event in parser.feed(chunk):
            yield event
    for event in parser.close():
        yield event


async def stream_chat(
    client: httpx.AsyncClient,
    intake_id: str,
    content: str,
    client_token: str | None = None,
) -> AsyncIterator[ChatEvent]:
    """
    Post a chat message and yield the turn's events.

    Raises:
        httpx.HTTPStatusError: If the turn is rejected (e.g. 409 while awaiting the prior return)
    """
    async with client.stream(
        "POST",
        f"/v1/intakes/{intake_id}/chat",
        json={"content": content, "client_token": client_token},
    ) as response:
        if response.is_error:
            await response.aread()
            response.raise_for_status()
        async for event in iter_chat_events(response.aiter_text()):
            yield event
