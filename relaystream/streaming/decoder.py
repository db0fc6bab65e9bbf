"""
relaystream - Event Decoder

Turns the lines of a Server-Sent Events body into typed ProtocolEvents.

Only `data:` lines are interpreted; `event:` lines, comments, blank lines
and the `[DONE]` sentinel are skipped. Each payload is a JSON object whose
`type` selects the event:

    message_start        -> SessionStarted (+ UsageUpdate)
    content_block_start  -> opens a tool_use block
    content_block_delta  -> TextDelta, or tool input fragment
    content_block_stop   -> closes a tool_use block
    message_delta        -> UsageUpdate and/or StopReason
    message_stop         -> SessionComplete, or ToolInvocation
    error                -> ProtocolError

Malformed payloads are logged and skipped; they never end the stream.
"""

from typing import AsyncIterable, AsyncIterator, Iterable, Iterator, List, Optional

from pydantic import ValidationError

from ..core.errors import make_error
from ..observability.logging import get_logger
from .events import (
    ProtocolError,
    ProtocolEvent,
    SessionComplete,
    SessionStarted,
    StopReason,
    TextDelta,
    ToolInvocation,
    UsageUpdate,
)
from .tool_calls import ToolCallStreamTracker
from .wire import WireEvent


logger = get_logger(__name__)

DATA_PREFIX = "data:"
END_SENTINEL = "[DONE]"

# "session_start" is accepted as an alias of the API's message_start
START_EVENT_TYPES = {"message_start", "session_start"}


class EventDecoder:
    """
    Stateful decoder for one response body.

    The only state is the text produced so far (for TextDelta.accumulated)
    and any open tool_use blocks.
    """

    def __init__(self):
        self._text = ""
        self._tools = ToolCallStreamTracker()

    @property
    def current_text(self) -> str:
        return self._text

    @property
    def tool_use_in_progress(self) -> bool:
        """True once a tool_use block has started and not yet been delivered."""
        return self._tools.has_calls

    def feed(self, line: str) -> List[ProtocolEvent]:
        """Decode one line; returns zero or more events."""
        payload = self._extract_payload(line)
        if payload is None:
            return []

        try:
            event = WireEvent.model_validate_json(payload)
        except ValidationError as e:
            logger.warning(
                "Failed to parse SSE payload",
                extra={"payload_preview": payload[:200], "error": str(e.errors()[:1])},
            )
            return []

        return self._translate(event)

    def decode(self, lines: Iterable[str]) -> Iterator[ProtocolEvent]:
        """Lazily decode an iterable of lines."""
        for line in lines:
            yield from self.feed(line)

    async def decode_async(self, lines: AsyncIterable[str]) -> AsyncIterator[ProtocolEvent]:
        """Lazily decode an async iterable of lines."""
        async for line in lines:
            for event in self.feed(line):
                yield event

    # ============================================================
    # Private helpers
    # ============================================================

    @staticmethod
    def _extract_payload(line: str) -> Optional[str]:
        stripped = line.strip()
        if not stripped.startswith(DATA_PREFIX):
            return None
        data = stripped[len(DATA_PREFIX):].strip()
        if not data or data == END_SENTINEL:
            return None
        return data

    def _translate(self, event: WireEvent) -> List[ProtocolEvent]:
        event_type = event.type

        if event_type in START_EVENT_TYPES:
            message = event.message
            events: List[ProtocolEvent] = [SessionStarted(message.id if message else "")]
            if message and message.usage:
                events.append(UsageUpdate(message.usage.to_usage()))
            return events

        if event_type == "content_block_start":
            block = event.content_block
            if block is not None and block.type == "tool_use":
                self._tools.start(event.index or 0, block.id, block.name, block.input)
            return []

        if event_type == "content_block_delta":
            return self._translate_delta(event)

        if event_type == "content_block_stop":
            self._tools.stop(event.index or 0)
            return []

        if event_type == "message_delta":
            events = []
            if event.usage:
                events.append(UsageUpdate(event.usage.to_usage()))
            if event.delta and event.delta.stop_reason:
                events.append(StopReason(event.delta.stop_reason))
            return events

        if event_type == "message_stop":
            return [self._finish()]

        if event_type == "error":
            error = event.error
            return [ProtocolError(
                make_error(
                    error.type if error else "api_error",
                    error.message if error else "Unknown streaming error",
                ),
                during_tool_use=self.tool_use_in_progress,
            )]

        # ping and anything newer than this client
        return []

    def _translate_delta(self, event: WireEvent) -> List[ProtocolEvent]:
        delta = event.delta
        if delta is None:
            return []

        if delta.type == "input_json_delta":
            if not self._tools.append(event.index or 0, delta.partial_json or ""):
                logger.warning("Tool input for unknown content block", extra={"index": event.index})
            return []

        if delta.text is not None and delta.type in (None, "text_delta"):
            self._text += delta.text
            return [TextDelta(delta.text, self._text)]

        return []

    def _finish(self) -> ProtocolEvent:
        if not self._tools.has_calls:
            return SessionComplete(self._text)

        try:
            calls = self._tools.to_calls()
        except ValueError as e:
            return ProtocolError(make_error("api_error", f"Malformed tool call: {e}"))
        return ToolInvocation(text_so_far=self._text, calls=calls)
