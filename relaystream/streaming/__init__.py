"""
relaystream Streaming Module

- SSE event decoding into typed protocol events
- Tool-use block accumulation
- Single streaming sessions with read and duration timeouts
"""

from .events import (
    ProtocolError,
    ProtocolEvent,
    SessionComplete,
    SessionStarted,
    StopReason,
    TextDelta,
    ToolCall,
    ToolInvocation,
    UsageUpdate,
    is_terminal,
)
from .decoder import EventDecoder
from .tool_calls import ToolCallAccumulator, ToolCallStreamTracker
from .session import StreamingSession

__all__ = [
    # Events
    "ProtocolError",
    "ProtocolEvent",
    "SessionComplete",
    "SessionStarted",
    "StopReason",
    "TextDelta",
    "ToolCall",
    "ToolInvocation",
    "UsageUpdate",
    "is_terminal",
    # Decoding
    "EventDecoder",
    "ToolCallAccumulator",
    "ToolCallStreamTracker",
    # Sessions
    "StreamingSession",
]
