"""
relaystream - Protocol Events

Typed events produced by the EventDecoder and relayed by a StreamingSession.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from ..core.errors import StreamApiError
from ..core.models import Usage


@dataclass(frozen=True)
class ToolCall:
    """A completed tool_use block."""
    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SessionStarted:
    message_id: str


@dataclass(frozen=True)
class TextDelta:
    chunk: str
    accumulated: str


@dataclass(frozen=True)
class UsageUpdate:
    usage: Usage


@dataclass(frozen=True)
class StopReason:
    reason: str


@dataclass(frozen=True)
class SessionComplete:
    full_text: str
    usage: Optional[Usage] = None


@dataclass(frozen=True)
class ToolInvocation:
    text_so_far: str
    calls: List[ToolCall]
    usage: Optional[Usage] = None


@dataclass(frozen=True)
class ProtocolError:
    """
    A failure reported by the server or detected by the session.

    `during_tool_use` is set when the failure cut through a tool_use block,
    which the resilient client refuses to resume.
    """
    error: StreamApiError
    during_tool_use: bool = False

    @property
    def kind(self) -> str:
        return self.error.type

    @property
    def message(self) -> str:
        return self.error.message

    @property
    def retry_after_seconds(self) -> Optional[int]:
        return self.error.retry_after_seconds


ProtocolEvent = Union[
    SessionStarted,
    TextDelta,
    UsageUpdate,
    StopReason,
    SessionComplete,
    ToolInvocation,
    ProtocolError,
]

TERMINAL_EVENTS = (SessionComplete, ToolInvocation, ProtocolError)


def is_terminal(event: ProtocolEvent) -> bool:
    """Check whether an event ends its session."""
    return isinstance(event, TERMINAL_EVENTS)
