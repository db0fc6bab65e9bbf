"""
relaystream - Resilient Results

Values surfaced by ResilientStreamingClient.stream_with_retry(). Exactly one
terminal value (Completed, Failed or ToolInvocationRequested) ends every call.
"""

from dataclasses import dataclass
from typing import List, Optional, Union

from ..core.errors import StreamApiError
from ..core.models import Usage
from ..streaming.events import ToolCall


@dataclass(frozen=True)
class Started:
    message_id: str
    is_retry: bool = False


@dataclass(frozen=True)
class Delta:
    """A text fragment; `accumulated` covers every attempt of the call."""
    chunk: str
    accumulated: str


@dataclass(frozen=True)
class WaitingForNetwork:
    attempt: int
    max_attempts: int
    accumulated_text: str
    approx_tokens: int


@dataclass(frozen=True)
class Retrying:
    attempt: int
    max_attempts: int
    backoff_ms: int


@dataclass(frozen=True)
class ToolInvocationRequested:
    text_so_far: str
    calls: List[ToolCall]
    usage: Optional[Usage] = None


@dataclass(frozen=True)
class Completed:
    full_text: str
    usage: Optional[Usage]
    total_retries: int


@dataclass(frozen=True)
class Failed:
    error: StreamApiError

    @property
    def type(self) -> str:
        return self.error.type

    @property
    def message(self) -> str:
        return self.error.message


ResilientResult = Union[
    Started,
    Delta,
    WaitingForNetwork,
    Retrying,
    ToolInvocationRequested,
    Completed,
    Failed,
]

TERMINAL_RESULTS = (Completed, Failed, ToolInvocationRequested)


def is_terminal_result(result: ResilientResult) -> bool:
    return isinstance(result, TERMINAL_RESULTS)
