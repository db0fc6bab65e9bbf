"""
relaystream - Retry State

Per-call bookkeeping for the resilient client: salvaged text, retry count,
backoff, and the message list / token budget of the next attempt.

A RetryState belongs to exactly one stream_with_retry() call and is thrown
away when the call ends.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..config import RetryConfig
from ..core.models import Message, Usage, merge_usage


CONTINUE_INSTRUCTION = (
    "The connection was lost. Continue EXACTLY where you left off. "
    "Do NOT repeat what you already wrote. Just continue."
)

# Only a tail of the salvaged text is compared against a continuation
OVERLAP_WINDOW = 500


def estimate_tokens(text: str) -> int:
    """Rough token count: four characters per token. The server reports the real figure."""
    return len(text) // 4


def calculate_backoff(
    attempt: int,
    initial_ms: int = 5000,
    max_ms: int = 10_000,
    exponential_base: int = 2,
) -> int:
    """
    Backoff for a 1-based retry attempt, capped at max_ms.

    Sequence with defaults: 5000, 10000, 10000, ...
    """
    delay = initial_ms * (exponential_base ** max(0, attempt - 1))
    return min(delay, max_ms)


def find_overlap(previous: str, continuation: str, window: int = OVERLAP_WINDOW) -> int:
    """Length of the longest prefix of `continuation` that `previous` already ends with."""
    longest = min(len(previous), len(continuation), window)
    for size in range(longest, 0, -1):
        if previous.endswith(continuation[:size]):
            return size
    return 0


@dataclass
class RetryState:
    """Mutable state of one resilient call."""
    original_messages: List[Message]
    original_max_tokens: int
    config: RetryConfig = field(default_factory=RetryConfig)

    committed_text: str = ""
    total_retries: int = 0
    usage: Optional[Usage] = None
    current_backoff_ms: int = field(init=False)
    current_messages: List[Message] = field(init=False)
    current_max_tokens: int = field(init=False)

    def __post_init__(self):
        self.original_messages = list(self.original_messages)
        self.current_backoff_ms = self.config.initial_backoff_ms
        self.current_messages = list(self.original_messages)
        self.current_max_tokens = self.original_max_tokens

    @classmethod
    def start(cls, messages: Sequence[Message], max_tokens: int, config: RetryConfig) -> "RetryState":
        return cls(original_messages=list(messages), original_max_tokens=max_tokens, config=config)

    @property
    def accumulated_chars(self) -> int:
        return len(self.committed_text)

    @property
    def is_continuation(self) -> bool:
        return len(self.current_messages) > len(self.original_messages)

    def text_with(self, session_text: str) -> str:
        """Everything produced so far, given the current session's text."""
        return self.committed_text + session_text

    def commit(self, session_text: str):
        """Keep the text of a failed session for the continuation."""
        self.committed_text += session_text

    def add_usage(self, usage: Optional[Usage]):
        self.usage = merge_usage(self.usage, usage)

    def next_backoff(self, retry_after_seconds: Optional[int] = None) -> int:
        """
        Delay before the current retry, in milliseconds.

        A server Retry-After replaces the computed delay on the first retry
        only; the computed sequence advances either way.
        """
        self.current_backoff_ms = calculate_backoff(
            self.total_retries,
            initial_ms=self.config.initial_backoff_ms,
            max_ms=self.config.max_backoff_ms,
        )
        if retry_after_seconds is not None and self.total_retries == 1:
            return retry_after_seconds * 1000
        return self.current_backoff_ms

    def rebuild(self):
        """
        Prepare messages and token budget for the next attempt.

        With salvaged text the request becomes the original conversation plus
        the partial assistant answer and an instruction to continue. The token
        budget shrinks by the estimated output but never below the floor and
        never above the original budget.
        """
        if not self.committed_text.strip():
            # The original request regenerates from scratch
            self.committed_text = ""
            self.current_messages = list(self.original_messages)
            self.current_max_tokens = self.original_max_tokens
            return

        self.current_messages = list(self.original_messages) + [
            Message.assistant(self.committed_text),
            Message.user(CONTINUE_INSTRUCTION),
        ]
        remaining = self.original_max_tokens - estimate_tokens(self.committed_text)
        floor = self.config.min_continuation_tokens
        self.current_max_tokens = min(self.original_max_tokens, max(remaining, floor))
