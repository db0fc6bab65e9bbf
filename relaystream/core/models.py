"""
relaystream - Core Data Models

Conversation messages, token usage and the streaming request payload.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


# ============================================================
# Enums
# ============================================================

class Role(str, Enum):
    """Message roles accepted by the Messages API."""
    USER = "user"
    ASSISTANT = "assistant"


# ============================================================
# Messages
# ============================================================

@dataclass(frozen=True)
class Message:
    """A single conversation turn."""
    role: Role
    content: str

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(Role.USER, content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(Role.ASSISTANT, content)

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role.value, "content": self.content}


# ============================================================
# Usage
# ============================================================

@dataclass(frozen=True)
class Usage:
    """Token usage information."""
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0

    @property
    def cached_input_tokens(self) -> int:
        return self.cache_read_input_tokens

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def cache_hit_rate(self) -> float:
        """Percentage of input tokens served from the prompt cache."""
        if self.input_tokens <= 0:
            return 0.0
        return self.cache_read_input_tokens / self.input_tokens * 100

    def merge(self, other: Optional["Usage"]) -> "Usage":
        """Field-wise sum, used to total usage across retry attempts."""
        if other is None:
            return self
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_creation_input_tokens=self.cache_creation_input_tokens + other.cache_creation_input_tokens,
            cache_read_input_tokens=self.cache_read_input_tokens + other.cache_read_input_tokens,
        )

    def combine_cumulative(self, other: Optional["Usage"]) -> "Usage":
        """
        Combine two snapshots of the same session.

        The server reports running totals (message_start, then message_delta),
        so the larger value of each counter wins.
        """
        if other is None:
            return self
        return Usage(
            input_tokens=max(self.input_tokens, other.input_tokens),
            output_tokens=max(self.output_tokens, other.output_tokens),
            cache_creation_input_tokens=max(
                self.cache_creation_input_tokens, other.cache_creation_input_tokens
            ),
            cache_read_input_tokens=max(self.cache_read_input_tokens, other.cache_read_input_tokens),
        )


def merge_usage(a: Optional[Usage], b: Optional[Usage]) -> Optional[Usage]:
    """Sum two optional usages; None means "nothing reported"."""
    if a is None:
        return b
    return a.merge(b)


# ============================================================
# Requests
# ============================================================

@dataclass(frozen=True)
class StreamRequest:
    """Everything needed to open one streaming session."""
    model: str
    messages: List[Message]
    max_tokens: int = 4096
    system_prompt: Optional[str] = None
    temperature: Optional[float] = None
    caching: bool = False
    tools: Optional[List[Dict[str, Any]]] = None
    tool_choice: Optional[Dict[str, Any]] = None
    stream: bool = True

    def to_payload(self) -> Dict[str, Any]:
        """Build the JSON body for POST /v1/messages."""
        payload: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": self._convert_messages(),
            "stream": self.stream,
        }

        if self.system_prompt is not None:
            if self.caching:
                payload["system"] = [{
                    "type": "text",
                    "text": self.system_prompt,
                    "cache_control": {"type": "ephemeral"},
                }]
            else:
                payload["system"] = self.system_prompt

        if self.temperature is not None:
            payload["temperature"] = self.temperature

        if self.tools:
            payload["tools"] = list(self.tools)
            if self.tool_choice:
                payload["tool_choice"] = self.tool_choice

        return payload

    def _convert_messages(self) -> List[Dict[str, Any]]:
        if not self.caching:
            return [msg.to_dict() for msg in self.messages]

        # With caching, the last user turn marks the end of the cached prefix
        result = []
        last = len(self.messages) - 1
        for index, msg in enumerate(self.messages):
            block: Dict[str, Any] = {"type": "text", "text": msg.content}
            if index == last and msg.role == Role.USER:
                block["cache_control"] = {"type": "ephemeral"}
            result.append({"role": msg.role.value, "content": [block]})
        return result
