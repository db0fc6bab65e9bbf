"""
relaystream - Wire Models

Pydantic models for the JSON payloads carried by the Messages API:
streamed SSE events and non-streaming responses.
Unknown fields are ignored so new server-side additions never break parsing.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.models import Usage


class WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class WireUsage(WireModel):
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: Optional[int] = None
    cache_read_input_tokens: Optional[int] = None

    def to_usage(self) -> Usage:
        return Usage(
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            cache_creation_input_tokens=self.cache_creation_input_tokens or 0,
            cache_read_input_tokens=self.cache_read_input_tokens or 0,
        )


class WireContentBlock(WireModel):
    type: str
    text: Optional[str] = None
    id: Optional[str] = None
    name: Optional[str] = None
    input: Optional[Dict[str, Any]] = None


class WireStreamMessage(WireModel):
    id: str = ""
    model: Optional[str] = None
    usage: Optional[WireUsage] = None


class WireDelta(WireModel):
    type: Optional[str] = None
    text: Optional[str] = None
    partial_json: Optional[str] = None
    stop_reason: Optional[str] = None
    stop_sequence: Optional[str] = None


class WireError(WireModel):
    type: str
    message: str = ""


class WireEvent(WireModel):
    """One `data:` payload; `type` selects which other fields are set."""
    type: str
    index: Optional[int] = None
    message: Optional[WireStreamMessage] = None
    content_block: Optional[WireContentBlock] = None
    delta: Optional[WireDelta] = None
    usage: Optional[WireUsage] = None
    error: Optional[WireError] = None


class MessageResponse(WireModel):
    """Non-streaming response body."""
    id: str
    type: str = "message"
    role: str = "assistant"
    model: str
    content: List[WireContentBlock] = Field(default_factory=list)
    stop_reason: Optional[str] = None
    stop_sequence: Optional[str] = None
    usage: WireUsage = Field(default_factory=WireUsage)

    @property
    def text(self) -> str:
        return "".join(block.text or "" for block in self.content if block.type == "text")

    @property
    def tool_uses(self) -> List[WireContentBlock]:
        return [block for block in self.content if block.type == "tool_use"]
