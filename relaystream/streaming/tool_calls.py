"""
relaystream - Tool Use Streaming

Tool calls arrive in pieces:
1. content_block_start with the tool_use id and name
2. content_block_delta events carrying input_json_delta fragments
3. content_block_stop closing the block

The accumulated input is parsed once the message stops.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .events import ToolCall


@dataclass
class ToolCallAccumulator:
    """Accumulates one streaming tool_use block."""
    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments_buffer: str = ""
    is_complete: bool = False

    def append(self, partial_json: str):
        """Add an input_json_delta fragment."""
        if partial_json:
            self.arguments_buffer += partial_json

    def mark_complete(self):
        self.is_complete = True

    def parse_input(self) -> Dict[str, Any]:
        """Parse the accumulated arguments; an empty buffer means no input."""
        if not self.arguments_buffer.strip():
            return {}
        value = json.loads(self.arguments_buffer)
        if not isinstance(value, dict):
            raise ValueError("tool input must be a JSON object")
        return value

    def validate(self) -> Tuple[bool, Optional[str]]:
        """
        Validate the accumulated tool call.

        Returns:
            (is_valid, error_message)
        """
        if not self.id:
            return False, "Missing tool call ID"

        if not self.name:
            return False, "Missing tool name"

        try:
            self.parse_input()
        except ValueError as e:
            return False, f"Invalid tool input JSON: {e}"

        return True, None

    def to_call(self) -> ToolCall:
        return ToolCall(id=self.id or "", name=self.name or "", input=self.parse_input())


class ToolCallStreamTracker:
    """
    Tracks every tool_use block of one message, keyed by content index.
    """

    def __init__(self):
        self._calls: Dict[int, ToolCallAccumulator] = {}

    def start(self, index: int, id: Optional[str], name: Optional[str], initial_input: Optional[Dict[str, Any]] = None):
        call = ToolCallAccumulator(index=index, id=id, name=name)
        # Some servers send the full input up front instead of deltas
        if initial_input:
            call.append(json.dumps(initial_input))
        self._calls[index] = call

    def append(self, index: int, partial_json: str) -> bool:
        """Append input to a tracked block; returns False for unknown indexes."""
        call = self._calls.get(index)
        if call is None:
            return False
        call.append(partial_json)
        return True

    def stop(self, index: int):
        call = self._calls.get(index)
        if call is not None:
            call.mark_complete()

    @property
    def has_calls(self) -> bool:
        return bool(self._calls)

    @property
    def in_progress(self) -> bool:
        """True while any tool_use block is still open."""
        return any(not call.is_complete for call in self._calls.values())

    def to_calls(self) -> List[ToolCall]:
        """Completed calls in content order; raises ValueError for any call that fails validate()."""
        calls = []
        for index in sorted(self._calls):
            call = self._calls[index]
            ok, message = call.validate()
            if not ok:
                raise ValueError(f"{message} (content block {index})")
            calls.append(call.to_call())
        return calls
