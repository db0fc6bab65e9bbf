"""
relaystream - Pytest Configuration

Configures:
- Integration test markers (skip by default)
- Fake transport, responses and network monitor for unit tests
- SSE line builders for scripted streams
"""

import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Sequence

import pytest
from prometheus_client import CollectorRegistry

from relaystream.config import SessionConfig, StaticCredentialProvider
from relaystream.network.monitor import NetworkMonitor
from relaystream.observability.metrics import MetricsCollector
from relaystream.streaming.session import StreamingSession


# ============================================================
# Environment Configuration
# ============================================================

def _is_truthy(value: Optional[str]) -> bool:
    """Check if environment variable is truthy."""
    if value is None:
        return False
    return value.lower() in ("1", "true", "yes", "on")


RUN_INTEGRATION = _is_truthy(os.getenv("RUN_INTEGRATION"))


# ============================================================
# Pytest Markers
# ============================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires RUN_INTEGRATION=1)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless RUN_INTEGRATION=1."""
    skip_integration = pytest.mark.skip(
        reason="Integration test - set RUN_INTEGRATION=1 to run"
    )

    for item in items:
        if "integration" in item.keywords and not RUN_INTEGRATION:
            item.add_marker(skip_integration)


# ============================================================
# SSE Builders
# ============================================================

class SSE:
    """Builds `data:` lines the way the Messages API streams them."""

    @staticmethod
    def data(payload: Dict[str, Any]) -> str:
        return "data: " + json.dumps(payload)

    @staticmethod
    def message_start(message_id: str = "msg_1", input_tokens: int = 10, **usage) -> str:
        return SSE.data({
            "type": "message_start",
            "message": {
                "id": message_id,
                "type": "message",
                "role": "assistant",
                "model": "claude-sonnet-4-5",
                "usage": {"input_tokens": input_tokens, "output_tokens": 1, **usage},
            },
        })

    @staticmethod
    def text_delta(text: str, index: int = 0) -> str:
        return SSE.data({
            "type": "content_block_delta",
            "index": index,
            "delta": {"type": "text_delta", "text": text},
        })

    @staticmethod
    def tool_start(tool_id: str, name: str, index: int = 1) -> str:
        return SSE.data({
            "type": "content_block_start",
            "index": index,
            "content_block": {"type": "tool_use", "id": tool_id, "name": name, "input": {}},
        })

    @staticmethod
    def tool_input(partial_json: str, index: int = 1) -> str:
        return SSE.data({
            "type": "content_block_delta",
            "index": index,
            "delta": {"type": "input_json_delta", "partial_json": partial_json},
        })

    @staticmethod
    def block_stop(index: int = 0) -> str:
        return SSE.data({"type": "content_block_stop", "index": index})

    @staticmethod
    def message_delta(stop_reason: str = "end_turn", output_tokens: int = 5) -> str:
        return SSE.data({
            "type": "message_delta",
            "delta": {"stop_reason": stop_reason, "stop_sequence": None},
            "usage": {"output_tokens": output_tokens},
        })

    @staticmethod
    def message_stop() -> str:
        return SSE.data({"type": "message_stop"})

    @staticmethod
    def error(error_type: str = "overloaded_error", message: str = "Overloaded") -> str:
        return SSE.data({"type": "error", "error": {"type": error_type, "message": message}})

    @staticmethod
    def text_stream(*chunks: str, message_id: str = "msg_1", output_tokens: int = 5) -> List[str]:
        """A complete text response, including event lines and blank separators."""
        lines = ["event: message_start", SSE.message_start(message_id), ""]
        for chunk in chunks:
            lines += ["event: content_block_delta", SSE.text_delta(chunk), ""]
        lines += [
            SSE.block_stop(0),
            SSE.message_delta(output_tokens=output_tokens),
            SSE.message_stop(),
        ]
        return lines

    @staticmethod
    def partial_stream(*chunks: str, message_id: str = "msg_1") -> List[str]:
        """A response that stops after its text deltas, without message_stop."""
        return [SSE.message_start(message_id)] + [SSE.text_delta(chunk) for chunk in chunks]


# ============================================================
# Fake Transport
# ============================================================

class FakeStreamResponse:
    """
    Scripted streaming response.

    `lines` may contain strings, exceptions (raised when reached) and
    HANG (never produces another line). `body` may also be HANG.
    """

    HANG = object()

    def __init__(
        self,
        status_code: int = 200,
        lines: Sequence[Any] = (),
        body: bytes = b"",
        headers: Optional[Dict[str, str]] = None,
    ):
        self.status_code = status_code
        self.lines = list(lines)
        self.body = body
        self.headers = headers or {}
        self.lines_closed = False

    @classmethod
    def json_error(cls, status_code: int, error_type: str, message: str, headers=None) -> "FakeStreamResponse":
        body = json.dumps({"type": "error", "error": {"type": error_type, "message": message}})
        return cls(status_code=status_code, body=body.encode(), headers=headers)

    async def aread(self) -> bytes:
        if self.body is FakeStreamResponse.HANG:
            await asyncio.Event().wait()
        return self.body

    async def aiter_lines(self):
        try:
            for line in self.lines:
                if line is FakeStreamResponse.HANG:
                    await asyncio.Event().wait()
                if isinstance(line, BaseException):
                    raise line
                yield line
        finally:
            self.lines_closed = True


class FakeTransport:
    """HttpTransport returning scripted responses in order and recording requests."""

    def __init__(self, *responses: Any):
        self.responses = list(responses)
        self.requests: List[Dict[str, Any]] = []
        self.open_connections = 0
        self.closed_connections = 0

    def add(self, response: Any) -> "FakeTransport":
        self.responses.append(response)
        return self

    @asynccontextmanager
    async def post(self, url: str, headers: Dict[str, str], body: Dict[str, Any]):
        self.requests.append({"url": url, "headers": dict(headers), "body": body})
        if not self.responses:
            raise AssertionError("FakeTransport has no scripted response left")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        self.open_connections += 1
        try:
            yield response
        finally:
            self.open_connections -= 1
            self.closed_connections += 1

    def messages(self, index: int) -> List[Dict[str, Any]]:
        return self.requests[index]["body"]["messages"]


# ============================================================
# Fake Network Monitor / Sleep
# ============================================================

class FakeMonitor(NetworkMonitor):
    """Answers await_available() from a script; True once the script runs out."""

    def __init__(self, *results: bool, available: bool = True):
        self.results = list(results)
        self.available = available
        self.waits: List[float] = []

    def is_available(self) -> bool:
        return self.available

    async def await_available(self, timeout: float) -> bool:
        self.waits.append(timeout)
        if self.results:
            return self.results.pop(0)
        return True


class RecordingSleep:
    """Stands in for asyncio.sleep; records the requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)

    @property
    def delays_ms(self) -> List[int]:
        return [round(d * 1000) for d in self.delays]


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture
def sse():
    return SSE


@pytest.fixture
def stream_response():
    """The FakeStreamResponse class."""
    return FakeStreamResponse


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def metrics():
    """Collector on a private registry so tests never share counters."""
    return MetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def credentials():
    return StaticCredentialProvider("sk-ant-test-key")


@pytest.fixture
def make_session(credentials, metrics):
    """Build a StreamingSession over a transport with short timeouts."""
    def factory(transport, read_timeout: float = 30.0, max_session_seconds: float = 300.0, **kwargs):
        config = SessionConfig(
            read_timeout_seconds=read_timeout,
            max_session_seconds=max_session_seconds,
            **kwargs,
        )
        return StreamingSession(transport, credentials, config=config, metrics=metrics)
    return factory


@pytest.fixture
def scripted_monitor():
    """The FakeMonitor class, for tests that script network waits."""
    return FakeMonitor


# ============================================================
# Logging Configuration
# ============================================================

@pytest.fixture(autouse=True)
def configure_test_logging():
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    yield

