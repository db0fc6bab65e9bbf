"""
relaystream - Streaming Session Tests

Verifies:
- Request headers and payload
- Non-200 responses become one ProtocolError
- Per-line read timeout and whole-session duration cap
- The connection is released on completion, failure, early exit and cancellation
"""

import asyncio
from contextlib import aclosing

import httpx
import pytest

from relaystream.config import EnvCredentialProvider
from relaystream.core.models import Message, StreamRequest, Usage
from relaystream.streaming.events import (
    ProtocolError,
    SessionComplete,
    SessionStarted,
    TextDelta,
    UsageUpdate,
)
from relaystream.streaming.session import StreamingSession


MODEL = "claude-sonnet-4-5"


def hello_request(**kwargs) -> StreamRequest:
    return StreamRequest(model=MODEL, messages=[Message.user("Hello")], **kwargs)


async def collect(session, request):
    return [event async for event in session.open(request)]


# ============================================================
# Happy path
# ============================================================

class TestSessionRequest:
    """Test what a session sends."""

    @pytest.mark.asyncio
    async def test_headers_and_payload(self, sse, stream_response, fake_transport, make_session):
        fake_transport.add(stream_response(lines=sse.text_stream("Hi")))
        session = make_session(fake_transport)

        await collect(session, hello_request(max_tokens=256))

        sent = fake_transport.requests[0]
        assert sent["url"] == "https://api.anthropic.com/v1/messages"
        assert sent["headers"]["x-api-key"] == "sk-ant-test-key"
        assert sent["headers"]["anthropic-version"] == "2023-06-01"
        assert "anthropic-beta" not in sent["headers"]
        assert sent["body"] == {
            "model": MODEL,
            "max_tokens": 256,
            "messages": [{"role": "user", "content": "Hello"}],
            "stream": True,
        }

    @pytest.mark.asyncio
    async def test_caching_adds_beta_header(self, sse, stream_response, fake_transport, make_session):
        fake_transport.add(stream_response(lines=sse.text_stream("Hi")))
        session = make_session(fake_transport)

        await collect(session, hello_request(caching=True, system_prompt="sys"))

        sent = fake_transport.requests[0]
        assert sent["headers"]["anthropic-beta"] == "prompt-caching-2024-07-31"
        assert sent["body"]["system"][0]["cache_control"] == {"type": "ephemeral"}

    @pytest.mark.asyncio
    async def test_custom_api_url(self, sse, stream_response, fake_transport, make_session):
        fake_transport.add(stream_response(lines=sse.text_stream("Hi")))
        session = make_session(fake_transport, api_url="http://localhost:9000/v1/messages")

        await collect(session, hello_request())

        assert fake_transport.requests[0]["url"] == "http://localhost:9000/v1/messages"


class TestSessionEvents:
    """Test the events a session relays."""

    @pytest.mark.asyncio
    async def test_completed_stream(self, sse, stream_response, fake_transport, make_session):
        fake_transport.add(stream_response(lines=sse.text_stream("Hi", " there")))
        session = make_session(fake_transport)

        events = await collect(session, hello_request())

        assert events[0] == SessionStarted("msg_1")
        deltas = [e for e in events if isinstance(e, TextDelta)]
        assert deltas == [TextDelta("Hi", "Hi"), TextDelta(" there", "Hi there")]
        final = events[-1]
        assert isinstance(final, SessionComplete)
        assert final.full_text == "Hi there"
        assert final.usage == Usage(input_tokens=10, output_tokens=5)
        assert fake_transport.closed_connections == 1
        assert fake_transport.open_connections == 0

    @pytest.mark.asyncio
    async def test_usage_updates_are_cumulative(self, sse, stream_response, fake_transport, make_session):
        fake_transport.add(stream_response(lines=sse.text_stream("Hi")))
        session = make_session(fake_transport)

        events = await collect(session, hello_request())

        updates = [e.usage for e in events if isinstance(e, UsageUpdate)]
        assert updates[0] == Usage(input_tokens=10, output_tokens=1)
        assert updates[-1] == Usage(input_tokens=10, output_tokens=5)

    @pytest.mark.asyncio
    async def test_stops_reading_after_error_event(self, sse, stream_response, fake_transport, make_session):
        response = stream_response(lines=[
            sse.message_start(),
            sse.error("overloaded_error", "Overloaded"),
            sse.text_delta("never seen"),
        ])
        fake_transport.add(response)
        session = make_session(fake_transport)

        events = await collect(session, hello_request())

        assert isinstance(events[-1], ProtocolError)
        assert events[-1].kind == "overloaded_error"
        assert not any(isinstance(e, TextDelta) for e in events)
        assert response.lines_closed

    @pytest.mark.asyncio
    async def test_records_session_metrics(self, sse, stream_response, fake_transport, make_session, metrics):
        fake_transport.add(stream_response(lines=sse.text_stream("Hi")))
        session = make_session(fake_transport)

        await collect(session, hello_request())

        registry = metrics.registry
        assert registry.get_sample_value(
            "relaystream_sessions_total", {"model": MODEL, "outcome": "completed"}
        ) == 1.0
        assert registry.get_sample_value(
            "relaystream_tokens_total", {"model": MODEL, "type": "output"}
        ) == 5.0


# ============================================================
# Failures
# ============================================================

class TestSessionFailures:
    """Every failure ends the session with exactly one ProtocolError."""

    @pytest.mark.asyncio
    async def test_non_200_response(self, stream_response, fake_transport, make_session):
        fake_transport.add(stream_response.json_error(
            429, "rate_limit_error", "Too many requests", headers={"retry-after": "7"},
        ))
        session = make_session(fake_transport)

        events = await collect(session, hello_request())

        assert len(events) == 1
        error = events[0]
        assert error.kind == "rate_limit_error"
        assert error.retry_after_seconds == 7
        assert error.error.details.status_code == 429
        assert fake_transport.closed_connections == 1

    @pytest.mark.asyncio
    async def test_non_200_without_json(self, stream_response, fake_transport, make_session):
        fake_transport.add(stream_response(status_code=503, body=b"upstream unavailable"))
        session = make_session(fake_transport)

        events = await collect(session, hello_request())

        assert events[0].kind == "http_error"
        assert events[0].message == "HTTP 503: Service Unavailable"

    @pytest.mark.asyncio
    async def test_connect_failure(self, fake_transport, make_session):
        fake_transport.add(httpx.ConnectError("Name or service not known"))
        session = make_session(fake_transport)

        events = await collect(session, hello_request())

        assert len(events) == 1
        assert events[0].kind == "network_error"

    @pytest.mark.asyncio
    async def test_read_error_mid_stream(self, sse, stream_response, fake_transport, make_session):
        fake_transport.add(stream_response(lines=[
            sse.message_start(),
            sse.text_delta("Hi"),
            httpx.ReadError("connection reset by peer"),
        ]))
        session = make_session(fake_transport)

        events = await collect(session, hello_request())

        assert events[-2] == TextDelta("Hi", "Hi")
        assert events[-1].kind == "network_error"
        assert fake_transport.closed_connections == 1

    @pytest.mark.asyncio
    async def test_eof_without_message_stop(self, sse, stream_response, fake_transport, make_session):
        fake_transport.add(stream_response(lines=sse.partial_stream("Hi")))
        session = make_session(fake_transport)

        events = await collect(session, hello_request())

        assert events[-1].kind == "network_error"
        assert events[-1].during_tool_use is False

    @pytest.mark.asyncio
    async def test_eof_during_tool_use(self, sse, stream_response, fake_transport, make_session):
        fake_transport.add(stream_response(lines=[
            sse.message_start(),
            sse.tool_start("toolu_1", "read_file"),
            sse.tool_input('{"path": "a'),
        ]))
        session = make_session(fake_transport)

        events = await collect(session, hello_request())

        assert events[-1].kind == "network_error"
        assert events[-1].during_tool_use is True

    @pytest.mark.asyncio
    async def test_missing_api_key(self, fake_transport, metrics):
        session = StreamingSession(fake_transport, EnvCredentialProvider(env={}), metrics=metrics)

        events = await collect(session, hello_request())

        assert len(events) == 1
        assert events[0].kind == "configuration_error"
        assert fake_transport.requests == []


class TestSessionTimeouts:
    """Silent connections and slow trickles are bounded."""

    @pytest.mark.asyncio
    async def test_read_timeout(self, sse, stream_response, fake_transport, make_session):
        response = stream_response(lines=[sse.message_start(), sse.text_delta("Hi"), stream_response.HANG])
        fake_transport.add(response)
        session = make_session(fake_transport, read_timeout=0.05)

        events = await asyncio.wait_for(collect(session, hello_request()), timeout=5)

        error = events[-1]
        assert error.kind == "timeout"
        assert error.message.startswith("No data received")
        assert response.lines_closed
        assert fake_transport.open_connections == 0

    @pytest.mark.asyncio
    async def test_session_duration_cap(self, sse, stream_response, fake_transport, make_session):
        fake_transport.add(stream_response(lines=[sse.message_start(), stream_response.HANG]))
        session = make_session(fake_transport, read_timeout=30.0, max_session_seconds=0.05)

        events = await asyncio.wait_for(collect(session, hello_request()), timeout=5)

        assert events[-1].kind == "timeout"
        assert events[-1].message.startswith("Streaming exceeded")

    @pytest.mark.asyncio
    async def test_stalled_error_body(self, stream_response, fake_transport, make_session):
        fake_transport.add(stream_response(status_code=500, body=stream_response.HANG))
        session = make_session(fake_transport, max_session_seconds=0.05)

        events = await asyncio.wait_for(collect(session, hello_request()), timeout=5)

        assert len(events) == 1
        assert events[0].kind == "timeout"
        assert events[0].error.details.status_code == 500
        assert fake_transport.open_connections == 0


class TestSessionCleanup:
    """The connection is released on every exit path."""

    @pytest.mark.asyncio
    async def test_consumer_stops_early(self, sse, stream_response, fake_transport, make_session):
        response = stream_response(lines=sse.text_stream("a", "b", "c"))
        fake_transport.add(response)
        session = make_session(fake_transport)

        async with aclosing(session.open(hello_request())) as events:
            async for event in events:
                if isinstance(event, TextDelta):
                    break

        assert fake_transport.open_connections == 0
        assert fake_transport.closed_connections == 1
        assert response.lines_closed

    @pytest.mark.asyncio
    async def test_cancellation_releases_connection(self, sse, stream_response, fake_transport, make_session):
        fake_transport.add(stream_response(lines=[sse.message_start(), stream_response.HANG]))
        session = make_session(fake_transport)
        started = asyncio.Event()

        async def consume():
            async for event in session.open(hello_request()):
                if isinstance(event, SessionStarted):
                    started.set()

        task = asyncio.create_task(consume())
        await asyncio.wait_for(started.wait(), timeout=5)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert fake_transport.open_connections == 0
        assert fake_transport.closed_connections == 1
