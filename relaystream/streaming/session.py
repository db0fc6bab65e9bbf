"""
relaystream - Streaming Session

Drives one HTTP request/response cycle against the streaming endpoint:

1. POST the request; a non-200 status becomes a single ProtocolError.
2. Read the body line by line. A line that does not arrive within the read
   timeout ends the session with a `timeout` error; a silent connection is
   treated as a dead one.
3. The whole session is capped by a wall-clock ceiling independent of the
   per-line timeout.
4. Lines go through the EventDecoder; usage snapshots are combined and
   attached to the terminal event.
5. The connection is released on every exit path, including cancellation
   and the consumer abandoning the stream.

Transport failures never raise out of open(); they are yielded as
ProtocolError events so callers see one uniform event sequence.
"""

import asyncio
from contextlib import AsyncExitStack, aclosing
from dataclasses import replace
from typing import AsyncIterator, Dict, Optional, Union

import httpx
from opentelemetry import trace

from ..config import CredentialProvider, SessionConfig
from ..core.errors import (
    ErrorKind,
    StreamApiError,
    error_from_exception,
    error_from_response,
    make_error,
)
from ..core.http_client import HttpTransport
from ..core.models import StreamRequest, Usage
from ..observability.logging import get_logger
from ..observability.metrics import MetricsCollector, get_metrics
from ..observability.tracing import end_span, get_tracer
from .decoder import EventDecoder
from .events import (
    ProtocolError,
    ProtocolEvent,
    SessionComplete,
    SessionStarted,
    ToolInvocation,
    UsageUpdate,
    is_terminal,
)


logger = get_logger(__name__)

TRANSPORT_ERRORS = (httpx.HTTPError, httpx.StreamError, OSError)


class StreamingSession:
    """
    Opens streaming sessions. One instance can serve many sequential or
    concurrent open() calls; no state is shared between them.
    """

    def __init__(
        self,
        transport: HttpTransport,
        credentials: CredentialProvider,
        config: Optional[SessionConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        tracer: Optional[trace.Tracer] = None,
    ):
        self.transport = transport
        self.credentials = credentials
        self.config = config or SessionConfig()
        self._metrics = metrics
        self._tracer = tracer or get_tracer()

    @property
    def metrics(self) -> MetricsCollector:
        if self._metrics is None:
            self._metrics = get_metrics()
        return self._metrics

    def build_headers(self, api_key: str, caching: bool = False, stream: bool = True) -> Dict[str, str]:
        headers = {
            "x-api-key": api_key,
            "anthropic-version": self.config.api_version,
            "content-type": "application/json",
        }
        if stream:
            headers["accept"] = "text/event-stream"
        if caching:
            headers["anthropic-beta"] = self.config.caching_beta
        return headers

    async def open(self, request: StreamRequest) -> AsyncIterator[ProtocolEvent]:
        """Stream one request; the last event is always terminal unless the consumer stops early."""
        loop = asyncio.get_running_loop()
        started_at = loop.time()
        deadline = started_at + self.config.max_session_seconds

        span = self._tracer.start_span(
            "relaystream.session",
            attributes={
                "relaystream.model": request.model,
                "relaystream.messages": len(request.messages),
                "relaystream.max_tokens": request.max_tokens,
            },
        )
        outcome = "cancelled"
        error_type: Optional[str] = None

        logger.debug(
            "Session opening",
            extra={"model": request.model, "messages": len(request.messages), "max_tokens": request.max_tokens},
        )

        try:
            async with aclosing(self._run(request, deadline)) as events:
                async for event in events:
                    if isinstance(event, SessionComplete):
                        outcome = "completed"
                        self.metrics.record_usage(request.model, event.usage)
                    elif isinstance(event, ToolInvocation):
                        outcome = "tool_use"
                        self.metrics.record_usage(request.model, event.usage)
                    elif isinstance(event, ProtocolError):
                        outcome = "error"
                        error_type = event.kind
                        logger.warning(
                            "Session failed",
                            extra={"model": request.model, "error_type": event.kind, "error_message": event.message},
                        )
                    yield event
        finally:
            duration = loop.time() - started_at
            self.metrics.record_session(request.model, outcome, duration)
            end_span(span, outcome, error_type)
            logger.debug(
                "Session closed",
                extra={"model": request.model, "outcome": outcome, "duration_ms": round(duration * 1000)},
            )

    # ============================================================
    # Private helpers
    # ============================================================

    async def _run(self, request: StreamRequest, deadline: float) -> AsyncIterator[ProtocolEvent]:
        try:
            api_key = self.credentials.get_api_key()
        except StreamApiError as e:
            yield ProtocolError(e)
            return

        headers = self.build_headers(api_key, request.caching, request.stream)
        payload = request.to_payload()

        async with AsyncExitStack() as stack:
            try:
                response = await asyncio.wait_for(
                    stack.enter_async_context(self.transport.post(self.config.api_url, headers, payload)),
                    timeout=max(0.0, deadline - asyncio.get_running_loop().time()),
                )
            except asyncio.TimeoutError:
                yield ProtocolError(make_error(ErrorKind.TIMEOUT, "Timed out waiting for response headers"))
                return
            except TRANSPORT_ERRORS as e:
                yield ProtocolError(error_from_exception(e))
                return

            if response.status_code != 200:
                remaining = max(0.0, deadline - asyncio.get_running_loop().time())
                try:
                    body = await asyncio.wait_for(
                        response.aread(),
                        timeout=min(self.config.read_timeout_seconds, remaining),
                    )
                except asyncio.TimeoutError:
                    yield ProtocolError(make_error(
                        ErrorKind.TIMEOUT,
                        f"Timed out reading HTTP {response.status_code} error body",
                        status_code=response.status_code,
                    ))
                    return
                except TRANSPORT_ERRORS:
                    body = b""
                yield ProtocolError(error_from_response(response.status_code, body, response.headers))
                return

            lines = response.aiter_lines()
            if hasattr(lines, "aclose"):
                stack.push_async_callback(lines.aclose)

            decoder = EventDecoder()
            usage: Optional[Usage] = None

            while True:
                line = await self._next_line(lines, deadline)
                if line is None:
                    yield ProtocolError(
                        make_error(ErrorKind.NETWORK, "Stream closed before message_stop"),
                        during_tool_use=decoder.tool_use_in_progress,
                    )
                    return
                if isinstance(line, StreamApiError):
                    yield ProtocolError(line, during_tool_use=decoder.tool_use_in_progress)
                    return

                for event in decoder.feed(line):
                    if isinstance(event, UsageUpdate):
                        usage = event.usage if usage is None else usage.combine_cumulative(event.usage)
                        event = UsageUpdate(usage)
                    elif isinstance(event, (SessionComplete, ToolInvocation)):
                        event = replace(event, usage=usage)
                    elif isinstance(event, SessionStarted):
                        logger.debug("Session started", extra={"message_id": event.message_id})

                    yield event
                    if is_terminal(event):
                        return

    async def _next_line(
        self,
        lines: AsyncIterator[str],
        deadline: float,
    ) -> Union[str, None, StreamApiError]:
        """Next body line, None at end of stream, or the error that ended it."""
        loop = asyncio.get_running_loop()
        remaining = deadline - loop.time()
        if remaining <= 0:
            return self._session_cap_error()

        read_timeout = self.config.read_timeout_seconds
        capped = remaining <= read_timeout
        try:
            return await asyncio.wait_for(lines.__anext__(), timeout=min(read_timeout, remaining))
        except StopAsyncIteration:
            return None
        except asyncio.TimeoutError:
            if capped:
                return self._session_cap_error()
            return make_error(ErrorKind.TIMEOUT, f"No data received for {read_timeout:g}s")
        except TRANSPORT_ERRORS as e:
            return error_from_exception(e)

    def _session_cap_error(self) -> StreamApiError:
        minutes = self.config.max_session_seconds / 60
        return make_error(ErrorKind.TIMEOUT, f"Streaming exceeded {minutes:g} minutes")
