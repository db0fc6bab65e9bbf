"""
relaystream - Resilient Streaming Client

Wraps StreamingSession with recovery from dropped connections:

    Streaming -> Completed | ToolDone | NetworkLost
    NetworkLost -> WaitingForNetwork -> Retrying -> Streaming
                                                 \\-> GivingUp

On a retryable failure the client waits for connectivity, backs off, and
reopens the session with a continuation request: the original conversation,
the text salvaged so far as an assistant turn, and an instruction to carry on
without repeating it. Fatal errors, exhausted retries, a network that does
not come back, and failures in the middle of a tool call end the call with
Failed.

Usage:
    client = ResilientStreamingClient(session, monitor)
    async for result in client.stream_with_retry(model, [Message.user("Hi")]):
        if isinstance(result, Delta):
            print(result.chunk, end="")
"""

import asyncio
from contextlib import aclosing
from dataclasses import replace
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

from opentelemetry import trace

from ..config import RetryConfig
from ..core.errors import (
    ErrorKind,
    StreamApiError,
    error_from_exception,
    is_retryable,
    make_error,
)
from ..core.models import Message, StreamRequest, Usage
from ..network.monitor import NetworkMonitor, ReachabilityMonitor
from ..observability.logging import get_logger
from ..observability.metrics import MetricsCollector, get_metrics
from ..observability.tracing import end_span, get_tracer
from ..streaming.events import (
    ProtocolError,
    ProtocolEvent,
    SessionComplete,
    SessionStarted,
    TextDelta,
    ToolInvocation,
    UsageUpdate,
)
from ..streaming.session import TRANSPORT_ERRORS
from .results import (
    Completed,
    Delta,
    Failed,
    ResilientResult,
    Retrying,
    Started,
    ToolInvocationRequested,
    WaitingForNetwork,
)
from .state import RetryState, estimate_tokens, find_overlap


logger = get_logger(__name__)

# Overlaps shorter than this are ordinary coincidences ("the ", ". ")
OVERLAP_WARN_CHARS = 24


class SessionOpener(Protocol):
    def open(self, request: StreamRequest) -> AsyncIterator[ProtocolEvent]:
        ...


class ProgressSink(Protocol):
    """Receives live progress, e.g. a foreground-service notification."""

    def update(self, text: str, token_count: int, elapsed_seconds: float) -> None:
        ...


class ResilientStreamingClient:
    """
    Streams a response, resuming after retryable failures.

    Each stream_with_retry() call owns its RetryState; calls can run
    concurrently on one client.
    """

    def __init__(
        self,
        session: SessionOpener,
        monitor: Optional[NetworkMonitor] = None,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        metrics: Optional[MetricsCollector] = None,
        tracer: Optional[trace.Tracer] = None,
    ):
        self.session = session
        self.monitor = monitor or ReachabilityMonitor()
        self.config = config or RetryConfig()
        self._sleep = sleep
        self._metrics = metrics
        self._tracer = tracer or get_tracer()

    @property
    def metrics(self) -> MetricsCollector:
        if self._metrics is None:
            self._metrics = get_metrics()
        return self._metrics

    async def stream_with_retry(
        self,
        model: str,
        messages: Sequence[Message],
        system_prompt: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: Optional[float] = None,
        caching: bool = False,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[Dict[str, Any]] = None,
        progress: Optional[ProgressSink] = None,
    ) -> AsyncIterator[ResilientResult]:
        """
        Stream a response, retrying transparently.

        Yields Started/Delta/WaitingForNetwork/Retrying values and ends with
        exactly one Completed, Failed or ToolInvocationRequested.
        """
        request = StreamRequest(
            model=model,
            messages=list(messages),
            max_tokens=max_tokens,
            system_prompt=system_prompt,
            temperature=temperature,
            caching=caching,
            tools=tools,
            tool_choice=tool_choice,
        )
        state = RetryState.start(messages, max_tokens, self.config)

        span = self._tracer.start_span(
            "relaystream.stream_with_retry",
            attributes={"relaystream.model": model, "relaystream.max_tokens": max_tokens},
        )
        outcome = "cancelled"
        error_type: Optional[str] = None

        try:
            async with aclosing(self._attempts(request, state, progress)) as results:
                async for result in results:
                    if isinstance(result, Completed):
                        outcome = "completed"
                    elif isinstance(result, ToolInvocationRequested):
                        outcome = "tool_use"
                    elif isinstance(result, Failed):
                        outcome = "failed"
                        error_type = result.type
                    yield result
        finally:
            self.metrics.record_call(model, outcome)
            span.set_attribute("relaystream.retries", state.total_retries)
            span.set_attribute("relaystream.accumulated_chars", state.accumulated_chars)
            end_span(span, outcome, error_type)

    # ============================================================
    # Private helpers
    # ============================================================

    async def _attempts(
        self,
        base_request: StreamRequest,
        state: RetryState,
        progress: Optional[ProgressSink],
    ) -> AsyncIterator[ResilientResult]:
        loop = asyncio.get_running_loop()
        started_at = loop.time()
        model = base_request.model
        is_retry = False

        while True:
            request = replace(
                base_request,
                messages=list(state.current_messages),
                max_tokens=state.current_max_tokens,
            )
            session_text = ""
            session_usage: Optional[Usage] = None
            failure: Optional[ProtocolError] = None

            logger.debug(
                "Attempt starting",
                extra={
                    "model": model,
                    "attempt": state.total_retries + 1,
                    "messages": len(request.messages),
                    "max_tokens": request.max_tokens,
                },
            )

            try:
                async with aclosing(self.session.open(request)) as events:
                    async for event in events:
                        if isinstance(event, SessionStarted):
                            yield Started(event.message_id, is_retry)

                        elif isinstance(event, TextDelta):
                            session_text = event.accumulated
                            accumulated = state.text_with(session_text)
                            yield Delta(event.chunk, accumulated)
                            if progress is not None:
                                progress.update(accumulated, estimate_tokens(accumulated), loop.time() - started_at)

                        elif isinstance(event, UsageUpdate):
                            session_usage = event.usage

                        elif isinstance(event, SessionComplete):
                            self._check_overlap(state, event.full_text)
                            state.add_usage(event.usage or session_usage)
                            yield Completed(
                                full_text=state.text_with(event.full_text),
                                usage=state.usage,
                                total_retries=state.total_retries,
                            )
                            return

                        elif isinstance(event, ToolInvocation):
                            state.add_usage(event.usage or session_usage)
                            yield ToolInvocationRequested(
                                text_so_far=state.text_with(event.text_so_far),
                                calls=event.calls,
                                usage=state.usage,
                            )
                            return

                        elif isinstance(event, ProtocolError):
                            failure = event
                            break
            except TRANSPORT_ERRORS + (StreamApiError,) as e:
                logger.exception("Stream raised", extra={"model": model, "attempt": state.total_retries + 1})
                failure = ProtocolError(error_from_exception(e))

            if failure is None:
                failure = ProtocolError(make_error(ErrorKind.NETWORK, "Session ended without a result"))

            self._check_overlap(state, session_text)
            state.add_usage(session_usage)
            state.commit(session_text)

            error = failure.error
            if not is_retryable(error):
                yield Failed(self._with_salvage(error, state))
                return

            if failure.during_tool_use:
                yield Failed(make_error(
                    ErrorKind.NETWORK,
                    "Network lost during tool execution. Cannot resume safely. "
                    f"Accumulated text saved: {state.accumulated_chars} chars.",
                    accumulated_chars=state.accumulated_chars,
                ))
                return

            state.total_retries += 1
            if state.total_retries > self.config.max_retries:
                yield Failed(make_error(
                    ErrorKind.MAX_RETRIES,
                    f"Max retries ({self.config.max_retries}) exceeded. "
                    f"Accumulated text: {state.accumulated_chars} chars.",
                    accumulated_chars=state.accumulated_chars,
                ))
                return

            logger.warning(
                "Retryable failure",
                extra={
                    "model": model,
                    "error_type": error.type,
                    "error_message": error.message,
                    "retry": state.total_retries,
                    "accumulated_chars": state.accumulated_chars,
                },
            )

            salvaged = state.committed_text
            yield WaitingForNetwork(
                attempt=state.total_retries,
                max_attempts=self.config.max_retries,
                accumulated_text=salvaged,
                approx_tokens=estimate_tokens(salvaged),
            )

            wait_started = loop.time()
            restored = await self.monitor.await_available(self.config.network_wait_timeout_seconds)
            self.metrics.record_network_wait(restored, loop.time() - wait_started)
            if not restored:
                minutes = self.config.network_wait_timeout_seconds / 60
                yield Failed(make_error(
                    ErrorKind.NETWORK_TIMEOUT,
                    f"Network did not return within {minutes:g} minutes. "
                    f"Accumulated: {state.accumulated_chars} chars.",
                    accumulated_chars=state.accumulated_chars,
                ))
                return

            backoff_ms = state.next_backoff(error.retry_after_seconds)
            yield Retrying(
                attempt=state.total_retries,
                max_attempts=self.config.max_retries,
                backoff_ms=backoff_ms,
            )
            self.metrics.record_retry(model, error.type, backoff_ms / 1000)
            await self._sleep(backoff_ms / 1000)

            state.rebuild()
            is_retry = True

    @staticmethod
    def _with_salvage(error: StreamApiError, state: RetryState) -> StreamApiError:
        if error.details.accumulated_chars is not None:
            return error
        return StreamApiError(replace(error.details, accumulated_chars=state.accumulated_chars))

    @staticmethod
    def _check_overlap(state: RetryState, session_text: str):
        """Warn when a continuation starts by repeating the salvaged text."""
        if not state.is_continuation or not session_text:
            return
        overlap = find_overlap(state.committed_text, session_text)
        if overlap >= OVERLAP_WARN_CHARS:
            logger.warning(
                "Continuation repeats earlier output",
                extra={"overlap_length": overlap, "accumulated_chars": state.accumulated_chars},
            )
