"""
relaystream - Anthropic Messages API Client

Entry point tying the pieces together: one transport, one credential
provider, a StreamingSession for raw streams and a ResilientStreamingClient
for streams that survive dropped connections.

Usage:
    async with AnthropicClient.from_env() as client:
        reply = await client.send_message("claude-sonnet-4-5", [Message.user("Hello")])
        print(reply.text)

        async for result in client.stream_with_retry("claude-sonnet-4-5", [Message.user("Tell me a story")]):
            ...
"""

import asyncio
import uuid
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from opentelemetry import trace
from pydantic import ValidationError

from .config import (
    CredentialProvider,
    EnvCredentialProvider,
    RetryConfig,
    SessionConfig,
    looks_like_api_key,
)
from .core.errors import (
    ErrorKind,
    StreamApiError,
    error_from_exception,
    error_from_response,
    make_error,
)
from .core.http_client import HttpTransport, HttpxTransport
from .core.models import Message, StreamRequest
from .network.monitor import NetworkMonitor, ReachabilityMonitor
from .observability.logging import LogContext, TimedOperation, get_logger
from .observability.metrics import MetricsCollector
from .resilience.client import ProgressSink, ResilientStreamingClient
from .resilience.results import ResilientResult
from .streaming.events import ProtocolEvent
from .streaming.session import TRANSPORT_ERRORS, StreamingSession
from .streaming.wire import MessageResponse


logger = get_logger(__name__)

DEFAULT_RATE_LIMIT_WAIT = 60


class AnthropicClient:
    """
    Client for the Messages API.

    The transport is closed by aclose() only when this client created it.
    """

    def __init__(
        self,
        transport: Optional[HttpTransport] = None,
        credentials: Optional[CredentialProvider] = None,
        session_config: Optional[SessionConfig] = None,
        retry_config: Optional[RetryConfig] = None,
        monitor: Optional[NetworkMonitor] = None,
        metrics: Optional[MetricsCollector] = None,
        tracer: Optional[trace.Tracer] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._owns_transport = transport is None
        self.transport = transport or HttpxTransport()
        self.credentials = credentials or EnvCredentialProvider()
        self.session_config = session_config or SessionConfig()

        self.session = StreamingSession(
            self.transport,
            self.credentials,
            config=self.session_config,
            metrics=metrics,
            tracer=tracer,
        )
        self.resilient = ResilientStreamingClient(
            self.session,
            monitor=monitor or ReachabilityMonitor.for_url(self.session_config.api_url),
            config=retry_config,
            sleep=sleep,
            metrics=metrics,
            tracer=tracer,
        )

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, **kwargs) -> "AnthropicClient":
        """Build a client with settings and API key taken from the environment."""
        return cls(
            credentials=kwargs.pop("credentials", None) or EnvCredentialProvider(env=env),
            session_config=SessionConfig.from_env(env),
            retry_config=RetryConfig.from_env(env),
            **kwargs,
        )

    async def aclose(self) -> None:
        if self._owns_transport and isinstance(self.transport, HttpxTransport):
            await self.transport.aclose()

    async def __aenter__(self) -> "AnthropicClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    # ============================================================
    # One-shot requests
    # ============================================================

    async def send_message(
        self,
        model: str,
        messages: Sequence[Message],
        system_prompt: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: Optional[float] = None,
        caching: bool = False,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[Dict[str, Any]] = None,
    ) -> MessageResponse:
        """
        Send a non-streaming request.

        Raises:
            StreamApiError: for configuration, transport and API errors
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
            stream=False,
        )
        api_key = self.credentials.get_api_key()
        headers = self.session.build_headers(api_key, caching=caching, stream=False)

        with LogContext.bind(request_id=f"call_{uuid.uuid4().hex[:12]}", model=model):
            async with TimedOperation("send_message", logger, extra={"messages": len(request.messages)}):
                status_code, response_headers, body = await self._post(request.to_payload(), headers)

        if status_code != 200:
            raise error_from_response(status_code, body, response_headers)

        try:
            return MessageResponse.model_validate_json(body)
        except ValidationError as e:
            raise make_error("api_error", "Unexpected response body", status_code=status_code) from e

    async def test_connection(self, model: str) -> str:
        """
        Send a tiny request and describe the result.

        Raises:
            StreamApiError: with a short, user-facing message on failure
        """
        try:
            response = await self.send_message(model, [Message.user("Hi")], max_tokens=10)
        except StreamApiError as e:
            status = e.details.status_code
            if status == 401:
                raise make_error(ErrorKind.AUTHENTICATION, "Invalid API key", status_code=401) from e
            if status == 429:
                wait = e.retry_after_seconds if e.retry_after_seconds is not None else DEFAULT_RATE_LIMIT_WAIT
                raise make_error(
                    ErrorKind.RATE_LIMIT,
                    f"Rate limit. Retry in {wait}s.",
                    status_code=429,
                    retry_after_seconds=e.retry_after_seconds,
                ) from e
            if e.type == ErrorKind.NETWORK.value:
                raise make_error(ErrorKind.NETWORK, f"Connection failed: {e.message}") from e
            raise

        usage = response.usage.to_usage()
        return f"Connected!\nModel: {response.model}\nTokens: {usage.total_tokens}"

    def validate_api_key(self) -> bool:
        """Format check of the configured key; does not contact the server."""
        try:
            key = self.credentials.get_api_key()
        except StreamApiError:
            return False
        return looks_like_api_key(key)

    # ============================================================
    # Streaming
    # ============================================================

    def stream_message(
        self,
        model: str,
        messages: Sequence[Message],
        system_prompt: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: Optional[float] = None,
        caching: bool = False,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[ProtocolEvent]:
        """One streaming session, no retries."""
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
        return self.session.open(request)

    def stream_with_retry(
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
        """Stream with network-loss recovery; see ResilientStreamingClient."""
        return self.resilient.stream_with_retry(
            model,
            messages,
            system_prompt=system_prompt,
            max_tokens=max_tokens,
            temperature=temperature,
            caching=caching,
            tools=tools,
            tool_choice=tool_choice,
            progress=progress,
        )

    # ============================================================
    # Private helpers
    # ============================================================

    async def _post(self, payload: Dict[str, Any], headers: Dict[str, str]):
        """POST and read the whole body, bounded by the session duration cap."""
        async def exchange():
            async with self.transport.post(self.session_config.api_url, headers, payload) as response:
                body = await response.aread()
                return response.status_code, response.headers, body

        try:
            return await asyncio.wait_for(exchange(), timeout=self.session_config.max_session_seconds)
        except asyncio.TimeoutError as e:
            raise make_error(ErrorKind.TIMEOUT, "Request timed out") from e
        except TRANSPORT_ERRORS as e:
            raise error_from_exception(e) from e
