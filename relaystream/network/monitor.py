"""
relaystream - Network Availability Monitor

Reports connectivity and lets a caller wait, with a timeout, for it to come
back.

The wait is a one-shot future raced between a "connectivity restored"
listener and a timer. Whichever fires first resolves it; the other becomes a
no-op. The listener registration and the timer are released on every exit
path: restore, timeout, or cancellation of the waiting task.

Two implementations:
- ConnectivityMonitor: driven by the host application, which calls
  set_available() (or notify_threadsafe() from a platform callback thread).
- ReachabilityMonitor: tries a TCP connect to the API host while someone is waiting.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Callable, Dict
from urllib.parse import urlsplit

from ..observability.logging import get_logger


logger = get_logger(__name__)

Listener = Callable[[], None]


class NetworkMonitor(ABC):
    """Connectivity contract used by the resilient client."""

    @abstractmethod
    def is_available(self) -> bool:
        """Instantaneous, best-effort connectivity check."""

    @abstractmethod
    async def await_available(self, timeout: float) -> bool:
        """Wait until connectivity returns; False if `timeout` seconds pass first."""


class ConnectivityMonitor(NetworkMonitor):
    """
    Callback-driven monitor.

    set_available() must be called on the event loop thread; platform
    callbacks running elsewhere use notify_threadsafe().
    """

    def __init__(self, available: bool = True):
        self._available = available
        self._listeners: Dict[int, Listener] = {}
        self._next_token = 0

    def is_available(self) -> bool:
        return self._available

    def set_available(self, available: bool):
        was_available = self._available
        self._available = available
        if available and not was_available:
            logger.info("Network connectivity restored", extra={"listeners": len(self._listeners)})
        if available:
            for listener in list(self._listeners.values()):
                listener()

    def notify_threadsafe(self, loop: asyncio.AbstractEventLoop, available: bool):
        loop.call_soon_threadsafe(self.set_available, available)

    def register(self, listener: Listener) -> Callable[[], None]:
        """Register a restore listener; returns the function that removes it."""
        token = self._next_token
        self._next_token += 1
        self._listeners[token] = listener

        def unregister():
            self._listeners.pop(token, None)

        return unregister

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def await_available(self, timeout: float) -> bool:
        if self.is_available():
            return True

        loop = asyncio.get_running_loop()
        resolved: asyncio.Future = loop.create_future()

        def resolve(value: bool):
            if not resolved.done():
                resolved.set_result(value)

        unregister = self.register(lambda: resolve(True))
        timer = loop.call_later(timeout, resolve, False)
        try:
            return await resolved
        finally:
            timer.cancel()
            unregister()


class ReachabilityMonitor(ConnectivityMonitor):
    """
    Monitor that checks reachability of the API host with a TCP connect.

    A wait starts from "unavailable" (callers only wait after a failure) and
    retries every `interval` seconds until a connect succeeds or the wait
    times out.
    """

    def __init__(
        self,
        host: str = "api.anthropic.com",
        port: int = 443,
        connect_timeout: float = 5.0,
        interval: float = 2.0,
    ):
        super().__init__(available=True)
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self.interval = interval

    @classmethod
    def for_url(cls, url: str, **kwargs) -> "ReachabilityMonitor":
        parts = urlsplit(url)
        port = parts.port or (443 if parts.scheme == "https" else 80)
        return cls(host=parts.hostname or "api.anthropic.com", port=port, **kwargs)

    async def check_reachable(self) -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug("Reachability check failed", extra={"host": self.host, "port": self.port, "error": str(e)})
            return False

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def await_available(self, timeout: float) -> bool:
        self._available = False
        poller = asyncio.create_task(self._poll_until_available())
        try:
            return await super().await_available(timeout)
        finally:
            poller.cancel()
            # wait() never raises the poller's own cancellation, only this task's
            await asyncio.wait({poller})
            if not poller.cancelled() and poller.exception() is not None:
                logger.warning("Reachability polling failed", extra={"error": str(poller.exception())})

    async def _poll_until_available(self):
        while True:
            if await self.check_reachable():
                self.set_available(True)
                return
            await asyncio.sleep(self.interval)
