"""
relaystream - Configuration

Session and retry settings, read from the environment with typed helpers,
plus the credential providers sessions draw their API key from.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol

from .core.errors import MissingApiKeyError


DEFAULT_API_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"
PROMPT_CACHING_BETA = "prompt-caching-2024-07-31"
API_KEY_ENV = "ANTHROPIC_API_KEY"
API_KEY_PREFIX = "sk-ant-"


# ============================================================
# Environment helpers
# ============================================================

def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{key} must be positive, got {raw!r}")
    return value


def _env_int(env: Mapping[str, str], key: str, default: int, minimum: int = 1) -> int:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{key} must be >= {minimum}, got {raw!r}")
    return value


# ============================================================
# Settings
# ============================================================

@dataclass(frozen=True)
class SessionConfig:
    """Settings for a single streaming session."""
    api_url: str = DEFAULT_API_URL
    api_version: str = API_VERSION
    caching_beta: str = PROMPT_CACHING_BETA
    read_timeout_seconds: float = 30.0
    max_session_seconds: float = 5 * 60.0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "SessionConfig":
        env = os.environ if env is None else env
        return cls(
            api_url=env.get("RELAYSTREAM_API_URL", "").strip() or DEFAULT_API_URL,
            read_timeout_seconds=_env_float(env, "RELAYSTREAM_READ_TIMEOUT", 30.0),
            max_session_seconds=_env_float(env, "RELAYSTREAM_MAX_SESSION_SECONDS", 300.0),
        )


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for resilient retry behavior."""
    max_retries: int = 3
    initial_backoff_ms: int = 5000
    max_backoff_ms: int = 10_000
    network_wait_timeout_seconds: float = 2 * 60.0
    min_continuation_tokens: int = 1000

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RetryConfig":
        env = os.environ if env is None else env
        initial = _env_int(env, "RELAYSTREAM_INITIAL_BACKOFF_MS", 5000, minimum=0)
        cap = _env_int(env, "RELAYSTREAM_MAX_BACKOFF_MS", 10_000, minimum=0)
        if cap < initial:
            raise ValueError("RELAYSTREAM_MAX_BACKOFF_MS must be >= RELAYSTREAM_INITIAL_BACKOFF_MS")
        return cls(
            max_retries=_env_int(env, "RELAYSTREAM_MAX_RETRIES", 3, minimum=0),
            initial_backoff_ms=initial,
            max_backoff_ms=cap,
            network_wait_timeout_seconds=_env_float(env, "RELAYSTREAM_NETWORK_WAIT_TIMEOUT", 120.0),
        )


# ============================================================
# Credentials
# ============================================================

class CredentialProvider(Protocol):
    def get_api_key(self) -> str:
        """Return the API key; raise MissingApiKeyError if none is set."""
        ...


class EnvCredentialProvider:
    """Reads the API key from the environment on every call."""

    def __init__(self, variable: str = API_KEY_ENV, env: Optional[Mapping[str, str]] = None):
        self.variable = variable
        self._env = env

    def get_api_key(self) -> str:
        env = os.environ if self._env is None else self._env
        key = env.get(self.variable, "").strip()
        if not key:
            raise MissingApiKeyError(f"{self.variable} not configured")
        return key


class StaticCredentialProvider:
    def __init__(self, api_key: str):
        self._api_key = api_key

    def get_api_key(self) -> str:
        if not self._api_key.strip():
            raise MissingApiKeyError("API key is empty")
        return self._api_key


def looks_like_api_key(key: str) -> bool:
    """Cheap format check; only the server can say whether a key is valid."""
    return bool(key) and key.startswith(API_KEY_PREFIX)
