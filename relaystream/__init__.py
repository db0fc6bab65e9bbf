"""
relaystream - Resilient streaming client for the Anthropic Messages API

Streams generated text over SSE and, when the connection drops mid-stream,
resumes generation from the text already received instead of starting over.
"""

__version__ = "1.0.0"

from .config import (
    EnvCredentialProvider,
    RetryConfig,
    SessionConfig,
    StaticCredentialProvider,
)
from .core.errors import ErrorKind, StreamApiError, classify_error, is_retryable
from .core.models import Message, Role, StreamRequest, Usage
from .network.monitor import ConnectivityMonitor, NetworkMonitor, ReachabilityMonitor
from .resilience import (
    Completed,
    Delta,
    Failed,
    ResilientResult,
    ResilientStreamingClient,
    Retrying,
    Started,
    ToolInvocationRequested,
    WaitingForNetwork,
)
from .streaming import EventDecoder, StreamingSession
from .client import AnthropicClient

__all__ = [
    "__version__",
    # Client
    "AnthropicClient",
    "ResilientStreamingClient",
    "StreamingSession",
    "EventDecoder",
    # Config
    "EnvCredentialProvider",
    "RetryConfig",
    "SessionConfig",
    "StaticCredentialProvider",
    # Errors
    "ErrorKind",
    "StreamApiError",
    "classify_error",
    "is_retryable",
    # Models
    "Message",
    "Role",
    "StreamRequest",
    "Usage",
    # Network
    "ConnectivityMonitor",
    "NetworkMonitor",
    "ReachabilityMonitor",
    # Results
    "Completed",
    "Delta",
    "Failed",
    "ResilientResult",
    "Retrying",
    "Started",
    "ToolInvocationRequested",
    "WaitingForNetwork",
]
