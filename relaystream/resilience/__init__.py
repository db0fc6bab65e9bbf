"""
relaystream Resilience Module

Retry, network wait and continuation around streaming sessions.
"""

from .results import (
    Completed,
    Delta,
    Failed,
    ResilientResult,
    Retrying,
    Started,
    ToolInvocationRequested,
    WaitingForNetwork,
    is_terminal_result,
)
from .state import CONTINUE_INSTRUCTION, RetryState, calculate_backoff, estimate_tokens
from .client import ProgressSink, ResilientStreamingClient

__all__ = [
    # Results
    "Completed",
    "Delta",
    "Failed",
    "ResilientResult",
    "Retrying",
    "Started",
    "ToolInvocationRequested",
    "WaitingForNetwork",
    "is_terminal_result",
    # State
    "CONTINUE_INSTRUCTION",
    "RetryState",
    "calculate_backoff",
    "estimate_tokens",
    # Client
    "ProgressSink",
    "ResilientStreamingClient",
]
