"""relaystream Network Module"""

from .monitor import ConnectivityMonitor, NetworkMonitor, ReachabilityMonitor

__all__ = [
    "ConnectivityMonitor",
    "NetworkMonitor",
    "ReachabilityMonitor",
]
