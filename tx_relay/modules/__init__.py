"""
Functional modules for RelayClient

Provides the background pipeline stages:
- OutboxWorker: Drains the outbox through the failover client
- ConfirmationMonitor: Streams commitment levels for a signature
"""

from .monitor import ConfirmationMonitor
from .worker import OutboxWorker, WorkerConfig

__all__ = [
    "ConfirmationMonitor",
    "OutboxWorker",
    "WorkerConfig",
]
