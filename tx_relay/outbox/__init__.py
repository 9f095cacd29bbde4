"""
Durable outbox for transactions awaiting submission
"""

from .models import Base, OutboxRow, FailedRow
from .store import OutboxStore

__all__ = [
    "Base",
    "OutboxRow",
    "FailedRow",
    "OutboxStore",
]
