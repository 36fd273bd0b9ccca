"""
Repository Layer
"""

from .pending_link import InMemoryPendingLinkRepository, PendingLinkRepository, PendingLinkSweeper

__all__ = [
    "PendingLinkRepository",
    "InMemoryPendingLinkRepository",
    "PendingLinkSweeper",
]
