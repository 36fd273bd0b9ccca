"""
Data models
"""

from .pending_link import PendingLink

__all__ = ["PendingLink"]
