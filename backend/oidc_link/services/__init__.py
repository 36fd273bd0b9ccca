"""
Service Layer
"""

from .csrf_guard import CsrfCookies, CsrfGuard, CsrfMismatchError, CsrfSession
from .delivery import (
    ChannelPoster,
    DeliveryOutcome,
    DisabledChannelPoster,
    ReplyHandle,
    ResultDelivery,
)
from .link_callback import LinkCallbackService, LinkResult
from .link_command import LinkCommandService

__all__ = [
    # CSRF
    "CsrfCookies",
    "CsrfGuard",
    "CsrfMismatchError",
    "CsrfSession",
    # Delivery
    "ChannelPoster",
    "DeliveryOutcome",
    "DisabledChannelPoster",
    "ReplyHandle",
    "ResultDelivery",
    # Linking
    "LinkCallbackService",
    "LinkCommandService",
    "LinkResult",
]
