"""
Shared dependencies

Collaborators are built once in the application lifespan and stored on
`app.state`; routes receive them through these providers so tests can swap
them with `app.dependency_overrides`.
"""
from fastapi import Request

from oidc_link.common.exceptions import InternalServerException
from oidc_link.repositories.pending_link import PendingLinkRepository
from oidc_link.services.csrf_guard import CsrfGuard
from oidc_link.services.link_callback import LinkCallbackService


def _state_attr(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise InternalServerException(f"{name} is not initialised")
    return value


def get_pending_link_repository(request: Request) -> PendingLinkRepository:
    """Pending-link store"""
    return _state_attr(request, "pending_links")


def get_csrf_guard(request: Request) -> CsrfGuard:
    """CSRF guard"""
    return _state_attr(request, "csrf_guard")


def get_link_callback_service(request: Request) -> LinkCallbackService:
    """Login/callback service"""
    return _state_attr(request, "link_callback_service")


def get_bot_ready(request: Request) -> bool:
    """False when the bot is disabled or not connected yet"""
    bot = getattr(request.app.state, "bot", None)
    return bool(bot is not None and bot.is_ready())
