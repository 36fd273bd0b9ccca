"""
Login endpoint.

- GET /login/{link_token} - issue CSRF cookies and redirect to the provider
"""

from fastapi import APIRouter, Depends, Path
from fastapi.responses import RedirectResponse
from loguru import logger

from oidc_link.common.dependencies import get_csrf_guard, get_link_callback_service
from oidc_link.services.csrf_guard import CsrfGuard
from oidc_link.services.link_callback import LinkCallbackService

LOG_PREFIX = "[LoginAPI]"
router = APIRouter(tags=["Linking"])


@router.get("/login/{link_token}")
async def login(
    link_token: str = Path(..., min_length=1, max_length=256, description="Link token from the chat command"),
    service: LinkCallbackService = Depends(get_link_callback_service),
    guard: CsrfGuard = Depends(get_csrf_guard),
) -> RedirectResponse:
    """
    Start the provider login for a pending link.

    Unknown or expired tokens get the error page (400) and no cookies.
    Opening the URL again re-issues cookies, nonce and PKCE pair.
    """
    authorization_url, session = await service.begin_login(link_token)

    response = RedirectResponse(url=authorization_url, status_code=302)
    guard.set_cookies(response, session)
    response.headers["Cache-Control"] = "no-store"
    logger.debug(f"{LOG_PREFIX} Login redirect issued for {link_token[:8]}…")
    return response
