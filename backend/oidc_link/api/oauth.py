"""
OIDC callback endpoint.

- GET /oauth/callback - resolve the provider redirect and report the result
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse

from oidc_link.common.dependencies import get_csrf_guard, get_link_callback_service
from oidc_link.common.pages import render_success_page
from oidc_link.services.csrf_guard import CsrfGuard
from oidc_link.services.link_callback import LinkCallbackService

router = APIRouter(prefix="/oauth", tags=["Linking"])


@router.get("/callback", response_class=HTMLResponse)
async def oauth_callback(
    request: Request,
    code: Optional[str] = Query(None, description="Authorization code"),
    state: Optional[str] = Query(None, description="Link token echoed by the provider"),
    error: Optional[str] = Query(None, description="Provider error code"),
    error_description: Optional[str] = Query(None, description="Provider error description"),
    service: LinkCallbackService = Depends(get_link_callback_service),
    guard: CsrfGuard = Depends(get_csrf_guard),
) -> HTMLResponse:
    """
    Handle the provider redirect.

    Failures are raised as AppException subclasses and rendered by the global
    handlers (400 invalid link or denied, 401 CSRF, 500 exchange).
    """
    params = {
        key: value
        for key, value in {
            "code": code,
            "state": state,
            "error": error,
            "error_description": error_description,
        }.items()
        if value is not None
    }
    result = await service.resolve(params, guard.read(request))

    response = render_success_page(result.claims.preferred_username)
    guard.clear_cookies(response)
    return response
