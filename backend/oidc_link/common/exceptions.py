"""
Unified exception hierarchy (single entry point)

- **Exception classes**: all HTTP-facing errors inherit `AppException(HTTPException)`,
  separating `status_code` (HTTP) from `code` (business error code) and carrying
  extra detail in `data`.
- **Global handlers**: `register_exception_handlers` installs FastAPI handlers that
  render the generic HTML error page. Users only ever see the generic message;
  operators get the detail in the logs.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import Response
from loguru import logger

from oidc_link.common.pages import render_error_page

# Business error codes
INVALID_LINK_CODE = 2001
CSRF_MISMATCH_CODE = 2002
EXCHANGE_FAILURE_CODE = 2003
AUTHORIZATION_DENIED_CODE = 2004


class AppException(HTTPException):
    """Application base exception (raise this class or a subclass from business code)"""

    code: int
    data: Any

    def __init__(
        self,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        message: str = "Internal Server Error",
        *,
        code: int | None = None,
        data: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.code = status_code if code is None else code
        self.data = data


class BadRequestException(AppException):
    """Bad request (400)"""

    def __init__(self, message: str = "Bad request", *, code: int | None = None, data: Any = None):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, message=message, code=code, data=data)


class UnauthorizedException(AppException):
    """Unauthorized (401)"""

    def __init__(self, message: str = "Unauthorized", *, code: int | None = None, data: Any = None):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, message=message, code=code, data=data)


class InternalServerException(AppException):
    """Internal error (500)"""

    def __init__(self, message: str = "Internal Server Error", *, code: int | None = None, data: Any = None):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, message=message, code=code, data=data)


# Linking flow


class InvalidOrExpiredLinkException(BadRequestException):
    """Unknown, consumed or expired link token (400)"""

    def __init__(self, message: str = "This link is invalid or has expired. Run the link command again."):
        super().__init__(message=message, code=INVALID_LINK_CODE)


class CsrfMismatchException(UnauthorizedException):
    """Login cookies missing or not matching the callback state (401)"""

    def __init__(self, message: str = "Your login session could not be verified. Open the link from Discord again."):
        super().__init__(message=message, code=CSRF_MISMATCH_CODE)


class AuthorizationDeniedException(BadRequestException):
    """The identity provider redirected back with an error (400)"""

    def __init__(self, message: str = "Sign-in was cancelled or refused by the identity provider."):
        super().__init__(message=message, code=AUTHORIZATION_DENIED_CODE)


class ExchangeFailureException(InternalServerException):
    """Code exchange or identity validation failed (500)"""

    def __init__(self, message: str = "We could not verify your identity with the provider. Please try again later."):
        super().__init__(message=message, code=EXCHANGE_FAILURE_CODE)


# Non-HTTP errors


class DeliveryError(Exception):
    """The chat platform rejected a result message. Logged only."""


class StartupError(RuntimeError):
    """A collaborator required to serve traffic could not be initialised."""


# Global handlers


def create_error_response(*, status_code: int, message: str) -> Response:
    """Build the browser-facing error response"""
    return render_error_page(message, status_code)


async def app_exception_handler(request: Request, exc: AppException) -> Response:
    """Handle AppException."""
    logger.warning(
        f"[Exceptions] {request.method} {request.url.path} -> {exc.status_code} "
        f"code={getattr(exc, 'code', exc.status_code)}"
    )
    return create_error_response(status_code=exc.status_code, message=str(exc.detail))


async def http_exception_handler(request: Request, exc: HTTPException) -> Response:
    """Handle FastAPI/Starlette HTTPException (non AppException)."""
    return create_error_response(status_code=exc.status_code, message=str(exc.detail))


async def request_validation_exception_handler(request: Request, exc: Exception) -> Response:
    """Handle request validation errors."""
    return create_error_response(
        status_code=status.HTTP_400_BAD_REQUEST,
        message="The request was malformed.",
    )


async def general_exception_handler(request: Request, exc: Exception) -> Response:
    """Handle uncaught exceptions (500)."""
    logger.exception("Unhandled exception: {}", exc)

    from oidc_link.core.settings import settings

    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message=f"{type(exc).__name__}: {exc}" if settings.debug else "Something went wrong. Please try again later.",
    )


def register_exception_handlers(app: Any) -> None:
    """
    Register exception handlers on a FastAPI app.

    Kept free of FastAPI type imports at call sites to avoid import cycles.
    """
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
