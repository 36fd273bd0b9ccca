"""
API route aggregation

- /login/{link_token}, /oauth/callback: browser side of the linking flow
- /health: liveness + pending-link count
"""
from fastapi import APIRouter

from .health import router as health_router
from .login import router as login_router
from .oauth import router as oauth_router

api_router = APIRouter()
api_router.include_router(login_router)
api_router.include_router(oauth_router)
api_router.include_router(health_router)

__all__ = ["api_router"]
