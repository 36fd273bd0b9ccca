"""
Health endpoint.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from oidc_link.common.dependencies import get_bot_ready, get_pending_link_repository
from oidc_link.repositories.pending_link import PendingLinkRepository

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health(
    repository: PendingLinkRepository = Depends(get_pending_link_repository),
    bot_ready: bool = Depends(get_bot_ready),
) -> Dict[str, Any]:
    return {
        "status": "ok",
        "pending_links": await repository.count(),
        "bot_ready": bot_ready,
    }
