"""
PendingLink - one in-flight linking attempt.

Lives only in process memory; the link token is both the primary key and the
OIDC `state` value, so it is treated as a bearer secret.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from oidc_link.services.delivery import ReplyHandle


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PendingLink:
    link_token: str
    chat_user_id: int
    chat_user_name: str
    reply_handle: "ReplyHandle" = field(repr=False)
    fallback_channel_id: Optional[int] = None
    responded: bool = False
    in_flight: bool = False
    created_at: datetime = field(default_factory=_utcnow)

    def is_expired(self, ttl: timedelta, now: Optional[datetime] = None) -> bool:
        return (now or _utcnow()) - self.created_at >= ttl

    @property
    def token_hint(self) -> str:
        """Loggable prefix of the token"""
        return f"{self.link_token[:8]}…"
