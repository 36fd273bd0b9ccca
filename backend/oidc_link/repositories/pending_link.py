"""
Pending-link repository - in-flight linking attempts keyed by link token.

`PendingLinkRepository` is the abstraction the services depend on;
`InMemoryPendingLinkRepository` is the single-process implementation.
"""

import asyncio
import contextlib
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Dict, Optional

from loguru import logger

from oidc_link.core.security import generate_token
from oidc_link.models.pending_link import PendingLink

if TYPE_CHECKING:
    from oidc_link.services.delivery import ReplyHandle

LOG_PREFIX = "[PendingLinks]"

# 32 bytes -> 256 bits; collisions are not expected, the retry loop is a backstop
TOKEN_BYTES = 32
MAX_CREATE_ATTEMPTS = 5


class PendingLinkRepository(ABC):
    """Pending-link store contract."""

    def __init__(self, ttl: timedelta):
        self.ttl = ttl

    @abstractmethod
    async def create(
        self,
        chat_user_id: int,
        chat_user_name: str,
        reply_handle: "ReplyHandle",
        fallback_channel_id: Optional[int] = None,
    ) -> str:
        """Insert a new record and return its freshly generated link token."""

    @abstractmethod
    async def get(self, link_token: str) -> Optional[PendingLink]:
        """Return the live record, or None if unknown or expired."""

    @abstractmethod
    async def mark_responded(self, link_token: str) -> bool:
        """
        Set `responded`. Idempotent.

        Returns True only for the call that performed the false -> true transition.
        """

    @abstractmethod
    async def claim(self, link_token: str) -> Optional[PendingLink]:
        """
        Reserve a live record for one callback.

        Returns None when the record is unknown, expired or already claimed.
        """

    @abstractmethod
    async def release(self, link_token: str) -> None:
        """Drop a claim so a later callback can try again; no-op if absent."""

    @abstractmethod
    async def remove(self, link_token: str) -> Optional[PendingLink]:
        """Delete the record; no-op if absent."""

    @abstractmethod
    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Evict every record older than the TTL; returns how many were removed."""

    @abstractmethod
    async def count(self) -> int:
        """Number of live records."""


class InMemoryPendingLinkRepository(PendingLinkRepository):
    """Dict + one asyncio.Lock. Suitable for a single process."""

    def __init__(self, ttl: timedelta):
        super().__init__(ttl)
        self._links: Dict[str, PendingLink] = {}
        self._lock = asyncio.Lock()

    async def create(
        self,
        chat_user_id: int,
        chat_user_name: str,
        reply_handle: "ReplyHandle",
        fallback_channel_id: Optional[int] = None,
    ) -> str:
        async with self._lock:
            for _ in range(MAX_CREATE_ATTEMPTS):
                link_token = generate_token(TOKEN_BYTES)
                if link_token not in self._links:
                    break
            else:
                raise RuntimeError("Could not allocate a unique link token")

            link = PendingLink(
                link_token=link_token,
                chat_user_id=chat_user_id,
                chat_user_name=chat_user_name,
                reply_handle=reply_handle,
                fallback_channel_id=fallback_channel_id,
            )
            self._links[link_token] = link

        logger.info(f"{LOG_PREFIX} Created link {link.token_hint} for user {chat_user_id}")
        return link_token

    async def get(self, link_token: str) -> Optional[PendingLink]:
        async with self._lock:
            link = self._links.get(link_token)
            if link is None:
                return None
            if link.is_expired(self.ttl):
                del self._links[link_token]
                logger.info(f"{LOG_PREFIX} Link {link.token_hint} expired on read")
                return None
            return link

    async def mark_responded(self, link_token: str) -> bool:
        async with self._lock:
            link = self._links.get(link_token)
            if link is None or link.responded:
                return False
            link.responded = True
            return True

    async def claim(self, link_token: str) -> Optional[PendingLink]:
        async with self._lock:
            link = self._links.get(link_token)
            if link is None or link.in_flight or link.is_expired(self.ttl):
                return None
            link.in_flight = True
            return link

    async def release(self, link_token: str) -> None:
        async with self._lock:
            link = self._links.get(link_token)
            if link is not None:
                link.in_flight = False

    async def remove(self, link_token: str) -> Optional[PendingLink]:
        async with self._lock:
            return self._links.pop(link_token, None)

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        async with self._lock:
            expired = [token for token, link in self._links.items() if link.is_expired(self.ttl, now)]
            for token in expired:
                del self._links[token]

        if expired:
            logger.info(f"{LOG_PREFIX} Purged {len(expired)} expired link(s)")
        return len(expired)

    async def count(self) -> int:
        async with self._lock:
            return len(self._links)


class PendingLinkSweeper:
    """Background task that periodically evicts expired pending links."""

    def __init__(self, repository: PendingLinkRepository, interval_seconds: float):
        self.repository = repository
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="pending-link-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.repository.purge_expired()
            except Exception as e:
                logger.error(f"{LOG_PREFIX} Sweep failed: {e}")
