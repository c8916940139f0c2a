"""
Triage Run Locks
================

Per-ticket run locks: at most one triage run per ticket at a time.
"""

import uuid
from typing import Optional, Set

from redis.asyncio import Redis

from helpdesk_triage.shared.infrastructure.logging import get_logger
from helpdesk_triage.triage.application import ITriageRunLock

logger = get_logger(__name__)

# Delete the key only if it still holds our token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class InProcessRunLock(ITriageRunLock):
    """
    Run lock for a single event loop.

    Acquire and release never suspend, so a plain set is race-free here.
    """

    def __init__(self):
        self._active: Set[str] = set()

    async def try_acquire(self, ticket_id: str) -> Optional[str]:
        if ticket_id in self._active:
            return None
        self._active.add(ticket_id)
        return ticket_id

    async def release(self, ticket_id: str, token: str) -> None:
        self._active.discard(ticket_id)

    def is_held(self, ticket_id: str) -> bool:
        return ticket_id in self._active


class RedisRunLock(ITriageRunLock):
    """
    Run lock shared by every process using the same Redis.

    ``SET NX PX`` with a random token; the TTL frees tickets held by crashed
    workers and should exceed the longest job timeout.
    """

    def __init__(self, redis: Redis, ttl_seconds: int = 180, prefix: str = "triage:lock:ticket"):
        self._redis = redis
        self._ttl_ms = ttl_seconds * 1000
        self._prefix = prefix

    def _key(self, ticket_id: str) -> str:
        return f"{self._prefix}:{ticket_id}"

    async def try_acquire(self, ticket_id: str) -> Optional[str]:
        token = uuid.uuid4().hex
        acquired = await self._redis.set(self._key(ticket_id), token, nx=True, px=self._ttl_ms)
        if not acquired:
            logger.warning("Ticket already locked", extra={"ticket_id": ticket_id})
            return None
        return token

    async def release(self, ticket_id: str, token: str) -> None:
        released = await self._redis.eval(_RELEASE_SCRIPT, 1, self._key(ticket_id), token)
        if not released:
            logger.warning("Run lock expired before release", extra={"ticket_id": ticket_id})
