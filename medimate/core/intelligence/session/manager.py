"""Per-sender conversation context store (Redis with in-memory fallback)."""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncContextManager, AsyncIterator, Callable, Optional

from redis.exceptions import RedisError

from medimate.config import settings
from medimate.infra.redis import APP_PREFIX, RedisClient, get_redis
from .models import ConversationContext

logger = logging.getLogger(__name__)

# Context key prefix (extends APP_PREFIX)
CONTEXT_PREFIX = f"{APP_PREFIX}context:"


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class KeyedLocks:
    """
    One asyncio lock per key.

    Entries are dropped once no task holds or waits for them, so the map
    only ever holds keys that are in use.
    """

    def __init__(self):
        self._locks: dict[str, _LockEntry] = {}

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for key."""
        entry = self._locks.get(key)
        if entry is None:
            entry = _LockEntry()
            self._locks[key] = entry
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(key) is entry:
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class ContextStore:
    """
    Conversation context keyed by sender id.

    Key pattern: medimate:v1:context:{sender_id}

    Contexts expire after the configured TTL. Redis is used when reachable;
    otherwise contexts live in process memory with the same TTL. Each sender
    has its own asyncio lock so turns for one sender are serialized while
    different senders proceed concurrently.
    """

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize store.

        Args:
            ttl_seconds: Context lifetime (defaults to settings)
            clock: Monotonic clock for in-memory expiry (for testing)
        """
        self._ttl = ttl_seconds or settings.conversation_ttl_seconds
        self._clock = clock
        self._in_memory_fallback: dict[str, tuple[str, float]] = {}
        self._locks = KeyedLocks()

    def _key(self, sender_id: str) -> str:
        """Generate Redis key."""
        return f"{CONTEXT_PREFIX}{sender_id}"

    def lock(self, sender_id: str) -> AsyncContextManager[None]:
        """Hold the sender's lock for one turn."""
        return self._locks.lock(sender_id)

    @property
    def active_locks(self) -> int:
        """Number of senders with a held or awaited lock."""
        return len(self._locks)

    @property
    def memory_entries(self) -> int:
        """Contexts currently held in process memory."""
        return len(self._in_memory_fallback)

    def _sweep_expired(self) -> None:
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._in_memory_fallback.items() if now >= expires_at]
        for key in expired:
            del self._in_memory_fallback[key]
        if expired:
            logger.debug(f"Dropped {len(expired)} expired in-memory context(s)")

    async def get(self, sender_id: str) -> ConversationContext:
        """
        Get the sender's context, creating a fresh one if absent or expired.

        Args:
            sender_id: Sender identifier (WhatsApp id)

        Returns:
            ConversationContext
        """
        data = await self._read(sender_id)
        if data:
            try:
                return ConversationContext.from_json(data)
            except (ValueError, KeyError) as e:
                logger.warning(f"Discarding unreadable context for {sender_id}: {e}")

        return ConversationContext(sender_id=sender_id)

    async def save(self, context: ConversationContext) -> None:
        """
        Save context and refresh its TTL.

        Args:
            context: ConversationContext to save
        """
        context.updated_at = datetime.now(timezone.utc)
        payload = context.to_json()

        redis = await get_redis()
        if redis:
            try:
                await redis.setex(self._key(context.sender_id), self._ttl, payload)
                logger.debug(f"Context saved: {context.sender_id} state={context.state.value}")
                return
            except RedisError as e:
                logger.error(f"Failed to save context for {context.sender_id}: {e}")
                RedisClient.mark_disconnected()

        # Fallback to in-memory
        self._sweep_expired()
        self._in_memory_fallback[context.sender_id] = (payload, self._clock() + self._ttl)

    async def delete(self, sender_id: str) -> None:
        """Delete the sender's context."""
        self._in_memory_fallback.pop(sender_id, None)

        redis = await get_redis()
        if redis:
            try:
                await redis.delete(self._key(sender_id))
                logger.debug(f"Context deleted: {sender_id}")
            except RedisError as e:
                logger.error(f"Failed to delete context for {sender_id}: {e}")
                RedisClient.mark_disconnected()

    async def _read(self, sender_id: str) -> Optional[str]:
        redis = await get_redis()
        if redis:
            try:
                return await redis.get(self._key(sender_id))
            except RedisError as e:
                logger.error(f"Failed to read context for {sender_id}: {e}")
                RedisClient.mark_disconnected()

        entry = self._in_memory_fallback.get(sender_id)
        if entry is None:
            return None

        payload, expires_at = entry
        if self._clock() >= expires_at:
            del self._in_memory_fallback[sender_id]
            logger.debug(f"Context expired: {sender_id}")
            return None
        return payload


# Singleton
_store: Optional[ContextStore] = None


def get_context_store() -> ContextStore:
    """Get singleton ContextStore."""
    global _store
    if _store is None:
        _store = ContextStore()
    return _store
