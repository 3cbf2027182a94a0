import asyncio
import json
import logging
import time
import weakref
from typing import Any, Callable, Dict, Tuple

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..models import OrderRecord, SessionState, trim_history
from ..settings import get_settings
from .redis import RedisStore, get_redis_store

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "session:"


def _session_to_dict(state: SessionState) -> Dict[str, Any]:
    """Flatten a call session (caller, history, cached orders) for storage."""
    return {
        "session_key": state.session_key,
        "caller": state.caller,
        "customer_name": state.customer_name,
        "messages": state.messages,
        "orders": [o.to_dict() for o in state.orders],
        "tool_calls_count": state.tool_calls_count,
    }


def _dict_to_session(data: Dict[str, Any]) -> SessionState:
    """Rebuild a call session from its stored form; orders become OrderRecords again."""
    return SessionState(
        session_key=data["session_key"],
        caller=data.get("caller", ""),
        customer_name=data.get("customer_name", ""),
        messages=list(data.get("messages", [])),
        orders=[OrderRecord.from_dict(o) for o in data.get("orders", [])],
        tool_calls_count=int(data.get("tool_calls_count", 0)),
    )


class SessionStore:
    """Keyed session persistence shared by stateless webhook requests.

    Callers serialize read-modify-write of one session with ``lock(key)``;
    different sessions never contend. ``save`` trims history to the
    configured limit before persisting.
    """

    def __init__(self, ttl_seconds: int, history_limit: int) -> None:
        self._ttl = ttl_seconds
        self._history_limit = history_limit
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def lock(self, session_key: str) -> asyncio.Lock:
        """Return the mutex guarding session_key (alive while anyone holds it)."""
        lock = self._locks.get(session_key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_key] = lock
        return lock

    async def load(self, session_key: str) -> SessionState | None:
        raise NotImplementedError

    async def save(self, state: SessionState) -> bool:
        raise NotImplementedError

    async def delete(self, session_key: str) -> bool:
        raise NotImplementedError

    async def close(self) -> None:
        return None

    def _prepare(self, state: SessionState) -> Dict[str, Any]:
        state.messages = trim_history(state.messages, self._history_limit)
        return _session_to_dict(state)


class MemorySessionStore(SessionStore):
    """In-process store; entries expire ttl_seconds after their last save.

    Entries are kept in save order, so expired ones are always at the front
    and each save evicts them before adding its own.
    """

    def __init__(
        self,
        ttl_seconds: int,
        history_limit: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(ttl_seconds, history_limit)
        self._clock = clock
        self._entries: Dict[str, Tuple[float, str]] = {}

    def _expired(self, saved_at: float, now: float) -> bool:
        return self._ttl > 0 and now - saved_at > self._ttl

    def _evict_expired(self, now: float) -> None:
        stale = []
        for key, (saved_at, _) in self._entries.items():
            if not self._expired(saved_at, now):
                break
            stale.append(key)
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug("Evicted %d expired sessions", len(stale))

    async def load(self, session_key: str) -> SessionState | None:
        entry = self._entries.get(session_key)
        if entry is None:
            return None
        saved_at, payload = entry
        if self._expired(saved_at, self._clock()):
            logger.info("Session %s expired", session_key)
            del self._entries[session_key]
            return None
        return _dict_to_session(json.loads(payload))

    async def save(self, state: SessionState) -> bool:
        now = self._clock()
        self._evict_expired(now)
        # stored serialized so callers never alias the cached copy
        payload = json.dumps(self._prepare(state))
        self._entries.pop(state.session_key, None)
        self._entries[state.session_key] = (now, payload)
        return True

    async def delete(self, session_key: str) -> bool:
        self._entries.pop(session_key, None)
        return True


class RedisSessionStore(SessionStore):
    """Redis-backed store; sessions are JSON under ``session:<key>`` with a TTL."""

    def __init__(self, redis: RedisStore, ttl_seconds: int, history_limit: int) -> None:
        super().__init__(ttl_seconds, history_limit)
        self._redis = redis

    async def load(self, session_key: str) -> SessionState | None:
        """Session for the call, or None when Redis has nothing usable for it."""
        raw = await self._redis.get(session_key)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            session = _dict_to_session(data)
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.warning("Discarding unreadable session %s: %s", session_key, e)
            return None
        logger.debug("Session %s loaded with %d messages", session_key, len(session.messages))
        return session

    async def save(self, state: SessionState) -> bool:
        """Write the trimmed session; Redis expires it ttl_seconds after this save."""
        data = self._prepare(state)
        try:
            payload = json.dumps(data)
        except (TypeError, ValueError) as e:
            logger.warning("Session %s not saved, history is not JSON: %s", state.session_key, e)
            return False
        return await self._redis.set(state.session_key, payload, ttl_seconds=self._ttl)

    async def delete(self, session_key: str) -> bool:
        return await self._redis.delete(session_key)

    async def close(self) -> None:
        await self._redis.close()


_store_instance: SessionStore | None = None


async def get_session_store_async() -> SessionStore:
    """Return the session store: Redis when configured and reachable, else memory. Cached."""
    global _store_instance
    if _store_instance is not None:
        return _store_instance

    settings = get_settings()
    redis = get_redis_store(namespace=SESSION_KEY_PREFIX)
    if redis is not None:
        try:
            await redis.connect()
            _store_instance = RedisSessionStore(
                redis,
                ttl_seconds=settings.context_ttl_seconds,
                history_limit=settings.history_limit,
            )
            return _store_instance
        except (RedisConnectionError, RedisTimeoutError, ConnectionError, TimeoutError) as e:
            logger.warning("Redis unavailable, falling back to in-memory sessions: %s", e)

    _store_instance = MemorySessionStore(
        ttl_seconds=settings.context_ttl_seconds,
        history_limit=settings.history_limit,
    )
    return _store_instance


async def close_session_store() -> None:
    """Close the session store's connections. Idempotent."""
    global _store_instance
    if _store_instance is not None:
        await _store_instance.close()
        _store_instance = None
        logger.debug("Session store closed")
