"""Cart Lock Service - one in-flight checkout per buyer.

A buyer (signed-in user or anonymous session) holds at most one active
lock. Locking is lock-or-fail: a second checkout gets ``False`` (409 at
the API) instead of waiting. Locks expire after ``cart_lock_ttl_minutes``
and an expired lock is reclaimed by the next ``lock`` call or by the
periodic sweep.

Storage is pluggable: ``InMemoryCartLockStore`` for a single process,
``RedisCartLockStore`` when several API instances share carts.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable, Dict, Optional, Union

from app.core.config import settings
from app.core.exceptions import CheckoutInProgressError
from app.services.pricing.clock import ensure_utc, now_utc

logger = logging.getLogger(__name__)


# ============================================================================
# Identity & lock records
# ============================================================================


@dataclass(frozen=True)
class CartIdentity:
    """Buyer identity: exactly one of ``user_id`` / ``session_id``."""

    user_id: Optional[str] = None
    session_id: Optional[str] = None

    def __post_init__(self):
        if bool(self.user_id) == bool(self.session_id):
            raise ValueError("CartIdentity needs exactly one of user_id or session_id")

    @property
    def key(self) -> str:
        if self.user_id:
            return f"user:{self.user_id}"
        return f"session:{self.session_id}"

    def __str__(self) -> str:
        return self.key


@dataclass
class CartLock:
    transaction_id: str
    locked_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return ensure_utc(now) >= ensure_utc(self.expires_at)

    def to_json(self) -> str:
        data = asdict(self)
        data["locked_at"] = self.locked_at.isoformat()
        data["expires_at"] = self.expires_at.isoformat()
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> "CartLock":
        data = json.loads(raw)
        return cls(
            transaction_id=data["transaction_id"],
            locked_at=datetime.fromisoformat(data["locked_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )


# ============================================================================
# Stores
# ============================================================================


class CartLockStore(ABC):
    """Keyed lock storage. ``acquire`` must be atomic."""

    @abstractmethod
    def acquire(self, key: str, lock: CartLock, now: datetime) -> bool:
        """Store ``lock`` unless an unexpired lock exists for ``key``."""

    @abstractmethod
    def get(self, key: str) -> Optional[CartLock]:
        ...

    @abstractmethod
    def replace(self, key: str, lock: CartLock, owner: Optional[str] = None) -> bool:
        """Overwrite an existing lock. False if there is none, or if
        ``owner`` is given and the stored lock belongs to another id."""

    @abstractmethod
    def release(self, key: str, owner: Optional[str] = None) -> bool:
        """Delete the lock, only if held by ``owner`` when one is given."""

    @abstractmethod
    def purge_expired(self, now: datetime) -> int:
        ...

    @abstractmethod
    def count(self) -> int:
        ...


class InMemoryCartLockStore(CartLockStore):
    """Process-local dict guarded by a mutex."""

    def __init__(self):
        self._locks: Dict[str, CartLock] = {}
        self._mutex = threading.Lock()

    def acquire(self, key: str, lock: CartLock, now: datetime) -> bool:
        with self._mutex:
            existing = self._locks.get(key)
            if existing is not None and not existing.is_expired(now):
                return False
            if existing is not None:
                logger.info(f"Reclaiming expired cart lock {key} ({existing.transaction_id})")
            self._locks[key] = lock
            return True

    def get(self, key: str) -> Optional[CartLock]:
        return self._locks.get(key)

    def replace(self, key: str, lock: CartLock, owner: Optional[str] = None) -> bool:
        with self._mutex:
            existing = self._locks.get(key)
            if existing is None:
                return False
            if owner is not None and existing.transaction_id != owner:
                return False
            self._locks[key] = lock
            return True

    def release(self, key: str, owner: Optional[str] = None) -> bool:
        with self._mutex:
            existing = self._locks.get(key)
            if existing is None:
                return False
            if owner is not None and existing.transaction_id != owner:
                return False
            del self._locks[key]
            return True

    def purge_expired(self, now: datetime) -> int:
        with self._mutex:
            expired = [k for k, lock in self._locks.items() if lock.is_expired(now)]
            for k in expired:
                del self._locks[k]
            return len(expired)

    def count(self) -> int:
        return len(self._locks)


class RedisCartLockStore(CartLockStore):
    """Redis-backed locks. Redis key TTL does the expiry."""

    PREFIX = "cart_lock:"

    # Compare-and-delete / compare-and-set on the stored transaction id
    RELEASE_IF_OWNER = """
local raw = redis.call('GET', KEYS[1])
if not raw then return 0 end
if cjson.decode(raw)['transaction_id'] ~= ARGV[1] then return 0 end
return redis.call('DEL', KEYS[1])
"""
    REPLACE_IF_OWNER = """
local raw = redis.call('GET', KEYS[1])
if not raw then return 0 end
if cjson.decode(raw)['transaction_id'] ~= ARGV[1] then return 0 end
redis.call('SET', KEYS[1], ARGV[2], 'XX', 'KEEPTTL')
return 1
"""

    def __init__(self, client):
        self._redis = client

    def _k(self, key: str) -> str:
        return f"{self.PREFIX}{key}"

    def acquire(self, key: str, lock: CartLock, now: datetime) -> bool:
        ttl_ms = max(int((ensure_utc(lock.expires_at) - ensure_utc(now)).total_seconds() * 1000), 1)
        return bool(self._redis.set(self._k(key), lock.to_json(), nx=True, px=ttl_ms))

    def get(self, key: str) -> Optional[CartLock]:
        raw = self._redis.get(self._k(key))
        return CartLock.from_json(raw) if raw else None

    def replace(self, key: str, lock: CartLock, owner: Optional[str] = None) -> bool:
        if owner is not None:
            return bool(self._redis.eval(self.REPLACE_IF_OWNER, 1, self._k(key), owner, lock.to_json()))
        return bool(self._redis.set(self._k(key), lock.to_json(), xx=True, keepttl=True))

    def release(self, key: str, owner: Optional[str] = None) -> bool:
        if owner is not None:
            return bool(self._redis.eval(self.RELEASE_IF_OWNER, 1, self._k(key), owner))
        return bool(self._redis.delete(self._k(key)))

    def purge_expired(self, now: datetime) -> int:
        return 0

    def count(self) -> int:
        return sum(1 for _ in self._redis.scan_iter(match=f"{self.PREFIX}*", count=100))


# ============================================================================
# Manager
# ============================================================================


class CartLockManager:
    """Lock operations used by cart routes and the checkout orchestrator.

    Only ``guard`` raises (``CheckoutInProgressError``); every other
    operation logs store failures and reports ``False``.
    """

    def __init__(
        self,
        store: Optional[CartLockStore] = None,
        ttl_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.store = store or InMemoryCartLockStore()
        self.ttl = timedelta(minutes=ttl_minutes or settings.cart_lock_ttl_minutes)
        self._clock = clock

    def lock(self, identity: CartIdentity, transaction_id: str) -> bool:
        now = self._clock()
        lock = CartLock(transaction_id=transaction_id, locked_at=now, expires_at=now + self.ttl)
        try:
            acquired = self.store.acquire(identity.key, lock, now)
        except Exception as e:
            logger.error(f"Cart lock store error on lock {identity}: {e}")
            return False
        if acquired:
            logger.info(f"Cart locked for {identity} (tx {transaction_id})")
        else:
            logger.warning(f"Cart lock contention for {identity}")
        return acquired

    def update_transaction_id(
        self, identity: CartIdentity, transaction_id: str, owner: Optional[str] = None
    ) -> bool:
        """Swap the placeholder id for the gateway's id, keeping the expiry.

        With ``owner``, only a lock still held under that id is updated.
        """
        try:
            current = self.store.get(identity.key)
            if current is None or (owner is not None and current.transaction_id != owner):
                logger.warning(f"No cart lock to update for {identity}")
                return False
            updated = CartLock(transaction_id, current.locked_at, current.expires_at)
            return self.store.replace(identity.key, updated, owner=owner)
        except Exception as e:
            logger.error(f"Cart lock store error on update {identity}: {e}")
            return False

    def unlock(self, identity: CartIdentity, owner: Optional[str] = None) -> bool:
        """Release the buyer's lock; with ``owner``, only if it still holds it."""
        try:
            released = self.store.release(identity.key, owner=owner)
        except Exception as e:
            logger.error(f"Cart lock store error on unlock {identity}: {e}")
            return False
        if released:
            logger.info(f"Cart unlocked for {identity}")
        elif owner is not None:
            logger.warning(f"Cart lock for {identity} no longer held by {owner}; left in place")
        return released

    def get_lock(self, identity: CartIdentity) -> Optional[CartLock]:
        try:
            lock = self.store.get(identity.key)
        except Exception as e:
            logger.error(f"Cart lock store error on read {identity}: {e}")
            return None
        if lock is not None and lock.is_expired(self._clock()):
            return None
        return lock

    def is_locked(self, identity: CartIdentity) -> bool:
        return self.get_lock(identity) is not None

    def is_locked_smart(
        self, identity: CartIdentity, cart_is_empty: Union[bool, Callable[[], bool]]
    ) -> bool:
        """``is_locked`` that releases the lock when the cart is empty.

        A lock over an empty cart is left over from a crashed or abandoned
        checkout.
        """
        if not self.is_locked(identity):
            return False
        empty = cart_is_empty() if callable(cart_is_empty) else cart_is_empty
        if empty:
            logger.info(f"Releasing stale cart lock for {identity} (cart is empty)")
            self.unlock(identity)
            return False
        return True

    def cleanup_expired(self) -> int:
        try:
            removed = self.store.purge_expired(self._clock())
        except Exception as e:
            logger.error(f"Cart lock sweep failed: {e}")
            return 0
        if removed:
            logger.info(f"Cart lock sweep removed {removed} expired locks")
        return removed

    def stats(self) -> dict:
        try:
            active = self.store.count()
        except Exception as e:
            logger.error(f"Cart lock store error on stats: {e}")
            active = -1
        return {
            "active_locks": active,
            "ttl_minutes": int(self.ttl.total_seconds() // 60),
            "store": type(self.store).__name__,
        }

    @asynccontextmanager
    async def guard(self, identity: CartIdentity, transaction_id: str) -> AsyncIterator["HeldCartLock"]:
        """Hold the buyer's lock for the duration of the block.

        Raises CheckoutInProgressError when the lock is taken. On exit the
        lock is released once, and only if this attempt still owns it: a
        lock that expired and was reclaimed by another attempt is left alone.
        """
        if not self.lock(identity, transaction_id):
            raise CheckoutInProgressError()
        held = HeldCartLock(self, identity, transaction_id)
        try:
            yield held
        finally:
            self.unlock(identity, owner=held.transaction_id)


class HeldCartLock:
    """The lock as seen by the attempt holding it."""

    def __init__(self, manager: CartLockManager, identity: CartIdentity, transaction_id: str):
        self._manager = manager
        self.identity = identity
        self.transaction_id = transaction_id

    def rename(self, transaction_id: str) -> bool:
        """Re-key the lock to the gateway's transaction id."""
        renamed = self._manager.update_transaction_id(
            self.identity, transaction_id, owner=self.transaction_id
        )
        if renamed:
            self.transaction_id = transaction_id
        return renamed

    @property
    def is_held(self) -> bool:
        lock = self._manager.get_lock(self.identity)
        return lock is not None and lock.transaction_id == self.transaction_id


_manager: Optional[CartLockManager] = None


def _build_store() -> CartLockStore:
    if settings.redis_url:
        try:
            import redis
            client = redis.from_url(settings.redis_url, socket_connect_timeout=2, decode_responses=True)
            client.ping()
            logger.info("Cart locks stored in Redis")
            return RedisCartLockStore(client)
        except Exception as e:
            logger.warning(f"Redis unavailable, using in-memory cart locks: {e}")
    return InMemoryCartLockStore()


def get_cart_lock_manager() -> CartLockManager:
    """Get the process-wide cart lock manager."""
    global _manager
    if _manager is None:
        _manager = CartLockManager(_build_store())
    return _manager
