"""Identity-keyed cart store.

A cart is a mapping ``(product_id, variant_id) -> quantity`` owned by exactly one
identity (a guest session token or an authenticated user id). ``CartStore`` holds
the cart rules; the backend only knows how to load, replace, delete and lock one
identity's mapping, so memory, Redis and SQL storage are interchangeable.

Every mutation is a read-modify-write performed while holding the identity's
lock, which gives a total order over mutations of one cart and prevents lost
updates between concurrent requests for the same identity.
"""
import json
import logging
import os
import threading
from contextlib import contextmanager, ExitStack
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from redis import Redis
from redis.exceptions import RedisError, LockError
from sqlalchemy import select, delete, text
from sqlalchemy.exc import SQLAlchemyError

from storefront.core.errors import ValidationError, NotFoundError, PersistenceError
from storefront.db.models import CartItem

logger = logging.getLogger(__name__)

LineKey = Tuple[int, Optional[int]]
Lines = Dict[LineKey, int]


@dataclass(frozen=True)
class CartIdentity:
    kind: str  # "guest" | "user"
    value: str

    @classmethod
    def guest(cls, token: str) -> "CartIdentity":
        return cls("guest", token)

    @classmethod
    def user(cls, user_id) -> "CartIdentity":
        return cls("user", str(user_id))

    @property
    def key(self) -> str:
        return f"{self.kind}:{self.value}"

    @property
    def is_guest(self) -> bool:
        return self.kind == "guest"

    @property
    def user_id(self) -> Optional[int]:
        return None if self.is_guest else int(self.value)


@dataclass(frozen=True)
class CartLineItem:
    product_id: int
    variant_id: Optional[int]
    quantity: int


def _to_items(lines: Lines) -> List[CartLineItem]:
    return [CartLineItem(pid, vid, qty) for (pid, vid), qty in lines.items()]


class _LocalLocks:
    """One threading.Lock per identity key, created on first use."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield


class CartBackend:
    def load(self, key: str) -> Lines:
        raise NotImplementedError

    def save(self, key: str, lines: Lines) -> None:
        """Replace the whole cart for ``key``. Either all of it is stored or none."""
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def lock(self, key: str):
        raise NotImplementedError

    def reload(self) -> None:
        pass

    def flush(self) -> None:
        pass


class MemoryCartBackend(CartBackend):
    def __init__(self, snapshot_path: Optional[str] = None):
        self.snapshot_path = snapshot_path or None
        self._carts: Dict[str, Lines] = {}
        self._guard = threading.Lock()
        self._locks = _LocalLocks()

    def load(self, key: str) -> Lines:
        with self._guard:
            return dict(self._carts.get(key, {}))

    def save(self, key: str, lines: Lines) -> None:
        with self._guard:
            if lines:
                self._carts[key] = dict(lines)
            else:
                self._carts.pop(key, None)

    def delete(self, key: str) -> None:
        with self._guard:
            self._carts.pop(key, None)

    def lock(self, key: str):
        return self._locks.hold(key)

    def flush(self) -> None:
        if not self.snapshot_path:
            return
        with self._guard:
            data = {
                key: [{"product_id": pid, "variant_id": vid, "quantity": qty} for (pid, vid), qty in lines.items()]
                for key, lines in self._carts.items()
            }
        tmp = f"{self.snapshot_path}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp, self.snapshot_path)
        logger.info("Flushed %d carts to %s", len(data), self.snapshot_path)

    def reload(self) -> None:
        if not self.snapshot_path or not os.path.exists(self.snapshot_path):
            return
        with open(self.snapshot_path, encoding="utf-8") as f:
            data = json.load(f)
        carts = {
            key: {(int(it["product_id"]), it["variant_id"]): int(it["quantity"]) for it in items}
            for key, items in data.items()
        }
        with self._guard:
            self._carts = {k: v for k, v in carts.items() if v}
        logger.info("Reloaded %d carts from %s", len(self._carts), self.snapshot_path)


class RedisCartBackend(CartBackend):
    """One hash per identity: field ``"<product_id>:<variant_id or ''>"`` -> quantity."""

    def __init__(self, client: Redis, lock_timeout: float = 5.0):
        self.client = client
        self.lock_timeout = lock_timeout

    @staticmethod
    def cart_key(key: str) -> str:
        return f"cart:{key}"

    @staticmethod
    def _field(pair: LineKey) -> str:
        pid, vid = pair
        return f"{pid}:{'' if vid is None else vid}"

    @staticmethod
    def _parse_field(field: str) -> LineKey:
        pid, _, vid = field.partition(":")
        return int(pid), (int(vid) if vid else None)

    def load(self, key: str) -> Lines:
        try:
            raw = self.client.hgetall(self.cart_key(key))
        except RedisError as e:
            raise PersistenceError(f"redis load failed for {key}: {e}") from e
        return {self._parse_field(f): int(q) for f, q in raw.items()}

    def save(self, key: str, lines: Lines) -> None:
        k = self.cart_key(key)
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.delete(k)
            if lines:
                pipe.hset(k, mapping={self._field(p): q for p, q in lines.items()})
            pipe.execute()
        except RedisError as e:
            raise PersistenceError(f"redis save failed for {key}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self.client.delete(self.cart_key(key))
        except RedisError as e:
            raise PersistenceError(f"redis delete failed for {key}: {e}") from e

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        lock = self.client.lock(f"cart-lock:{key}", timeout=self.lock_timeout, blocking_timeout=self.lock_timeout)
        try:
            acquired = lock.acquire()
        except RedisError as e:
            raise PersistenceError(f"redis lock failed for {key}: {e}") from e
        if not acquired:
            raise PersistenceError(f"timed out waiting for cart lock {key}")
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                logger.warning("Cart lock for %s expired before release", key, extra={"identity": key})


class SqlCartBackend(CartBackend):
    """Cart rows in `cart_items`.

    On PostgreSQL the per-identity lock is a transaction-scoped advisory lock, so
    it also serialises workers and replicas. Other databases only get the
    process-local lock and must run as a single process.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self._locks = _LocalLocks()

    def load(self, key: str) -> Lines:
        try:
            with self.session_factory() as db:
                rows = db.execute(
                    select(CartItem).where(CartItem.identity_key == key).order_by(CartItem.id)
                ).scalars().all()
                return {(r.product_id, r.variant_id): r.quantity for r in rows}
        except SQLAlchemyError as e:
            raise PersistenceError(f"cart load failed for {key}: {e}") from e

    def save(self, key: str, lines: Lines) -> None:
        with self.session_factory() as db:
            try:
                db.execute(delete(CartItem).where(CartItem.identity_key == key))
                db.add_all(
                    CartItem(identity_key=key, product_id=pid, variant_id=vid, quantity=qty)
                    for (pid, vid), qty in lines.items()
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"cart save failed for {key}: {e}") from e

    def delete(self, key: str) -> None:
        self.save(key, {})

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with self._locks.hold(key), self.session_factory() as db:
            if db.get_bind().dialect.name == "postgresql":
                try:
                    db.execute(text("SELECT pg_advisory_xact_lock(hashtext(:k))"), {"k": f"cart:{key}"})
                except SQLAlchemyError as e:
                    db.rollback()
                    raise PersistenceError(f"cart lock failed for {key}: {e}") from e
            try:
                yield
            finally:
                # ends the transaction, which releases the advisory lock
                db.rollback()


def _check_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("Quantity must be a positive integer")
    return quantity


class CartStore:
    def __init__(self, backend: CartBackend):
        self.backend = backend

    @contextmanager
    def _locked(self, *identities: CartIdentity) -> Iterator[None]:
        with ExitStack() as stack:
            for ident in identities:
                stack.enter_context(self.backend.lock(ident.key))
            yield

    def get_items(self, identity: CartIdentity) -> List[CartLineItem]:
        return _to_items(self.backend.load(identity.key))

    def add_item(self, identity: CartIdentity, product_id: int, variant_id: Optional[int] = None,
                 quantity: int = 1) -> List[CartLineItem]:
        _check_quantity(quantity)
        pair = (product_id, variant_id)
        with self._locked(identity):
            lines = self.backend.load(identity.key)
            lines[pair] = lines.get(pair, 0) + quantity
            self.backend.save(identity.key, lines)
        logger.debug("Added %s x%d", pair, quantity, extra={"identity": identity.key})
        return _to_items(lines)

    def remove_item(self, identity: CartIdentity, product_id: int,
                    variant_id: Optional[int] = None) -> List[CartLineItem]:
        pair = (product_id, variant_id)
        with self._locked(identity):
            lines = self.backend.load(identity.key)
            if lines.pop(pair, None) is not None:
                self.backend.save(identity.key, lines)
        return _to_items(lines)

    def update_quantity(self, identity: CartIdentity, product_id: int, new_quantity: int,
                        variant_id: Optional[int] = None) -> List[CartLineItem]:
        if isinstance(new_quantity, bool) or not isinstance(new_quantity, int):
            raise ValidationError("Quantity must be an integer")
        if new_quantity <= 0:
            return self.remove_item(identity, product_id, variant_id)
        pair = (product_id, variant_id)
        with self._locked(identity):
            lines = self.backend.load(identity.key)
            if pair not in lines:
                raise NotFoundError("cart_item", "Item not in cart")
            lines[pair] = new_quantity
            self.backend.save(identity.key, lines)
        return _to_items(lines)

    def clear(self, identity: CartIdentity) -> None:
        with self._locked(identity):
            self.backend.delete(identity.key)

    @contextmanager
    def checkout(self, identity: CartIdentity) -> Iterator[List[CartLineItem]]:
        """Yield a snapshot of the cart while holding its lock; clear it if the block succeeds.

        An exception inside the block leaves the cart exactly as it was.
        """
        with self._locked(identity):
            yield _to_items(self.backend.load(identity.key))
            self.backend.delete(identity.key)

    def reconcile(self, guest: CartIdentity, user: CartIdentity) -> List[CartLineItem]:
        """Fold the guest cart into the user's cart and empty the guest cart.

        Both carts stay locked for the whole merge, so nothing else can observe
        the guest cart half-merged. An already empty guest cart is a no-op.
        """
        if not guest.is_guest or user.is_guest:
            raise ValidationError("Reconciliation merges a guest cart into a user cart")
        with self._locked(guest, user):
            guest_lines = self.backend.load(guest.key)
            if not guest_lines:
                return _to_items(self.backend.load(user.key))
            lines = self.backend.load(user.key)
            for pair, qty in guest_lines.items():
                lines[pair] = lines.get(pair, 0) + qty
            self.backend.save(user.key, lines)
            self.backend.delete(guest.key)
        logger.info(
            "Merged %d guest lines into %s", len(guest_lines), user.key, extra={"identity": guest.key},
        )
        return _to_items(lines)


def build_cart_store(settings, session_factory=None) -> CartStore:
    kind = settings.CART_BACKEND.lower()
    if kind == "memory":
        backend = MemoryCartBackend(settings.CART_SNAPSHOT_PATH)
    elif kind == "redis":
        client = Redis.from_url(settings.REDIS_URL, decode_responses=True)
        backend = RedisCartBackend(client, lock_timeout=settings.CART_LOCK_TIMEOUT_SECONDS)
    elif kind == "sql":
        if session_factory is None:
            from storefront.db.session import SessionLocal
            session_factory = SessionLocal
        backend = SqlCartBackend(session_factory)
    else:
        raise ValueError(f"Unknown CART_BACKEND {settings.CART_BACKEND!r}")
    logger.info("Cart store backend: %s", kind)
    return CartStore(backend)
