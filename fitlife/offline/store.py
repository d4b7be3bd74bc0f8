"""
Local persistent store of the offline runtime.

Embedded SQLite (SQLAlchemy Core, own MetaData so the server schema never
picks these tables up) with two tables:

* ``cached_entries``: namespaced key/value rows with ``stored_at`` /
  ``expires_at``; an expired row is never handed out as valid and is deleted
  on the next read.
* ``sync_queue``: durable queue of pending mutations (see sync_queue.py).

Every call runs in a worker thread behind one lock, so callers on the event
loop never block and a cleanup sweep never interleaves with a read.
"""
import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy import JSON, Column, Float, Integer, MetaData, String, Table, Text, create_engine, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from fitlife.offline.errors import StorageUnavailable

logger = logging.getLogger(__name__)

API_CACHE = "api_cache"
USER_DATA = "user_data"
CACHED_PAGES = "cached_pages"
SYNC_QUEUE = "sync_queue"
CACHE_NAMESPACES = (API_CACHE, USER_DATA, CACHED_PAGES)

metadata = MetaData()

cached_entries = Table(
    "cached_entries",
    metadata,
    Column("namespace", String(64), primary_key=True),
    Column("key", String(1024), primary_key=True),
    Column("payload", JSON, nullable=True),
    Column("stored_at", Float, nullable=False, index=True),
    Column("expires_at", Float, nullable=True, index=True),
)

sync_queue = Table(
    "sync_queue",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("kind", String(128), nullable=False),
    Column("payload", JSON, nullable=True),
    Column("enqueued_at", Float, nullable=False, index=True),
    Column("retry_count", Integer, nullable=False, default=0),
    Column("priority", Integer, nullable=False, index=True),
    Column("next_attempt_at", Float, nullable=True),
    Column("dead_lettered_at", Float, nullable=True, index=True),
    Column("last_error", Text, nullable=True),
)

_QUEUE_ORDER = {
    "priority": (sync_queue.c.priority, sync_queue.c.enqueued_at, sync_queue.c.id),
    "enqueued_at": (sync_queue.c.enqueued_at, sync_queue.c.id),
}
_CACHE_ORDER = {
    "stored_at": (cached_entries.c.stored_at, cached_entries.c.key),
    "expires_at": (cached_entries.c.expires_at, cached_entries.c.key),
}


@dataclass
class CachedEntry:
    namespace: str
    key: str
    payload: Any
    stored_at: float
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at


@dataclass
class QueuedAction:
    id: int
    kind: str
    payload: Any
    enqueued_at: float
    retry_count: int = 0
    priority: int = 5
    next_attempt_at: float | None = None
    dead_lettered_at: float | None = None
    last_error: str | None = None


def _entry(row) -> CachedEntry:
    return CachedEntry(**dict(row))


def _action(row) -> QueuedAction:
    return QueuedAction(**dict(row))


class LocalStore:
    def __init__(self, url: str = "sqlite:///./fitlife_offline.db", clock: Callable[[], float] = time.time) -> None:
        self.url = url
        self.clock = clock
        self._lock = threading.RLock()
        self._engine = None

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------

    def _open(self):
        # Opened on first use, like an IndexedDB open with its upgrade step
        if self._engine is None:
            memory = ":memory:" in self.url or self.url.rstrip("/") == "sqlite:"
            engine = create_engine(
                self.url,
                connect_args={"check_same_thread": False} if self.url.startswith("sqlite") else {},
                poolclass=StaticPool if memory else None,
            )
            metadata.create_all(engine)
            self._engine = engine
        return self._engine

    def _call(self, fn, *args):
        with self._lock:
            try:
                return fn(self._open(), *args)
            except SQLAlchemyError as e:
                raise StorageUnavailable(f"Local store unavailable: {e}", detail=type(e).__name__) from e

    async def _run(self, fn, *args):
        return await asyncio.to_thread(self._call, fn, *args)

    def close(self) -> None:
        with self._lock:
            if self._engine is not None:
                self._engine.dispose()
                self._engine = None

    # ------------------------------------------------------------------
    # cached entries
    # ------------------------------------------------------------------

    async def get(self, namespace: str, key: str) -> Any:
        entry = await self.get_entry(namespace, key)
        return entry.payload if entry else None

    async def get_entry(self, namespace: str, key: str, include_stale: bool = False) -> CachedEntry | None:
        """Raw entry; ``include_stale`` hands back an expired entry without deleting it (stale-while-revalidate)."""
        return await self._run(self._get_entry, namespace, key, include_stale, self.clock())

    def _get_entry(self, engine, namespace: str, key: str, include_stale: bool, now: float):
        where = (cached_entries.c.namespace == namespace, cached_entries.c.key == key)
        with engine.begin() as conn:
            row = conn.execute(select(cached_entries).where(*where)).mappings().first()
            if row is None:
                return None
            entry = _entry(row)
            if entry.is_expired(now) and not include_stale:
                conn.execute(delete(cached_entries).where(*where, cached_entries.c.expires_at == entry.expires_at))
                return None
            return entry

    async def put(self, namespace: str, key: str, payload: Any, ttl: float | None = None) -> None:
        now = self.clock()
        expires_at = now + ttl if ttl is not None else None
        await self._run(self._put, namespace, key, payload, now, expires_at)

    def _put(self, engine, namespace, key, payload, stored_at, expires_at):
        # last write wins, no merge
        with engine.begin() as conn:
            conn.execute(
                delete(cached_entries).where(cached_entries.c.namespace == namespace, cached_entries.c.key == key)
            )
            conn.execute(
                cached_entries.insert().values(
                    namespace=namespace,
                    key=key,
                    payload=payload,
                    stored_at=stored_at,
                    expires_at=expires_at,
                )
            )

    async def delete(self, namespace: str, key: str) -> None:
        await self._run(self._delete, namespace, key)

    def _delete(self, engine, namespace, key):
        with engine.begin() as conn:
            conn.execute(
                delete(cached_entries).where(cached_entries.c.namespace == namespace, cached_entries.c.key == key)
            )

    async def list_by_index(self, namespace: str, index: str) -> list:
        """
        Ordered listing. ``sync_queue`` supports ``priority`` (priority, then
        enqueue time) and ``enqueued_at``; cache namespaces support
        ``stored_at`` and ``expires_at`` and skip expired rows.
        """
        if namespace == SYNC_QUEUE:
            if index not in _QUEUE_ORDER:
                raise ValueError(f"Unknown index '{index}' for {SYNC_QUEUE}")
            return await self._run(self._list_actions, _QUEUE_ORDER[index], False)
        if index not in _CACHE_ORDER:
            raise ValueError(f"Unknown index '{index}' for {namespace}")
        return await self._run(self._list_entries, namespace, _CACHE_ORDER[index], self.clock())

    def _list_entries(self, engine, namespace, order, now):
        stmt = (
            select(cached_entries)
            .where(
                cached_entries.c.namespace == namespace,
                or_(cached_entries.c.expires_at.is_(None), cached_entries.c.expires_at >= now),
            )
            .order_by(*order)
        )
        with engine.connect() as conn:
            return [_entry(r) for r in conn.execute(stmt).mappings()]

    async def cleanup(self) -> int:
        """Deletes every expired entry in every namespace; returns how many went."""
        removed = await self._run(self._cleanup, self.clock())
        if removed:
            logger.info("Offline store cleanup removed %s expired entries", removed)
        return removed

    def _cleanup(self, engine, now):
        with engine.begin() as conn:
            result = conn.execute(
                delete(cached_entries).where(
                    cached_entries.c.expires_at.is_not(None),
                    cached_entries.c.expires_at < now,
                )
            )
            return result.rowcount or 0

    async def clear_namespace(self, namespace: str) -> None:
        await self._run(self._clear_namespace, namespace)

    def _clear_namespace(self, engine, namespace):
        with engine.begin() as conn:
            if namespace == SYNC_QUEUE:
                conn.execute(delete(sync_queue))
            else:
                conn.execute(delete(cached_entries).where(cached_entries.c.namespace == namespace))

    async def clear_all(self) -> None:
        await self._run(self._clear_all)

    def _clear_all(self, engine):
        with engine.begin() as conn:
            conn.execute(delete(cached_entries))
            conn.execute(delete(sync_queue))

    # ------------------------------------------------------------------
    # sync queue rows
    # ------------------------------------------------------------------

    async def add_action(self, kind: str, payload: Any, priority: int) -> QueuedAction:
        return await self._run(self._add_action, kind, payload, priority, self.clock())

    def _add_action(self, engine, kind, payload, priority, now):
        with engine.begin() as conn:
            result = conn.execute(
                sync_queue.insert().values(
                    kind=kind,
                    payload=payload,
                    enqueued_at=now,
                    retry_count=0,
                    priority=priority,
                )
            )
            action_id = result.inserted_primary_key[0]
            row = conn.execute(select(sync_queue).where(sync_queue.c.id == action_id)).mappings().one()
            return _action(row)

    async def get_action(self, action_id: int) -> QueuedAction | None:
        return await self._run(self._get_action, action_id)

    def _get_action(self, engine, action_id):
        with engine.connect() as conn:
            row = conn.execute(select(sync_queue).where(sync_queue.c.id == action_id)).mappings().first()
            return _action(row) if row else None

    async def update_action(self, action_id: int, **values) -> QueuedAction | None:
        return await self._run(self._update_action, action_id, values)

    def _update_action(self, engine, action_id, values):
        with engine.begin() as conn:
            conn.execute(update(sync_queue).where(sync_queue.c.id == action_id).values(**values))
            row = conn.execute(select(sync_queue).where(sync_queue.c.id == action_id)).mappings().first()
            return _action(row) if row else None

    async def delete_action(self, action_id: int) -> bool:
        return await self._run(self._delete_action, action_id)

    def _delete_action(self, engine, action_id):
        with engine.begin() as conn:
            return (conn.execute(delete(sync_queue).where(sync_queue.c.id == action_id)).rowcount or 0) > 0

    async def dead_letters(self) -> list[QueuedAction]:
        return await self._run(self._list_actions, _QUEUE_ORDER["priority"], True)

    def _list_actions(self, engine, order, dead: bool):
        flag = sync_queue.c.dead_lettered_at.is_not(None) if dead else sync_queue.c.dead_lettered_at.is_(None)
        with engine.connect() as conn:
            return [_action(r) for r in conn.execute(select(sync_queue).where(flag).order_by(*order)).mappings()]

    async def count_actions(self) -> int:
        return await self._run(self._count_actions)

    def _count_actions(self, engine):
        stmt = select(func.count()).select_from(sync_queue).where(sync_queue.c.dead_lettered_at.is_(None))
        with engine.connect() as conn:
            return conn.execute(stmt).scalar_one()
