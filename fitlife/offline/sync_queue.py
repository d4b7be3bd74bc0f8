"""
Durable replay queue for mutations issued while offline.

Replay order is (priority, enqueue time); one action at a time. A transport
failure keeps the failing action at the head and ends the pass, so dependent
mutations (pause, then resume) are never reordered. Each failure pushes the
head's next attempt out by a bounded exponential backoff; after
``max_retries`` failures the action is dead-lettered so it stops blocking the
queue. A request the server refuses (4xx) is dead-lettered straight away and
the drain moves on.
"""
import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from fitlife.offline.errors import StorageUnavailable
from fitlife.offline.store import SYNC_QUEUE, LocalStore, QueuedAction

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = (408, 425, 429)
# Recomputed by httpx when the request is rebuilt
_SKIP_HEADERS = {"content-length", "host", "transfer-encoding", "connection"}

OK = "ok"
RETRY = "retry"
REJECTED = "rejected"


@dataclass
class ReplayResult:
    succeeded: int = 0
    failed: int = 0
    rejected: int = 0
    dead_lettered: int = 0
    deferred: bool = False  # head still backing off, pass ended early
    retry_at: float | None = None  # when the head may be tried again


def request_payload(request: httpx.Request) -> dict:
    """JSON-safe snapshot of a request that has already been read."""
    return {
        "method": request.method,
        "url": str(request.url),
        "headers": {k: v for k, v in request.headers.items() if k.lower() not in _SKIP_HEADERS},
        "body": base64.b64encode(request.content).decode("ascii"),
    }


def build_request(payload: dict) -> httpx.Request:
    return httpx.Request(
        payload["method"],
        payload["url"],
        headers=payload.get("headers") or {},
        content=base64.b64decode(payload.get("body") or ""),
    )


class SyncQueue:
    def __init__(
        self,
        store: LocalStore,
        client: httpx.AsyncClient,
        clock: Callable[[], float] = time.time,
        max_retries: int = 5,
        backoff_base: float = 2.0,
        backoff_max: float = 300.0,
        default_priority: int = 5,
    ) -> None:
        self.store = store
        self.client = client  # talks to the network directly, never through the offline transport
        self.clock = clock
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.default_priority = default_priority
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None

    async def enqueue(self, kind: str, payload: Any, priority: int | None = None) -> QueuedAction:
        action = await self.store.add_action(kind, payload, self.default_priority if priority is None else priority)
        logger.info("Queued %s for sync (id=%s, priority=%s)", kind, action.id, action.priority)
        return action

    async def enqueue_request(self, kind: str, request: httpx.Request, priority: int | None = None) -> QueuedAction:
        await request.aread()
        return await self.enqueue(kind, request_payload(request), priority)

    async def remove(self, action_id: int) -> bool:
        return await self.store.delete_action(action_id)

    def backoff(self, retry_count: int) -> float:
        if retry_count <= 0:
            return 0.0
        return min(self.backoff_base * 2 ** (retry_count - 1), self.backoff_max)

    async def bump_retry(self, action_id: int, error: str | None = None) -> QueuedAction | None:
        action = await self.store.get_action(action_id)
        if action is None:
            return None
        retry_count = action.retry_count + 1
        return await self.store.update_action(
            action_id,
            retry_count=retry_count,
            next_attempt_at=self.clock() + self.backoff(retry_count),
            last_error=error,
        )

    async def dead_letter(self, action_id: int, error: str | None = None) -> QueuedAction | None:
        return await self.store.update_action(action_id, dead_lettered_at=self.clock(), last_error=error)

    async def requeue(self, action_id: int) -> QueuedAction | None:
        """Puts a dead-lettered action back in line with a fresh retry budget."""
        return await self.store.update_action(
            action_id, dead_lettered_at=None, retry_count=0, next_attempt_at=None, last_error=None
        )

    async def pending(self) -> list[QueuedAction]:
        return await self.store.list_by_index(SYNC_QUEUE, "priority")

    async def dead_letters(self) -> list[QueuedAction]:
        return await self.store.dead_letters()

    async def count(self) -> int:
        return await self.store.count_actions()

    @property
    def is_replaying(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self, reason: str = "manual") -> asyncio.Task:
        """Starts a replay unless one is already running, in which case that one is returned."""
        if self.is_replaying:
            logger.debug("Replay already running, %s trigger coalesced", reason)
            return self._task
        logger.info("Sync replay triggered (%s)", reason)
        self._task = asyncio.get_running_loop().create_task(self.replay_all())
        return self._task

    async def wait_idle(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def replay_all(self) -> ReplayResult:
        async with self._lock:
            return await self._drain()

    async def _drain(self) -> ReplayResult:
        result = ReplayResult()
        try:
            actions = await self.pending()
        except StorageUnavailable as e:
            logger.warning("Sync queue unreadable, nothing replayed: %s", e)
            return result

        for action in actions:
            if action.next_attempt_at is not None and action.next_attempt_at > self.clock():
                result.deferred = True
                result.retry_at = action.next_attempt_at
                break
            outcome, error = await self._send(action)
            if outcome == OK:
                await self.remove(action.id)
                result.succeeded += 1
                continue
            if outcome == REJECTED:
                await self.dead_letter(action.id, error)
                result.rejected += 1
                result.dead_lettered += 1
                logger.error("Sync action %s (%s) rejected by server: %s", action.id, action.kind, error)
                continue

            result.failed += 1
            updated = await self.bump_retry(action.id, error)
            if updated is not None and updated.retry_count >= self.max_retries:
                await self.dead_letter(action.id, error)
                result.dead_lettered += 1
                # the rest of the queue is due right away
                result.retry_at = self.clock()
                logger.error(
                    "Sync action %s (%s) dead-lettered after %s attempts: %s",
                    action.id,
                    action.kind,
                    updated.retry_count,
                    error,
                )
            else:
                if updated is not None:
                    result.retry_at = updated.next_attempt_at
                logger.warning("Sync action %s (%s) failed, replay halted: %s", action.id, action.kind, error)
            break

        if result.succeeded or result.failed or result.rejected:
            logger.info(
                "Sync replay: %s succeeded, %s failed, %s rejected",
                result.succeeded,
                result.failed,
                result.rejected,
            )
        return result

    async def _send(self, action: QueuedAction) -> tuple[str, str | None]:
        try:
            response = await self.client.send(build_request(action.payload))
        except httpx.TransportError as e:
            return RETRY, f"{type(e).__name__}: {e}"
        if response.status_code < 400:
            return OK, None
        error = f"HTTP {response.status_code}"
        if response.status_code in RETRYABLE_STATUS or response.status_code >= 500:
            return RETRY, error
        return REJECTED, error
