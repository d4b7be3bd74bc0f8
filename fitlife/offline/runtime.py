"""Composition root of the offline client: builds every component once and wires them together."""
import asyncio
import logging
import time
from typing import Callable

import httpx

from fitlife.offline.cache_router import DEFAULT_ROUTES, CacheStrategyRouter, OfflineTransport
from fitlife.offline.config import ClientSettings
from fitlife.offline.connectivity import ConnectivityMonitor
from fitlife.offline.inbox import NotificationInbox
from fitlife.offline.push_manager import NoPushPlatform, PushPlatform, PushSubscriptionManager
from fitlife.offline.store import LocalStore
from fitlife.offline.sync_queue import ReplayResult, SyncQueue
from fitlife.offline.worker import ServiceWorker

logger = logging.getLogger(__name__)

SYNC_TAG = "background-sync"


class OfflineRuntime:
    def __init__(
        self,
        settings: ClientSettings,
        store: LocalStore,
        monitor: ConnectivityMonitor,
        direct: httpx.AsyncClient,
        queue: SyncQueue,
        router: CacheStrategyRouter,
        client: httpx.AsyncClient,
        push: PushSubscriptionManager,
        inbox: NotificationInbox,
        worker: ServiceWorker,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.store = store
        self.monitor = monitor
        self.direct = direct  # replay client, bypasses the router
        self.queue = queue
        self.router = router
        self.client = client  # what the app uses
        self.push = push
        self.inbox = inbox
        self.worker = worker
        self.clock = clock
        self._watched: asyncio.Task | None = None
        self._closing = False
        self._retry_handle: asyncio.TimerHandle | None = None

    @classmethod
    def build(
        cls,
        settings: ClientSettings | None = None,
        platform: PushPlatform | None = None,
        network: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] | None = None,
        access_token: str | None = None,
        online: bool = True,
        device_info: dict | None = None,
        routes=DEFAULT_ROUTES,
    ) -> "OfflineRuntime":
        settings = settings or ClientSettings()
        clock = clock or time.time
        network = network or httpx.AsyncHTTPTransport()
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else None

        store = LocalStore(settings.offline_db_url, clock=clock)
        monitor = ConnectivityMonitor(online=online)
        direct = httpx.AsyncClient(
            base_url=settings.api_base_url, transport=network, timeout=settings.request_timeout, headers=headers
        )
        queue = SyncQueue(
            store,
            direct,
            clock=clock,
            max_retries=settings.sync_max_retries,
            backoff_base=settings.sync_backoff_base,
            backoff_max=settings.sync_backoff_max,
            default_priority=settings.default_priority,
        )
        router = CacheStrategyRouter(store, queue, monitor, network, routes=routes, default_ttl=settings.default_cache_ttl)
        client = httpx.AsyncClient(
            base_url=settings.api_base_url,
            transport=OfflineTransport(router),
            timeout=settings.request_timeout,
            headers=headers,
        )
        push = PushSubscriptionManager(platform or NoPushPlatform(), client, device_info=device_info, clock=clock)
        inbox = NotificationInbox(client, store, clock=clock)
        worker = ServiceWorker(store)

        runtime = cls(settings, store, monitor, direct, queue, router, client, push, inbox, worker, clock=clock)
        monitor.bind_sync(runtime._on_reconnect)
        return runtime

    # ------------------------------------------------------------------
    # platform signals
    # ------------------------------------------------------------------

    def on_online(self) -> None:
        self.monitor.set_online(True)

    def on_offline(self) -> None:
        self._cancel_retry()
        self.monitor.set_online(False)

    async def on_background_sync(self, tag: str) -> ReplayResult | None:
        if tag != SYNC_TAG:
            logger.debug("Ignoring background sync tag %s", tag)
            return None
        return await self._trigger(SYNC_TAG)

    # ------------------------------------------------------------------
    # sync
    # ------------------------------------------------------------------

    async def sync_now(self) -> ReplayResult:
        return await self._trigger("manual")

    def _on_reconnect(self) -> asyncio.Task:
        return self._trigger("reconnect")

    def _trigger(self, reason: str) -> asyncio.Task:
        task = self.queue.trigger(reason)
        if task is not self._watched:
            self._watched = task
            task.add_done_callback(self._after_replay)
        return task

    def _after_replay(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Sync replay crashed", exc_info=exc)
            return
        result = task.result()
        if result.retry_at is not None and self.monitor.is_online() and not self._closing:
            self._schedule_retry(result.retry_at)

    def _schedule_retry(self, at: float) -> None:
        self._cancel_retry()
        delay = max(0.0, at - self.clock())
        logger.info("Next sync attempt in %.1fs", delay)
        self._retry_handle = asyncio.get_running_loop().call_later(delay, self._trigger, "retry")

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    # ------------------------------------------------------------------
    # housekeeping
    # ------------------------------------------------------------------

    async def cleanup(self) -> int:
        return await self.store.cleanup()

    async def aclose(self) -> None:
        self._closing = True
        self._cancel_retry()
        await self.queue.wait_idle()
        await self.client.aclose()
        await self.direct.aclose()
        self.store.close()
