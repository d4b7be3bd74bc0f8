"""
Request interception at the client boundary.

Every request the runtime's ``httpx.AsyncClient`` issues goes through
``OfflineTransport`` -> ``CacheStrategyRouter``, which picks the route rule
for the path and applies its strategy:

* network-first: network, cache the 200, fall back to a fresh cached copy;
* cache-first: fresh cached copy, else network (and cache it);
* stale-while-revalidate: any cached copy now, refresh in the background;
* sync-required: mutations that are queued instead of failing when offline;
* network-only: straight through.
"""
import asyncio
import base64
import hashlib
import logging
import re
from dataclasses import dataclass, field
from enum import Enum

import httpx

from fitlife.offline.connectivity import ConnectivityMonitor
from fitlife.offline.errors import NetworkUnavailable, StorageUnavailable
from fitlife.offline.store import API_CACHE, CACHED_PAGES, CachedEntry, LocalStore
from fitlife.offline.sync_queue import SyncQueue, request_payload

logger = logging.getLogger(__name__)

CACHE_HEADER = "X-Offline-Cache"
# Body is stored decoded, so these no longer describe it
_STRIP_HEADERS = {"content-encoding", "content-length", "transfer-encoding", "connection"}

PENDING_MESSAGE = "Không có kết nối mạng. Thao tác sẽ được thực hiện khi có mạng trở lại."


class Strategy(str, Enum):
    NETWORK_FIRST = "network-first"
    CACHE_FIRST = "cache-first"
    STALE_WHILE_REVALIDATE = "stale-while-revalidate"
    SYNC_REQUIRED = "sync-required"
    NETWORK_ONLY = "network-only"


@dataclass
class RouteRule:
    pattern: str  # regex searched in the URL path
    strategy: Strategy
    methods: tuple[str, ...] = ("GET",)
    ttl: float | None = None  # None: runtime default
    namespace: str = API_CACHE
    kind: str | None = None  # sync-queue kind for sync-required routes
    priority: int = 5
    _regex: re.Pattern = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._regex = re.compile(self.pattern)

    def matches(self, request: httpx.Request) -> bool:
        return request.method in self.methods and self._regex.search(request.url.path) is not None


MUTATING = ("POST", "PUT", "PATCH", "DELETE")

DEFAULT_ROUTES = (
    RouteRule(r"/api/user/my-package/infor-membership", Strategy.NETWORK_FIRST),
    RouteRule(r"/api/user/my-package/detail", Strategy.NETWORK_FIRST, methods=("POST",)),
    RouteRule(r"/api/user/transaction/success", Strategy.NETWORK_FIRST),
    RouteRule(r"/api/user/appointments/next-week", Strategy.NETWORK_FIRST),
    RouteRule(r"/api/user/workout/(weekly|next-week)", Strategy.NETWORK_FIRST),
    RouteRule(r"/api/public/promotions", Strategy.STALE_WHILE_REVALIDATE),
    RouteRule(r"/api/user/my-package/pause", Strategy.SYNC_REQUIRED, MUTATING, kind="membership.pause", priority=1),
    RouteRule(r"/api/user/my-package/resume", Strategy.SYNC_REQUIRED, MUTATING, kind="membership.resume", priority=1),
    RouteRule(r"/api/payment/register", Strategy.SYNC_REQUIRED, ("POST",), kind="payment.register", priority=3),
    RouteRule(r"/push/unsubscribe$", Strategy.SYNC_REQUIRED, ("POST",), kind="push.unsubscribe", priority=2),
    RouteRule(
        r"/notifications/mark-(all-)?read$",
        Strategy.SYNC_REQUIRED,
        ("POST",),
        kind="notifications.mark-read",
        priority=8,
    ),
    RouteRule(
        r"\.(png|jpe?g|gif|svg|webp|ico)$",
        Strategy.CACHE_FIRST,
        ttl=30 * 24 * 3600,
        namespace=CACHED_PAGES,
    ),
)


def cache_key(request: httpx.Request) -> str:
    """METHOD url, plus a body hash for non-GET reads: two bodies to one URL are two queries."""
    key = f"{request.method} {request.url}"
    if request.method != "GET":
        key += " " + hashlib.sha256(request.content).hexdigest()
    return key


def _clean_headers(headers: httpx.Headers) -> list[list[str]]:
    return [[k, v] for k, v in headers.multi_items() if k.lower() not in _STRIP_HEADERS]


def _rebuild(status_code: int, headers, content: bytes, request: httpx.Request) -> httpx.Response:
    return httpx.Response(status_code, headers=headers, content=content, request=request)


def pending_response(request: httpx.Request, action_id: int | None) -> httpx.Response:
    """Synthetic 202 for a mutation accepted into the sync queue."""
    return httpx.Response(
        202,
        json={
            "accepted": True,
            "pending": True,
            "offline": True,
            "success": False,
            "message": PENDING_MESSAGE,
            "action_id": action_id,
        },
        request=request,
    )


class CacheStrategyRouter:
    def __init__(
        self,
        store: LocalStore,
        queue: SyncQueue,
        monitor: ConnectivityMonitor,
        network: httpx.AsyncBaseTransport,
        routes=DEFAULT_ROUTES,
        default_ttl: float | None = 24 * 3600,
    ) -> None:
        self.store = store
        self.queue = queue
        self.monitor = monitor
        self.network = network
        self.routes = list(routes)
        self.default_ttl = default_ttl
        self._background: set[asyncio.Task] = set()

    def match(self, request: httpx.Request) -> RouteRule | None:
        for rule in self.routes:
            if rule.matches(request):
                return rule
        return None

    async def handle(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        rule = self.match(request)
        if rule is None or rule.strategy == Strategy.NETWORK_ONLY:
            return await self._fetch(request)
        if rule.strategy == Strategy.SYNC_REQUIRED:
            return await self._sync_required(request, rule)
        key = cache_key(request)
        if rule.strategy == Strategy.CACHE_FIRST:
            return await self._cache_first(request, rule, key)
        if rule.strategy == Strategy.STALE_WHILE_REVALIDATE:
            return await self._stale_while_revalidate(request, rule, key)
        return await self._network_first(request, rule, key)

    # ------------------------------------------------------------------
    # strategies
    # ------------------------------------------------------------------

    async def _network_first(self, request: httpx.Request, rule: RouteRule, key: str) -> httpx.Response:
        try:
            response = await self._fetch(request)
        except NetworkUnavailable:
            entry = await self._cached(rule, key)
            if entry is None:
                raise
            logger.info("Network unavailable, serving %s from cache", key)
            return self._from_cache(entry, request, "hit")
        await self._store(rule, key, response)
        return response

    async def _cache_first(self, request: httpx.Request, rule: RouteRule, key: str) -> httpx.Response:
        entry = await self._cached(rule, key)
        if entry is not None:
            return self._from_cache(entry, request, "hit")
        response = await self._fetch(request)
        await self._store(rule, key, response)
        return response

    async def _stale_while_revalidate(self, request: httpx.Request, rule: RouteRule, key: str) -> httpx.Response:
        entry = await self._cached(rule, key, include_stale=True)
        if entry is None:
            return await self._network_first(request, rule, key)
        self._revalidate(request, rule, key)
        return self._from_cache(entry, request, "stale" if entry.is_expired(self.store.clock()) else "hit")

    async def _sync_required(self, request: httpx.Request, rule: RouteRule) -> httpx.Response:
        if self.monitor.is_online():
            try:
                return await self._fetch(request)
            except NetworkUnavailable as e:
                logger.info("%s %s failed, queueing for sync: %s", request.method, request.url.path, e)
        kind = rule.kind or f"{request.method} {request.url.path}"
        try:
            action = await self.queue.enqueue(kind, request_payload(request), rule.priority)
        except StorageUnavailable as e:
            raise NetworkUnavailable("Offline and the sync queue is unavailable", detail=str(e)) from e
        return pending_response(request, action.id)

    # ------------------------------------------------------------------
    # network / cache plumbing
    # ------------------------------------------------------------------

    async def _fetch(self, request: httpx.Request) -> httpx.Response:
        if not self.monitor.is_online():
            raise NetworkUnavailable(f"Offline: {request.method} {request.url}")
        try:
            response = await self.network.handle_async_request(request)
            content = await response.aread()
        except httpx.TransportError as e:
            raise NetworkUnavailable(f"{type(e).__name__}: {e}") from e
        return _rebuild(response.status_code, _clean_headers(response.headers), content, request)

    async def _cached(self, rule: RouteRule, key: str, include_stale: bool = False) -> CachedEntry | None:
        try:
            return await self.store.get_entry(rule.namespace, key, include_stale=include_stale)
        except StorageUnavailable as e:
            logger.warning("Cache read for %s skipped: %s", key, e)
            return None

    async def _store(self, rule: RouteRule, key: str, response: httpx.Response) -> None:
        if response.status_code != 200:
            return
        payload = {
            "status_code": response.status_code,
            "headers": _clean_headers(response.headers),
            "body": base64.b64encode(response.content).decode("ascii"),
        }
        ttl = rule.ttl if rule.ttl is not None else self.default_ttl
        try:
            await self.store.put(rule.namespace, key, payload, ttl=ttl)
        except StorageUnavailable as e:
            logger.warning("Response for %s not cached: %s", key, e)

    def _from_cache(self, entry: CachedEntry, request: httpx.Request, state: str) -> httpx.Response:
        payload = entry.payload
        headers = [h for h in payload.get("headers", []) if h[0].lower() != CACHE_HEADER.lower()]
        headers.append([CACHE_HEADER, state])
        return _rebuild(payload["status_code"], headers, base64.b64decode(payload["body"]), request)

    def _revalidate(self, request: httpx.Request, rule: RouteRule, key: str) -> None:
        task = asyncio.get_running_loop().create_task(self._refresh(request, rule, key))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _refresh(self, request: httpx.Request, rule: RouteRule, key: str) -> None:
        try:
            response = await self._fetch(request)
        except NetworkUnavailable as e:
            logger.info("Background refresh of %s skipped: %s", key, e)
            return
        await self._store(rule, key, response)

    async def wait_idle(self) -> None:
        """Waits for background refreshes started so far."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)


class OfflineTransport(httpx.AsyncBaseTransport):
    """Plugs the router into ``httpx.AsyncClient(transport=...)``."""

    def __init__(self, router: CacheStrategyRouter) -> None:
        self.router = router

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self.router.handle(request)

    async def aclose(self) -> None:
        await self.router.wait_idle()
