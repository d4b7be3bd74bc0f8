"""CacheStrategyRouter through OfflineTransport: strategies, cache keys, offline queueing."""
import asyncio

import httpx
import pytest

from fitlife.offline.cache_router import CACHE_HEADER, CacheStrategyRouter, OfflineTransport, cache_key
from fitlife.offline.connectivity import ConnectivityMonitor
from fitlife.offline.errors import NetworkUnavailable
from fitlife.offline.store import LocalStore
from fitlife.offline.sync_queue import SyncQueue

BASE = "http://api.test"
MEMBERSHIP = "/api/user/my-package/infor-membership"


class Backend:
    def __init__(self):
        self.calls: list[tuple[str, str]] = []
        self.responses: dict[str, list[httpx.Response]] = {}
        self.down = False

    def reply(self, path: str, *responses: httpx.Response) -> None:
        self.responses.setdefault(path, []).extend(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.down:
            raise httpx.ConnectError("network down", request=request)
        self.calls.append((request.method, request.url.path))
        queued = self.responses.get(request.url.path)
        if queued:
            return queued.pop(0) if len(queued) > 1 else queued[0]
        return httpx.Response(200, json={"path": request.url.path, "body": request.content.decode() or None})


class Harness:
    def __init__(self, store: LocalStore, clock, ttl: float = 100):
        self.backend = Backend()
        network = httpx.MockTransport(self.backend)
        self.monitor = ConnectivityMonitor()
        self.queue = SyncQueue(store, httpx.AsyncClient(transport=network), clock=clock)
        self.router = CacheStrategyRouter(store, self.queue, self.monitor, network, default_ttl=ttl)
        self.client = httpx.AsyncClient(base_url=BASE, transport=OfflineTransport(self.router))


@pytest.fixture
def h(store, clock):
    return Harness(store, clock)


def test_network_first_falls_back_to_cache_until_expiry(h, clock):
    h.backend.reply(MEMBERSHIP, httpx.Response(200, json={"plan": "Gold"}))

    async def scenario():
        r = await h.client.get(MEMBERSHIP)
        assert r.json() == {"plan": "Gold"}
        assert CACHE_HEADER not in r.headers

        h.backend.down = True
        first = await h.client.get(MEMBERSHIP)
        second = await h.client.get(MEMBERSHIP)
        assert first.json() == second.json() == {"plan": "Gold"}
        assert first.headers[CACHE_HEADER] == "hit"

        clock.advance(101)
        with pytest.raises(NetworkUnavailable):
            await h.client.get(MEMBERSHIP)

    asyncio.run(scenario())


def test_network_first_prefers_network_when_up(h):
    h.backend.reply(
        MEMBERSHIP,
        httpx.Response(200, json={"v": 1}),
        httpx.Response(200, json={"v": 2}),
    )

    async def scenario():
        assert (await h.client.get(MEMBERSHIP)).json() == {"v": 1}
        assert (await h.client.get(MEMBERSHIP)).json() == {"v": 2}
        h.monitor.set_online(False)
        assert (await h.client.get(MEMBERSHIP)).json() == {"v": 2}

    asyncio.run(scenario())


def test_offline_monitor_skips_the_network(h):
    async def scenario():
        await h.client.get(MEMBERSHIP)
        h.monitor.set_online(False)
        r = await h.client.get(MEMBERSHIP)
        assert r.headers[CACHE_HEADER] == "hit"

    asyncio.run(scenario())
    assert len(h.backend.calls) == 1


def test_only_200_is_cached(h):
    h.backend.reply(MEMBERSHIP, httpx.Response(500, json={"error": "boom"}))

    async def scenario():
        r = await h.client.get(MEMBERSHIP)
        assert r.status_code == 500
        h.backend.down = True
        with pytest.raises(NetworkUnavailable):
            await h.client.get(MEMBERSHIP)

    asyncio.run(scenario())


def test_post_reads_are_keyed_by_body(h):
    detail = "/api/user/my-package/detail"

    async def scenario():
        a = await h.client.post(detail, json={"id": "p1"})
        b = await h.client.post(detail, json={"id": "p2"})
        assert a.json() != b.json()
        h.backend.down = True
        assert (await h.client.post(detail, json={"id": "p1"})).json() == a.json()
        assert (await h.client.post(detail, json={"id": "p2"})).json() == b.json()

    asyncio.run(scenario())


def test_cache_key():
    get = httpx.Request("GET", BASE + "/x?a=1")
    assert cache_key(get) == "GET http://api.test/x?a=1"
    one = httpx.Request("POST", BASE + "/x", content=b"1")
    two = httpx.Request("POST", BASE + "/x", content=b"2")
    assert cache_key(one) != cache_key(two)
    assert cache_key(one).startswith("POST http://api.test/x ")


def test_cache_first_serves_images_without_network(h):
    async def scenario():
        first = await h.client.get("/icons/app-icon-192.png")
        second = await h.client.get("/icons/app-icon-192.png")
        assert second.headers[CACHE_HEADER] == "hit"
        assert second.content == first.content

    asyncio.run(scenario())
    assert len(h.backend.calls) == 1


def test_stale_while_revalidate(h, clock):
    promos = "/api/public/promotions"
    h.backend.reply(
        promos,
        httpx.Response(200, json={"promos": ["A"]}),
        httpx.Response(200, json={"promos": ["B"]}),
    )

    async def scenario():
        assert (await h.client.get(promos)).json() == {"promos": ["A"]}

        cached = await h.client.get(promos)
        assert cached.json() == {"promos": ["A"]}
        assert cached.headers[CACHE_HEADER] == "hit"
        await h.router.wait_idle()

        clock.advance(1000)
        stale = await h.client.get(promos)
        assert stale.json() == {"promos": ["B"]}
        assert stale.headers[CACHE_HEADER] == "stale"
        await h.router.wait_idle()

    asyncio.run(scenario())
    assert len(h.backend.calls) == 3


def test_stale_while_revalidate_offline_keeps_serving(h, clock):
    promos = "/api/public/promotions"

    async def scenario():
        await h.client.get(promos)
        h.backend.down = True
        clock.advance(1000)
        r = await h.client.get(promos)
        assert r.headers[CACHE_HEADER] == "stale"
        await h.router.wait_idle()
        assert (await h.client.get(promos)).headers[CACHE_HEADER] == "stale"

    asyncio.run(scenario())


def test_network_only_when_no_rule_matches(h):
    async def scenario():
        r = await h.client.get("/api/user/profile")
        assert r.status_code == 200
        h.monitor.set_online(False)
        with pytest.raises(NetworkUnavailable):
            await h.client.get("/api/user/profile")

    asyncio.run(scenario())


def test_sync_required_offline_is_queued(h):
    async def scenario():
        h.monitor.set_online(False)
        r = await h.client.post("/api/user/my-package/pause", json={"membershipId": "m1"})
        assert r.status_code == 202
        j = r.json()
        assert j["accepted"] is True
        assert j["pending"] is True
        assert j["success"] is False
        assert await h.queue.count() == 1
        action = (await h.queue.pending())[0]
        assert action.id == j["action_id"]
        assert action.kind == "membership.pause"
        assert action.payload["url"] == BASE + "/api/user/my-package/pause"

    asyncio.run(scenario())
    assert h.backend.calls == []


def test_sync_required_transport_failure_is_queued(h):
    h.backend.down = True

    async def scenario():
        r = await h.client.post("/api/payment/register", json={"packageId": 3})
        assert r.status_code == 202
        assert (await h.queue.pending())[0].kind == "payment.register"

    asyncio.run(scenario())


def test_sync_required_online_passes_server_answer_through(h):
    h.backend.reply("/api/user/my-package/resume", httpx.Response(409, json={"error": "not paused"}))

    async def scenario():
        r = await h.client.post("/api/user/my-package/resume", json={})
        assert r.status_code == 409
        assert await h.queue.count() == 0

    asyncio.run(scenario())


def test_broken_store_degrades_to_network(clock, tmp_path):
    broken = LocalStore(f"sqlite:///{tmp_path}/no/such/dir.db", clock=clock)
    h = Harness(broken, clock)

    async def scenario():
        r = await h.client.get(MEMBERSHIP)
        assert r.status_code == 200
        h.monitor.set_online(False)
        with pytest.raises(NetworkUnavailable):
            await h.client.get(MEMBERSHIP)
        with pytest.raises(NetworkUnavailable):
            await h.client.post("/api/user/my-package/pause", json={})

    asyncio.run(scenario())
