"""OfflineRuntime wiring: offline mutation queued, reconnect drains the queue."""
import asyncio

import httpx

from fitlife.offline.config import ClientSettings
from fitlife.offline.push_manager import PushState
from fitlife.offline.runtime import OfflineRuntime

BASE = "http://api.test"


class Backend:
    def __init__(self):
        self.calls: list[tuple[str, str, str | None]] = []
        self.fail_next = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.fail_next:
            self.fail_next -= 1
            return httpx.Response(503, json={"error": "busy"})
        self.calls.append((request.method, request.url.path, request.headers.get("authorization")))
        return httpx.Response(200, json={"success": True})


def _runtime(backend, clock, online=True) -> OfflineRuntime:
    settings = ClientSettings(api_base_url=BASE, offline_db_url="sqlite:///:memory:", sync_backoff_base=0.05)
    return OfflineRuntime.build(
        settings,
        network=httpx.MockTransport(backend),
        clock=clock,
        access_token="tok",
        online=online,
    )


def test_offline_pause_is_replayed_on_reconnect(clock):
    backend = Backend()

    async def scenario():
        runtime = _runtime(backend, clock, online=False)
        r = await runtime.client.post("/api/user/my-package/pause", json={"membershipId": "m1"})
        assert r.status_code == 202
        assert r.json()["accepted"] is True
        assert r.json()["pending"] is True
        assert await runtime.queue.count() == 1

        runtime.on_online()
        await runtime.queue.wait_idle()
        assert await runtime.queue.count() == 0
        await runtime.aclose()

    asyncio.run(scenario())
    assert backend.calls == [("POST", "/api/user/my-package/pause", "Bearer tok")]


def test_sync_now_and_background_sync(clock):
    backend = Backend()

    async def scenario():
        runtime = _runtime(backend, clock)
        await runtime.queue.enqueue_request(
            "payment.register", httpx.Request("POST", BASE + "/api/payment/register", json={"packageId": 1})
        )
        assert await runtime.on_background_sync("other-tag") is None
        assert await runtime.queue.count() == 1
        result = await runtime.on_background_sync("background-sync")
        assert result.succeeded == 1
        assert (await runtime.sync_now()).succeeded == 0
        await runtime.aclose()

    asyncio.run(scenario())


def test_failed_replay_schedules_a_retry():
    backend = Backend()

    async def scenario():
        # real clock so the retry timer and the backoff agree
        settings = ClientSettings(api_base_url=BASE, offline_db_url="sqlite:///:memory:", sync_backoff_base=0.05)
        runtime = OfflineRuntime.build(settings, network=httpx.MockTransport(backend), online=False)
        await runtime.client.post("/api/user/my-package/resume", json={})
        backend.fail_next = 1
        runtime.on_online()
        await runtime.queue.wait_idle()
        assert await runtime.queue.count() == 1
        for _ in range(50):
            await asyncio.sleep(0.02)
            if await runtime.queue.count() == 0:
                break
        assert await runtime.queue.count() == 0
        await runtime.aclose()

    asyncio.run(scenario())
    assert [c[1] for c in backend.calls] == ["/api/user/my-package/resume"]


def test_going_offline_cancels_pending_retry(clock):
    backend = Backend()

    async def scenario():
        runtime = _runtime(backend, clock, online=False)
        await runtime.client.post("/api/user/my-package/resume", json={})
        backend.fail_next = 1
        runtime.on_online()
        await runtime.queue.wait_idle()
        await asyncio.sleep(0)
        assert runtime._retry_handle is not None
        runtime.on_offline()
        assert runtime._retry_handle is None
        await runtime.aclose()

    asyncio.run(scenario())


def test_build_defaults(clock):
    async def scenario():
        runtime = _runtime(Backend(), clock)
        assert runtime.push.state == PushState.UNSUPPORTED
        assert runtime.monitor.is_online()
        assert await runtime.cleanup() == 0
        await runtime.aclose()

    asyncio.run(scenario())


def test_dead_lettered_head_does_not_strand_the_rest(clock):
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if request.url.path.endswith("/pause"):
            return httpx.Response(503, json={"error": "busy"})
        return httpx.Response(200, json={"success": True})

    async def scenario():
        settings = ClientSettings(api_base_url=BASE, offline_db_url="sqlite:///:memory:", sync_max_retries=1)
        runtime = OfflineRuntime.build(settings, network=httpx.MockTransport(handler), clock=clock, online=False)
        await runtime.client.post("/api/user/my-package/pause", json={})
        await runtime.client.post("/api/payment/register", json={"packageId": 1})
        assert await runtime.queue.count() == 2

        runtime.on_online()
        for _ in range(50):
            await runtime.queue.wait_idle()
            await asyncio.sleep(0.01)
            if await runtime.queue.count() == 0:
                break
        assert await runtime.queue.count() == 0
        assert [a.kind for a in await runtime.queue.dead_letters()] == ["membership.pause"]
        await runtime.aclose()

    asyncio.run(scenario())
    assert calls == ["/api/user/my-package/pause", "/api/payment/register"]
