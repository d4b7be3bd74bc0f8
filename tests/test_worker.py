"""Worker: message channel, update lifecycle, push display, notification clicks."""
import asyncio

import pytest
from pydantic import ValidationError

from fitlife.offline.store import API_CACHE
from fitlife.offline.worker import (
    Navigate,
    ServiceWorker,
    SkipWaiting,
    WorkerState,
    notification_options,
    parse_message,
    route_notification_click,
)

ORIGIN = "https://app.fitlife.vn"


class Window:
    def __init__(self, url: str):
        self.url = url
        self.focused = 0
        self.messages: list[dict] = []

    async def focus(self):
        self.focused += 1
        return self

    def post_message(self, message: dict) -> None:
        self.messages.append(message)


class Windows:
    origin = ORIGIN

    def __init__(self, *urls: str):
        self.windows = [Window(u) for u in urls]
        self.opened: list[str] = []

    async def match_all(self):
        return list(self.windows)

    async def open_window(self, url: str):
        self.opened.append(url)
        window = Window(ORIGIN + url)
        self.windows.append(window)
        return window


def test_parse_message():
    assert isinstance(parse_message({"type": "SKIP_WAITING"}), SkipWaiting)
    nav = parse_message({"type": "NAVIGATE", "url": "/dashboard"})
    assert isinstance(nav, Navigate)
    assert nav.url == "/dashboard"
    with pytest.raises(ValidationError):
        parse_message({"type": "NAVIGATE"})
    with pytest.raises(ValueError):
        parse_message({"type": "RELOAD"})


def test_notification_options_defaults():
    options = notification_options({"title": "Lịch hẹn", "body": "9:00", "data": {"type": "appointment", "url": "/x"}})
    assert options.title == "Lịch hẹn"
    assert options.body == "9:00"
    assert options.icon == "/icons/app-icon-192.png"
    assert options.badge == "/icons/badge-icon.png"
    assert options.tag == "appointment"
    assert options.require_interaction is True
    assert [a["action"] for a in options.actions] == ["view", "close"]
    assert options.data["url"] == "/x"


def test_notification_options_accepts_message_and_custom_icon():
    options = notification_options({"title": "T", "message": "M", "icon": "/custom.png", "type": "promotion"})
    assert options.body == "M"
    assert options.icon == "/custom.png"
    assert options.tag == "promotion"


def test_click_focuses_window_already_on_url():
    clients = Windows(ORIGIN + "/home", ORIGIN + "/dashboard/membership")
    target = asyncio.run(route_notification_click("view", {"url": "/dashboard/membership"}, clients))
    assert target is clients.windows[1]
    assert target.focused == 1
    assert target.messages == []


def test_click_navigates_an_app_window():
    clients = Windows("https://other.site/", ORIGIN + "/home")
    target = asyncio.run(route_notification_click(None, {"url": "/packages?promo=3"}, clients))
    assert target is clients.windows[1]
    assert target.messages == [{"type": "NAVIGATE", "url": "/packages?promo=3"}]
    assert target.focused == 1


def test_click_opens_new_window_with_default_url():
    clients = Windows()
    asyncio.run(route_notification_click("", {}, clients))
    assert clients.opened == ["/dashboard"]


def test_close_action_does_nothing():
    clients = Windows(ORIGIN + "/home")
    assert asyncio.run(route_notification_click("close", {"url": "/x"}, clients)) is None
    assert clients.windows[0].focused == 0
    assert clients.opened == []


def test_lifecycle_first_install_activates(store):
    worker = ServiceWorker(store)
    v1 = asyncio.run(worker.install("v1"))
    assert v1.state == WorkerState.ACTIVE
    assert worker.active is v1
    assert not worker.update_available


def test_update_waits_until_skip_waiting(store, clock):
    worker = ServiceWorker(store)

    async def scenario():
        v1 = await worker.install("v1")
        v2 = await worker.install("v2")
        assert v2.state == WorkerState.WAITING
        assert worker.active is v1
        assert worker.update_available

        await store.put(API_CACHE, "old", 1, ttl=5)
        await store.put(API_CACHE, "fresh", 2, ttl=500)
        clock.advance(10)

        await worker.handle_message({"type": "SKIP_WAITING"})
        assert worker.active is v2
        assert v1.state == WorkerState.REDUNDANT
        assert not worker.update_available
        # activation swept the expired entry
        assert await store.get_entry(API_CACHE, "old", include_stale=True) is None
        assert await store.get(API_CACHE, "fresh") == 2

    asyncio.run(scenario())


def test_skip_waiting_without_update_is_noop(store):
    worker = ServiceWorker(store)

    async def scenario():
        v1 = await worker.install("v1")
        await worker.handle_message({"type": "SKIP_WAITING"})
        assert worker.active is v1

    asyncio.run(scenario())
