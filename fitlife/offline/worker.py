"""
Background-context behaviour of the PWA: update lifecycle, the
worker <-> window message channel, push display and notification clicks.
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Literal, Protocol, Union

from pydantic import BaseModel, Field, TypeAdapter

from fitlife.offline.errors import StorageUnavailable
from fitlife.offline.store import LocalStore
from fitlife.services.notification_kinds import PUSH_ACTIONS

logger = logging.getLogger(__name__)

DEFAULT_ICON = "/icons/app-icon-192.png"
DEFAULT_BADGE = "/icons/badge-icon.png"
DEFAULT_URL = "/dashboard"


# ----------------------------------------------------------------------
# message channel
# ----------------------------------------------------------------------


class SkipWaiting(BaseModel):
    """Window -> worker: activate the waiting version now."""

    type: Literal["SKIP_WAITING"] = "SKIP_WAITING"


class Navigate(BaseModel):
    """Worker -> window: go to ``url``."""

    type: Literal["NAVIGATE"] = "NAVIGATE"
    url: str


WorkerMessage = Annotated[Union[SkipWaiting, Navigate], Field(discriminator="type")]
_messages = TypeAdapter(WorkerMessage)


def parse_message(raw: Any) -> SkipWaiting | Navigate:
    """Raises pydantic's ValidationError (a ValueError) for anything else."""
    return _messages.validate_python(raw)


# ----------------------------------------------------------------------
# push display
# ----------------------------------------------------------------------


class NotificationDisplay(BaseModel):
    title: str
    body: str = ""
    icon: str = DEFAULT_ICON
    badge: str = DEFAULT_BADGE
    data: dict = Field(default_factory=dict)
    actions: list[dict] = Field(default_factory=lambda: [dict(a) for a in PUSH_ACTIONS])
    require_interaction: bool = True
    tag: str = "default"
    timestamp: float = Field(default_factory=lambda: time.time() * 1000)


def notification_options(payload: dict) -> NotificationDisplay:
    """Push payload -> what the platform is asked to show. ``message`` is accepted for ``body``."""
    data = payload.get("data") or {}
    options = {
        "title": payload.get("title") or "FitLife",
        "body": payload.get("body") or payload.get("message") or "",
        "data": data,
        "tag": data.get("type") or payload.get("type") or "default",
    }
    for key in ("icon", "badge", "actions"):
        if payload.get(key):
            options[key] = payload[key]
    return NotificationDisplay(**options)


# ----------------------------------------------------------------------
# notification click
# ----------------------------------------------------------------------


class WindowClient(Protocol):
    url: str

    async def focus(self) -> Any: ...

    def post_message(self, message: dict) -> None: ...


class WindowClients(Protocol):
    origin: str

    async def match_all(self) -> list[WindowClient]: ...

    async def open_window(self, url: str) -> WindowClient | None: ...


async def route_notification_click(action: str | None, data: dict | None, clients: WindowClients) -> WindowClient | None:
    """
    ``view`` (or a click on the body) goes to ``data.url``: an open window
    already on that URL is focused; otherwise an app window is told to
    NAVIGATE and focused; otherwise a new window is opened. ``close`` and
    unknown actions only dismiss.
    """
    if action not in (None, "", "view"):
        return None
    url = (data or {}).get("url") or DEFAULT_URL
    windows = await clients.match_all()
    for window in windows:
        if url in window.url:
            await window.focus()
            return window
    for window in windows:
        if window.url.startswith(clients.origin):
            window.post_message(Navigate(url=url).model_dump())
            await window.focus()
            return window
    return await clients.open_window(url)


# ----------------------------------------------------------------------
# update lifecycle
# ----------------------------------------------------------------------


class WorkerState(str, Enum):
    INSTALLING = "installing"
    WAITING = "waiting"
    ACTIVE = "active"
    REDUNDANT = "redundant"


@dataclass
class WorkerVersion:
    version: str
    state: WorkerState = WorkerState.INSTALLING


class ServiceWorker:
    """
    One registration's versions. A new version installs, then waits while
    an older one is active; SKIP_WAITING (or having no active version)
    activates it. Activation sweeps expired cache entries.
    """

    def __init__(self, store: LocalStore) -> None:
        self.store = store
        self.active: WorkerVersion | None = None
        self.waiting: WorkerVersion | None = None

    async def install(self, version: str) -> WorkerVersion:
        worker = WorkerVersion(version)
        logger.info("Worker %s installing", version)
        if self.active is None:
            await self._activate(worker)
        else:
            if self.waiting is not None:
                self.waiting.state = WorkerState.REDUNDANT
            worker.state = WorkerState.WAITING
            self.waiting = worker
            logger.info("Worker %s waiting (active: %s)", version, self.active.version)
        return worker

    @property
    def update_available(self) -> bool:
        return self.waiting is not None

    async def handle_message(self, raw: Any) -> None:
        message = parse_message(raw)
        if isinstance(message, SkipWaiting) and self.waiting is not None:
            await self._activate(self.waiting)

    async def _activate(self, worker: WorkerVersion) -> None:
        if self.active is not None:
            self.active.state = WorkerState.REDUNDANT
        if self.waiting is worker:
            self.waiting = None
        worker.state = WorkerState.ACTIVE
        self.active = worker
        logger.info("Worker %s active", worker.version)
        try:
            await self.store.cleanup()
        except StorageUnavailable as e:
            logger.warning("Cache sweep on activation skipped: %s", e)
