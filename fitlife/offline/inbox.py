"""Client projection of the member's notification inbox and its unread count."""
import logging
import time
from datetime import datetime, timezone
from typing import Callable

import httpx

from fitlife.offline.errors import NetworkUnavailable, ServerRejected, StorageUnavailable
from fitlife.offline.store import USER_DATA, LocalStore
from fitlife.schemas.notification import NotificationPage, NotificationResponse

logger = logging.getLogger(__name__)

INBOX_KEY = "notifications"


class NotificationInbox:
    """
    Holds the notifications loaded so far, newest first.

    ``read_at`` only ever goes from empty to set: a server page that still
    shows an item unread (the mark-read may be sitting in the sync queue)
    does not undo a local read. The unread count is re-fetched after every
    mutation; when the server cannot be reached it is derived from the
    local projection instead.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        store: LocalStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.store = store
        self.clock = clock
        self._items: dict[int, NotificationResponse] = {}
        self.unread_count = 0
        self.total = 0
        self.total_pages = 0

    @property
    def notifications(self) -> list[NotificationResponse]:
        return sorted(self._items.values(), key=lambda n: (n.created_at, n.id), reverse=True)

    def local_unread_count(self) -> int:
        return sum(1 for n in self._items.values() if n.status == "sent" and n.read_at is None)

    async def load(self, page: int = 1, limit: int = 20) -> list[NotificationResponse]:
        try:
            response = await self.client.get("/notifications", params={"page": page, "limit": limit})
        except NetworkUnavailable:
            if not await self._restore():
                raise
            logger.info("Inbox offline, showing %s saved notifications", len(self._items))
            self.unread_count = self.local_unread_count()
            return self.notifications
        if response.status_code != 200:
            raise ServerRejected(f"Inbox load answered HTTP {response.status_code}", status_code=response.status_code)

        result = NotificationPage.model_validate(response.json())
        if page == 1:
            previous = self._items
            self._items = {}
            for item in result.notifications:
                self._merge(item, previous.get(item.id))
        else:
            for item in result.notifications:
                self._merge(item, self._items.get(item.id))
        self.total = result.total
        self.total_pages = result.total_pages
        await self._save()
        await self.refresh_unread_count()
        return self.notifications

    async def mark_as_read(self, ids: list[int]) -> int:
        """Idempotent: ids already read keep their first ``read_at``."""
        if not ids:
            return 0
        await self._post("/notifications/mark-read", {"ids": list(ids)})
        changed = self._apply_read(set(ids))
        await self._save()
        await self.refresh_unread_count()
        return changed

    async def mark_all_as_read(self) -> int:
        await self._post("/notifications/mark-all-read")
        changed = self._apply_read(None)
        await self._save()
        await self.refresh_unread_count()
        return changed

    async def refresh_unread_count(self) -> int:
        try:
            response = await self.client.get("/notifications/unread-count")
        except NetworkUnavailable as e:
            logger.info("Unread count from local inbox (%s)", e)
        else:
            if response.status_code == 200:
                self.unread_count = int(response.json().get("count", 0))
                return self.unread_count
            logger.warning("Unread count answered HTTP %s, using local inbox", response.status_code)
        self.unread_count = self.local_unread_count()
        return self.unread_count

    def _merge(self, item: NotificationResponse, known: NotificationResponse | None) -> None:
        if known is not None and known.read_at is not None and item.read_at is None:
            item = item.model_copy(update={"read_at": known.read_at})
        self._items[item.id] = item

    def _apply_read(self, ids: set[int] | None) -> int:
        now = datetime.fromtimestamp(self.clock(), tz=timezone.utc)
        changed = 0
        for key, item in self._items.items():
            if item.read_at is not None or (ids is not None and key not in ids):
                continue
            if ids is None and item.status != "sent":
                continue
            self._items[key] = item.model_copy(update={"read_at": now})
            changed += 1
        return changed

    async def _post(self, path: str, payload: dict | None = None) -> None:
        # Offline, the router queues these and answers 202
        response = await self.client.post(path, json=payload)
        if response.status_code >= 400:
            raise ServerRejected(f"{path} answered HTTP {response.status_code}", status_code=response.status_code)

    async def _save(self) -> None:
        if self.store is None:
            return
        payload = [n.model_dump(mode="json") for n in self.notifications]
        try:
            await self.store.put(USER_DATA, INBOX_KEY, payload)
        except StorageUnavailable as e:
            logger.warning("Inbox not saved locally: %s", e)

    async def _restore(self) -> bool:
        if self.store is None:
            return False
        try:
            saved = await self.store.get(USER_DATA, INBOX_KEY)
        except StorageUnavailable as e:
            logger.warning("Saved inbox unreadable: %s", e)
            return False
        if not saved:
            return False
        for raw in saved:
            item = NotificationResponse.model_validate(raw)
            self._merge(item, self._items.get(item.id))
        return True
