"""Online/offline state of the client; one instance per runtime, fed by platform signals."""
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

Listener = Callable[[bool], Any]


class ConnectivityMonitor:
    """
    Single source of truth for "are we online".

    The runtime builds exactly one and hands it to every consumer. State only
    changes through ``set_online`` (wired to the platform's online/offline
    events); nothing here polls.
    """

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._listeners: list[Listener] = []
        self._sync_trigger: Callable[[], Any] | None = None

    def is_online(self) -> bool:
        return self._online

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def bind_sync(self, trigger: Callable[[], Any]) -> None:
        """Replay trigger fired on every offline -> online edge (the queue coalesces repeats)."""
        self._sync_trigger = trigger

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        self._notify(online)
        if online and self._sync_trigger is not None:
            self._sync_trigger()

    def _notify(self, online: bool) -> None:
        for callback in list(self._listeners):
            try:
                callback(online)
            except Exception:
                # one broken listener must not hide the change from the others
                logger.exception("Connectivity listener %r failed", callback)
