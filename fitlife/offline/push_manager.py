"""
Device push registration, kept in step with the server's subscription record.

The platform side (browser push manager, permission prompt) sits behind the
``PushPlatform`` protocol; the server side is reached with the runtime's
``httpx.AsyncClient``.
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Protocol

import httpx

from fitlife.offline.errors import (
    KeyFetchFailed,
    NetworkUnavailable,
    OfflineError,
    PermissionDenied,
    PushUnsupported,
    RegistrationFailed,
    ServerRejected,
    SubscriptionExpired,
)

logger = logging.getLogger(__name__)

DEFAULT = "default"
GRANTED = "granted"
DENIED = "denied"


class PushState(str, Enum):
    UNSUPPORTED = "unsupported"
    PERMISSION_UNKNOWN = "permission_unknown"
    DENIED = "denied"
    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBED = "subscribed"


@dataclass
class DeviceSubscription:
    endpoint: str
    p256dh: str
    auth: str
    expiration_time: float | None = None

    def keys(self) -> dict:
        return {"p256dh": self.p256dh, "auth": self.auth}


class PushPlatform(Protocol):
    def is_supported(self) -> bool: ...

    def permission(self) -> str: ...

    async def request_permission(self) -> str: ...

    async def get_subscription(self) -> DeviceSubscription | None: ...

    async def subscribe(self, application_server_key: str) -> DeviceSubscription: ...

    async def unsubscribe(self) -> bool: ...


def _error_detail(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return response.text or None
    if isinstance(body, dict):
        return body.get("error") or body.get("detail")
    return None


class PushSubscriptionManager:
    def __init__(
        self,
        platform: PushPlatform,
        client: httpx.AsyncClient,
        device_info: dict | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.platform = platform
        self.client = client
        self.device_info = device_info or {}
        self.clock = clock
        self.subscription: DeviceSubscription | None = None
        self.state = PushState.PERMISSION_UNKNOWN if platform.is_supported() else PushState.UNSUPPORTED

    def _require_supported(self) -> None:
        if not self.platform.is_supported():
            self.state = PushState.UNSUPPORTED
            raise PushUnsupported("Push notifications are not supported on this platform")

    def _state_for_permission(self, permission: str) -> PushState:
        if permission == DENIED:
            return PushState.DENIED
        if permission == GRANTED:
            return PushState.SUBSCRIBED if self.subscription is not None else PushState.UNSUBSCRIBED
        return PushState.PERMISSION_UNKNOWN

    async def request_permission(self) -> str:
        """Prompts once. A denial is kept for the session: nothing here asks again on its own."""
        self._require_supported()
        permission = self.platform.permission()
        if permission == DEFAULT:
            permission = await self.platform.request_permission()
            logger.info("Notification permission answered: %s", permission)
        self.state = self._state_for_permission(permission)
        return permission

    async def get_vapid_public_key(self) -> str:
        try:
            response = await self.client.get("/vapid-public-key")
        except (NetworkUnavailable, httpx.TransportError) as e:
            raise KeyFetchFailed(f"VAPID key unreachable: {e}") from e
        if response.status_code != 200:
            raise KeyFetchFailed(
                f"VAPID key request answered HTTP {response.status_code}",
                status_code=response.status_code,
                detail=_error_detail(response),
            )
        key = (response.json() or {}).get("publicKey")
        if not key:
            raise KeyFetchFailed("Server returned an empty VAPID key")
        return key

    async def current_subscription(self) -> DeviceSubscription | None:
        """Device registration; raises SubscriptionExpired once its expiration time has passed."""
        device = await self.platform.get_subscription()
        if device is not None and device.expiration_time is not None and device.expiration_time <= self.clock():
            raise SubscriptionExpired(f"Push subscription {device.endpoint} expired")
        return device

    async def subscribe(self) -> DeviceSubscription:
        self._require_supported()
        permission = self.platform.permission()
        if permission == DEFAULT:
            permission = await self.request_permission()
        if permission != GRANTED:
            self.state = PushState.DENIED if permission == DENIED else PushState.PERMISSION_UNKNOWN
            raise PermissionDenied(f"Notification permission is {permission}")

        try:
            key = await self.get_vapid_public_key()
            await self._teardown_device()
            try:
                device = await self.platform.subscribe(key)
            except OfflineError:
                raise
            except Exception as e:
                raise RegistrationFailed(f"Device registration failed: {e}") from e
        except OfflineError:
            self._mark_unsubscribed()
            raise

        try:
            await self._post(
                "/push/subscribe",
                {"endpoint": device.endpoint, "keys": device.keys(), "deviceInfo": self.device_info},
            )
        except OfflineError:
            # server never recorded it; drop the device side so the two stay in step
            try:
                await self._teardown_device()
            except RegistrationFailed as e:
                logger.warning("%s", e)
            self._mark_unsubscribed()
            raise

        self.subscription = device
        self.state = PushState.SUBSCRIBED
        logger.info("Push subscription registered: %s", device.endpoint)
        return device

    async def unsubscribe(self) -> bool:
        """
        Drops the device registration, then deactivates the server record.
        The server call is made even when the device step fails; the first
        failure is raised after both have been attempted.
        """
        endpoint = self.subscription.endpoint if self.subscription else None
        device_error: Exception | None = None
        try:
            device = await self.platform.get_subscription()
            if device is not None:
                endpoint = device.endpoint
            await self.platform.unsubscribe()
        except Exception as e:
            device_error = e
            logger.warning("Device unsubscribe failed: %s", e)

        server_error: OfflineError | None = None
        if endpoint:
            try:
                await self._post("/push/unsubscribe", {"endpoint": endpoint})
            except OfflineError as e:
                server_error = e
                logger.warning("Server unsubscribe for %s failed: %s", endpoint, e)

        self._mark_unsubscribed()
        if device_error is not None:
            if isinstance(device_error, OfflineError):
                raise device_error
            raise RegistrationFailed(f"Device unsubscribe failed: {device_error}") from device_error
        if server_error is not None:
            raise server_error
        return endpoint is not None

    async def refresh_status(self) -> PushState:
        if not self.platform.is_supported():
            self.state = PushState.UNSUPPORTED
            return self.state
        try:
            self.subscription = await self.current_subscription()
        except SubscriptionExpired as e:
            logger.info("%s", e)
            self.subscription = None
        self.state = self._state_for_permission(self.platform.permission())
        return self.state

    async def ensure_subscribed(self) -> DeviceSubscription:
        """Returns the live registration, subscribing again when it is missing or expired."""
        self._require_supported()
        try:
            device = await self.current_subscription()
        except SubscriptionExpired as e:
            logger.info("%s, subscribing again", e)
            device = None
        if device is not None and self.platform.permission() == GRANTED:
            self.subscription = device
            self.state = PushState.SUBSCRIBED
            return device
        return await self.subscribe()

    async def send_test_notification(self, title: str | None = None, message: str | None = None) -> dict:
        body = {k: v for k, v in (("title", title), ("message", message)) if v is not None}
        return await self._post("/notifications/test", body)

    async def _teardown_device(self) -> None:
        existing = await self.platform.get_subscription()
        if existing is None:
            return
        logger.info("Removing existing device registration %s", existing.endpoint)
        try:
            await self.platform.unsubscribe()
        except Exception as e:
            raise RegistrationFailed(f"Could not remove existing registration: {e}") from e

    def _mark_unsubscribed(self) -> None:
        self.subscription = None
        if self.state not in (PushState.UNSUPPORTED, PushState.DENIED):
            self.state = PushState.UNSUBSCRIBED

    async def _post(self, path: str, payload: Any = None) -> Any:
        try:
            response = await self.client.post(path, json=payload)
        except httpx.TransportError as e:
            raise NetworkUnavailable(f"{path}: {e}") from e
        if response.status_code >= 400:
            raise ServerRejected(
                f"{path} answered HTTP {response.status_code}",
                status_code=response.status_code,
                detail=_error_detail(response),
            )
        return response.json() if response.content else None


class NoPushPlatform:
    """Platform without a push service (headless runs, unsupported browsers)."""

    def is_supported(self) -> bool:
        return False

    def permission(self) -> str:
        return DENIED

    async def request_permission(self) -> str:
        return DENIED

    async def get_subscription(self) -> DeviceSubscription | None:
        return None

    async def subscribe(self, application_server_key: str) -> DeviceSubscription:
        raise PushUnsupported("Push notifications are not supported on this platform")

    async def unsubscribe(self) -> bool:
        return False
