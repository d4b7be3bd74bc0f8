from .cache_router import CacheStrategyRouter, OfflineTransport, RouteRule, Strategy
from .config import ClientSettings
from .connectivity import ConnectivityMonitor
from .errors import (
    KeyFetchFailed,
    NetworkUnavailable,
    OfflineError,
    PermissionDenied,
    PushUnsupported,
    RegistrationFailed,
    ServerRejected,
    StorageUnavailable,
    SubscriptionExpired,
    describe_error,
)
from .inbox import NotificationInbox
from .push_manager import DeviceSubscription, PushPlatform, PushState, PushSubscriptionManager
from .runtime import OfflineRuntime
from .store import LocalStore
from .sync_queue import ReplayResult, SyncQueue
from .worker import ServiceWorker

__all__ = [
    "CacheStrategyRouter",
    "ClientSettings",
    "ConnectivityMonitor",
    "DeviceSubscription",
    "KeyFetchFailed",
    "LocalStore",
    "NetworkUnavailable",
    "NotificationInbox",
    "OfflineError",
    "OfflineRuntime",
    "OfflineTransport",
    "PermissionDenied",
    "PushPlatform",
    "PushState",
    "PushSubscriptionManager",
    "PushUnsupported",
    "RegistrationFailed",
    "ReplayResult",
    "RouteRule",
    "ServerRejected",
    "ServiceWorker",
    "StorageUnavailable",
    "Strategy",
    "SubscriptionExpired",
    "SyncQueue",
    "describe_error",
]
