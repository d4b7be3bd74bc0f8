from .notification import (
    BulkNotificationRequest,
    DeliveryReportResponse,
    MarkReadRequest,
    NotificationPage,
    NotificationResponse,
    SendNotificationRequest,
    PushTestRequest,
)
from .push import (
    PushKeys,
    PushSubscribeRequest,
    PushSubscriptionResponse,
    PushUnsubscribeRequest,
    VapidKeyResponse,
)

__all__ = [
    "BulkNotificationRequest",
    "DeliveryReportResponse",
    "MarkReadRequest",
    "NotificationPage",
    "NotificationResponse",
    "SendNotificationRequest",
    "PushTestRequest",
    "PushKeys",
    "PushSubscribeRequest",
    "PushSubscriptionResponse",
    "PushUnsubscribeRequest",
    "VapidKeyResponse",
]
