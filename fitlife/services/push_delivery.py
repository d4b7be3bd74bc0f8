"""Web Push delivery to a single subscription (pywebpush + VAPID)."""
import json
import logging

from pywebpush import WebPushException, webpush

from fitlife.core.config import settings

logger = logging.getLogger(__name__)

# Push services answer 404/410 for endpoints that will never accept a message again
GONE_STATUS_CODES = (404, 410)


class PushNotConfigured(RuntimeError):
    pass


class PushDeliveryError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, gone: bool = False) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.gone = gone


def _is_gone(status_code: int | None, message: str) -> bool:
    if status_code in GONE_STATUS_CODES:
        return True
    lowered = message.lower()
    return "expired" in lowered or "unsubscribed" in lowered


class PushSender:
    """
    Sends one encrypted payload to one push endpoint.

    Blocking (pywebpush uses requests); the notification service runs it in a
    worker thread so several subscriptions are served concurrently.
    """

    def __init__(
        self,
        vapid_private_key: str | None = None,
        vapid_admin_email: str | None = None,
        ttl: int | None = None,
    ) -> None:
        self.vapid_private_key = settings.vapid_private_key if vapid_private_key is None else vapid_private_key
        self.vapid_claims = {"sub": f"mailto:{vapid_admin_email or settings.vapid_admin_email}"}
        self.ttl = settings.push_ttl_seconds if ttl is None else ttl

    def send(self, subscription_info: dict, payload: dict) -> int:
        if not self.vapid_private_key:
            raise PushNotConfigured("VAPID_PRIVATE_KEY is not set")
        try:
            response = webpush(
                subscription_info=subscription_info,
                data=json.dumps(payload, default=str),
                vapid_private_key=self.vapid_private_key,
                vapid_claims=dict(self.vapid_claims),
                ttl=self.ttl,
            )
        except WebPushException as e:
            status_code = e.response.status_code if e.response is not None else None
            message = str(e)
            raise PushDeliveryError(message, status_code=status_code, gone=_is_gone(status_code, message)) from e
        return getattr(response, "status_code", 201)
