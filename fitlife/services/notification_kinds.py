"""
Notification kinds: one typed payload per ``Notification.type`` and the deep link
each one opens when the member taps the push.
"""
from typing import Annotated, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from fitlife.models import Notification

DEFAULT_URL = "/dashboard"

PUSH_ACTIONS = [
    {"action": "view", "title": "Xem chi tiết"},
    {"action": "close", "title": "Đóng"},
]


class _Kind(BaseModel):
    # Extra keys travel to the device untouched
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class MembershipKind(_Kind):
    type: Literal["membership"] = "membership"
    membership_id: str | int | None = Field(
        default=None, validation_alias=AliasChoices("membership_id", "membershipId")
    )


class AppointmentKind(_Kind):
    type: Literal["appointment"] = "appointment"
    appointment_id: str | int | None = Field(
        default=None, validation_alias=AliasChoices("appointment_id", "appointmentId")
    )


class PromotionKind(_Kind):
    type: Literal["promotion"] = "promotion"
    promo_id: str | int | None = Field(default=None, validation_alias=AliasChoices("promo_id", "promoId"))


class WorkoutKind(_Kind):
    type: Literal["workout"] = "workout"
    workout_id: str | int | None = Field(default=None, validation_alias=AliasChoices("workout_id", "workoutId"))


class GenericKind(_Kind):
    type: Literal["generic"] = "generic"
    url: str | None = None


NotificationKind = Annotated[
    Union[MembershipKind, AppointmentKind, PromotionKind, WorkoutKind, GenericKind],
    Field(discriminator="type"),
]
KIND_NAMES = ("membership", "appointment", "promotion", "workout", "generic")

_kind_adapter = TypeAdapter(NotificationKind)


def parse_kind(type_: str | None, data: dict | None = None) -> NotificationKind:
    """
    Build the typed payload for a stored (type, data) pair.
    Unknown types fall back to ``generic``; raises ValueError when a known
    type carries a payload of the wrong shape.
    """
    payload = dict(data or {})
    payload.pop("type", None)
    name = type_ if type_ in KIND_NAMES else "generic"
    try:
        return _kind_adapter.validate_python({**payload, "type": name})
    except ValidationError as e:
        raise ValueError(f"Invalid data for notification type '{name}': {e.errors()[0].get('msg')}") from e


def deep_link(kind: NotificationKind) -> str:
    if isinstance(kind, MembershipKind):
        return "/dashboard/membership"
    if isinstance(kind, AppointmentKind):
        return f"/dashboard/appointments/{kind.appointment_id or ''}"
    if isinstance(kind, PromotionKind):
        return f"/packages?promo={kind.promo_id or ''}"
    if isinstance(kind, WorkoutKind):
        return "/dashboard/workout-schedule"
    return kind.url or DEFAULT_URL


def build_push_payload(notification: Notification, icon: str, badge: str) -> dict:
    """Payload delivered to the device; the worker turns it into a system notification."""
    try:
        url = deep_link(parse_kind(notification.type, notification.data))
    except ValueError:
        url = DEFAULT_URL
    return {
        "title": notification.title,
        "body": notification.message,
        "icon": icon,
        "badge": badge,
        "data": {
            **(notification.data or {}),
            "notificationId": notification.id,
            "type": notification.type,
            "url": url,
        },
        "actions": [dict(a) for a in PUSH_ACTIONS],
    }
