from .error_log import ErrorLog
from .member import Member
from .notification import Notification
from .push_subscription import PushSubscription

__all__ = [
    "ErrorLog",
    "Member",
    "Notification",
    "PushSubscription",
]
