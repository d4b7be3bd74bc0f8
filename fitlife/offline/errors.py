"""
Client-side failure taxonomy.

Storage and cache errors are absorbed with a fallback, network errors on
mutations become queued actions, permission and subscription errors reach the
caller. ``user_message`` is what the UI shows instead of the raw error text.
"""


class OfflineError(RuntimeError):
    user_message = "Đã có lỗi xảy ra. Vui lòng thử lại."

    def __init__(self, message: str, *, status_code: int | None = None, detail: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class StorageUnavailable(OfflineError):
    """Local store cannot be used (quota, disabled, corrupt). Treated as "no cache"."""

    user_message = "Không thể lưu dữ liệu ngoại tuyến trên thiết bị này."


class NetworkUnavailable(OfflineError):
    user_message = "Không có kết nối mạng."


class PushUnsupported(OfflineError):
    user_message = "Trình duyệt này không hỗ trợ thông báo đẩy."


class PermissionDenied(OfflineError):
    user_message = "Bạn đã chặn thông báo. Hãy bật lại quyền thông báo trong cài đặt trình duyệt rồi thử lại."


class KeyFetchFailed(OfflineError):
    user_message = "Không lấy được khóa đăng ký thông báo từ máy chủ. Vui lòng thử lại sau."


class RegistrationFailed(OfflineError):
    user_message = "Không thể đăng ký thông báo trên thiết bị này. Hãy tải lại trang và thử lại."


class ServerRejected(OfflineError):
    """The server answered, and said no. Not retried automatically."""

    user_message = "Máy chủ từ chối yêu cầu. Vui lòng thử lại sau."


class SubscriptionExpired(OfflineError):
    user_message = "Đăng ký thông báo đã hết hạn. Hãy bật lại thông báo."


def describe_error(exc: BaseException) -> str:
    """Localized message for display; never the raw exception text."""
    if isinstance(exc, OfflineError):
        return exc.user_message
    return OfflineError.user_message
