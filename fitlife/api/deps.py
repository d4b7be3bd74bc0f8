from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from fitlife.core.config import settings
from fitlife.core.database import get_db
from fitlife.core.security import decode_access_token, secrets_match
from fitlife.models import Member
from fitlife.services.notifications import NotificationService
from fitlife.services.push_delivery import PushSender

security = HTTPBearer(auto_error=False)


def get_current_member_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> int:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Bạn cần đăng nhập.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = decode_access_token(credentials.credentials)
    if not payload or "sub" not in payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token không hợp lệ hoặc đã hết hạn.",
        )
    try:
        return int(payload["sub"])
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token không hợp lệ.")


def get_current_member(
    member_id: int = Depends(get_current_member_id),
    db: Session = Depends(get_db),
) -> Member:
    member = db.get(Member, member_id)
    if not member:
        raise HTTPException(status_code=404, detail="Không tìm thấy hội viên.")
    if not member.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tài khoản đã bị khóa.")
    return member


def get_push_sender() -> PushSender:
    return PushSender()


def get_notification_service(
    db: Session = Depends(get_db),
    sender: PushSender = Depends(get_push_sender),
) -> NotificationService:
    return NotificationService(db, sender=sender)


def require_admin_secret(x_admin_secret: str | None = Header(default=None)) -> None:
    if not secrets_match(x_admin_secret, settings.admin_secret):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin secret không hợp lệ.")
