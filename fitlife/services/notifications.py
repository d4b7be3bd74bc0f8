"""
Notification service: subscription records, fan-out delivery and read-state.

Delivery flow:
1. Notification row created in ``created``.
2. Unless scheduled, the delivering pass claims the row (``sending``) and
   every active subscription of the member gets the push concurrently; one
   slow or failing endpoint never blocks the others. A pass that loses the
   claim delivers nothing.
3. ``sent`` iff at least one delivery succeeded, otherwise ``failed``.
   Endpoints answering 404/410 are deactivated, not deleted.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, func, select

from fitlife.core.config import settings
from fitlife.models import Notification, PushSubscription
from fitlife.models.notification import STATUS_CREATED, STATUS_FAILED, STATUS_SENDING, STATUS_SENT
from fitlife.services.notification_kinds import build_push_payload, parse_kind
from fitlife.services.push_delivery import PushDeliveryError, PushSender

logger = logging.getLogger(__name__)


_DELIVERED = (STATUS_SENT, STATUS_FAILED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    """Naive datetimes from callers are taken as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class NotificationNotFound(LookupError):
    pass


@dataclass
class DeliveryReport:
    notification_id: int
    status: str
    success_count: int = 0
    failed_count: int = 0
    deactivated: list[int] = field(default_factory=list)


@dataclass
class BulkReport:
    successful: int
    failed: int
    total: int


class NotificationService:
    def __init__(
        self,
        db: Session,
        sender: PushSender | None = None,
        icon: str | None = None,
        badge: str | None = None,
    ) -> None:
        self.db = db
        self.sender = sender or PushSender()
        self.icon = icon or settings.push_icon
        self.badge = badge or settings.push_badge

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def _find_subscription(self, member_id: int, endpoint: str) -> PushSubscription | None:
        stmt = select(PushSubscription).where(
            PushSubscription.member_id == member_id,
            PushSubscription.endpoint == endpoint,
        )
        return self.db.exec(stmt).first()

    def save_subscription(
        self,
        member_id: int,
        endpoint: str,
        keys: dict,
        device_info: dict | None = None,
    ) -> PushSubscription:
        """Upsert keyed by (member_id, endpoint); re-subscribing an inactive endpoint re-activates it."""
        sub = self._find_subscription(member_id, endpoint)
        if sub is None:
            sub = PushSubscription(member_id=member_id, endpoint=endpoint)
        self._apply_subscription(sub, keys, device_info)
        try:
            self.db.commit()
        except IntegrityError:
            # Another request inserted the same pair first: update that row instead
            self.db.rollback()
            sub = self._find_subscription(member_id, endpoint)
            if sub is None:
                raise
            self._apply_subscription(sub, keys, device_info)
            self.db.commit()
        self.db.refresh(sub)
        logger.info("Push subscription saved: member_id=%s subscription_id=%s", member_id, sub.id)
        return sub

    def _apply_subscription(self, sub: PushSubscription, keys: dict, device_info: dict | None) -> None:
        sub.p256dh = keys.get("p256dh", "")
        sub.auth = keys.get("auth", "")
        sub.device_info = device_info
        sub.is_active = True
        sub.updated_at = _utcnow()
        self.db.add(sub)

    def remove_subscription(self, member_id: int, endpoint: str) -> bool:
        sub = self._find_subscription(member_id, endpoint)
        if sub is None:
            return False
        sub.is_active = False
        sub.updated_at = _utcnow()
        self.db.add(sub)
        self.db.commit()
        logger.info("Push subscription deactivated: member_id=%s subscription_id=%s", member_id, sub.id)
        return True

    def active_subscriptions(self, member_id: int) -> list[PushSubscription]:
        stmt = select(PushSubscription).where(
            PushSubscription.member_id == member_id,
            PushSubscription.is_active == True,  # noqa: E712
        )
        return list(self.db.exec(stmt).all())

    # ------------------------------------------------------------------
    # Creation & delivery
    # ------------------------------------------------------------------

    def create_notification(
        self,
        member_id: int,
        title: str,
        message: str,
        type: str = "generic",
        data: dict | None = None,
        scheduled_at: datetime | None = None,
    ) -> Notification:
        kind = parse_kind(type, data)
        notification = Notification(
            member_id=member_id,
            title=title[:200],
            message=message[:1000],
            type=kind.type,
            data=data or None,
            scheduled_at=_as_utc(scheduled_at),
        )
        self.db.add(notification)
        self.db.commit()
        self.db.refresh(notification)
        return notification

    async def send_to_user(
        self,
        member_id: int,
        title: str,
        message: str,
        type: str = "generic",
        data: dict | None = None,
        scheduled_at: datetime | None = None,
    ) -> Notification:
        notification = self.create_notification(member_id, title, message, type, data, scheduled_at)
        if scheduled_at is None:
            await self.send_push_notification(notification.id)
            self.db.refresh(notification)
        return notification

    async def schedule_notification(
        self,
        member_id: int,
        title: str,
        message: str,
        scheduled_at: datetime,
        type: str = "generic",
        data: dict | None = None,
    ) -> Notification:
        return await self.send_to_user(member_id, title, message, type, data, scheduled_at=scheduled_at)

    def _claim(self, notification_id: int) -> bool:
        """created -> sending in one statement; False when another delivery pass claimed it first."""
        stmt = (
            update(Notification)
            .where(Notification.id == notification_id, Notification.status == STATUS_CREATED)
            .values(status=STATUS_SENDING)
        )
        claimed = self.db.connection().execute(stmt).rowcount == 1
        self.db.commit()
        return claimed

    async def send_push_notification(self, notification_id: int) -> DeliveryReport:
        notification = self.db.get(Notification, notification_id)
        if notification is None:
            raise NotificationNotFound(f"Notification {notification_id} not found")
        if notification.status != STATUS_CREATED or not self._claim(notification_id):
            # Each subscription gets a given notification at most once
            self.db.refresh(notification)
            logger.info("Notification %s already %s, skipping delivery", notification_id, notification.status)
            return DeliveryReport(
                notification_id=notification_id,
                status=notification.status,
                success_count=notification.success_count,
                failed_count=notification.failed_count,
            )

        subscriptions = self.active_subscriptions(notification.member_id)
        if not subscriptions:
            logger.info("No active subscriptions for member %s", notification.member_id)
            notification.status = STATUS_FAILED
            self.db.add(notification)
            self.db.commit()
            return DeliveryReport(notification_id=notification_id, status=STATUS_FAILED)

        payload = build_push_payload(notification, self.icon, self.badge)
        results = await asyncio.gather(
            *(asyncio.to_thread(self.sender.send, sub.to_subscription_info(), payload) for sub in subscriptions),
            return_exceptions=True,
        )

        now = _utcnow()
        report = DeliveryReport(notification_id=notification_id, status=STATUS_FAILED)
        for sub, result in zip(subscriptions, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                report.failed_count += 1
                logger.warning("Push to subscription %s failed: %s", sub.id, result)
                if isinstance(result, PushDeliveryError) and result.gone:
                    sub.is_active = False
                    sub.updated_at = now
                    self.db.add(sub)
                    report.deactivated.append(sub.id)
                    logger.warning("Subscription %s marked inactive (gone)", sub.id)
            else:
                report.success_count += 1
                sub.last_used_at = now
                self.db.add(sub)

        report.status = STATUS_SENT if report.success_count > 0 else STATUS_FAILED
        notification.status = report.status
        notification.sent_at = now
        notification.success_count = report.success_count
        notification.failed_count = report.failed_count
        self.db.add(notification)
        self.db.commit()
        logger.info(
            "Notification %s delivered: %s success, %s failed",
            notification_id,
            report.success_count,
            report.failed_count,
        )
        return report

    async def send_bulk(
        self,
        member_ids: list[int],
        title: str,
        message: str,
        type: str = "generic",
        data: dict | None = None,
    ) -> BulkReport:
        successful = 0
        for member_id in member_ids:
            try:
                await self.send_to_user(member_id, title, message, type, data)
                successful += 1
            except Exception as e:
                self.db.rollback()
                logger.warning("Bulk notification to member %s failed: %s", member_id, e)
        return BulkReport(successful=successful, failed=len(member_ids) - successful, total=len(member_ids))

    async def deliver_due(self, now: datetime | None = None) -> list[DeliveryReport]:
        """Entry point for an external scheduler: deliver every scheduled notification that is due."""
        now = _as_utc(now) or _utcnow()
        stmt = (
            select(Notification)
            .where(
                Notification.status == STATUS_CREATED,
                Notification.scheduled_at != None,  # noqa: E711
                Notification.scheduled_at <= now,
            )
            .order_by(Notification.scheduled_at, Notification.id)
        )
        due_ids = [n.id for n in self.db.exec(stmt).all()]
        reports = []
        for notification_id in due_ids:
            reports.append(await self.send_push_notification(notification_id))
        return reports

    # ------------------------------------------------------------------
    # Read-state
    # ------------------------------------------------------------------

    def _visible(self, member_id: int):
        # Rows still waiting for (or in the middle of) delivery are not in the inbox yet
        return select(Notification).where(
            Notification.member_id == member_id,
            Notification.status.in_(_DELIVERED),
        )

    def list_notifications(self, member_id: int, page: int = 1, limit: int = 20) -> tuple[list[Notification], int]:
        page = max(page, 1)
        total_stmt = (
            select(func.count())
            .select_from(Notification)
            .where(Notification.member_id == member_id, Notification.status.in_(_DELIVERED))
        )
        total = self.db.exec(total_stmt).one()
        stmt = (
            self._visible(member_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(self.db.exec(stmt).all()), total

    def mark_as_read(self, member_id: int, ids: list[int]) -> int:
        """Sets read_at on the member's unread rows among ``ids``; already-read rows keep their timestamp."""
        if not ids:
            return 0
        stmt = self._visible(member_id).where(
            Notification.id.in_(ids),
            Notification.read_at == None,  # noqa: E711
        )
        return self._mark(list(self.db.exec(stmt).all()))

    def mark_all_as_read(self, member_id: int) -> int:
        stmt = self._visible(member_id).where(Notification.read_at == None)  # noqa: E711
        return self._mark(list(self.db.exec(stmt).all()))

    def _mark(self, rows: list[Notification]) -> int:
        now = _utcnow()
        for n in rows:
            n.read_at = now
            self.db.add(n)
        if rows:
            self.db.commit()
        return len(rows)

    def unread_count(self, member_id: int) -> int:
        stmt = (
            select(func.count())
            .select_from(Notification)
            .where(
                Notification.member_id == member_id,
                Notification.status == STATUS_SENT,
                Notification.read_at == None,  # noqa: E711
            )
        )
        return self.db.exec(stmt).one()
