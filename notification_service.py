"""Notification fan-out for order status changes, plus badge/unread helpers.

Dispatch is best effort: each recipient gets one ``Notification`` row, then a
push attempt per registered subscription. Push failures are logged and
counted; they never roll back the notification row and never propagate to
the status change that triggered them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial

from flask import current_app, g, has_request_context
from sqlalchemy.exc import SQLAlchemyError

from errors import NotFound, ValidationError
from extensions import db
from models import Notification, PushSubscription
from order_workflow import (
    ROLE_ADMIN,
    ROLE_ENGINEERING,
    ROLE_PURCHASING,
    ROLE_SITE,
    ROLE_SUB_ADMIN,
    OrderStatus,
    StatusChanged,
)
from push_gateway import PushDeliveryError, PushGateway, build_push_payload
from repository import OrderRepository
from signals import badge_refresh_requested, order_status_changed

logger = logging.getLogger(__name__)

PENDING_EVENTS_KEY = "pending_status_events"


@dataclass(frozen=True)
class NotificationTargets:
    roles: tuple[str, ...] = ()
    include_creator: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.roles and not self.include_creator


@dataclass
class DispatchResult:
    notified: int = 0
    sent: int = 0
    failed: int = 0


# من يتم إشعاره عند الوصول لكل حالة
STATUS_NOTIFICATION_MAP: dict[OrderStatus, NotificationTargets] = {
    # الموقع أنشأ الطلب -> الهندسية فقط
    OrderStatus.ORDER_CREATED: NotificationTargets((ROLE_ENGINEERING,), include_creator=False),
    # تمت المراجعة الهندسية -> الإدارة + منشئ الطلب
    OrderStatus.ENGINEERING_REVIEWED: NotificationTargets(
        (ROLE_ADMIN, ROLE_SUB_ADMIN), include_creator=True
    ),
    OrderStatus.UNDER_ADMIN_REVIEW: NotificationTargets((ROLE_ENGINEERING,), include_creator=True),
    # الموافقة -> المشتريات + الهندسية + منشئ الطلب
    OrderStatus.OWNER_APPROVED: NotificationTargets(
        (ROLE_PURCHASING, ROLE_ENGINEERING), include_creator=True
    ),
    # الرفض -> الهندسية + منشئ الطلب (بدون المشتريات)
    OrderStatus.OWNER_REJECTED: NotificationTargets((ROLE_ENGINEERING,), include_creator=True),
    OrderStatus.PURCHASING_IN_PROGRESS: NotificationTargets(
        (ROLE_ADMIN, ROLE_SUB_ADMIN, ROLE_ENGINEERING, ROLE_SITE), include_creator=True
    ),
    OrderStatus.ORDER_CLOSED: NotificationTargets(
        (ROLE_ADMIN, ROLE_SUB_ADMIN, ROLE_ENGINEERING, ROLE_SITE), include_creator=True
    ),
}

STATUS_MESSAGES: dict[OrderStatus, str] = {
    OrderStatus.ORDER_CREATED: "تم إنشاء طلب شراء جديد",
    OrderStatus.ENGINEERING_REVIEWED: "تمت المراجعة الهندسية للطلب",
    OrderStatus.UNDER_ADMIN_REVIEW: "الطلب في انتظار مراجعة الإدارة",
    OrderStatus.OWNER_APPROVED: "تمت الموافقة على طلب الشراء",
    OrderStatus.OWNER_REJECTED: "تم رفض طلب الشراء",
    OrderStatus.PURCHASING_IN_PROGRESS: "جاري تنفيذ عملية الشراء",
    OrderStatus.ORDER_CLOSED: "تم إغلاق طلب الشراء بنجاح",
}

STATUS_NOTIFICATION_TYPES: dict[OrderStatus, str] = {
    OrderStatus.ORDER_CREATED: "order_created",
    OrderStatus.ENGINEERING_REVIEWED: "engineering_review",
    OrderStatus.UNDER_ADMIN_REVIEW: "admin_review",
    OrderStatus.OWNER_APPROVED: "owner_approved",
    OrderStatus.OWNER_REJECTED: "owner_rejected",
    OrderStatus.PURCHASING_IN_PROGRESS: "purchasing_started",
    OrderStatus.ORDER_CLOSED: "order_closed",
}

FALLBACK_NOTIFICATION_TYPE = "system"


def status_message(status: OrderStatus) -> str:
    return STATUS_MESSAGES.get(status) or f"تم تحديث حالة الطلب إلى: {status.value}"


def notification_title(event: StatusChanged) -> str:
    return event.order_title or f"طلب رقم {event.order_id}"


def resolve_recipients(
    event: StatusChanged, targets: NotificationTargets, repository: OrderRepository
) -> list[int]:
    """Users holding any target role (deduplicated, in order), then the creator."""

    recipients: list[int] = []
    seen: set[int] = set()

    for role_name in targets.roles:
        for user_id in repository.user_ids_with_role(role_name):
            if user_id not in seen:
                seen.add(user_id)
                recipients.append(user_id)

    if targets.include_creator and event.created_by and event.created_by not in seen:
        recipients.append(event.created_by)

    return recipients


def send_user_notification(
    repository: OrderRepository,
    push_gateway: PushGateway,
    *,
    user_id: int,
    title: str,
    body: str,
    notification_type: str = FALLBACK_NOTIFICATION_TYPE,
    order_id: int | None = None,
    data: dict | None = None,
    result: DispatchResult | None = None,
) -> DispatchResult:
    """Persist one notification for ``user_id`` then push it to each subscription."""

    result = result if result is not None else DispatchResult()
    url = f"/orders/{order_id}" if order_id else None

    notification = Notification(
        user_id=user_id,
        order_id=order_id,
        title=title,
        body=body,
        type=notification_type,
        data={**(data or {}), "actionUrl": url} if url else (data or {}),
        url=url,
        is_read=False,
    )
    repository.add(notification)
    repository.commit()
    result.notified += 1

    payload = build_push_payload(
        title=title,
        body=body,
        order_id=order_id,
        notification_type=notification_type,
    )

    for subscription in repository.subscriptions_for_user(user_id):
        try:
            if push_gateway.send(subscription.as_web_push(), payload):
                result.sent += 1
        except PushDeliveryError as exc:
            result.failed += 1
            logger.warning(
                "push delivery failed",
                extra={"recipient_id": user_id, "subscription_id": subscription.id, "error": str(exc)},
            )

    return result


def dispatch_status_change_notifications(
    event: StatusChanged,
    repository: OrderRepository,
    push_gateway: PushGateway,
    status_map: dict[OrderStatus, NotificationTargets] = STATUS_NOTIFICATION_MAP,
) -> DispatchResult:
    result = DispatchResult()

    targets = status_map.get(event.new_status)
    if targets is None or targets.is_empty:
        logger.debug("no notification targets for status %s", event.new_status.value)
        return result

    recipients = resolve_recipients(event, targets, repository)
    if not recipients:
        return result

    title = notification_title(event)
    body = status_message(event.new_status)
    notification_type = STATUS_NOTIFICATION_TYPES.get(
        event.new_status, FALLBACK_NOTIFICATION_TYPE
    )
    data = {
        "orderId": event.order_id,
        "oldStatus": event.old_status.value if event.old_status else None,
        "newStatus": event.new_status.value,
    }

    for user_id in recipients:
        try:
            send_user_notification(
                repository,
                push_gateway,
                user_id=user_id,
                title=title,
                body=body,
                notification_type=notification_type,
                order_id=event.order_id,
                data=data,
                result=result,
            )
        except SQLAlchemyError:
            repository.rollback()
            logger.exception(
                "could not store notification", extra={"recipient_id": user_id, "order_id": event.order_id}
            )

    logger.info(
        "status change notifications dispatched",
        extra={
            "order_id": event.order_id,
            "new_status": event.new_status.name,
            "notified": result.notified,
            "push_sent": result.sent,
            "push_failed": result.failed,
        },
    )
    badge_refresh_requested.send(
        dispatch_status_change_notifications, user_ids=recipients, reason="notifications"
    )
    return result


@order_status_changed.connect
def _dispatch_on_status_change(sender, event: StatusChanged, **extra) -> None:
    if not current_app.config.get("NOTIFICATIONS_ENABLED", True):
        return

    if has_request_context():
        # داخل طلب HTTP: الإرسال بعد تسليم الرد للعميل
        g.setdefault(PENDING_EVENTS_KEY, []).append(event)
        return

    _dispatch_safely(event)


def defer_pending_dispatches(response):
    """Attach the request's queued status events to ``response`` so they go out on close."""

    events = g.pop(PENDING_EVENTS_KEY, None)
    if events:
        app = current_app._get_current_object()
        response.call_on_close(partial(_dispatch_after_response, app, events))
    return response


def _dispatch_after_response(app, events: list[StatusChanged]) -> None:
    with app.app_context():
        for event in events:
            _dispatch_safely(event)


def _dispatch_safely(event: StatusChanged) -> None:
    try:
        dispatch_status_change_notifications(
            event, OrderRepository(), PushGateway.from_config(current_app.config)
        )
    except Exception:
        # فشل الإشعارات لا يؤثر على تغيير حالة الطلب
        db.session.rollback()
        logger.exception("notification dispatch failed", extra={"order_id": event.order_id})


# =========================
#   عداد الإشعارات والقائمة
# =========================

def _parse_ids(ids, field: str = "notificationIds") -> list[int]:
    if not isinstance(ids, (list, tuple)):
        raise ValidationError(f"{field} must be a list", field=field)
    try:
        return [int(value) for value in ids]
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be integers", field=field) from None


def unread_count(repository: OrderRepository, user_id: int) -> int:
    return repository.unread_count(user_id)


def list_notifications(
    repository: OrderRepository,
    user_id: int,
    *,
    page: int = 1,
    limit: int = 20,
    unread_only: bool = False,
) -> dict:
    notifications, total = repository.notifications_for_user(
        user_id, page=page, limit=limit, unread_only=unread_only
    )
    return {
        "notifications": [notification.to_dict() for notification in notifications],
        "unreadCount": repository.unread_count(user_id),
        "total": total,
        "page": page,
        "limit": limit,
    }


def mark_read(repository: OrderRepository, user_id: int, *, ids=None, mark_all: bool = False) -> int:
    if not mark_all and not ids:
        raise ValidationError("notificationIds or markAll required", field="notificationIds")

    updated = repository.mark_notifications_read(user_id, None if mark_all else _parse_ids(ids))
    repository.commit()
    badge_refresh_requested.send(mark_read, user_ids=[user_id], reason="notifications-read")
    return updated


def delete_notifications(
    repository: OrderRepository, user_id: int, *, ids=None, delete_all: bool = False
) -> int:
    if not delete_all and not ids:
        raise ValidationError("notificationIds or deleteAll required", field="notificationIds")

    deleted = repository.delete_notifications(user_id, None if delete_all else _parse_ids(ids))
    repository.commit()
    badge_refresh_requested.send(
        delete_notifications, user_ids=[user_id], reason="notifications-deleted"
    )
    return deleted


# =========================
#   اشتراكات الـ Push
# =========================

def register_subscription(
    repository: OrderRepository,
    user_id: int,
    subscription,
    device_info: dict | None = None,
) -> PushSubscription:
    """Create or re-own the subscription for ``subscription["endpoint"]``."""

    if not isinstance(subscription, dict):
        raise ValidationError("subscription must be an object", field="subscription")

    keys = subscription.get("keys") if isinstance(subscription.get("keys"), dict) else {}
    endpoint = (subscription.get("endpoint") or "").strip()
    p256dh = (keys.get("p256dh") or "").strip()
    auth = (keys.get("auth") or "").strip()

    if not endpoint:
        raise ValidationError("subscription endpoint required", field="endpoint")
    if not p256dh or not auth:
        raise ValidationError("subscription keys p256dh and auth required", field="keys")

    existing = repository.subscription_by_endpoint(endpoint)
    if existing is None:
        existing = repository.add(
            PushSubscription(endpoint=endpoint, user_id=user_id, p256dh=p256dh, auth=auth)
        )

    # نفس الجهاز قد يسجّل بمستخدم آخر
    existing.user_id = user_id
    existing.p256dh = p256dh
    existing.auth = auth
    existing.device_info = device_info or existing.device_info
    repository.commit()

    logger.info(
        "push subscription registered",
        extra={"recipient_id": user_id, "subscription_id": existing.id},
    )
    return existing


def remove_subscription(repository: OrderRepository, user_id: int, endpoint) -> bool:
    endpoint = (endpoint or "").strip() if isinstance(endpoint, str) else ""
    if not endpoint:
        raise ValidationError("subscription endpoint required", field="endpoint")

    existing = repository.subscription_by_endpoint(endpoint)
    if existing is None or existing.user_id != user_id:
        return False

    repository.delete(existing)
    repository.commit()
    return True


def send_direct_notification(
    repository: OrderRepository,
    push_gateway: PushGateway,
    user_ids,
    *,
    title,
    body=None,
    order_id=None,
    notification_type: str = FALLBACK_NOTIFICATION_TYPE,
) -> DispatchResult:
    """Notify explicit users (manual/internal sends); unknown users are skipped."""

    if not isinstance(title, str) or not title.strip():
        raise ValidationError("title required", field="title")
    recipients = _parse_ids(user_ids, field="userIds")
    if not recipients:
        raise ValidationError("userIds required", field="userIds")

    result = DispatchResult()
    for user_id in dict.fromkeys(recipients):
        try:
            repository.get_user(user_id)
        except NotFound:
            logger.warning("skipping notification for unknown user", extra={"recipient_id": user_id})
            continue
        send_user_notification(
            repository,
            push_gateway,
            user_id=user_id,
            title=title.strip(),
            body=body,
            notification_type=notification_type or FALLBACK_NOTIFICATION_TYPE,
            order_id=order_id,
            result=result,
        )

    badge_refresh_requested.send(send_direct_notification, user_ids=recipients, reason="notifications")
    return result
