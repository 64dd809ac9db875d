"""Persistence boundary for the order workflow.

``OrderRepository`` is the only object the services use to read and write
state. It wraps a SQLAlchemy session (``db.session`` by default) so tests and
scripts can inject their own session, and it turns missing rows into
``NotFound`` errors instead of ``None`` checks scattered through callers.
"""

from __future__ import annotations

from typing import Iterable

from sqlalchemy import func
from sqlalchemy.orm import selectinload

from errors import NotFound
from extensions import db
from models import (
    ItemAttachment,
    Notification,
    Order,
    OrderItem,
    PushSubscription,
    Role,
    User,
)


class OrderRepository:
    def __init__(self, session=None):
        self.session = session if session is not None else db.session

    # ---- lookups -------------------------------------------------------

    def _get_or_raise(self, model, object_id, resource: str):
        try:
            key = int(object_id)
        except (TypeError, ValueError):
            raise NotFound(resource, object_id) from None

        instance = self.session.get(model, key)
        if instance is None:
            raise NotFound(resource, object_id)
        return instance

    def get_order(self, order_id) -> Order:
        return self._get_or_raise(Order, order_id, "order")

    def get_item(self, item_id) -> OrderItem:
        return self._get_or_raise(OrderItem, item_id, "order item")

    def get_attachment(self, attachment_id) -> ItemAttachment:
        return self._get_or_raise(ItemAttachment, attachment_id, "attachment")

    def get_user(self, user_id) -> User:
        return self._get_or_raise(User, user_id, "user")

    def current_status(self, order_id) -> str | None:
        return self.session.query(Order.status).filter(Order.id == int(order_id)).scalar()

    def count_attachments(self, item_id: int) -> int:
        return (
            self.session.query(func.count(ItemAttachment.id))
            .filter(ItemAttachment.order_item_id == item_id)
            .scalar()
            or 0
        )

    def paginate_orders(
        self,
        *,
        page: int,
        limit: int,
        statuses: Iterable[str] | None = None,
        created_by: int | None = None,
    ) -> tuple[list[Order], int]:
        query = self.session.query(Order)
        if statuses is not None:
            query = query.filter(Order.status.in_(list(statuses)))
        if created_by is not None:
            query = query.filter(Order.created_by == created_by)

        total = query.order_by(None).with_entities(func.count(Order.id)).scalar() or 0

        orders = (
            query.options(
                selectinload(Order.items).selectinload(OrderItem.attachments),
                selectinload(Order.creator),
                selectinload(Order.updater),
            )
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return orders, total

    def user_ids_with_role(self, role_name: str) -> list[int]:
        rows = (
            self.session.query(User.id)
            .join(Role, User.role_id == Role.id)
            .filter(Role.name == role_name, User.is_active.is_(True))
            .order_by(User.id.asc())
            .all()
        )
        return [row.id for row in rows]

    def subscriptions_for_user(self, user_id: int) -> list[PushSubscription]:
        return (
            self.session.query(PushSubscription)
            .filter(PushSubscription.user_id == user_id)
            .order_by(PushSubscription.id.asc())
            .all()
        )

    def subscription_by_endpoint(self, endpoint: str) -> PushSubscription | None:
        return (
            self.session.query(PushSubscription)
            .filter(PushSubscription.endpoint == endpoint)
            .first()
        )

    # ---- notifications -------------------------------------------------

    def _user_notifications(self, user_id: int):
        return self.session.query(Notification).filter(Notification.user_id == user_id)

    def unread_count(self, user_id: int) -> int:
        return (
            self._user_notifications(user_id)
            .filter(Notification.is_read.is_(False))
            .with_entities(func.count(Notification.id))
            .scalar()
            or 0
        )

    def notifications_for_user(
        self, user_id: int, *, page: int, limit: int, unread_only: bool = False
    ) -> tuple[list[Notification], int]:
        query = self._user_notifications(user_id)
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))

        total = query.with_entities(func.count(Notification.id)).scalar() or 0
        notifications = (
            query.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return notifications, total

    def mark_notifications_read(self, user_id: int, ids: list[int] | None) -> int:
        query = self._user_notifications(user_id).filter(Notification.is_read.is_(False))
        if ids is not None:
            query = query.filter(Notification.id.in_(ids))
        return query.update({"is_read": True}, synchronize_session=False)

    def delete_notifications(self, user_id: int, ids: list[int] | None) -> int:
        query = self._user_notifications(user_id)
        if ids is not None:
            query = query.filter(Notification.id.in_(ids))
        return query.delete(synchronize_session=False)

    # ---- writes --------------------------------------------------------

    def add(self, instance):
        self.session.add(instance)
        return instance

    def delete(self, instance) -> None:
        self.session.delete(instance)

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    def delete_order_graph(self, order: Order) -> list[ItemAttachment]:
        """
        حذف الطلب بالكامل:
        - إشعارات الطلب
        - البنود والمرفقات وسجلات الحالات (cascade)
        يعيد قائمة المرفقات حتى يتم حذف ملفاتها بعد الـ commit.
        """
        attachments = [
            attachment for item in order.items for attachment in item.attachments
        ]

        self.session.query(Notification).filter(
            Notification.order_id == order.id
        ).delete(synchronize_session=False)

        self.session.delete(order)
        return attachments
