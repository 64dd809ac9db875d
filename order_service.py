"""Order operations: validation, persistence and events around the workflow.

``OrderService`` is the single place where the pure rules in
``order_workflow`` meet the database. Every method receives the acting user
(anything with ``id`` and ``role_name``), loads state through the repository,
commits, and only then emits ``order_status_changed`` and
``badge_refresh_requested`` so receivers never observe uncommitted rows.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterable, Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from attachments import MAX_ITEM_ATTACHMENTS, AttachmentStore, validate_upload
from errors import Forbidden, InvalidTransition, NotFound, ValidationError, WorkflowError
from models import ItemAttachment, Order, OrderItem, OrderStatusLog
from order_workflow import (
    ADMIN_ROLES,
    ATTACHMENT_ROLES,
    CREATE_ROLES,
    DELETE_ROLES,
    OPEN_STATUSES,
    ROLE_SITE,
    OrderStatus,
    StatusChanged,
    TransitionPayload,
    TransitionResult,
    all_items_decided,
    apply_changes,
    can_edit_order,
    can_update_item_status,
    execute_transition,
    optional_text,
    parse_item_decisions,
    parse_purchase_status,
    plan_item_edits,
    required_text,
    validate_new_items,
)
from repository import OrderRepository
from signals import badge_refresh_requested, order_status_changed

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

CONCURRENT_UPDATE = "order was modified concurrently; reload and retry"


def _role(actor) -> str | None:
    return getattr(actor, "role_name", None)


def clamp_paging(page, limit) -> tuple[int, int]:
    try:
        page = int(page)
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        limit = DEFAULT_PAGE_SIZE
    return max(page, 1), min(max(limit, 1), MAX_PAGE_SIZE)


class OrderService:
    def __init__(
        self,
        repository: OrderRepository | None = None,
        attachment_store: AttachmentStore | None = None,
        *,
        max_attachments: int = MAX_ITEM_ATTACHMENTS,
    ):
        self.repository = repository or OrderRepository()
        self.attachment_store = attachment_store
        self.max_attachments = max_attachments

    # =========================
    #   أدوات داخلية
    # =========================

    @contextmanager
    def _writing(self, order: Order, requested: OrderStatus | None = None):
        """Apply the block's changes to ``order`` and commit them as one unit.

        Any error inside the block rolls the session back, so nothing half-applied
        reaches a later commit. A version conflict on ``order`` (raised at commit or
        by an autoflush while the block loads relationships) becomes
        ``InvalidTransition``.
        """

        order_id = order.id
        try:
            yield
            self.repository.commit()
        except StaleDataError:
            self.repository.rollback()
            current = self.repository.current_status(order_id)
            if current is None:
                raise NotFound("order", order_id) from None
            logger.warning(
                "concurrent order update rejected",
                extra={"order_id": order_id, "current_status": current},
            )
            raise InvalidTransition(current, requested, CONCURRENT_UPDATE) from None
        except (WorkflowError, SQLAlchemyError):
            self.repository.rollback()
            raise

    def _log_status(self, order: Order, old_status, new_status, actor, comment=None) -> None:
        order.status_logs.append(
            OrderStatusLog(
                old_status=old_status.value if old_status is not None else None,
                new_status=new_status.value,
                comment=comment,
                decided_by_id=getattr(actor, "id", None),
            )
        )

    def _announce(self, event: StatusChanged) -> None:
        order_status_changed.send(self, event=event)
        self._refresh_badges("order-status")

    def _refresh_badges(self, reason: str) -> None:
        badge_refresh_requested.send(self, user_ids=None, reason=reason)

    def _remove_files(self, stored_filenames: Iterable[str]) -> None:
        if self.attachment_store is None:
            return
        for stored in stored_filenames:
            self.attachment_store.remove(stored)

    def _require_store(self) -> AttachmentStore:
        if self.attachment_store is None:
            raise RuntimeError("attachment storage is not configured")
        return self.attachment_store

    # =========================
    #   إنشاء الطلب
    # =========================

    def create_order(self, actor, title, items, order_notes=None) -> Order:
        role = _role(actor)
        if role not in CREATE_ROLES:
            raise Forbidden(f"role '{role}' may not create orders", role=role)

        title = required_text(title, "title")
        notes = optional_text(order_notes, "order_notes")
        cleaned_items = validate_new_items(items)

        order = Order(
            title=title,
            order_notes=notes,
            status=OrderStatus.ORDER_CREATED.value,
            admin_checked=None,
            created_by=actor.id,
            updated_by=actor.id,
        )
        order.items = [OrderItem(**fields) for fields in cleaned_items]
        self._log_status(order, None, OrderStatus.ORDER_CREATED, actor)

        self.repository.add(order)
        self.repository.commit()

        logger.info(
            "order created",
            extra={"order_id": order.id, "items": len(cleaned_items), "actor_id": actor.id},
        )
        self._announce(
            StatusChanged(
                order_id=order.id,
                old_status=None,
                new_status=OrderStatus.ORDER_CREATED,
                created_by=order.created_by,
                order_title=order.title,
            )
        )
        return order

    # =========================
    #   تغيير حالة الطلب
    # =========================

    def transition_order_status(
        self,
        order_id,
        requested_status,
        actor,
        payload: TransitionPayload | Mapping[str, Any] | None = None,
    ) -> Order:
        if not isinstance(payload, TransitionPayload):
            payload = TransitionPayload.from_mapping(payload)

        order = self.repository.get_order(order_id)
        result = execute_transition(order, requested_status, _role(actor), payload)
        self._persist_transition(order, result, actor)
        return order

    def _persist_transition(self, order: Order, result: TransitionResult, actor) -> None:
        comment = result.changes.get("rejection_reason") or result.changes.get("purchasing_notes")
        with self._writing(order, result.status):
            apply_changes(order, result.changes)
            order.updated_by = actor.id
            self._log_status(order, result.event.old_status, result.status, actor, comment)

        logger.info(
            "order status changed",
            extra={
                "order_id": order.id,
                "old_status": result.event.old_status.name,
                "new_status": result.status.name,
                "actor_id": actor.id,
            },
        )
        self._announce(result.event)

    def mark_under_review(self, order_id, actor) -> Order:
        """Move an engineering-reviewed order into admin review when an admin opens it."""

        order = self.repository.get_order(order_id)
        if _role(actor) in ADMIN_ROLES and order.status_enum is OrderStatus.ENGINEERING_REVIEWED:
            result = execute_transition(order, OrderStatus.UNDER_ADMIN_REVIEW, _role(actor))
            self._persist_transition(order, result, actor)
        return order

    # =========================
    #   قرارات الإدارة على البنود
    # =========================

    def update_admin_checked(self, order_id, actor, decisions) -> tuple[Order, list[OrderItem]]:
        role = _role(actor)
        if role not in ADMIN_ROLES:
            raise Forbidden(f"role '{role}' may not record item decisions", role=role)

        order = self.repository.get_order(order_id)
        if order.status_enum is not OrderStatus.UNDER_ADMIN_REVIEW:
            raise InvalidTransition(
                order.status,
                None,
                "item decisions are only accepted while the order is under admin review",
            )

        parsed = parse_item_decisions(decisions)
        by_id = {str(item.id): item for item in order.items}
        for item_id in parsed:
            if item_id not in by_id:
                raise NotFound("order item", item_id)

        updated: list[OrderItem] = []
        with self._writing(order):
            for item_id, approved in parsed.items():
                item = by_id[item_id]
                item.approved_by_admin = approved
                updated.append(item)

            order.admin_checked = all_items_decided(order.items)
            order.updated_by = actor.id

        logger.info(
            "item decisions recorded",
            extra={"order_id": order.id, "items": len(updated), "admin_checked": order.admin_checked},
        )
        self._refresh_badges("item-decisions")
        return order, updated

    # =========================
    #   حالة الشراء لكل بند
    # =========================

    def update_item_status(self, item_id, actor, changes: Mapping[str, Any]) -> OrderItem:
        item = self.repository.get_item(item_id)
        order = item.order
        role = _role(actor)

        if not can_update_item_status(role, order.status):
            raise Forbidden(
                f"role '{role}' may not update item status while the order is ({order.status})",
                role=role,
                current_status=order.status,
            )

        if "purchase_status" not in changes:
            raise ValidationError("purchase_status required", field="purchase_status")
        status = parse_purchase_status(changes.get("purchase_status"))
        fields: dict[str, Any] = {"purchase_status": status.value if status is not None else None}
        if "item_notes" in changes:
            fields["item_notes"] = optional_text(changes.get("item_notes"), "item_notes")

        with self._writing(order):
            apply_changes(item, fields)
            order.updated_by = actor.id

        logger.info(
            "item purchase status updated",
            extra={"order_id": order.id, "item_id": item.id, "purchase_status": item.purchase_status},
        )
        self._refresh_badges("item-status")
        return item

    # =========================
    #   تعديل وحذف الطلب
    # =========================

    def update_order(self, order_id, actor, changes: Mapping[str, Any]) -> Order:
        order = self.repository.get_order(order_id)
        role = _role(actor)

        if not can_edit_order(role, order.status):
            raise Forbidden(
                f"role '{role}' may not edit the order while it is ({order.status})",
                role=role,
                current_status=order.status,
            )

        # التحقق من كل المدخلات قبل أي تعديل على الطلب
        fields: dict[str, Any] = {}
        if "title" in changes:
            fields["title"] = required_text(changes.get("title"), "title")
        if "order_notes" in changes:
            fields["order_notes"] = optional_text(changes.get("order_notes"), "order_notes")
        plan = None
        if changes.get("items") is not None:
            plan = plan_item_edits(order.items, changes["items"])

        removed_files: list[str] = []
        with self._writing(order):
            apply_changes(order, fields)
            if plan is not None:
                for item, item_fields in plan.updates:
                    apply_changes(item, item_fields)
                for item in plan.deletes:
                    removed_files.extend(a.stored_filename for a in item.attachments)
                    order.items.remove(item)
                for item_fields in plan.creates:
                    order.items.append(OrderItem(**item_fields))

                if order.status_enum is OrderStatus.UNDER_ADMIN_REVIEW:
                    order.admin_checked = all_items_decided(order.items)

            order.updated_by = actor.id
        self._remove_files(removed_files)

        logger.info("order updated", extra={"order_id": order.id, "actor_id": actor.id})
        self._refresh_badges("order-updated")
        return order

    def delete_order(self, order_id, actor) -> None:
        role = _role(actor)
        if role not in DELETE_ROLES:
            raise Forbidden(f"role '{role}' may not delete orders", role=role)

        order = self.repository.get_order(order_id)
        attachments = self.repository.delete_order_graph(order)
        stored = [attachment.stored_filename for attachment in attachments]
        self.repository.commit()
        self._remove_files(stored)

        logger.info(
            "order deleted",
            extra={"order_id": int(order_id), "attachments": len(stored), "actor_id": actor.id},
        )
        self._refresh_badges("order-deleted")

    # =========================
    #   المرفقات
    # =========================

    def upload_item_attachments(self, item_id, actor, files) -> list[ItemAttachment]:
        role = _role(actor)
        if role not in ATTACHMENT_ROLES:
            raise Forbidden(f"role '{role}' may not upload attachments", role=role)

        item = self.repository.get_item(item_id)
        files = [f for f in (files or []) if f is not None and getattr(f, "filename", None)]
        if not files:
            raise ValidationError("at least one attachment file required", field="attachment")

        existing = self.repository.count_attachments(item.id)
        if existing + len(files) > self.max_attachments:
            raise ValidationError(
                f"an item can hold at most {self.max_attachments} attachments "
                f"({existing} already attached)",
                field="attachment",
                limit=self.max_attachments,
                existing=existing,
            )

        names = [
            validate_upload(file_storage, field=f"attachment[{index}]")
            for index, file_storage in enumerate(files)
        ]

        store = self._require_store()
        saved: list[str] = []
        created: list[ItemAttachment] = []
        try:
            for file_storage, original_name in zip(files, names):
                stored, size = store.save(file_storage)
                saved.append(stored)
                attachment = ItemAttachment(
                    file_name=original_name,
                    stored_filename=stored,
                    file_type=file_storage.mimetype or None,
                    file_size=size,
                    uploaded_by_id=actor.id,
                )
                item.attachments.append(attachment)
                created.append(attachment)
            self.repository.commit()
        except (OSError, SQLAlchemyError):
            self.repository.rollback()
            self._remove_files(saved)
            raise

        logger.info(
            "attachments uploaded",
            extra={"order_id": item.order_id, "item_id": item.id, "count": len(created)},
        )
        return created

    def delete_attachment(self, attachment_id, actor) -> None:
        role = _role(actor)
        if role not in ATTACHMENT_ROLES:
            raise Forbidden(f"role '{role}' may not delete attachments", role=role)

        attachment = self.repository.get_attachment(attachment_id)
        stored = attachment.stored_filename
        self.repository.delete(attachment)
        self.repository.commit()
        self._remove_files([stored])

        logger.info("attachment deleted", extra={"attachment_id": int(attachment_id)})

    def get_attachment(self, attachment_id, actor) -> ItemAttachment:
        attachment = self.repository.get_attachment(attachment_id)
        # التحقق من صلاحية رؤية الطلب
        self._check_visible(attachment.item.order, actor, attachment_id, "attachment")
        return attachment

    # =========================
    #   القراءة
    # =========================

    @staticmethod
    def _check_visible(order: Order, actor, resource_id, resource: str) -> None:
        # الموقع يرى الطلبات التي أنشأها فقط
        if _role(actor) == ROLE_SITE and order.created_by != actor.id:
            raise NotFound(resource, resource_id)

    def list_orders(
        self, actor, *, page=1, limit=DEFAULT_PAGE_SIZE, current_only: bool = False
    ) -> tuple[list[Order], int, int, int]:
        page, limit = clamp_paging(page, limit)
        created_by = actor.id if _role(actor) == ROLE_SITE else None
        statuses = [status.value for status in OPEN_STATUSES] if current_only else None

        orders, total = self.repository.paginate_orders(
            page=page, limit=limit, statuses=statuses, created_by=created_by
        )
        return orders, total, page, limit

    def get_order(self, order_id, actor) -> Order:
        order = self.repository.get_order(order_id)
        self._check_visible(order, actor, order_id, "order")
        return order
