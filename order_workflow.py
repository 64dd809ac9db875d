# order_workflow.py
"""Order status workflow: statuses, role-gated transitions and item rules.

Everything in this module is a pure function of the order snapshot it is
given. Nothing here reads Flask globals, touches the database session or
sends notifications, so the rules can be exercised directly in tests and
reused by the HTTP layer, the CLI and the webhook handler alike.

Persisted values are the backend's Arabic literals. The enum values below
are those literals and are the only place they are spelled out.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping

from errors import InvalidTransition, NotFound, ValidationError


ROLE_ADMIN = "admin"
ROLE_SUB_ADMIN = "sub-admin"
ROLE_ENGINEERING = "engineering"
ROLE_SITE = "site"
ROLE_PURCHASING = "purchasing"

ALL_ROLES: tuple[str, ...] = (
    ROLE_ADMIN,
    ROLE_SUB_ADMIN,
    ROLE_ENGINEERING,
    ROLE_SITE,
    ROLE_PURCHASING,
)

# admin / sub-admin: صلاحيات كاملة على البنود وتعديل الطلب
ADMIN_ROLES = frozenset({ROLE_ADMIN, ROLE_SUB_ADMIN})
CREATE_ROLES = frozenset({ROLE_ADMIN, ROLE_SUB_ADMIN, ROLE_ENGINEERING, ROLE_SITE})
DELETE_ROLES = ADMIN_ROLES
ATTACHMENT_ROLES = frozenset({ROLE_ADMIN, ROLE_SUB_ADMIN, ROLE_ENGINEERING})
EDIT_WINDOW_ROLES = frozenset({ROLE_ENGINEERING, ROLE_SITE})


class OrderStatus(str, Enum):
    ORDER_CREATED = "تم اجراء الطلب"
    ENGINEERING_REVIEWED = "تمت المراجعة الهندسية"
    UNDER_ADMIN_REVIEW = "مراجعة الطلب من الادارة"
    OWNER_APPROVED = "تمت الموافقة من الادارة"
    OWNER_REJECTED = "تم الرفض من الادارة"
    PURCHASING_IN_PROGRESS = "جاري الان عملية الشراء"
    ORDER_CLOSED = "تم غلق طلب الشراء"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class ItemPurchaseStatus(str, Enum):
    PURCHASED = "تم الشراء"
    NOT_PURCHASED = "لم يتم الشراء"


# None في purchase_status تعني "معلق"
PENDING_PURCHASE_LABEL = "معلق"

TERMINAL_STATUSES = frozenset({OrderStatus.OWNER_REJECTED, OrderStatus.ORDER_CLOSED})
OPEN_STATUSES: tuple[OrderStatus, ...] = tuple(
    status for status in OrderStatus if status not in TERMINAL_STATUSES
)
PURCHASING_STATUSES = frozenset(
    {OrderStatus.OWNER_APPROVED, OrderStatus.PURCHASING_IN_PROGRESS}
)


# خريطة الانتقالات المسموح بها بين الحالات
# المفتاح: (الحالة_الحالية, الحالة_المطلوبة)
# القيمة: الأدوار التي يمكنها تنفيذ الانتقال
WORKFLOW_TRANSITIONS: dict[tuple[OrderStatus, OrderStatus], frozenset[str]] = {
    (OrderStatus.ORDER_CREATED, OrderStatus.ENGINEERING_REVIEWED): frozenset(
        {ROLE_ENGINEERING}
    ),
    # يتم تلقائياً عند فتح الطلب من الإدارة (mark_under_review)
    (OrderStatus.ENGINEERING_REVIEWED, OrderStatus.UNDER_ADMIN_REVIEW): ADMIN_ROLES,
    (OrderStatus.UNDER_ADMIN_REVIEW, OrderStatus.OWNER_APPROVED): ADMIN_ROLES,
    (OrderStatus.UNDER_ADMIN_REVIEW, OrderStatus.OWNER_REJECTED): ADMIN_ROLES,
    (OrderStatus.OWNER_APPROVED, OrderStatus.PURCHASING_IN_PROGRESS): frozenset(
        {ROLE_PURCHASING}
    ),
    (OrderStatus.PURCHASING_IN_PROGRESS, OrderStatus.ORDER_CLOSED): frozenset(
        {ROLE_PURCHASING}
    ),
}


@dataclass(frozen=True)
class TransitionPayload:
    rejection_reason: str | None = None
    purchasing_notes: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "TransitionPayload":
        data = data or {}
        return cls(
            rejection_reason=optional_text(data.get("rejection_reason"), "rejection_reason"),
            purchasing_notes=optional_text(data.get("purchasing_notes"), "purchasing_notes"),
        )


@dataclass(frozen=True)
class StatusChanged:
    """Emitted once per successful status change; sole input to notification dispatch."""

    order_id: int
    old_status: OrderStatus | None
    new_status: OrderStatus
    created_by: int | None
    order_title: str | None = None


@dataclass(frozen=True)
class TransitionResult:
    status: OrderStatus
    changes: dict[str, Any]
    event: StatusChanged


@dataclass(frozen=True)
class ItemEditPlan:
    updates: list[tuple[Any, dict[str, Any]]]
    deletes: list[Any]
    creates: list[dict[str, Any]]


def _parse_enum(enum_cls, value, field_name: str):
    if isinstance(value, enum_cls):
        return value

    if isinstance(value, str):
        raw_value = value.strip()
        try:
            return enum_cls(raw_value)
        except ValueError:
            pass

        member = enum_cls.__members__.get(raw_value.upper())
        if member is not None:
            return member

    raise ValidationError(f"unknown {field_name} value: {value!r}", field=field_name)


def parse_order_status(value) -> OrderStatus:
    """Accept an ``OrderStatus``, its backend literal or its member name."""
    return _parse_enum(OrderStatus, value, "status")


def parse_purchase_status(value) -> ItemPurchaseStatus | None:
    if value is None:
        return None
    if isinstance(value, str) and value.strip() in ("", PENDING_PURCHASE_LABEL, "PENDING"):
        return None
    return _parse_enum(ItemPurchaseStatus, value, "purchase_status")


def optional_text(value, field_name: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string", field=field_name)
    trimmed = value.strip()
    return trimmed or None


def required_text(value, field_name: str) -> str:
    text = optional_text(value, field_name)
    if text is None:
        raise ValidationError(f"{field_name} required", field=field_name)
    return text


def _item_label(item) -> str:
    return getattr(item, "title", None) or f"#{getattr(item, 'id', '?')}"


def undecided_items(items: Iterable[Any]) -> list[Any]:
    return [item for item in items if getattr(item, "approved_by_admin", None) is None]


def all_items_decided(items: Iterable[Any]) -> bool:
    return not undecided_items(items)


def unmet_precondition(
    role: str | None,
    from_status,
    to_status,
    payload: TransitionPayload | None = None,
    items: Iterable[Any] = (),
) -> str | None:
    """Return the first precondition the transition fails, or None when it is legal."""

    current = parse_order_status(from_status)
    requested = parse_order_status(to_status)
    payload = payload or TransitionPayload()

    if current.is_terminal:
        return "order is in a terminal status"

    if current is requested:
        return "order is already in the requested status"

    allowed_roles = WORKFLOW_TRANSITIONS.get((current, requested))
    if allowed_roles is None:
        return f"no transition from ({current.value}) to ({requested.value})"

    if role not in allowed_roles:
        return f"role '{role}' may not perform this transition"

    if requested is OrderStatus.OWNER_REJECTED and not (payload.rejection_reason or "").strip():
        return "rejection_reason required"

    if requested is OrderStatus.OWNER_APPROVED:
        pending = undecided_items(items)
        if pending:
            labels = ", ".join(_item_label(item) for item in pending)
            return f"all items require an admin decision (undecided: {labels})"

    return None


def is_transition_allowed(
    role: str | None,
    from_status,
    to_status,
    payload: TransitionPayload | None = None,
    items: Iterable[Any] = (),
) -> bool:
    return unmet_precondition(role, from_status, to_status, payload, items) is None


def execute_transition(
    order,
    requested_status,
    role: str | None,
    payload: TransitionPayload | None = None,
) -> TransitionResult:
    """
    Validate a status change against ``order`` and compute its outcome.

    The order is never mutated: the caller receives the field ``changes`` to
    persist and the ``StatusChanged`` event to hand to notification dispatch.
    Raises ``InvalidTransition`` naming current status, requested status and
    the unmet precondition.
    """

    current = parse_order_status(order.status)
    requested = parse_order_status(requested_status)
    payload = payload or TransitionPayload()

    problem = unmet_precondition(role, current, requested, payload, list(order.items))
    if problem is not None:
        raise InvalidTransition(current, requested, problem)

    changes: dict[str, Any] = {"status": requested.value}
    if requested is OrderStatus.OWNER_REJECTED:
        changes["rejection_reason"] = payload.rejection_reason.strip()
    elif requested is OrderStatus.ORDER_CLOSED:
        changes["purchasing_notes"] = payload.purchasing_notes

    event = StatusChanged(
        order_id=order.id,
        old_status=current,
        new_status=requested,
        created_by=getattr(order, "created_by", None),
        order_title=getattr(order, "title", None),
    )
    return TransitionResult(status=requested, changes=changes, event=event)


def apply_changes(target, changes: Mapping[str, Any]) -> None:
    for field_name, value in changes.items():
        setattr(target, field_name, value)


def can_update_item_status(role: str | None, order_status) -> bool:
    if role in ADMIN_ROLES:
        return True
    if role == ROLE_PURCHASING:
        return parse_order_status(order_status) in PURCHASING_STATUSES
    return False


def can_edit_order(role: str | None, order_status) -> bool:
    if role in ADMIN_ROLES:
        return True
    if role in EDIT_WINDOW_ROLES:
        return parse_order_status(order_status) is OrderStatus.ORDER_CREATED
    return False


def validate_new_items(items) -> list[dict[str, Any]]:
    """Validate the items of a new order: at least one, each with a title."""

    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError("order requires at least one item", field="items")

    cleaned: list[dict[str, Any]] = []
    for index, entry in enumerate(items):
        if not isinstance(entry, Mapping):
            raise ValidationError("item must be an object", field=f"items[{index}]")
        cleaned.append(
            {
                "title": required_text(entry.get("title"), f"items[{index}].title"),
                "description": optional_text(
                    entry.get("description"), f"items[{index}].description"
                ),
            }
        )
    return cleaned


def parse_item_decisions(decisions) -> dict[str, bool | None]:
    """Return ``{item_id: approved}``; later entries for the same item win."""

    if not isinstance(decisions, (list, tuple)) or not decisions:
        raise ValidationError("items decisions required", field="items")

    parsed: dict[str, bool | None] = {}
    for index, entry in enumerate(decisions):
        if not isinstance(entry, Mapping) or entry.get("item_id") in (None, ""):
            raise ValidationError("item_id required", field=f"items[{index}].item_id")
        if "approved" not in entry:
            raise ValidationError("approved required", field=f"items[{index}].approved")

        approved = entry["approved"]
        if approved is not None and not isinstance(approved, bool):
            raise ValidationError(
                "approved must be true, false or null", field=f"items[{index}].approved"
            )
        parsed[str(entry["item_id"])] = approved
    return parsed


def plan_item_edits(existing_items: Iterable[Any], entries) -> ItemEditPlan:
    """
    Validate the ``items`` part of an order update without applying it.

    Each entry is one of:
        {"id": ..., "delete": true}               -> delete existing item
        {"id": ..., "title": ..., "description"}  -> update existing item
        {"title": ..., "description": ...}        -> create new item
    The order must keep at least one item afterwards.
    """

    if not isinstance(entries, (list, tuple)):
        raise ValidationError("items must be a list", field="items")

    by_id = {str(item.id): item for item in existing_items}
    updates: list[tuple[Any, dict[str, Any]]] = []
    deletes: list[Any] = []
    creates: list[dict[str, Any]] = []

    for index, entry in enumerate(entries):
        if not isinstance(entry, Mapping):
            raise ValidationError("item must be an object", field=f"items[{index}]")

        item_id = entry.get("id")
        wants_delete = bool(entry.get("delete"))

        if item_id in (None, ""):
            if wants_delete:
                raise ValidationError("delete requires id", field=f"items[{index}].id")
            creates.append(
                {
                    "title": required_text(entry.get("title"), f"items[{index}].title"),
                    "description": optional_text(
                        entry.get("description"), f"items[{index}].description"
                    ),
                }
            )
            continue

        item = by_id.get(str(item_id))
        if item is None:
            raise NotFound("order item", item_id)

        if wants_delete:
            if item not in deletes:
                deletes.append(item)
            continue

        fields: dict[str, Any] = {}
        if "title" in entry:
            fields["title"] = required_text(entry.get("title"), f"items[{index}].title")
        if "description" in entry:
            fields["description"] = optional_text(
                entry.get("description"), f"items[{index}].description"
            )
        updates.append((item, fields))

    remaining = len(by_id) - len(deletes) + len(creates)
    if remaining < 1:
        raise ValidationError("order must keep at least one item", field="items")

    return ItemEditPlan(updates=updates, deletes=deletes, creates=creates)
