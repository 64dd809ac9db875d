# models.py

from datetime import datetime

from flask_login import UserMixin
from sqlalchemy import inspect
from werkzeug.security import generate_password_hash, check_password_hash

from extensions import db
from order_workflow import (
    ALL_ROLES,
    PENDING_PURCHASE_LABEL,
    OrderStatus,
    parse_order_status,
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() + "Z" if value else None


class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    # admin, sub-admin, engineering, site, purchasing
    name = db.Column(db.String(50), unique=True, nullable=False)

    def __repr__(self):
        return f"<Role {self.name}>"


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    role_id = db.Column(db.Integer, db.ForeignKey("roles.id"))
    role = db.relationship("Role", backref="users")

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def role_name(self) -> str | None:
        return self.role.name if self.role is not None else None

    def __repr__(self):
        return f"<User {self.full_name}>"


class Order(db.Model):
    """
    طلب شراء واحد في النظام

    الحالات (القيمة المخزنة هي النص العربي كما يستخدمه الـ backend):
        تم اجراء الطلب            -> ORDER_CREATED
        تمت المراجعة الهندسية      -> ENGINEERING_REVIEWED
        مراجعة الطلب من الادارة    -> UNDER_ADMIN_REVIEW
        تمت الموافقة من الادارة    -> OWNER_APPROVED
        تم الرفض من الادارة        -> OWNER_REJECTED (نهائية)
        جاري الان عملية الشراء     -> PURCHASING_IN_PROGRESS
        تم غلق طلب الشراء          -> ORDER_CLOSED (نهائية)
    """
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    order_notes = db.Column(db.Text, nullable=True)
    purchasing_notes = db.Column(db.Text, nullable=True)

    status = db.Column(
        db.String(64),
        default=OrderStatus.ORDER_CREATED.value,
        nullable=False,
        index=True,
    )
    admin_checked = db.Column(db.Boolean, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    # عداد الإصدار لاكتشاف التعديلات المتزامنة على نفس الطلب
    version = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version}

    creator = db.relationship("User", foreign_keys=[created_by])
    updater = db.relationship("User", foreign_keys=[updated_by])
    items = db.relationship(
        "OrderItem",
        backref="order",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )
    status_logs = db.relationship(
        "OrderStatusLog",
        backref="order",
        order_by="OrderStatusLog.id",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Order {self.id} - {self.status}>"

    @property
    def status_enum(self) -> OrderStatus:
        return parse_order_status(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status_enum.is_terminal

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "title": self.title,
            "order_notes": self.order_notes,
            "purchasing_notes": self.purchasing_notes,
            "status": self.status,
            "is_terminal": self.is_terminal,
            "admin_checked": self.admin_checked,
            "rejection_reason": self.rejection_reason,
            "created_by": self.created_by,
            "created_by_name": self.creator.full_name if self.creator else None,
            "updated_by": self.updated_by,
            "updated_by_name": self.updater.full_name if self.updater else None,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # None = معلق، أو "تم الشراء" / "لم يتم الشراء"
    purchase_status = db.Column(db.String(64), nullable=True)
    # None = لم يتم اتخاذ قرار، True = موافق، False = مرفوض
    approved_by_admin = db.Column(db.Boolean, nullable=True)
    item_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    attachments = db.relationship(
        "ItemAttachment",
        backref="item",
        order_by="ItemAttachment.id",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<OrderItem {self.id} for order {self.order_id}>"

    @property
    def purchase_status_label(self) -> str:
        return self.purchase_status or PENDING_PURCHASE_LABEL

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "title": self.title,
            "description": self.description,
            "purchase_status": self.purchase_status,
            "approved_by_admin": self.approved_by_admin,
            "item_notes": self.item_notes,
            "attachments": [attachment.to_dict() for attachment in self.attachments],
            "created_at": _iso(self.created_at),
        }


class ItemAttachment(db.Model):
    """
    مرفقات البنود (صور أو ملفات PDF) - بحد أقصى 5 لكل بند
    """
    __tablename__ = "item_attachments"

    id = db.Column(db.Integer, primary_key=True)
    order_item_id = db.Column(
        db.Integer, db.ForeignKey("order_items.id"), nullable=False, index=True
    )

    file_name = db.Column(db.String(255), nullable=False)
    stored_filename = db.Column(db.String(255), nullable=False)
    file_type = db.Column(db.String(100), nullable=True)
    file_size = db.Column(db.Integer, nullable=True)

    uploaded_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    uploaded_by = db.relationship("User")

    def __repr__(self):
        return f"<ItemAttachment {self.id} for item {self.order_item_id}>"

    @property
    def public_url(self) -> str:
        return f"/orders/attachments/{self.id}/download"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_item_id": self.order_item_id,
            "file_name": self.file_name,
            "file_path": self.stored_filename,
            "file_type": self.file_type,
            "file_size": self.file_size,
            "public_url": self.public_url,
            "created_at": _iso(self.created_at),
        }


class OrderStatusLog(db.Model):
    """
    سجل حركة الحالات لكل طلب شراء
    """
    __tablename__ = "order_status_logs"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    old_status = db.Column(db.String(64), nullable=True)
    new_status = db.Column(db.String(64), nullable=False)
    comment = db.Column(db.Text, nullable=True)

    decided_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    decided_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    decided_by = db.relationship("User")

    def __repr__(self):
        return f"<OrderStatusLog {self.id} for order {self.order_id}>"

    def to_dict(self) -> dict:
        return {
            "old_status": self.old_status,
            "new_status": self.new_status,
            "comment": self.comment,
            "decided_by": self.decided_by_id,
            "decided_by_name": self.decided_by.full_name if self.decided_by else None,
            "decided_at": _iso(self.decided_at),
        }


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, nullable=True, index=True)

    title = db.Column(db.String(255), nullable=False)
    body = db.Column(db.Text, nullable=True)
    type = db.Column(db.String(50), nullable=False, default="system")
    data = db.Column(db.JSON, nullable=True)
    url = db.Column(db.String(255), nullable=True)

    is_read = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    user = db.relationship("User", backref=db.backref("notifications", lazy="dynamic"))

    def __repr__(self) -> str:  # type: ignore
        return f"<Notification {self.id} to user {self.user_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "order_id": self.order_id,
            "title": self.title,
            "body": self.body,
            "type": self.type,
            "data": self.data or {},
            "url": self.url,
            "is_read": self.is_read,
            "created_at": _iso(self.created_at),
        }


class PushSubscription(db.Model):
    __tablename__ = "push_subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    endpoint = db.Column(db.Text, unique=True, nullable=False)
    p256dh = db.Column(db.String(255), nullable=False)
    auth = db.Column(db.String(255), nullable=False)
    device_info = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    user = db.relationship("User", backref="push_subscriptions")

    def __repr__(self):
        return f"<PushSubscription {self.id} for user {self.user_id}>"

    def as_web_push(self) -> dict:
        return {
            "endpoint": self.endpoint,
            "keys": {"p256dh": self.p256dh, "auth": self.auth},
        }


def ensure_roles() -> None:
    """Create any of the five workflow roles that are missing."""

    if not inspect(db.engine).has_table(Role.__tablename__):
        return

    existing = {name for (name,) in db.session.query(Role.name).all()}
    missing = [name for name in ALL_ROLES if name not in existing]
    if not missing:
        return

    db.session.add_all(Role(name=name) for name in missing)
    db.session.commit()


def ensure_schema() -> None:
    db.create_all()
