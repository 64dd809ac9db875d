# blueprints/orders/routes.py

import os
import re

from flask import abort, current_app, request, send_from_directory
from flask_login import current_user

from . import orders_bp
from attachments import MAX_ITEM_ATTACHMENTS, AttachmentStore
from errors import NotFound, ValidationError
from order_service import OrderService
from order_workflow import (
    ADMIN_ROLES,
    ROLE_ENGINEERING,
    ROLE_PURCHASING,
    ROLE_SITE,
)
from permissions import role_required
from repository import OrderRepository
from responses import api_response, json_body

_ATTACHMENT_FIELD = re.compile(r"^attachment(?:\[(\d+)\])?$")


# =========================
#   Helpers
# =========================

def _attachments_base_path() -> str:
    return current_app.config.get("ATTACHMENTS_DIR") or os.path.join(
        current_app.instance_path, "attachments"
    )


def _attachments_enabled() -> bool:
    return bool(current_app.config.get("ATTACHMENTS_ENABLED"))


def _service() -> OrderService:
    return OrderService(
        OrderRepository(),
        AttachmentStore(_attachments_base_path()),
        max_attachments=current_app.config.get("MAX_ITEM_ATTACHMENTS", MAX_ITEM_ATTACHMENTS),
    )


def _uploaded_files() -> list:
    """Files sent as ``attachment[0]``, ``attachment[1]``... (or plain ``attachment``), in index order."""

    indexed = []
    for key in request.files.keys():
        match = _ATTACHMENT_FIELD.match(key)
        if match is None:
            continue
        position = int(match.group(1)) if match.group(1) is not None else -1
        indexed.append((position, key))

    files = []
    for _, key in sorted(indexed):
        files.extend(request.files.getlist(key))
    return files


def _order_detail(order) -> dict:
    data = order.to_dict()
    data["status_history"] = [log.to_dict() for log in order.status_logs]
    return data


def _list_response(current_only: bool):
    orders, total, page, limit = _service().list_orders(
        current_user,
        page=request.args.get("page", 1),
        limit=request.args.get("limit", 20),
        current_only=current_only,
    )
    return api_response(
        {
            "orders": [order.to_dict() for order in orders],
            "total": total,
            "page": page,
            "limit": limit,
        }
    )


# =========================
#   قائمة الطلبات
# =========================

@orders_bp.route("/", methods=["GET"])
@role_required(ROLE_ENGINEERING, ROLE_SITE, ROLE_PURCHASING)
def list_orders():
    return _list_response(current_only=False)


@orders_bp.route("/current", methods=["GET"])
@role_required(ROLE_ENGINEERING, ROLE_SITE, ROLE_PURCHASING)
def list_current_orders():
    """الطلبات المفتوحة فقط (بدون المرفوضة والمغلقة)."""
    return _list_response(current_only=True)


@orders_bp.route("/", methods=["POST"])
@role_required(ROLE_ENGINEERING, ROLE_SITE)
def create_order():
    payload = json_body()
    order = _service().create_order(
        current_user,
        title=payload.get("title"),
        items=payload.get("items"),
        order_notes=payload.get("order_notes"),
    )
    return api_response(_order_detail(order), message="order created", code=201)


# =========================
#   تفاصيل / تعديل / حذف
# =========================

@orders_bp.route("/<int:order_id>", methods=["GET"])
@role_required(ROLE_ENGINEERING, ROLE_SITE, ROLE_PURCHASING)
def get_order(order_id):
    service = _service()
    order = service.get_order(order_id, current_user)

    # فتح الطلب من الإدارة ينقله إلى "مراجعة الطلب من الادارة"
    if current_user.role_name in ADMIN_ROLES:
        order = service.mark_under_review(order.id, current_user)

    return api_response(_order_detail(order))


@orders_bp.route("/<int:order_id>", methods=["PUT"])
@role_required(ROLE_ENGINEERING, ROLE_SITE)
def update_order(order_id):
    service = _service()
    service.get_order(order_id, current_user)
    order = service.update_order(order_id, current_user, json_body())
    return api_response(_order_detail(order), message="order updated")


@orders_bp.route("/<int:order_id>", methods=["DELETE"])
@role_required()
def delete_order(order_id):
    _service().delete_order(order_id, current_user)
    return api_response({"id": order_id}, message="order deleted")


# =========================
#   الحالة وقرارات الإدارة
# =========================

@orders_bp.route("/<int:order_id>/status", methods=["PUT"])
@role_required(ROLE_ENGINEERING, ROLE_PURCHASING)
def update_order_status(order_id):
    payload = json_body()
    if payload.get("status") in (None, ""):
        raise ValidationError("status required", field="status")

    service = _service()
    service.get_order(order_id, current_user)
    order = service.transition_order_status(
        order_id, payload["status"], current_user, payload
    )
    return api_response(_order_detail(order), message="order status updated")


@orders_bp.route("/<int:order_id>/admin-checked", methods=["PUT"])
@role_required()
def update_admin_checked(order_id):
    payload = json_body()
    order, updated = _service().update_admin_checked(
        order_id, current_user, payload.get("items")
    )
    return api_response(
        {
            "order": _order_detail(order),
            "updated_items": [item.to_dict() for item in updated],
        },
        message="item decisions saved",
    )


@orders_bp.route("/items/<int:item_id>/status", methods=["PUT"])
@role_required(ROLE_PURCHASING)
def update_item_status(item_id):
    item = _service().update_item_status(item_id, current_user, json_body())
    return api_response(item.to_dict(), message="item status updated")


# =========================
#   المرفقات
# =========================

@orders_bp.route("/items/<int:item_id>/attachments", methods=["POST"])
@role_required(ROLE_ENGINEERING)
def upload_item_attachments(item_id):
    if not _attachments_enabled():
        abort(404)

    attachments = _service().upload_item_attachments(item_id, current_user, _uploaded_files())
    return api_response(
        [attachment.to_dict() for attachment in attachments],
        message="attachments uploaded",
        code=201,
    )


@orders_bp.route("/attachments/<int:attachment_id>", methods=["DELETE"])
@role_required(ROLE_ENGINEERING)
def delete_attachment(attachment_id):
    _service().delete_attachment(attachment_id, current_user)
    return api_response({"id": attachment_id}, message="attachment deleted")


@orders_bp.route("/attachments/<int:attachment_id>/download", methods=["GET"])
@role_required(ROLE_ENGINEERING, ROLE_SITE, ROLE_PURCHASING)
def download_attachment(attachment_id):
    if not _attachments_enabled():
        abort(404)

    service = _service()
    attachment = service.get_attachment(attachment_id, current_user)
    file_path = service.attachment_store.path_for(attachment.stored_filename)

    if not file_path.is_file():
        raise NotFound("attachment file", attachment_id)

    return send_from_directory(
        str(file_path.parent),
        file_path.name,
        as_attachment=True,
        download_name=attachment.file_name,
        mimetype=attachment.file_type,
    )
