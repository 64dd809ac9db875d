# blueprints/webhooks/routes.py

import hmac
import logging

from flask import abort, current_app, request

from . import webhooks_bp
from errors import ValidationError
from extensions import csrf
from notification_service import dispatch_status_change_notifications
from order_workflow import StatusChanged, parse_order_status
from push_gateway import PushGateway
from repository import OrderRepository
from responses import api_response, json_body

logger = logging.getLogger(__name__)


def _valid_secret() -> bool:
    expected = current_app.config.get("WEBHOOK_SECRET")
    provided = request.headers.get("X-Webhook-Secret")
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode(), provided.encode())


def _optional_status(value):
    if value in (None, ""):
        return None
    try:
        return parse_order_status(value)
    except ValidationError:
        return None


def _int_or_none(value, field):
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", field=field) from None


def _skipped(reason: str):
    logger.info("order status webhook skipped", extra={"reason": reason})
    return api_response({"notified": 0}, message=f"Skipped - {reason}")


@webhooks_bp.route("/order-status", methods=["POST"])
@csrf.exempt
def order_status():
    """
    يُستدعى من قاعدة البيانات عند تغيير حالة طلب:
        {type: "UPDATE", table, record: {id, status, title, created_by}, old_record: {status}}
    """
    if not _valid_secret():
        abort(401)

    payload = json_body()
    if payload.get("type") != "UPDATE":
        return _skipped("not an update event")

    record = payload.get("record") if isinstance(payload.get("record"), dict) else {}
    old_record = payload.get("old_record") if isinstance(payload.get("old_record"), dict) else {}

    if record.get("status") == old_record.get("status"):
        return _skipped("status unchanged")

    new_status = _optional_status(record.get("status"))
    if new_status is None:
        return _skipped("unknown status")

    if not current_app.config.get("NOTIFICATIONS_ENABLED", True):
        return _skipped("notifications disabled")

    order_id = _int_or_none(record.get("id"), "record.id")
    if order_id is None:
        raise ValidationError("record.id required", field="record.id")

    event = StatusChanged(
        order_id=order_id,
        old_status=_optional_status(old_record.get("status")),
        new_status=new_status,
        created_by=_int_or_none(record.get("created_by"), "record.created_by"),
        order_title=record.get("title") or None,
    )
    result = dispatch_status_change_notifications(
        event, OrderRepository(), PushGateway.from_config(current_app.config)
    )
    return api_response(
        {"notified": result.notified},
        message=f"تم إرسال الإشعارات إلى {result.notified} مستخدم",
    )
