# blueprints/push/routes.py

import hmac

from flask import abort, current_app, request
from flask_login import current_user, login_required

from . import push_bp
from extensions import csrf
from notification_service import (
    register_subscription,
    remove_subscription,
    send_direct_notification,
)
from order_workflow import ADMIN_ROLES
from push_gateway import PushGateway
from repository import OrderRepository
from responses import api_response, json_body


def _has_service_key() -> bool:
    expected = current_app.config.get("INTERNAL_SERVICE_KEY")
    provided = request.headers.get("X-Service-Key")
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode(), provided.encode())


@push_bp.route("/subscribe", methods=["POST"])
@login_required
def subscribe():
    payload = json_body()
    # يقبل {subscription: {...}} أو الاشتراك نفسه مباشرة
    subscription = payload.get("subscription", payload)
    record = register_subscription(
        OrderRepository(),
        current_user.id,
        subscription,
        device_info=payload.get("deviceInfo"),
    )
    return api_response({"id": record.id}, message="subscribed", code=201)


@push_bp.route("/unsubscribe", methods=["POST"])
@login_required
def unsubscribe():
    payload = json_body()
    removed = remove_subscription(OrderRepository(), current_user.id, payload.get("endpoint"))
    return api_response({"removed": removed}, message="unsubscribed")


@push_bp.route("/send", methods=["POST"])
@csrf.exempt
def send():
    """
    إرسال إشعار يدوي لمستخدمين محددين.
    مسموح للإدارة (admin / sub-admin) أو للخدمات الداخلية عبر X-Service-Key.
    """
    if not _has_service_key():
        if not current_user.is_authenticated:
            abort(401)
        if current_user.role_name not in ADMIN_ROLES:
            abort(403)

    payload = json_body()
    result = send_direct_notification(
        OrderRepository(),
        PushGateway.from_config(current_app.config),
        payload.get("userIds"),
        title=payload.get("title"),
        body=payload.get("body"),
        order_id=payload.get("orderId"),
        notification_type=payload.get("type") or "system",
    )
    return api_response(
        {"notified": result.notified, "sent": result.sent, "failed": result.failed},
        message="notifications sent",
    )
