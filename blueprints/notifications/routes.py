# blueprints/notifications/routes.py

from flask import current_app, request
from flask_login import current_user, login_required

from . import notifications_bp
from notification_service import (
    delete_notifications,
    list_notifications,
    mark_read,
    unread_count,
)
from order_service import clamp_paging
from repository import OrderRepository
from responses import api_response, json_body


def _truthy(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "y", "on"}


@notifications_bp.route("/", methods=["GET"])
@login_required
def list_user_notifications():
    """
    إشعارات المستخدم الحالي (الأحدث في الأعلى) مع عدد غير المقروء.
    """
    page, limit = clamp_paging(request.args.get("page", 1), request.args.get("limit", 20))
    data = list_notifications(
        OrderRepository(),
        current_user.id,
        page=page,
        limit=limit,
        unread_only=_truthy(request.args.get("unreadOnly")),
    )
    return api_response(data)


@notifications_bp.route("/read", methods=["POST"])
@login_required
def mark_notifications_read():
    """
    تعليم إشعارات محددة (notificationIds) أو كل الإشعارات (markAll) كمقروءة.
    """
    payload = json_body()
    updated = mark_read(
        OrderRepository(),
        current_user.id,
        ids=payload.get("notificationIds"),
        mark_all=_truthy(payload.get("markAll")),
    )
    return api_response({"updated": updated}, message="notifications marked as read")


@notifications_bp.route("/", methods=["DELETE"])
@login_required
def delete_user_notifications():
    payload = json_body()
    deleted = delete_notifications(
        OrderRepository(),
        current_user.id,
        ids=payload.get("notificationIds"),
        delete_all=_truthy(payload.get("deleteAll")),
    )
    return api_response({"deleted": deleted}, message="notifications deleted")


@notifications_bp.route("/badge-count", methods=["GET"])
@login_required
def badge_count():
    """عداد الإشعارات غير المقروءة + الفترة المقترحة لإعادة الاستعلام."""
    return api_response(
        {
            "unreadNotifications": unread_count(OrderRepository(), current_user.id),
            "pollIntervalSeconds": current_app.config.get("BADGE_POLL_INTERVAL_SECONDS", 30),
        }
    )
