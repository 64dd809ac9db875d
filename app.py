import os
import time
import uuid

from flask import Flask, g, has_request_context, request
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from cli import register_commands
from config import Config
from errors import WorkflowError
from extensions import csrf, db, login_manager
from logging_config import setup_logging
from models import User, ensure_roles, ensure_schema
from responses import api_error
from signals import badge_refresh_requested

# تسجيل مستقبل إشارة تغيير الحالة (إرسال الإشعارات)
import notification_service  # noqa: F401

# استيراد الـ Blueprints
from blueprints.orders import orders_bp
from blueprints.notifications import notifications_bp
from blueprints.push import push_bp
from blueprints.webhooks import webhooks_bp

BADGE_REFRESH_HEADER = "X-Badge-Refresh"


def _warn_insecure_defaults(app: Flask) -> None:
    """Emit warnings when sensitive defaults are still in use."""

    secret_key = app.config.get("SECRET_KEY")
    if secret_key == "secret-key-change-me":
        app.logger.warning(
            "SECRET_KEY is using the placeholder value; please set SECRET_KEY "
            "in the environment for production deployments."
        )

    db_uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if db_uri.startswith("sqlite:///") and "DATABASE_URL" not in os.environ:
        app.logger.warning(
            "DATABASE_URL is not set; application is falling back to the local "
            "SQLite database. Configure a production database via DATABASE_URL."
        )

    if not app.config.get("WEBHOOK_SECRET"):
        app.logger.warning("WEBHOOK_SECRET is not set; the order-status webhook rejects all calls.")

    if app.config.get("NOTIFICATIONS_ENABLED") and not app.config.get("PUSH_GATEWAY_URL"):
        app.logger.info("PUSH_GATEWAY_URL is not set; notifications are stored without push delivery.")


def _is_production_environment() -> bool:
    """Return True when running in a production-like environment."""

    return os.environ.get("APP_ENV") == "production" or os.environ.get("FLASK_ENV") == "production"


@badge_refresh_requested.connect
def _flag_badge_refresh(sender, **extra) -> None:
    # العميل يعيد طلب عداد الإشعارات فوراً بدلاً من انتظار الـ polling
    if has_request_context():
        g.badge_refresh = True


def create_app(config_class=Config) -> Flask:
    """إنشاء وتهيئة تطبيق Flask الرئيسي."""
    app = Flask(__name__)

    # تحميل الإعدادات من Config (ملف config.py)
    app.config.from_object(config_class)

    setup_logging(app)

    _warn_insecure_defaults(app)

    # تهيئة الـ Extensions
    db.init_app(app)
    login_manager.init_app(app)
    csrf.init_app(app)

    with app.app_context():
        if app.config.get("AUTO_SCHEMA_BOOTSTRAP"):
            ensure_schema()
        ensure_roles()

    if _is_production_environment():
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    # تحميل المستخدم في جلسة تسجيل الدخول
    @login_manager.user_loader
    def load_user(user_id: str):
        try:
            user_id_int = int(user_id)
        except (TypeError, ValueError):
            return None

        user = db.session.get(User, user_id_int)
        if user is None or not user.is_active:
            return None
        return user

    # الـ API بدون صفحات: رد JSON بدلاً من التحويل لصفحة الدخول
    @login_manager.unauthorized_handler
    def unauthorized():
        return api_error("authentication required", 401)

    def _log_request_summary(status_code: int) -> None:
        request_id = getattr(g, "request_id", None)
        start_time = getattr(g, "request_start_time", None)

        duration_ms = None
        if start_time is not None:
            duration_ms = (time.perf_counter() - start_time) * 1000

        app.logger.info(
            "request completed",
            extra={
                "request_id": request_id,
                "status_code": status_code,
                "duration_ms": int(duration_ms) if duration_ms is not None else None,
            },
        )

    @app.before_request
    def attach_request_context() -> None:
        g.request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        g.request_start_time = time.perf_counter()
        g.badge_refresh = False

    @app.after_request
    def append_request_id(response):
        response.headers["X-Request-ID"] = getattr(g, "request_id", "")
        if getattr(g, "badge_refresh", False):
            response.headers[BADGE_REFRESH_HEADER] = "1"
        _log_request_summary(response.status_code)
        return notification_service.defer_pending_dispatches(response)

    @app.errorhandler(WorkflowError)
    def handle_workflow_error(error: WorkflowError):
        db.session.rollback()
        app.logger.info(
            "request rejected",
            extra={"error": type(error).__name__, "status_code": error.status_code},
        )
        return api_error(error.message, error.status_code, error.to_dict())

    @app.errorhandler(Exception)
    def handle_exception(error):
        if isinstance(error, HTTPException):
            response, _ = api_error(error.description or error.name, error.code or 500)
            response.status_code = error.code or 500
        else:
            db.session.rollback()
            app.logger.exception("Unhandled exception", exc_info=error)
            response, _ = api_error("Internal Server Error", 500)
            response.status_code = 500

        response.headers["X-Request-ID"] = getattr(g, "request_id", "")
        return response

    # تسجيل الـ Blueprints
    app.register_blueprint(orders_bp, url_prefix="/orders")                # /orders/...
    app.register_blueprint(notifications_bp, url_prefix="/notifications")  # /notifications/...
    app.register_blueprint(push_bp, url_prefix="/push")                    # /push/...
    app.register_blueprint(webhooks_bp, url_prefix="/webhooks")            # /webhooks/...

    register_commands(app)

    return app


# إنشاء التطبيق وتشغيله مباشرة عند استدعاء python app.py
app = create_app()

if __name__ == "__main__":
    # في حالة النشر على سيرفر داخلي وتريد الوصول من أجهزة أخرى، يمكنك تغيير
    # متغير البيئة FLASK_RUN_HOST إلى "0.0.0.0".
    app.run(
        host=os.environ.get("FLASK_RUN_HOST", "127.0.0.1"),
        debug=app.config.get("DEBUG", False),
    )
