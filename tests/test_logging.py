import logging
import unittest

from flask import g
from flask_login import login_user

from app import create_app
from config import Config
from extensions import db
from logging_config import JsonFormatter, RequestContextFilter
from models import Role, User


class LoggingTestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SECRET_KEY = "test-secret"
    WTF_CSRF_ENABLED = False
    NOTIFICATIONS_ENABLED = False


class LoggingIntegrationTestCase(unittest.TestCase):
    def setUp(self):
        self.app = create_app(LoggingTestConfig)
        self.app_context = self.app.app_context()
        self.app_context.push()
        db.drop_all()
        db.create_all()
        self.client = self.app.test_client()

        role = Role(name="engineering")
        self.user = User(full_name="eng", email="eng@example.com", role=role)
        self.user.set_password("password")
        db.session.add_all([role, self.user])
        db.session.commit()

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.app_context.pop()

    def _login(self):
        with self.client.session_transaction() as sess:
            sess["_user_id"] = str(self.user.id)
            sess["_fresh"] = True

    def test_request_id_header_and_logging(self):
        self._login()
        with self.assertLogs(self.app.logger.name, level="INFO") as captured:
            response = self.client.get("/notifications/badge-count")

        self.assertEqual(response.status_code, 200)
        request_id = response.headers.get("X-Request-ID")
        self.assertTrue(request_id, "Response should include X-Request-ID header")

        logged_request_ids = [
            getattr(record, "request_id", None)
            for record in captured.records
            if record.getMessage() == "request completed"
        ]

        self.assertIn(
            request_id,
            logged_request_ids,
            "Request log entry should include the generated request ID",
        )

    def test_incoming_request_id_is_echoed(self):
        response = self.client.get("/orders/", headers={"X-Request-ID": "abc-123"})

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.headers.get("X-Request-ID"), "abc-123")

    def test_workflow_transition_logged(self):
        self._login()
        with self.assertLogs("order_service", level="INFO") as captured:
            response = self.client.post(
                "/orders/", json={"title": "Cement", "items": [{"title": "Cement"}]}
            )

        self.assertEqual(response.status_code, 201)
        self.assertTrue(any(record.getMessage() == "order created" for record in captured.records))

    def test_context_filter_adds_user_and_role(self):
        record = logging.LogRecord("test", logging.INFO, __file__, 1, "hello", None, None)

        with self.app.test_request_context("/orders/", headers={"X-Request-ID": "r-1"}):
            g.request_id = "r-1"
            login_user(self.user)
            RequestContextFilter().filter(record)

        self.assertEqual(record.request_id, "r-1")
        self.assertEqual(record.path, "/orders/")
        self.assertEqual(record.user_id, str(self.user.id))
        self.assertEqual(record.user_role, "engineering")

    def test_json_formatter_includes_extras(self):
        record = logging.LogRecord("order_service", logging.INFO, __file__, 1, "order created", None, None)
        record.order_id = 42

        formatted = JsonFormatter().format(record)

        self.assertIn('"order_id": 42', formatted)
        self.assertIn('"message": "order created"', formatted)


if __name__ == "__main__":
    unittest.main()
