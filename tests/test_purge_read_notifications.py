import unittest
from datetime import datetime, timedelta

from app import create_app
from config import Config
from extensions import db
from models import Notification, Role, User


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SECRET_KEY = "test-secret"
    WTF_CSRF_ENABLED = False


class PurgeReadNotificationsTestCase(unittest.TestCase):
    def setUp(self):
        self.app = create_app(TestConfig)
        self.app_context = self.app.app_context()
        self.app_context.push()
        db.drop_all()
        db.create_all()
        self.runner = self.app.test_cli_runner()

        role = Role(name="site")
        self.user = User(full_name="site", email="site@example.com", role=role)
        self.user.set_password("password")
        db.session.add_all([role, self.user])
        db.session.commit()

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.app_context.pop()

    def _make_notification(self, created_at: datetime, is_read: bool) -> int:
        notification = Notification(
            user_id=self.user.id,
            title="order update",
            is_read=is_read,
            created_at=created_at,
        )
        db.session.add(notification)
        db.session.commit()
        return notification.id

    def test_purge_removes_only_old_read_notifications(self):
        now = datetime.utcnow()
        old = now - timedelta(days=40)
        recent = now - timedelta(days=5)

        old_read = self._make_notification(old, is_read=True)
        old_unread = self._make_notification(old, is_read=False)
        recent_read = self._make_notification(recent, is_read=True)

        result = self.runner.invoke(
            self.app.cli, ["purge-read-notifications", "--days", "30"]
        )
        self.assertEqual(result.exit_code, 0, result.output)

        self.assertIsNone(db.session.get(Notification, old_read))
        self.assertIsNotNone(db.session.get(Notification, old_unread))
        self.assertIsNotNone(db.session.get(Notification, recent_read))

    def test_dry_run_leaves_records_intact(self):
        old = datetime.utcnow() - timedelta(days=60)
        notification_id = self._make_notification(old, is_read=True)

        result = self.runner.invoke(
            self.app.cli, ["purge-read-notifications", "--days", "30", "--dry-run"]
        )
        self.assertEqual(result.exit_code, 0)
        self.assertIn("Dry run", result.output)
        self.assertIsNotNone(db.session.get(Notification, notification_id))

    def test_negative_days_rejected(self):
        result = self.runner.invoke(self.app.cli, ["purge-read-notifications", "--days", "-1"])

        self.assertNotEqual(result.exit_code, 0)


if __name__ == "__main__":
    unittest.main()
