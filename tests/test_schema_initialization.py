import unittest

from sqlalchemy import inspect

from app import create_app
from config import Config
from extensions import db
from models import PushSubscription, Role, ensure_schema
from order_workflow import ALL_ROLES


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SECRET_KEY = "test-secret"
    WTF_CSRF_ENABLED = False


class EnsureSchemaTestCase(unittest.TestCase):
    def setUp(self):
        self.app = create_app(TestConfig)
        self.app_context = self.app.app_context()
        self.app_context.push()
        db.drop_all()
        db.create_all()

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.app_context.pop()

    def test_ensure_schema_creates_missing_push_subscriptions_table(self):
        # Drop the table to simulate an environment where it was not created yet.
        PushSubscription.__table__.drop(db.engine, checkfirst=True)

        inspector = inspect(db.engine)
        self.assertFalse(inspector.has_table("push_subscriptions"))

        ensure_schema()

        inspector = inspect(db.engine)
        self.assertTrue(inspector.has_table("push_subscriptions"))


class AutoSchemaBootstrapTestCase(unittest.TestCase):
    class AutoBootstrapConfig(TestConfig):
        AUTO_SCHEMA_BOOTSTRAP = True

    def setUp(self):
        self.app = create_app(self.AutoBootstrapConfig)
        self.app_context = self.app.app_context()
        self.app_context.push()

    def tearDown(self):
        db.session.remove()
        db.Model.metadata.drop_all(bind=db.engine, checkfirst=True)
        self.app_context.pop()

    def test_create_app_runs_schema_bootstrap_and_seeds_roles(self):
        inspector = inspect(db.engine)
        for table in ("orders", "order_items", "item_attachments", "notifications"):
            self.assertTrue(inspector.has_table(table), table)

        self.assertEqual({role.name for role in Role.query.all()}, set(ALL_ROLES))


if __name__ == "__main__":
    unittest.main()
