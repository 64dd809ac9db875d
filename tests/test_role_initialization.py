import unittest

from app import create_app
from config import Config
from extensions import db
from models import Role, User, ensure_roles
from order_workflow import ALL_ROLES


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SECRET_KEY = "test-secret"
    WTF_CSRF_ENABLED = False


class EnsureRolesTestCase(unittest.TestCase):
    def setUp(self):
        self.app = create_app(TestConfig)
        self.app_context = self.app.app_context()
        self.app_context.push()
        db.drop_all()
        db.create_all()
        self.runner = self.app.test_cli_runner()

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.app_context.pop()

    def test_ensure_roles_creates_the_five_workflow_roles(self):
        self.assertEqual(Role.query.count(), 0)

        ensure_roles()

        role_names = {role.name for role in Role.query.all()}
        self.assertEqual(role_names, set(ALL_ROLES))

        # A second call should be idempotent and not create duplicates
        ensure_roles()
        self.assertEqual(Role.query.count(), len(ALL_ROLES))

    def test_ensure_roles_command(self):
        db.session.add(Role(name="admin"))
        db.session.commit()

        result = self.runner.invoke(self.app.cli, ["ensure-roles"])

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("sub-admin", result.output)
        self.assertEqual(Role.query.count(), len(ALL_ROLES))

    def test_create_user_command(self):
        result = self.runner.invoke(
            self.app.cli,
            [
                "create-user",
                "--email",
                "Buyer@Example.com",
                "--name",
                "Buyer",
                "--role",
                "purchasing",
                "--password",
                "s3cret",
            ],
        )

        self.assertEqual(result.exit_code, 0, result.output)
        user = User.query.filter_by(email="buyer@example.com").one()
        self.assertEqual(user.role_name, "purchasing")
        self.assertTrue(user.check_password("s3cret"))

        again = self.runner.invoke(
            self.app.cli,
            ["create-user", "--email", "buyer@example.com", "--name", "B", "--role", "site", "--password", "x"],
        )
        self.assertNotEqual(again.exit_code, 0)


if __name__ == "__main__":
    unittest.main()
