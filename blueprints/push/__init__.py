# blueprints/push/__init__.py

from flask import Blueprint

push_bp = Blueprint("push", __name__)

from . import routes  # noqa
