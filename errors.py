# errors.py
"""Domain errors raised by the order workflow and its services.

Each error carries a short ``message`` that names the failed precondition
literally (for example ``"rejection_reason required"``) plus a ``details``
dict the API layer returns as-is, so clients can translate and render it.
"""

from __future__ import annotations

from typing import Any


class WorkflowError(Exception):
    status_code = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = {key: value for key, value in details.items() if value is not None}

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, **self.details}


class InvalidTransition(WorkflowError):
    """Role, source state or payload does not allow the requested change."""

    status_code = 409

    def __init__(self, current_status, requested_status, precondition: str):
        self.current_status = current_status
        self.requested_status = requested_status
        self.precondition = precondition

        current_label = _status_value(current_status)
        if requested_status is None:
            message = f"order in status ({current_label}): {precondition}"
        else:
            message = (
                f"cannot move order from ({current_label}) "
                f"to ({_status_value(requested_status)}): {precondition}"
            )

        super().__init__(
            message,
            current_status=current_label,
            requested_status=_status_value(requested_status),
            precondition=precondition,
        )


class Forbidden(WorkflowError):
    status_code = 403

    def __init__(self, message: str, *, role: str | None = None, **details: Any):
        super().__init__(message, role=role, **details)


class NotFound(WorkflowError):
    status_code = 404

    def __init__(self, resource: str, resource_id):
        super().__init__(f"{resource} {resource_id} not found", resource=resource, id=resource_id)


class ValidationError(WorkflowError):
    status_code = 422

    def __init__(self, message: str, *, field: str | None = None, **details: Any):
        super().__init__(message, field=field, **details)


def _status_value(status) -> str | None:
    if status is None:
        return None
    return getattr(status, "value", status)
