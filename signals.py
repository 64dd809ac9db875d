# signals.py
"""In-process signals connecting the order workflow to its collaborators.

``order_status_changed``
    sent by ``OrderService`` after a status change is committed, with
    ``event=StatusChanged``. Notification dispatch subscribes to it.

``badge_refresh_requested``
    sent after any mutation that can change unread counts or order lists,
    with ``user_ids`` (None means "everyone") and a short ``reason``.
"""

from blinker import Namespace

_workflow_signals = Namespace()

order_status_changed = _workflow_signals.signal("order-status-changed")
badge_refresh_requested = _workflow_signals.signal("badge-refresh-requested")
