import unittest
from types import SimpleNamespace

from errors import InvalidTransition, NotFound, ValidationError
from order_workflow import (
    ALL_ROLES,
    OPEN_STATUSES,
    ROLE_ADMIN,
    ROLE_ENGINEERING,
    ROLE_PURCHASING,
    ROLE_SITE,
    ROLE_SUB_ADMIN,
    WORKFLOW_TRANSITIONS,
    ItemPurchaseStatus,
    OrderStatus,
    TransitionPayload,
    apply_changes,
    can_edit_order,
    can_update_item_status,
    execute_transition,
    is_transition_allowed,
    parse_item_decisions,
    parse_order_status,
    parse_purchase_status,
    plan_item_edits,
    unmet_precondition,
    validate_new_items,
)


def _item(item_id, approved=None, title=None):
    return SimpleNamespace(id=item_id, title=title or f"item {item_id}", approved_by_admin=approved)


def _order(status, items=(), order_id=7, created_by=3, title="Cement"):
    return SimpleNamespace(
        id=order_id,
        status=status.value if isinstance(status, OrderStatus) else status,
        items=list(items),
        created_by=created_by,
        title=title,
    )


class StatusLiteralsTestCase(unittest.TestCase):
    def test_status_values_are_backend_literals(self):
        self.assertEqual(OrderStatus.ORDER_CREATED.value, "تم اجراء الطلب")
        self.assertEqual(OrderStatus.OWNER_REJECTED.value, "تم الرفض من الادارة")
        self.assertEqual(OrderStatus.ORDER_CLOSED.value, "تم غلق طلب الشراء")
        self.assertEqual(ItemPurchaseStatus.PURCHASED.value, "تم الشراء")

    def test_parse_accepts_literal_member_and_name(self):
        self.assertIs(parse_order_status("تمت المراجعة الهندسية"), OrderStatus.ENGINEERING_REVIEWED)
        self.assertIs(parse_order_status("owner_approved"), OrderStatus.OWNER_APPROVED)
        self.assertIs(parse_order_status(OrderStatus.ORDER_CLOSED), OrderStatus.ORDER_CLOSED)

    def test_parse_rejects_unknown_status(self):
        with self.assertRaises(ValidationError) as ctx:
            parse_order_status("shipped")
        self.assertEqual(ctx.exception.details["field"], "status")

    def test_pending_purchase_status_is_none(self):
        self.assertIsNone(parse_purchase_status(None))
        self.assertIsNone(parse_purchase_status("معلق"))
        self.assertIs(parse_purchase_status("لم يتم الشراء"), ItemPurchaseStatus.NOT_PURCHASED)

    def test_open_statuses_exclude_terminal(self):
        self.assertNotIn(OrderStatus.OWNER_REJECTED, OPEN_STATUSES)
        self.assertNotIn(OrderStatus.ORDER_CLOSED, OPEN_STATUSES)
        self.assertEqual(len(OPEN_STATUSES), 5)


class TransitionTableTestCase(unittest.TestCase):
    def test_only_listed_pairs_and_roles_are_allowed(self):
        decided = [_item(1, approved=True)]
        payload = TransitionPayload(rejection_reason="too expensive")

        for current in OrderStatus:
            for requested in OrderStatus:
                for role in ALL_ROLES:
                    allowed = is_transition_allowed(role, current, requested, payload, decided)
                    expected = role in WORKFLOW_TRANSITIONS.get((current, requested), frozenset())
                    self.assertEqual(
                        allowed,
                        expected,
                        f"{role}: {current.name} -> {requested.name}",
                    )

    def test_terminal_statuses_have_no_outgoing_transition(self):
        for terminal in (OrderStatus.OWNER_REJECTED, OrderStatus.ORDER_CLOSED):
            for requested in OrderStatus:
                for role in ALL_ROLES:
                    self.assertFalse(is_transition_allowed(role, terminal, requested))

    def test_self_transition_is_rejected(self):
        problem = unmet_precondition(
            ROLE_ENGINEERING, OrderStatus.ORDER_CREATED, OrderStatus.ORDER_CREATED
        )
        self.assertEqual(problem, "order is already in the requested status")

    def test_wrong_role_names_the_role(self):
        problem = unmet_precondition(
            ROLE_SITE, OrderStatus.ORDER_CREATED, OrderStatus.ENGINEERING_REVIEWED
        )
        self.assertEqual(problem, "role 'site' may not perform this transition")


class ExecuteTransitionTestCase(unittest.TestCase):
    def test_approval_requires_every_item_decided(self):
        order = _order(
            OrderStatus.UNDER_ADMIN_REVIEW,
            [_item(1, approved=True), _item(2, approved=None, title="Sand")],
        )

        with self.assertRaises(InvalidTransition) as ctx:
            execute_transition(order, OrderStatus.OWNER_APPROVED, ROLE_ADMIN)

        error = ctx.exception
        self.assertEqual(error.current_status, OrderStatus.UNDER_ADMIN_REVIEW)
        self.assertEqual(error.requested_status, OrderStatus.OWNER_APPROVED)
        self.assertIn("Sand", error.precondition)
        self.assertEqual(error.status_code, 409)

    def test_approval_allowed_with_some_items_refused(self):
        order = _order(
            OrderStatus.UNDER_ADMIN_REVIEW,
            [_item(1, approved=True), _item(2, approved=False)],
        )

        result = execute_transition(order, OrderStatus.OWNER_APPROVED, ROLE_SUB_ADMIN)

        self.assertIs(result.status, OrderStatus.OWNER_APPROVED)
        self.assertEqual(result.changes, {"status": OrderStatus.OWNER_APPROVED.value})
        # الطلب نفسه لا يتغير
        self.assertEqual(order.status, OrderStatus.UNDER_ADMIN_REVIEW.value)

    def test_rejection_requires_reason(self):
        order = _order(OrderStatus.UNDER_ADMIN_REVIEW, [_item(1)])

        for payload in (None, TransitionPayload(rejection_reason="   ")):
            with self.assertRaises(InvalidTransition) as ctx:
                execute_transition(order, OrderStatus.OWNER_REJECTED, ROLE_ADMIN, payload)
            self.assertEqual(ctx.exception.precondition, "rejection_reason required")

    def test_rejection_stores_trimmed_reason(self):
        order = _order(OrderStatus.UNDER_ADMIN_REVIEW, [_item(1)])

        result = execute_transition(
            order,
            OrderStatus.OWNER_REJECTED,
            ROLE_ADMIN,
            TransitionPayload(rejection_reason="  budget exceeded "),
        )

        self.assertEqual(result.changes["rejection_reason"], "budget exceeded")
        self.assertEqual(result.changes["status"], OrderStatus.OWNER_REJECTED.value)

    def test_rejection_allowed_with_undecided_items(self):
        order = _order(
            OrderStatus.UNDER_ADMIN_REVIEW,
            [_item(1, approved=False), _item(2), _item(3)],
        )
        payload = TransitionPayload(rejection_reason="supplier quote too high")

        self.assertTrue(
            is_transition_allowed(
                ROLE_ADMIN, order.status, OrderStatus.OWNER_REJECTED, payload, order.items
            )
        )
        result = execute_transition(order, OrderStatus.OWNER_REJECTED, ROLE_ADMIN, payload)

        self.assertIs(result.status, OrderStatus.OWNER_REJECTED)
        self.assertEqual(result.changes["rejection_reason"], "supplier quote too high")

    def test_close_carries_purchasing_notes_and_event(self):
        order = _order(OrderStatus.PURCHASING_IN_PROGRESS, [_item(1, approved=True)])

        result = execute_transition(
            order,
            OrderStatus.ORDER_CLOSED,
            ROLE_PURCHASING,
            TransitionPayload.from_mapping({"purchasing_notes": "delivered to site"}),
        )

        self.assertEqual(result.changes["purchasing_notes"], "delivered to site")
        self.assertEqual(result.event.order_id, 7)
        self.assertEqual(result.event.created_by, 3)
        self.assertIs(result.event.old_status, OrderStatus.PURCHASING_IN_PROGRESS)
        self.assertIs(result.event.new_status, OrderStatus.ORDER_CLOSED)
        self.assertEqual(result.event.order_title, "Cement")

    def test_terminal_order_rejects_everything(self):
        order = _order(OrderStatus.ORDER_CLOSED, [_item(1, approved=True)])

        with self.assertRaises(InvalidTransition) as ctx:
            execute_transition(order, OrderStatus.PURCHASING_IN_PROGRESS, ROLE_ADMIN)
        self.assertEqual(ctx.exception.precondition, "order is in a terminal status")

    def test_error_details_use_literals(self):
        order = _order(OrderStatus.ORDER_CREATED, [_item(1)])

        with self.assertRaises(InvalidTransition) as ctx:
            execute_transition(order, OrderStatus.ORDER_CLOSED, ROLE_PURCHASING)

        details = ctx.exception.to_dict()
        self.assertEqual(details["current_status"], "تم اجراء الطلب")
        self.assertEqual(details["requested_status"], "تم غلق طلب الشراء")

    def test_apply_changes_sets_attributes(self):
        order = _order(OrderStatus.UNDER_ADMIN_REVIEW)
        apply_changes(order, {"status": "x", "rejection_reason": "y"})
        self.assertEqual((order.status, order.rejection_reason), ("x", "y"))


class ItemRulesTestCase(unittest.TestCase):
    def test_admin_roles_update_items_in_any_status(self):
        for status in OrderStatus:
            self.assertTrue(can_update_item_status(ROLE_ADMIN, status))
            self.assertTrue(can_update_item_status(ROLE_SUB_ADMIN, status))

    def test_purchasing_limited_to_purchasing_statuses(self):
        allowed = {
            status for status in OrderStatus if can_update_item_status(ROLE_PURCHASING, status)
        }
        self.assertEqual(
            allowed, {OrderStatus.OWNER_APPROVED, OrderStatus.PURCHASING_IN_PROGRESS}
        )

    def test_engineering_and_site_never_update_items(self):
        for status in OrderStatus:
            self.assertFalse(can_update_item_status(ROLE_ENGINEERING, status))
            self.assertFalse(can_update_item_status(ROLE_SITE, status))

    def test_edit_window(self):
        self.assertTrue(can_edit_order(ROLE_SITE, OrderStatus.ORDER_CREATED))
        self.assertTrue(can_edit_order(ROLE_ENGINEERING, OrderStatus.ORDER_CREATED))
        self.assertFalse(can_edit_order(ROLE_SITE, OrderStatus.ENGINEERING_REVIEWED))
        self.assertFalse(can_edit_order(ROLE_PURCHASING, OrderStatus.ORDER_CREATED))
        self.assertTrue(can_edit_order(ROLE_ADMIN, OrderStatus.ORDER_CLOSED))


class ItemValidationTestCase(unittest.TestCase):
    def test_new_order_needs_items_with_titles(self):
        with self.assertRaises(ValidationError):
            validate_new_items([])
        with self.assertRaises(ValidationError) as ctx:
            validate_new_items([{"title": "  "}])
        self.assertEqual(ctx.exception.details["field"], "items[0].title")

        cleaned = validate_new_items([{"title": " Cement ", "description": "50 bags"}])
        self.assertEqual(cleaned, [{"title": "Cement", "description": "50 bags"}])

    def test_decisions_require_explicit_approved_value(self):
        with self.assertRaises(ValidationError):
            parse_item_decisions([{"item_id": 1}])
        with self.assertRaises(ValidationError):
            parse_item_decisions([{"item_id": 1, "approved": "yes"}])

        parsed = parse_item_decisions(
            [{"item_id": 1, "approved": True}, {"item_id": "2", "approved": None}]
        )
        self.assertEqual(parsed, {"1": True, "2": None})

    def test_plan_item_edits(self):
        existing = [_item(1), _item(2)]

        plan = plan_item_edits(
            existing,
            [
                {"id": 1, "title": "Cement 50kg"},
                {"id": 2, "delete": True},
                {"title": "Gravel"},
            ],
        )

        self.assertEqual(plan.updates, [(existing[0], {"title": "Cement 50kg"})])
        self.assertEqual(plan.deletes, [existing[1]])
        self.assertEqual(plan.creates, [{"title": "Gravel", "description": None}])

    def test_plan_item_edits_keeps_at_least_one_item(self):
        with self.assertRaises(ValidationError):
            plan_item_edits([_item(1)], [{"id": 1, "delete": True}])

    def test_plan_item_edits_unknown_item(self):
        with self.assertRaises(NotFound):
            plan_item_edits([_item(1)], [{"id": 99, "title": "x"}])


if __name__ == "__main__":
    unittest.main()
