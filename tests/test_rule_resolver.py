from __future__ import annotations

import unittest
from datetime import datetime, time, timezone

from sqlalchemy import select

from app.errors import ApiError, ConfigurationError, NotFoundError, ValidationError
from app.models import AttendanceRule, AuditLog
from app.schemas import AttendanceRuleCreate
from app.services import rules
from tests.db_support import ADMIN_OPERATOR, add_department, add_employee, add_rule, make_session_factory


class RuleResolverTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.default = add_rule(self.db, "Default")
        self.department_rule = add_rule(self.db, "Night desk", check_in=time(13, 0), is_default=False)
        self.personal_rule = add_rule(self.db, "Flex", check_in=time(10, 0), is_default=False)

    def tearDown(self) -> None:
        self.db.close()

    def test_personal_rule_wins_over_department_and_default(self) -> None:
        department = add_department(self.db, "OPS", rule=self.department_rule)
        employee = add_employee(self.db, "E001", department=department, rule=self.personal_rule)

        self.assertEqual(rules.resolve(self.db, employee.id).id, self.personal_rule.id)

    def test_department_rule_used_without_personal_rule(self) -> None:
        department = add_department(self.db, "OPS", rule=self.department_rule)
        employee = add_employee(self.db, "E002", department=department)

        self.assertEqual(rules.resolve(self.db, employee.id).id, self.department_rule.id)

    def test_falls_back_to_default(self) -> None:
        department = add_department(self.db, "HQ")
        employee = add_employee(self.db, "E003", department=department)

        self.assertEqual(rules.resolve(self.db, employee.id).id, self.default.id)

    def test_explicitly_assigned_default_rule_does_not_shadow_department_rule(self) -> None:
        department = add_department(self.db, "OPS", rule=self.department_rule)
        employee = add_employee(self.db, "E004", department=department, rule=self.default)

        self.assertEqual(rules.resolve(self.db, employee.id).id, self.department_rule.id)

    def test_missing_default_rule_is_a_configuration_error(self) -> None:
        self.default.is_default = False
        self.db.commit()
        employee = add_employee(self.db, "E005")

        with self.assertRaises(ConfigurationError) as ctx:
            rules.resolve(self.db, employee.id)
        self.assertEqual(ctx.exception.status_code, 500)

    def test_soft_deleted_employee_is_not_resolved(self) -> None:
        employee = add_employee(self.db, "E006", rule=self.personal_rule)
        employee.deleted_at = datetime(2026, 3, 1, tzinfo=timezone.utc)
        self.db.commit()

        with self.assertRaises(NotFoundError):
            rules.resolve(self.db, employee.id)

    def test_unknown_employee_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError) as ctx:
            rules.resolve(self.db, 999)
        self.assertEqual(ctx.exception.code, "EMPLOYEE_NOT_FOUND")


class RuleManagementTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.default = add_rule(self.db, "Default")

    def tearDown(self) -> None:
        self.db.close()

    def _defaults(self) -> list[int]:
        return list(self.db.scalars(select(AttendanceRule.id).where(AttendanceRule.is_default.is_(True))).all())

    def test_create_default_rule_moves_the_default_flag(self) -> None:
        payload = AttendanceRuleCreate(name="Summer", standard_check_in=time(8, 30), is_default=True)
        created = rules.create_rule(self.db, payload, operator=ADMIN_OPERATOR)

        self.assertEqual(self._defaults(), [created.id])
        audit = self.db.scalar(select(AuditLog).where(AuditLog.action == "RULE_CREATED"))
        self.assertIsNotNone(audit)
        self.assertEqual(audit.operated_by, "admin")

    def test_set_default_keeps_exactly_one_default(self) -> None:
        other = add_rule(self.db, "Late shift", check_in=time(11, 0), is_default=False)

        rules.set_default_rule(self.db, other.id, operator=ADMIN_OPERATOR)

        self.assertEqual(self._defaults(), [other.id])

    def test_default_rule_cannot_be_deleted(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            rules.delete_rule(self.db, self.default.id, operator=ADMIN_OPERATOR)
        self.assertEqual(ctx.exception.code, "DEFAULT_RULE_REQUIRED")

    def test_duplicate_rule_name_conflicts(self) -> None:
        payload = AttendanceRuleCreate(name="Default", standard_check_in=time(9, 0))
        with self.assertRaises(ApiError) as ctx:
            rules.create_rule(self.db, payload, operator=ADMIN_OPERATOR)
        self.assertEqual(ctx.exception.status_code, 409)

    def test_assign_and_clear_employee_rule(self) -> None:
        flex = add_rule(self.db, "Flex", check_in=time(10, 0), is_default=False)
        employee = add_employee(self.db, "E010")

        rules.assign_rule_to_employee(self.db, employee.id, flex.id, operator=ADMIN_OPERATOR, reason="contract")
        self.assertEqual(rules.resolve(self.db, employee.id).id, flex.id)

        rules.assign_rule_to_employee(self.db, employee.id, None, operator=ADMIN_OPERATOR)
        self.assertEqual(rules.resolve(self.db, employee.id).id, self.default.id)

        actions = list(
            self.db.scalars(
                select(AuditLog.action).where(AuditLog.target_type == "employee").order_by(AuditLog.id)
            ).all()
        )
        self.assertEqual(actions, ["EMPLOYEE_RULE_ASSIGNED", "EMPLOYEE_RULE_ASSIGNED"])

    def test_rule_assigned_to_an_employee_cannot_be_deleted(self) -> None:
        early = add_rule(self.db, "Early", check_in=time(7, 30), is_default=False)
        employee = add_employee(self.db, "E001", rule=early)

        with self.assertRaises(ApiError) as ctx:
            rules.delete_rule(self.db, early.id, operator=ADMIN_OPERATOR)

        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(ctx.exception.code, "RULE_IN_USE")
        self.db.refresh(employee)
        self.assertEqual(employee.attendance_rule_id, early.id)
        self.assertIsNotNone(self.db.get(AttendanceRule, early.id))

    def test_rule_assigned_to_a_department_cannot_be_deleted(self) -> None:
        early = add_rule(self.db, "Early", check_in=time(7, 30), is_default=False)
        add_department(self.db, "OPS", rule=early)

        with self.assertRaises(ApiError) as ctx:
            rules.delete_rule(self.db, early.id, operator=ADMIN_OPERATOR)

        self.assertEqual(ctx.exception.code, "RULE_IN_USE")

    def test_rule_can_be_deleted_once_assignments_are_cleared(self) -> None:
        early = add_rule(self.db, "Early", check_in=time(7, 30), is_default=False)
        employee = add_employee(self.db, "E001", rule=early)

        rules.assign_rule_to_employee(self.db, employee.id, None, operator=ADMIN_OPERATOR)
        rules.delete_rule(self.db, early.id, operator=ADMIN_OPERATOR)

        self.assertIsNone(self.db.get(AttendanceRule, early.id))
        actions = list(self.db.scalars(select(AuditLog.action).order_by(AuditLog.id)).all())
        self.assertEqual(actions, ["EMPLOYEE_RULE_ASSIGNED", "RULE_DELETED"])

    def test_deleting_a_rule_clears_soft_deleted_holders_with_audit(self) -> None:
        early = add_rule(self.db, "Early", check_in=time(7, 30), is_default=False)
        employee = add_employee(self.db, "E001", rule=early)
        employee.deleted_at = datetime(2026, 3, 1, tzinfo=timezone.utc)
        self.db.commit()

        rules.delete_rule(self.db, early.id, operator=ADMIN_OPERATOR)

        self.db.refresh(employee)
        self.assertIsNone(employee.attendance_rule_id)
        entries = list(self.db.scalars(select(AuditLog).order_by(AuditLog.id)).all())
        self.assertEqual([item.action for item in entries], ["EMPLOYEE_RULE_ASSIGNED", "RULE_DELETED"])
        self.assertEqual(entries[0].target_id, str(employee.id))
        self.assertEqual(entries[0].before["attendance_rule_id"], early.id)
        self.assertIsNone(entries[0].after["attendance_rule_id"])


if __name__ == "__main__":
    unittest.main()
