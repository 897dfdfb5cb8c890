from __future__ import annotations

import unittest
from datetime import date

from sqlalchemy import select

from app.errors import ApiError, NotFoundError, ValidationError
from app.models import AuditLog, EmployeeStatus, WorkLocation
from app.schemas import DepartmentCreate, DepartmentUpdate, EmployeeCreate, EmployeeUpdate
from app.services import employees, ledger
from tests.db_support import ADMIN_OPERATOR, HR_OPERATOR, TOKYO, add_department, add_employee, add_rule, make_session_factory


class EmployeeServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        add_rule(self.db)
        self.department = add_department(self.db, "DEV")

    def tearDown(self) -> None:
        self.db.close()

    def _actions(self) -> list[str]:
        return [item.action for item in self.db.scalars(select(AuditLog).order_by(AuditLog.id)).all()]

    def test_create_employee_is_audited(self) -> None:
        employee = employees.create_employee(
            self.db,
            EmployeeCreate(employee_no=" E100 ", full_name="Hanako Yamada", department_id=self.department.id),
            operator=HR_OPERATOR,
        )

        self.assertEqual(employee.employee_no, "E100")
        self.assertEqual(employee.status, EmployeeStatus.PROSPECTIVE)
        self.assertEqual(self._actions(), ["CREATE_EMPLOYEE"])

    def test_create_employee_rejects_taken_number_and_unknown_department(self) -> None:
        add_employee(self.db, "E100")

        with self.assertRaises(ApiError) as ctx:
            employees.create_employee(
                self.db,
                EmployeeCreate(employee_no="E100", full_name="Someone Else"),
                operator=HR_OPERATOR,
            )
        self.assertEqual(ctx.exception.code, "EMPLOYEE_NO_TAKEN")

        with self.assertRaises(NotFoundError):
            employees.create_employee(
                self.db,
                EmployeeCreate(employee_no="E101", full_name="Someone Else", department_id=999),
                operator=HR_OPERATOR,
            )

    def test_update_applies_only_sent_fields(self) -> None:
        employee = add_employee(self.db, "E100", department=self.department)

        updated = employees.update_employee(
            self.db,
            employee.id,
            EmployeeUpdate(
                work_location=WorkLocation.REMOTE,
                location_start_date=date(2026, 3, 1),
                reason="Remote trial",
            ),
            operator=HR_OPERATOR,
        )

        entry = self.db.scalar(select(AuditLog))
        self.assertEqual(updated.work_location, WorkLocation.REMOTE)
        self.assertEqual(updated.department_id, self.department.id)
        self.assertEqual(updated.full_name, "Employee E100")
        self.assertEqual(entry.action, "UPDATE_EMPLOYEE")
        self.assertEqual(entry.reason, "Remote trial")
        self.assertEqual(entry.before["work_location"], "OFFICE")
        self.assertEqual(entry.after["work_location"], "REMOTE")

    def test_update_rejects_null_status_and_inverted_window(self) -> None:
        employee = add_employee(self.db, "E100", leave_start_date=date(2026, 3, 10))

        with self.assertRaises(ValidationError):
            employees.update_employee(self.db, employee.id, EmployeeUpdate(status=None), operator=HR_OPERATOR)
        with self.assertRaises(ValidationError):
            employees.update_employee(
                self.db,
                employee.id,
                EmployeeUpdate(leave_end_date=date(2026, 3, 1)),
                operator=HR_OPERATOR,
            )

    def test_soft_delete_hides_employee_but_keeps_number(self) -> None:
        employee = add_employee(self.db, "E100")

        employees.soft_delete_employee(self.db, employee.id, operator=ADMIN_OPERATOR, reason="Duplicate entry")

        self.assertEqual(employees.list_employees(self.db), [])
        self.assertTrue(employees.get_employee(self.db, employee.id, include_deleted=True).is_deleted)
        with self.assertRaises(NotFoundError):
            employees.get_employee(self.db, employee.id)
        with self.assertRaises(ApiError):
            employees.create_employee(
                self.db,
                EmployeeCreate(employee_no="E100", full_name="Reuse attempt"),
                operator=HR_OPERATOR,
            )
        self.assertEqual(ledger.history(self.db, employee.id, tz=TOKYO), [])
        self.assertEqual(self._actions(), ["DELETE_EMPLOYEE"])

    def test_list_employees_filters(self) -> None:
        add_employee(self.db, "E100", department=self.department)
        add_employee(self.db, "E200", status=EmployeeStatus.ON_LEAVE)

        self.assertEqual([item.employee_no for item in employees.list_employees(self.db)], ["E100", "E200"])
        self.assertEqual(
            [item.employee_no for item in employees.list_employees(self.db, department_id=self.department.id)],
            ["E100"],
        )
        self.assertEqual(
            [item.employee_no for item in employees.list_employees(self.db, status=EmployeeStatus.ON_LEAVE)],
            ["E200"],
        )
        self.assertEqual([item.employee_no for item in employees.list_employees(self.db, search="e2")], ["E200"])


class DepartmentServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()

    def tearDown(self) -> None:
        self.db.close()

    def test_create_and_rename_department(self) -> None:
        department = employees.create_department(
            self.db,
            DepartmentCreate(code="OPS", name="Operations"),
            operator=ADMIN_OPERATOR,
        )
        renamed = employees.update_department(
            self.db,
            department.id,
            DepartmentUpdate(name="Field Operations"),
            operator=ADMIN_OPERATOR,
        )

        actions = [item.action for item in self.db.scalars(select(AuditLog).order_by(AuditLog.id)).all()]
        self.assertEqual(renamed.code, "OPS")
        self.assertEqual(renamed.name, "Field Operations")
        self.assertEqual(actions, ["DEPARTMENT_CREATED", "DEPARTMENT_UPDATED"])
        self.assertEqual([item.code for item in employees.list_departments(self.db)], ["OPS"])

    def test_duplicate_department_code(self) -> None:
        employees.create_department(self.db, DepartmentCreate(code="OPS", name="Operations"), operator=ADMIN_OPERATOR)

        with self.assertRaises(ApiError) as ctx:
            employees.create_department(self.db, DepartmentCreate(code="OPS", name="Again"), operator=ADMIN_OPERATOR)

        self.assertEqual(ctx.exception.status_code, 409)
        with self.assertRaises(NotFoundError):
            employees.update_department(self.db, 999, DepartmentUpdate(name="Nobody"), operator=ADMIN_OPERATOR)


if __name__ == "__main__":
    unittest.main()
