from __future__ import annotations

import unittest
from datetime import date, datetime, timezone

from sqlalchemy import func, select

from app.errors import NotFoundError, ValidationError
from app.models import AttendanceRecord, AuditLog, EmployeeStatus
from app.services import ledger
from app.services.status_engine import StatusCategory, StatusLabel
from tests.db_support import (
    ADMIN_OPERATOR,
    TOKYO,
    add_department,
    add_employee,
    add_rule,
    make_session_factory,
    tokyo,
)

DAY = date(2026, 3, 2)


class LedgerQueryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        add_rule(self.db)
        self.alice = add_employee(self.db, "E001")
        self.bob = add_employee(self.db, "E002")

    def tearDown(self) -> None:
        self.db.close()

    def test_latest_breaks_time_ties_by_insertion_order(self) -> None:
        at = tokyo(2026, 3, 2, 9, 0)
        ledger.append(self.db, self.alice.id, StatusLabel.PRESENT, "terminal-1", at)
        second = ledger.append(self.db, self.alice.id, StatusLabel.LATE, "admin", at)

        latest = ledger.latest(self.db, self.alice.id, DAY, tz=TOKYO)

        self.assertEqual(latest.id, second.id)
        self.assertEqual(latest.status, "late")

    def test_latest_is_bounded_to_the_local_day(self) -> None:
        ledger.append(self.db, self.alice.id, StatusLabel.PRESENT, "terminal-1", tokyo(2026, 3, 1, 23, 59))
        self.assertIsNone(ledger.latest(self.db, self.alice.id, DAY, tz=TOKYO))

        ledger.append(self.db, self.alice.id, StatusLabel.PRESENT, "terminal-1", tokyo(2026, 3, 2, 0, 0))
        self.assertIsNotNone(ledger.latest(self.db, self.alice.id, DAY, tz=TOKYO))
        self.assertEqual(ledger.current_status(self.db, self.bob.id, DAY, tz=TOKYO), "unattended")

    def test_snapshot_without_punches_is_all_unattended(self) -> None:
        views = ledger.daily_snapshot(self.db, DAY, tz=TOKYO)

        self.assertEqual([item.employee_no for item in views], ["E001", "E002"])
        for view in views:
            self.assertEqual(view.status, "unattended")
            self.assertEqual(view.category, StatusCategory.UNATTENDED)
            self.assertIsNone(view.record_time)
            self.assertIsNone(view.record_id)
            self.assertEqual(view.recorder, "SYSTEM")

    def test_snapshot_category_filter(self) -> None:
        ledger.append(self.db, self.alice.id, StatusLabel.LATE, "terminal-1", tokyo(2026, 3, 2, 9, 40))

        late = ledger.daily_snapshot(self.db, DAY, "late", tz=TOKYO)
        unattended = ledger.daily_snapshot(self.db, DAY, StatusCategory.UNATTENDED, tz=TOKYO)

        self.assertEqual([item.employee_id for item in late], [self.alice.id])
        self.assertEqual([item.employee_id for item in unattended], [self.bob.id])
        with self.assertRaises(ValidationError):
            ledger.daily_snapshot(self.db, DAY, "late-ish", tz=TOKYO)

    def test_snapshot_skips_terminal_employees_unless_requested(self) -> None:
        add_employee(self.db, "E003", status=EmployeeStatus.RESIGNED)

        self.assertEqual(len(ledger.daily_snapshot(self.db, DAY, tz=TOKYO)), 2)
        self.assertEqual(len(ledger.daily_snapshot(self.db, DAY, include_inactive=True, tz=TOKYO)), 3)

    def test_snapshot_department_filter(self) -> None:
        department = add_department(self.db, "OPS")
        carol = add_employee(self.db, "E003", department=department)

        views = ledger.daily_snapshot(self.db, DAY, department_id=department.id, tz=TOKYO)

        self.assertEqual([item.employee_id for item in views], [carol.id])

    def test_soft_deleted_employee_leaves_snapshot_but_keeps_history(self) -> None:
        ledger.append(self.db, self.bob.id, StatusLabel.PRESENT, "terminal-1", tokyo(2026, 3, 2, 8, 50))
        self.bob.deleted_at = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
        self.db.commit()

        views = ledger.daily_snapshot(self.db, DAY, tz=TOKYO)
        history = ledger.history(self.db, self.bob.id, tz=TOKYO)

        self.assertNotIn(self.bob.id, [item.employee_id for item in views])
        self.assertEqual([item.status for item in history], ["present"])
        with self.assertRaises(NotFoundError):
            ledger.append(self.db, self.bob.id, StatusLabel.LATE, "admin")

    def test_history_is_newest_first_and_date_bounded(self) -> None:
        ledger.append(self.db, self.alice.id, StatusLabel.PRESENT, "terminal-1", tokyo(2026, 3, 1, 9, 0))
        ledger.append(self.db, self.alice.id, StatusLabel.CHECKED_OUT, "terminal-1", tokyo(2026, 3, 1, 18, 5))
        ledger.append(self.db, self.alice.id, StatusLabel.LATE, "terminal-1", tokyo(2026, 3, 2, 9, 30))

        everything = ledger.history(self.db, self.alice.id, tz=TOKYO)
        only_first = ledger.history(
            self.db,
            self.alice.id,
            start_date=date(2026, 3, 1),
            end_date=date(2026, 3, 1),
            tz=TOKYO,
        )

        self.assertEqual([item.status for item in everything], ["late", "checked_out", "present"])
        self.assertEqual([item.status for item in only_first], ["checked_out", "present"])
        with self.assertRaises(ValidationError):
            ledger.history(self.db, self.alice.id, start_date=DAY, end_date=date(2026, 3, 1), tz=TOKYO)

    def test_dashboard_counts_and_exceptions(self) -> None:
        carol = add_employee(self.db, "E003")
        ledger.append(self.db, self.alice.id, StatusLabel.LATE, "terminal-1", tokyo(2026, 3, 2, 9, 40))
        ledger.append(self.db, self.bob.id, StatusLabel.WFH, "terminal-1", tokyo(2026, 3, 2, 8, 58))
        ledger.append(self.db, carol.id, StatusLabel.ABSENT, "SYSTEM", tokyo(2026, 3, 2, 14, 0))

        stats = ledger.dashboard_counts(self.db, DAY, tz=TOKYO)
        exceptions = ledger.exception_list(self.db, DAY, tz=TOKYO)

        self.assertEqual(stats["total_employees"], 3)
        self.assertEqual(stats["counts"]["late"], 1)
        self.assertEqual(stats["counts"]["offsite"], 1)
        self.assertEqual(stats["counts"]["absent"], 1)
        self.assertEqual(stats["counts"]["present"], 0)
        self.assertEqual(stats["exceptions"], 2)
        self.assertEqual({item.employee_id for item in exceptions}, {self.alice.id, carol.id})

    def test_export_rows_use_local_time(self) -> None:
        ledger.append(self.db, self.alice.id, StatusLabel.PRESENT, "terminal-1", tokyo(2026, 3, 2, 8, 57))

        rows = ledger.export_rows(self.db, DAY, tz=TOKYO)

        self.assertEqual(rows[0]["record_time"], "08:57:00")
        self.assertEqual(rows[0]["category"], "present")
        self.assertEqual(rows[1]["record_time"], "")
        self.assertEqual(rows[1]["status"], "unattended")


class LedgerCorrectionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        add_rule(self.db)
        self.employee = add_employee(self.db, "E001")
        self.record = ledger.append(
            self.db,
            self.employee.id,
            StatusLabel.LATE,
            "terminal-1",
            tokyo(2026, 3, 2, 9, 25),
        )

    def tearDown(self) -> None:
        self.db.close()

    def _audit_entries(self) -> list[AuditLog]:
        return list(self.db.scalars(select(AuditLog).order_by(AuditLog.id)).all())

    def test_update_appends_a_correction_and_one_audit_entry(self) -> None:
        correction = ledger.update(
            self.db,
            self.record.id,
            StatusLabel.PRESENT,
            operator=ADMIN_OPERATOR,
            reason="Train delay certificate",
        )

        latest = ledger.latest(self.db, self.employee.id, DAY, tz=TOKYO)
        entries = self._audit_entries()

        self.assertEqual(latest.id, correction.id)
        self.assertEqual(latest.status, "present")
        self.assertEqual(correction.corrects_record_id, self.record.id)
        self.assertEqual(correction.recorder, "admin")
        self.assertEqual(len(ledger.history(self.db, self.employee.id, tz=TOKYO)), 2)
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].action, "UPDATE")
        self.assertEqual(entries[0].before["record"]["status"], "late")
        self.assertEqual(entries[0].after["record"]["status"], "present")
        self.assertEqual(entries[0].after["employee"]["employee_no"], "E001")
        self.assertEqual(entries[0].reason, "Train delay certificate")

    def test_update_requires_reason(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            ledger.update(self.db, self.record.id, StatusLabel.PRESENT, operator=ADMIN_OPERATOR, reason="  ")

        self.assertEqual(ctx.exception.code, "REASON_REQUIRED")
        self.assertEqual(self._audit_entries(), [])
        self.assertEqual(self.db.scalar(select(func.count(AttendanceRecord.id))), 1)

    def test_update_unknown_record(self) -> None:
        with self.assertRaises(NotFoundError):
            ledger.update(self.db, 404, StatusLabel.PRESENT, operator=ADMIN_OPERATOR, reason="typo")

    def test_delete_hard_deletes_with_one_audit_entry(self) -> None:
        record_id = self.record.id

        self.assertTrue(ledger.delete(self.db, record_id, operator=ADMIN_OPERATOR))

        entries = self._audit_entries()
        self.assertIsNone(self.db.get(AttendanceRecord, record_id))
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].action, "DELETE")
        self.assertEqual(entries[0].target_id, str(record_id))
        self.assertEqual(entries[0].before["record"]["status"], "late")
        self.assertEqual(entries[0].before["employee"]["employee_no"], "E001")
        self.assertEqual(set(entries[0].before), {"employee", "record"})
        self.assertIsNone(entries[0].after)

    def test_delete_unknown_record_returns_false(self) -> None:
        self.assertFalse(ledger.delete(self.db, 404, operator=ADMIN_OPERATOR))
        self.assertEqual(self._audit_entries(), [])

    def test_manual_create_requires_reason_and_is_audited(self) -> None:
        with self.assertRaises(ValidationError):
            ledger.create_manual_record(
                self.db,
                employee_id=self.employee.id,
                status=StatusLabel.LEAVE,
                reason="",
                operator=ADMIN_OPERATOR,
                tz=TOKYO,
            )

        record = ledger.create_manual_record(
            self.db,
            employee_id=self.employee.id,
            status=StatusLabel.LEAVE,
            reason="Approved sick day",
            operator=ADMIN_OPERATOR,
            record_time=datetime(2026, 3, 2, 10, 0),
            tz=TOKYO,
        )

        self.assertEqual(ledger.as_utc(record.record_time), tokyo(2026, 3, 2, 10, 0).astimezone(timezone.utc))
        self.assertEqual(ledger.current_status(self.db, self.employee.id, DAY, tz=TOKYO), "leave")
        entries = self._audit_entries()
        self.assertEqual([item.action for item in entries], ["CREATE"])
        self.assertEqual(set(entries[0].after), {"employee", "record"})
        self.assertEqual(entries[0].after["record"]["status"], "leave")


if __name__ == "__main__":
    unittest.main()
