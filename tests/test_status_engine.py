from __future__ import annotations

import unittest
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from app.models import EmployeeStatus, WorkLocation
from app.services.status_engine import (
    EmployeeSnapshot,
    RuleThresholds,
    StatusCategory,
    StatusLabel,
    category_for,
    compute_checkout_status,
    compute_status,
    within_window,
)

RULE = RuleThresholds(standard_check_in=time(9, 0), late_grace_minutes=15, absent_threshold_minutes=120)
TODAY = date(2026, 3, 2)
NOW = datetime(2026, 3, 2, 12, 0)
ACTIVE = EmployeeSnapshot(status=EmployeeStatus.ACTIVE)


def _at(hour: int, minute: int) -> datetime:
    return datetime(2026, 3, 2, hour, minute)


class StatusEngineWindowTests(unittest.TestCase):
    def test_check_in_windows_with_default_rule(self) -> None:
        cases = [
            (_at(8, 55), StatusLabel.PRESENT),
            (_at(9, 10), StatusLabel.PRESENT),
            (_at(9, 15), StatusLabel.PRESENT),
            (_at(9, 20), StatusLabel.LATE),
            (_at(11, 0), StatusLabel.LATE),
            (_at(11, 5), StatusLabel.ABSENT),
        ]
        for check_in, expected in cases:
            with self.subTest(check_in=check_in.time()):
                self.assertEqual(compute_status(check_in, RULE, ACTIVE, NOW), expected)

    def test_missing_check_in_is_absent(self) -> None:
        self.assertEqual(compute_status(None, RULE, ACTIVE, NOW), StatusLabel.ABSENT)

    def test_aware_times_are_compared_in_organization_timezone(self) -> None:
        tz = ZoneInfo("Asia/Tokyo")
        now = datetime(2026, 3, 2, 3, 0, tzinfo=timezone.utc)  # 12:00 in Tokyo
        on_time = datetime(2026, 3, 2, 0, 10, tzinfo=timezone.utc)  # 09:10 in Tokyo
        late = datetime(2026, 3, 2, 0, 20, tzinfo=timezone.utc)  # 09:20 in Tokyo

        self.assertEqual(compute_status(on_time, RULE, ACTIVE, now, tz=tz), StatusLabel.PRESENT)
        self.assertEqual(compute_status(late, RULE, ACTIVE, now, tz=tz), StatusLabel.LATE)


class StatusEngineLifecycleTests(unittest.TestCase):
    def test_terminal_employees_are_always_inactive(self) -> None:
        for status in (EmployeeStatus.RESIGNED, EmployeeStatus.TERMINATED):
            employee = EmployeeSnapshot(status=status)
            for check_in in (None, _at(8, 0), _at(10, 0), _at(15, 0)):
                with self.subTest(status=status, check_in=check_in):
                    self.assertEqual(compute_status(check_in, RULE, employee, NOW), StatusLabel.INACTIVE)

    def test_prospective_before_hire_date(self) -> None:
        employee = EmployeeSnapshot(status=EmployeeStatus.PROSPECTIVE, hire_date=date(2026, 3, 3))
        self.assertEqual(compute_status(_at(9, 0), RULE, employee, NOW), StatusLabel.PROSPECTIVE)
        self.assertEqual(compute_status(None, RULE, employee, NOW), StatusLabel.PROSPECTIVE)

    def test_prospective_without_hire_date_stays_prospective(self) -> None:
        employee = EmployeeSnapshot(status=EmployeeStatus.PROSPECTIVE)
        self.assertEqual(compute_status(_at(9, 0), RULE, employee, NOW), StatusLabel.PROSPECTIVE)

    def test_prospective_on_or_after_hire_date_is_evaluated_as_active(self) -> None:
        for hire_date in (TODAY, date(2026, 2, 1)):
            employee = EmployeeSnapshot(status=EmployeeStatus.PROSPECTIVE, hire_date=hire_date)
            with self.subTest(hire_date=hire_date):
                self.assertEqual(compute_status(_at(9, 5), RULE, employee, NOW), StatusLabel.PRESENT)
                self.assertEqual(compute_status(_at(9, 30), RULE, employee, NOW), StatusLabel.LATE)
                self.assertEqual(compute_status(None, RULE, employee, NOW), StatusLabel.ABSENT)

    def test_on_leave_inside_window(self) -> None:
        windows = [
            (date(2026, 3, 1), date(2026, 3, 5)),
            (None, date(2026, 3, 2)),
            (date(2026, 3, 2), None),
            (None, None),
        ]
        for start, end in windows:
            employee = EmployeeSnapshot(
                status=EmployeeStatus.ON_LEAVE,
                leave_start_date=start,
                leave_end_date=end,
            )
            with self.subTest(start=start, end=end):
                self.assertEqual(compute_status(_at(9, 0), RULE, employee, NOW), StatusLabel.LEAVE)
                self.assertEqual(compute_status(None, RULE, employee, NOW), StatusLabel.LEAVE)

    def test_on_leave_outside_window_falls_through_to_time_windows(self) -> None:
        employee = EmployeeSnapshot(
            status=EmployeeStatus.ON_LEAVE,
            leave_start_date=date(2026, 3, 3),
            leave_end_date=date(2026, 3, 10),
        )
        self.assertEqual(compute_status(_at(9, 0), RULE, employee, NOW), StatusLabel.PRESENT)
        self.assertEqual(compute_status(None, RULE, employee, NOW), StatusLabel.ABSENT)


class StatusEngineLocationTests(unittest.TestCase):
    def test_offsite_base_status_inside_location_window(self) -> None:
        remote = EmployeeSnapshot(
            status=EmployeeStatus.ACTIVE,
            work_location=WorkLocation.REMOTE,
            location_start_date=date(2026, 3, 1),
        )
        worksite = EmployeeSnapshot(
            status=EmployeeStatus.ACTIVE,
            work_location=WorkLocation.WORKSITE,
            location_end_date=date(2026, 3, 2),
        )
        self.assertEqual(compute_status(_at(9, 0), RULE, remote, NOW), StatusLabel.WFH)
        self.assertEqual(compute_status(_at(9, 0), RULE, worksite, NOW), StatusLabel.WORKSITE)

    def test_offsite_employee_still_gets_late_and_absent(self) -> None:
        remote = EmployeeSnapshot(status=EmployeeStatus.ACTIVE, work_location=WorkLocation.REMOTE)
        self.assertEqual(compute_status(_at(9, 30), RULE, remote, NOW), StatusLabel.LATE)
        self.assertEqual(compute_status(None, RULE, remote, NOW), StatusLabel.ABSENT)

    def test_expired_location_window_means_office(self) -> None:
        remote = EmployeeSnapshot(
            status=EmployeeStatus.ACTIVE,
            work_location=WorkLocation.REMOTE,
            location_start_date=date(2026, 2, 1),
            location_end_date=date(2026, 2, 28),
        )
        self.assertEqual(compute_status(_at(9, 0), RULE, remote, NOW), StatusLabel.PRESENT)


class StatusCategoryTests(unittest.TestCase):
    def test_every_label_has_a_category(self) -> None:
        for label in StatusLabel:
            self.assertIsInstance(category_for(label), StatusCategory)

    def test_category_mapping(self) -> None:
        self.assertEqual(category_for("wfh"), StatusCategory.OFFSITE)
        self.assertEqual(category_for("worksite"), StatusCategory.OFFSITE)
        self.assertEqual(category_for("early_leave"), StatusCategory.CHECKED_OUT)
        self.assertEqual(category_for("auto_checkout"), StatusCategory.CHECKED_OUT)
        self.assertEqual(category_for("prospective"), StatusCategory.UNATTENDED)
        self.assertEqual(category_for(None), StatusCategory.UNATTENDED)
        self.assertEqual(category_for("legacy-label"), StatusCategory.UNATTENDED)

    def test_checkout_classification(self) -> None:
        self.assertEqual(compute_checkout_status(_at(17, 59), RULE), StatusLabel.EARLY_LEAVE)
        self.assertEqual(compute_checkout_status(_at(18, 0), RULE), StatusLabel.CHECKED_OUT)
        self.assertEqual(compute_checkout_status(_at(21, 30), RULE), StatusLabel.CHECKED_OUT)

    def test_window_bounds_are_inclusive(self) -> None:
        self.assertTrue(within_window(TODAY, TODAY, TODAY))
        self.assertFalse(within_window(TODAY, date(2026, 3, 3), None))
        self.assertFalse(within_window(TODAY, None, date(2026, 3, 1)))


if __name__ == "__main__":
    unittest.main()
