"""Attendance status computation.

Everything here is pure: callers resolve the rule and load the employee, this
module only decides the label. Thresholds are whole minutes and a usable rule
keeps ``absent_threshold_minutes`` above ``late_grace_minutes``; that is
enforced where rules are written, not here.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any

from app.models import TERMINAL_EMPLOYEE_STATUSES, EmployeeStatus, WorkLocation


class StatusLabel(str, enum.Enum):
    UNATTENDED = "unattended"
    PRESENT = "present"
    LATE = "late"
    ABSENT = "absent"
    LEAVE = "leave"
    WFH = "wfh"
    WORKSITE = "worksite"
    PROSPECTIVE = "prospective"
    INACTIVE = "inactive"
    CHECKED_OUT = "checked_out"
    EARLY_LEAVE = "early_leave"
    AUTO_CHECKOUT = "auto_checkout"


class StatusCategory(str, enum.Enum):
    UNATTENDED = "unattended"
    PRESENT = "present"
    LATE = "late"
    ABSENT = "absent"
    LEAVE = "leave"
    CHECKED_OUT = "checked_out"
    OFFSITE = "offsite"


STATUS_CATEGORY: dict[StatusLabel, StatusCategory] = {
    StatusLabel.UNATTENDED: StatusCategory.UNATTENDED,
    StatusLabel.PROSPECTIVE: StatusCategory.UNATTENDED,
    StatusLabel.INACTIVE: StatusCategory.UNATTENDED,
    StatusLabel.PRESENT: StatusCategory.PRESENT,
    StatusLabel.LATE: StatusCategory.LATE,
    StatusLabel.ABSENT: StatusCategory.ABSENT,
    StatusLabel.LEAVE: StatusCategory.LEAVE,
    StatusLabel.WFH: StatusCategory.OFFSITE,
    StatusLabel.WORKSITE: StatusCategory.OFFSITE,
    StatusLabel.CHECKED_OUT: StatusCategory.CHECKED_OUT,
    StatusLabel.EARLY_LEAVE: StatusCategory.CHECKED_OUT,
    StatusLabel.AUTO_CHECKOUT: StatusCategory.CHECKED_OUT,
}

# Categories an employee is "on the clock" in: eligible for checkout.
CHECKED_IN_CATEGORIES = frozenset({StatusCategory.PRESENT, StatusCategory.LATE, StatusCategory.OFFSITE})
EXCEPTION_CATEGORIES = frozenset({StatusCategory.LATE, StatusCategory.ABSENT})


def category_for(status: str | StatusLabel | None) -> StatusCategory:
    """Map a stored label to its category; unknown labels count as unattended."""
    if status is None:
        return StatusCategory.UNATTENDED
    try:
        label = StatusLabel(status)
    except ValueError:
        return StatusCategory.UNATTENDED
    return STATUS_CATEGORY[label]


@dataclass(frozen=True, slots=True)
class RuleThresholds:
    standard_check_in: time
    late_grace_minutes: int
    absent_threshold_minutes: int
    standard_check_out: time = time(18, 0)

    @classmethod
    def from_rule(cls, rule: Any) -> RuleThresholds:
        return cls(
            standard_check_in=rule.standard_check_in,
            late_grace_minutes=int(rule.late_grace_minutes),
            absent_threshold_minutes=int(rule.absent_threshold_minutes),
            standard_check_out=rule.standard_check_out or time(18, 0),
        )


@dataclass(frozen=True, slots=True)
class EmployeeSnapshot:
    status: EmployeeStatus
    work_location: WorkLocation = WorkLocation.OFFICE
    hire_date: date | None = None
    leave_start_date: date | None = None
    leave_end_date: date | None = None
    location_start_date: date | None = None
    location_end_date: date | None = None

    @classmethod
    def from_employee(cls, employee: Any) -> EmployeeSnapshot:
        return cls(
            status=EmployeeStatus(employee.status),
            work_location=WorkLocation(employee.work_location or WorkLocation.OFFICE),
            hire_date=employee.hire_date,
            leave_start_date=employee.leave_start_date,
            leave_end_date=employee.leave_end_date,
            location_start_date=employee.location_start_date,
            location_end_date=employee.location_end_date,
        )


def _localize(value: datetime, tz: tzinfo | None) -> datetime:
    if tz is None or value.tzinfo is None:
        return value
    return value.astimezone(tz)


def within_window(day: date, start: date | None, end: date | None) -> bool:
    """Closed date window; a missing bound is open on that side."""
    if start is not None and day < start:
        return False
    if end is not None and day > end:
        return False
    return True


def compute_status(
    check_in_time: datetime | None,
    rule: RuleThresholds | Any,
    employee: EmployeeSnapshot,
    now: datetime,
    *,
    tz: tzinfo | None = None,
) -> StatusLabel:
    """Classify a day's check-in (or its absence) for one employee.

    Aware datetimes are converted to ``tz`` before any calendar comparison;
    naive datetimes are taken as already local. Checks run in a fixed order
    and the first match wins: prospective, leave, terminal, then the time
    windows measured from the rule's standard check-in.
    """
    local_now = _localize(now, tz)
    today = local_now.date()

    effective_status = employee.status
    if employee.status == EmployeeStatus.PROSPECTIVE:
        if employee.hire_date is not None and today >= employee.hire_date:
            effective_status = EmployeeStatus.ACTIVE
        else:
            return StatusLabel.PROSPECTIVE

    if effective_status == EmployeeStatus.ON_LEAVE and within_window(
        today, employee.leave_start_date, employee.leave_end_date
    ):
        return StatusLabel.LEAVE

    # Uses the stored status, never the prospective override.
    if employee.status in TERMINAL_EMPLOYEE_STATUSES:
        return StatusLabel.INACTIVE

    base_status = StatusLabel.PRESENT
    if employee.work_location != WorkLocation.OFFICE and within_window(
        today, employee.location_start_date, employee.location_end_date
    ):
        base_status = StatusLabel.WFH if employee.work_location == WorkLocation.REMOTE else StatusLabel.WORKSITE

    if check_in_time is None:
        return StatusLabel.ABSENT

    local_check_in = _localize(check_in_time, tz)
    deadline = datetime.combine(today, rule.standard_check_in, tzinfo=local_now.tzinfo)
    grace_deadline = deadline + timedelta(minutes=rule.late_grace_minutes)
    if local_check_in <= grace_deadline:
        return base_status

    absent_deadline = deadline + timedelta(minutes=rule.absent_threshold_minutes)
    if local_check_in > absent_deadline:
        return StatusLabel.ABSENT

    return StatusLabel.LATE


def compute_checkout_status(checkout_time: datetime, rule: RuleThresholds | Any, *, tz: tzinfo | None = None) -> StatusLabel:
    local_checkout = _localize(checkout_time, tz)
    if local_checkout.time() < rule.standard_check_out:
        return StatusLabel.EARLY_LEAVE
    return StatusLabel.CHECKED_OUT
