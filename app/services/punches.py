from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo

from sqlalchemy.orm import Session

from app.errors import ApiError, NotFoundError
from app.models import AttendanceRecord, Employee
from app.settings import get_attendance_timezone
from app.services import ledger
from app.services.rules import resolve_rule_for_employee
from app.services.status_engine import (
    CHECKED_IN_CATEGORIES,
    EmployeeSnapshot,
    RuleThresholds,
    StatusCategory,
    StatusLabel,
    category_for,
    compute_checkout_status,
    compute_status,
)

logger = logging.getLogger("app.punches")

PUNCH_CHECK_IN = "CHECK_IN"
PUNCH_CHECK_OUT = "CHECK_OUT"

_NOT_ON_DUTY_LABELS = frozenset({StatusLabel.PROSPECTIVE, StatusLabel.INACTIVE, StatusLabel.LEAVE})


@dataclass(frozen=True, slots=True)
class PunchResult:
    action: str
    record: AttendanceRecord


def _reject(message: str) -> ApiError:
    return ApiError(status_code=409, code="PUNCH_NOT_ALLOWED", message=message)


def punch(
    db: Session,
    employee_id: int,
    recorder: str,
    *,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> PunchResult:
    """Check an employee in or out depending on where their day stands.

    The employee id and recorder come already resolved from the caller
    (self-service session or a scanning terminal).
    """
    zone = tz or get_attendance_timezone()
    punched_at = ledger.as_utc(now) if now is not None else datetime.now(timezone.utc)
    today = punched_at.astimezone(zone).date()

    employee = db.get(Employee, employee_id)
    if employee is None or employee.is_deleted:
        raise NotFoundError("employee", employee_id)

    rule = RuleThresholds.from_rule(resolve_rule_for_employee(db, employee))
    current = ledger.latest(db, employee.id, today, tz=zone)
    category = category_for(current.status if current is not None else None)

    if category == StatusCategory.UNATTENDED:
        label = compute_status(punched_at, rule, EmployeeSnapshot.from_employee(employee), punched_at, tz=zone)
        if label in _NOT_ON_DUTY_LABELS:
            raise _reject(f"Employee cannot check in while {label.value}.")
        record = ledger.append(db, employee.id, label, recorder, punched_at)
        action = PUNCH_CHECK_IN
    elif category in CHECKED_IN_CATEGORIES:
        label = compute_checkout_status(punched_at, rule, tz=zone)
        record = ledger.append(db, employee.id, label, recorder, punched_at)
        action = PUNCH_CHECK_OUT
    elif category == StatusCategory.CHECKED_OUT:
        raise _reject("Employee has already checked out today.")
    else:
        raise _reject(f"Employee is recorded as {current.status} today.")

    logger.info(
        "attendance_punch",
        extra={
            "employee_id": employee.id,
            "action": action,
            "status": record.status,
            "recorder": recorder,
            "record_id": record.id,
        },
    )
    return PunchResult(action=action, record=record)
