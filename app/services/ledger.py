from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.audit import SYSTEM_OPERATOR, Operator, commit_with_audit, model_snapshot
from app.errors import NotFoundError, ValidationError
from app.models import TERMINAL_EMPLOYEE_STATUSES, AttendanceRecord, Employee
from app.settings import get_attendance_timezone
from app.services.status_engine import (
    EXCEPTION_CATEGORIES,
    StatusCategory,
    StatusLabel,
    category_for,
)

logger = logging.getLogger("app.ledger")

ALL_CATEGORIES = "all"


@dataclass(frozen=True, slots=True)
class EmployeeRecordView:
    employee_id: int
    employee_no: str
    full_name: str
    department_id: int | None
    record_id: int | None
    status: str
    category: StatusCategory
    record_time: datetime | None
    recorder: str
    reason: str | None = None

    @property
    def is_synthetic(self) -> bool:
        return self.record_id is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "employee_id": self.employee_id,
            "employee_no": self.employee_no,
            "full_name": self.full_name,
            "department_id": self.department_id,
            "record_id": self.record_id,
            "status": self.status,
            "category": self.category,
            "record_time": self.record_time,
            "recorder": self.recorder,
            "reason": self.reason,
        }


def as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _tz(tz: tzinfo | None) -> tzinfo:
    return tz or get_attendance_timezone()


def local_day_bounds_utc(day: date, tz: tzinfo | None = None) -> tuple[datetime, datetime]:
    zone = _tz(tz)
    local_start = datetime.combine(day, time.min, tzinfo=zone)
    local_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)
    return local_start.astimezone(timezone.utc), local_end.astimezone(timezone.utc)


def local_date_of(ts: datetime, tz: tzinfo | None = None) -> date:
    return as_utc(ts).astimezone(_tz(tz)).date()


def normalize_record_time(value: datetime | None, tz: tzinfo | None = None) -> datetime:
    """UTC instant for a record; naive input is read as organization-local time."""
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=_tz(tz)).astimezone(timezone.utc)
    return value.astimezone(timezone.utc)


def record_to_dict(record: AttendanceRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "employee_id": record.employee_id,
        "status": record.status,
        "category": category_for(record.status),
        "record_time": as_utc(record.record_time),
        "recorder": record.recorder,
        "reason": record.reason,
        "corrects_record_id": record.corrects_record_id,
    }


def _load_live_employee(db: Session, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None or employee.is_deleted:
        raise NotFoundError("employee", employee_id)
    return employee


def append(
    db: Session,
    employee_id: int,
    status: str | StatusLabel,
    recorder: str,
    record_time: datetime | None = None,
    reason: str | None = None,
    *,
    corrects_record_id: int | None = None,
    commit: bool = True,
) -> AttendanceRecord:
    """Insert a new ledger entry; existing entries are never touched."""
    _load_live_employee(db, employee_id)
    label = status.value if isinstance(status, StatusLabel) else str(status).strip()
    if not label:
        raise ValidationError("Attendance status must not be empty.")

    record = AttendanceRecord(
        employee_id=employee_id,
        status=label,
        record_time=normalize_record_time(record_time),
        recorder=recorder,
        reason=reason,
        corrects_record_id=corrects_record_id,
    )
    db.add(record)
    db.flush()
    if commit:
        db.commit()
        db.refresh(record)
    return record


def latest(db: Session, employee_id: int, day: date, *, tz: tzinfo | None = None) -> AttendanceRecord | None:
    start_utc, end_utc = local_day_bounds_utc(day, tz)
    return db.scalar(
        select(AttendanceRecord)
        .where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.record_time >= start_utc,
            AttendanceRecord.record_time < end_utc,
        )
        .order_by(AttendanceRecord.record_time.desc(), AttendanceRecord.id.desc())
        .limit(1)
    )


def current_status(db: Session, employee_id: int, day: date, *, tz: tzinfo | None = None) -> str:
    record = latest(db, employee_id, day, tz=tz)
    return record.status if record is not None else StatusLabel.UNATTENDED.value


def history(
    db: Session,
    employee_id: int,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    tz: tzinfo | None = None,
) -> list[AttendanceRecord]:
    """Every ledger entry for an employee, newest first; soft-deleted employees included."""
    if db.get(Employee, employee_id) is None:
        raise NotFoundError("employee", employee_id)
    if start_date is not None and end_date is not None and end_date < start_date:
        raise ValidationError("end_date must be greater than or equal to start_date.")

    stmt = select(AttendanceRecord).where(AttendanceRecord.employee_id == employee_id)
    if start_date is not None:
        stmt = stmt.where(AttendanceRecord.record_time >= local_day_bounds_utc(start_date, tz)[0])
    if end_date is not None:
        stmt = stmt.where(AttendanceRecord.record_time < local_day_bounds_utc(end_date, tz)[1])
    stmt = stmt.order_by(AttendanceRecord.record_time.desc(), AttendanceRecord.id.desc())
    return list(db.scalars(stmt).all())


def list_snapshot_employees(
    db: Session,
    *,
    include_inactive: bool = False,
    department_id: int | None = None,
) -> list[Employee]:
    stmt = select(Employee).where(Employee.deleted_at.is_(None)).order_by(Employee.employee_no.asc())
    if not include_inactive:
        stmt = stmt.where(Employee.status.not_in(list(TERMINAL_EMPLOYEE_STATUSES)))
    if department_id is not None:
        stmt = stmt.where(Employee.department_id == department_id)
    return list(db.scalars(stmt).all())


def _latest_by_employee(
    db: Session,
    employee_ids: list[int],
    day: date,
    tz: tzinfo | None,
) -> dict[int, AttendanceRecord]:
    if not employee_ids:
        return {}
    start_utc, end_utc = local_day_bounds_utc(day, tz)
    rows = db.scalars(
        select(AttendanceRecord)
        .where(
            AttendanceRecord.employee_id.in_(employee_ids),
            AttendanceRecord.record_time >= start_utc,
            AttendanceRecord.record_time < end_utc,
        )
        .order_by(
            AttendanceRecord.employee_id.asc(),
            AttendanceRecord.record_time.desc(),
            AttendanceRecord.id.desc(),
        )
    ).all()
    newest: dict[int, AttendanceRecord] = {}
    for row in rows:
        newest.setdefault(row.employee_id, row)
    return newest


def _view_for(employee: Employee, record: AttendanceRecord | None) -> EmployeeRecordView:
    if record is None:
        return EmployeeRecordView(
            employee_id=employee.id,
            employee_no=employee.employee_no,
            full_name=employee.full_name,
            department_id=employee.department_id,
            record_id=None,
            status=StatusLabel.UNATTENDED.value,
            category=StatusCategory.UNATTENDED,
            record_time=None,
            recorder=SYSTEM_OPERATOR,
        )
    return EmployeeRecordView(
        employee_id=employee.id,
        employee_no=employee.employee_no,
        full_name=employee.full_name,
        department_id=employee.department_id,
        record_id=record.id,
        status=record.status,
        category=category_for(record.status),
        record_time=as_utc(record.record_time),
        recorder=record.recorder,
        reason=record.reason,
    )


def employee_view(db: Session, employee_id: int, day: date, *, tz: tzinfo | None = None) -> EmployeeRecordView:
    employee = _load_live_employee(db, employee_id)
    return _view_for(employee, latest(db, employee_id, day, tz=tz))


def _parse_filter(category_filter: str | StatusCategory | None) -> StatusCategory | None:
    if category_filter is None or category_filter == ALL_CATEGORIES:
        return None
    try:
        return StatusCategory(category_filter)
    except ValueError as exc:
        raise ValidationError(f"Unknown status category: {category_filter}") from exc


def daily_snapshot(
    db: Session,
    day: date,
    category_filter: str | StatusCategory | None = ALL_CATEGORIES,
    *,
    include_inactive: bool = False,
    department_id: int | None = None,
    categories: frozenset[StatusCategory] | None = None,
    tz: tzinfo | None = None,
) -> list[EmployeeRecordView]:
    """Latest status per employee for ``day``, ordered by employee number.

    Employees with no entry that day get a synthetic ``unattended`` view with
    no record id and no timestamp.
    """
    wanted = _parse_filter(category_filter)
    employees = list_snapshot_employees(db, include_inactive=include_inactive, department_id=department_id)
    newest = _latest_by_employee(db, [item.id for item in employees], day, tz)

    views: list[EmployeeRecordView] = []
    for employee in employees:
        view = _view_for(employee, newest.get(employee.id))
        if wanted is not None and view.category != wanted:
            continue
        if categories is not None and view.category not in categories:
            continue
        views.append(view)
    return views


def exception_list(db: Session, day: date, *, tz: tzinfo | None = None) -> list[EmployeeRecordView]:
    return daily_snapshot(db, day, categories=EXCEPTION_CATEGORIES, tz=tz)


def dashboard_counts(db: Session, day: date, *, tz: tzinfo | None = None) -> dict[str, Any]:
    views = daily_snapshot(db, day, tz=tz)
    tally = Counter(view.category for view in views)
    counts = {category.value: tally.get(category, 0) for category in StatusCategory}
    return {
        "date": day,
        "total_employees": len(views),
        "counts": counts,
        "exceptions": sum(tally.get(category, 0) for category in EXCEPTION_CATEGORIES),
    }


def export_rows(db: Session, day: date, *, tz: tzinfo | None = None) -> list[dict[str, Any]]:
    """Flat, string-friendly rows of the daily snapshot for file exports."""
    zone = _tz(tz)
    rows: list[dict[str, Any]] = []
    for view in daily_snapshot(db, day, tz=tz):
        local_time = view.record_time.astimezone(zone) if view.record_time is not None else None
        rows.append(
            {
                "date": day.isoformat(),
                "employee_no": view.employee_no,
                "full_name": view.full_name,
                "department_id": view.department_id,
                "status": view.status,
                "category": view.category.value,
                "record_time": local_time.strftime("%H:%M:%S") if local_time is not None else "",
                "recorder": view.recorder,
                "reason": view.reason or "",
            }
        )
    return rows


def create_manual_record(
    db: Session,
    *,
    employee_id: int,
    status: str | StatusLabel,
    reason: str,
    operator: Operator,
    record_time: datetime | None = None,
    tz: tzinfo | None = None,
) -> AttendanceRecord:
    if not (reason or "").strip():
        raise ValidationError("A reason is required for manual attendance entries.", code="REASON_REQUIRED")

    record = append(
        db,
        employee_id,
        status,
        operator.user_id,
        normalize_record_time(record_time, tz),
        reason.strip(),
        commit=False,
    )
    commit_with_audit(
        db,
        operator,
        action="CREATE",
        target_type="attendance_record",
        target_id=record.id,
        after={"employee": model_snapshot(db.get(Employee, employee_id)), "record": model_snapshot(record)},
        reason=reason.strip(),
    )
    db.refresh(record)
    return record


def update(
    db: Session,
    record_id: int,
    new_status: str | StatusLabel,
    *,
    operator: Operator,
    reason: str,
) -> AttendanceRecord:
    """Manual correction, stored as a new entry at the corrected entry's time.

    The correction shares ``record_time`` with the original and is inserted
    later, so the tie-break makes it win in ``latest`` while history keeps both.
    """
    if not (reason or "").strip():
        raise ValidationError("A reason is required to correct an attendance record.", code="REASON_REQUIRED")

    original = db.get(AttendanceRecord, record_id)
    if original is None:
        raise NotFoundError("attendance_record", record_id)
    employee = db.get(Employee, original.employee_id)
    if employee is None:
        raise NotFoundError("employee", original.employee_id)

    before = {"employee": model_snapshot(employee), "record": model_snapshot(original)}
    correction = append(
        db,
        original.employee_id,
        new_status,
        operator.user_id,
        as_utc(original.record_time),
        reason.strip(),
        corrects_record_id=original.id,
        commit=False,
    )
    after = {"employee": model_snapshot(employee), "record": model_snapshot(correction)}
    commit_with_audit(
        db,
        operator,
        action="UPDATE",
        target_type="attendance_record",
        target_id=record_id,
        before=before,
        after=after,
        reason=reason.strip(),
    )
    logger.info(
        "attendance_record_corrected",
        extra={
            "record_id": record_id,
            "correction_id": correction.id,
            "employee_id": original.employee_id,
            "from_status": before["record"]["status"],
            "to_status": after["record"]["status"],
            "operated_by": operator.user_id,
        },
    )
    db.refresh(correction)
    return correction


def delete(db: Session, record_id: int, *, operator: Operator) -> bool:
    record = db.get(AttendanceRecord, record_id)
    if record is None:
        return False

    employee = db.get(Employee, record.employee_id)
    before = {"employee": model_snapshot(employee), "record": model_snapshot(record)}
    db.delete(record)
    commit_with_audit(
        db,
        operator,
        action="DELETE",
        target_type="attendance_record",
        target_id=record_id,
        before=before,
    )
    return True
