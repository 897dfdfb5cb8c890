from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.audit import Operator, commit_with_audit, model_snapshot
from app.errors import ApiError, ConfigurationError, NotFoundError, ValidationError
from app.models import AttendanceRule, Department, Employee
from app.schemas import AttendanceRuleCreate, AttendanceRuleUpdate

logger = logging.getLogger("app.rules")


def get_default_rule(db: Session) -> AttendanceRule:
    rule = db.scalar(
        select(AttendanceRule).where(AttendanceRule.is_default.is_(True)).order_by(AttendanceRule.id.asc())
    )
    if rule is None:
        logger.critical("attendance_default_rule_missing")
        raise ConfigurationError("No default attendance rule is configured.")
    return rule


def _non_default(rule: AttendanceRule | None) -> AttendanceRule | None:
    if rule is None or rule.is_default:
        return None
    return rule


def resolve_rule_for_employee(db: Session, employee: Employee) -> AttendanceRule:
    """Personal rule, then department rule, then the global default."""
    personal = _non_default(employee.attendance_rule)
    if personal is not None:
        return personal

    department = employee.department
    if department is not None:
        departmental = _non_default(department.attendance_rule)
        if departmental is not None:
            return departmental

    return get_default_rule(db)


def resolve(db: Session, employee_id: int) -> AttendanceRule:
    employee = db.get(Employee, employee_id)
    if employee is None or employee.is_deleted:
        raise NotFoundError("employee", employee_id)
    return resolve_rule_for_employee(db, employee)


def get_rule(db: Session, rule_id: int) -> AttendanceRule:
    rule = db.get(AttendanceRule, rule_id)
    if rule is None:
        raise NotFoundError("attendance_rule", rule_id)
    return rule


def list_rules(db: Session) -> list[AttendanceRule]:
    return list(db.scalars(select(AttendanceRule).order_by(AttendanceRule.id.asc())).all())


def _check_thresholds(late_grace_minutes: int, absent_threshold_minutes: int) -> None:
    if late_grace_minutes < 0 or absent_threshold_minutes < 0:
        raise ValidationError("Rule thresholds must be non-negative.")
    if absent_threshold_minutes <= late_grace_minutes:
        raise ValidationError("absent_threshold_minutes must exceed late_grace_minutes.")


def _clear_current_default(db: Session, *, keep_rule_id: int | None) -> None:
    stmt = select(AttendanceRule).where(AttendanceRule.is_default.is_(True))
    for current in db.scalars(stmt).all():
        if current.id != keep_rule_id:
            current.is_default = False
    # The single-default index is checked per statement.
    db.flush()


def create_rule(db: Session, payload: AttendanceRuleCreate, *, operator: Operator) -> AttendanceRule:
    _check_thresholds(payload.late_grace_minutes, payload.absent_threshold_minutes)
    if payload.is_default:
        _clear_current_default(db, keep_rule_id=None)

    rule = AttendanceRule(
        name=payload.name.strip(),
        standard_check_in=payload.standard_check_in,
        standard_check_out=payload.standard_check_out,
        late_grace_minutes=payload.late_grace_minutes,
        absent_threshold_minutes=payload.absent_threshold_minutes,
        is_default=payload.is_default,
    )
    db.add(rule)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ApiError(status_code=409, code="RULE_NAME_TAKEN", message="Attendance rule name already exists.")

    commit_with_audit(
        db,
        operator,
        action="RULE_CREATED",
        target_type="attendance_rule",
        target_id=rule.id,
        after=model_snapshot(rule),
    )
    db.refresh(rule)
    return rule


def update_rule(db: Session, rule_id: int, payload: AttendanceRuleUpdate, *, operator: Operator) -> AttendanceRule:
    rule = get_rule(db, rule_id)
    _check_thresholds(payload.late_grace_minutes, payload.absent_threshold_minutes)
    before = model_snapshot(rule)

    rule.name = payload.name.strip()
    rule.standard_check_in = payload.standard_check_in
    rule.standard_check_out = payload.standard_check_out
    rule.late_grace_minutes = payload.late_grace_minutes
    rule.absent_threshold_minutes = payload.absent_threshold_minutes
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ApiError(status_code=409, code="RULE_NAME_TAKEN", message="Attendance rule name already exists.")

    commit_with_audit(
        db,
        operator,
        action="RULE_UPDATED",
        target_type="attendance_rule",
        target_id=rule.id,
        before=before,
        after=model_snapshot(rule),
    )
    db.refresh(rule)
    return rule


def set_default_rule(db: Session, rule_id: int, *, operator: Operator) -> AttendanceRule:
    rule = get_rule(db, rule_id)
    if rule.is_default:
        return rule

    before = model_snapshot(rule)
    _clear_current_default(db, keep_rule_id=rule.id)
    rule.is_default = True
    db.flush()
    commit_with_audit(
        db,
        operator,
        action="RULE_SET_DEFAULT",
        target_type="attendance_rule",
        target_id=rule.id,
        before=before,
        after=model_snapshot(rule),
    )
    db.refresh(rule)
    return rule


def delete_rule(db: Session, rule_id: int, *, operator: Operator) -> None:
    rule = get_rule(db, rule_id)
    if rule.is_default:
        raise ValidationError("The default attendance rule cannot be deleted.", code="DEFAULT_RULE_REQUIRED")

    assigned_employees = (
        db.scalar(
            select(func.count(Employee.id)).where(
                Employee.attendance_rule_id == rule.id,
                Employee.deleted_at.is_(None),
            )
        )
        or 0
    )
    assigned_departments = (
        db.scalar(select(func.count(Department.id)).where(Department.attendance_rule_id == rule.id)) or 0
    )
    if assigned_employees or assigned_departments:
        raise ApiError(
            status_code=409,
            code="RULE_IN_USE",
            message=(
                f"Attendance rule is assigned to {assigned_employees} employee(s) and "
                f"{assigned_departments} department(s); clear those assignments first."
            ),
        )

    # Tombstoned employees cannot be reassigned through the API; clear them here, one audit entry each.
    tombstoned = db.scalars(
        select(Employee).where(Employee.attendance_rule_id == rule.id, Employee.deleted_at.is_not(None))
    ).all()
    for employee in tombstoned:
        employee_before = model_snapshot(employee)
        employee.attendance_rule_id = None
        db.flush()
        commit_with_audit(
            db,
            operator,
            action="EMPLOYEE_RULE_ASSIGNED",
            target_type="employee",
            target_id=employee.id,
            before=employee_before,
            after=model_snapshot(employee),
            reason=f"Attendance rule {rule_id} deleted",
        )

    before = model_snapshot(rule)
    db.delete(rule)
    commit_with_audit(
        db,
        operator,
        action="RULE_DELETED",
        target_type="attendance_rule",
        target_id=rule_id,
        before=before,
    )


def assign_rule_to_employee(
    db: Session,
    employee_id: int,
    rule_id: int | None,
    *,
    operator: Operator,
    reason: str | None = None,
) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None or employee.is_deleted:
        raise NotFoundError("employee", employee_id)
    if rule_id is not None:
        get_rule(db, rule_id)

    before = model_snapshot(employee)
    employee.attendance_rule_id = rule_id
    db.flush()
    commit_with_audit(
        db,
        operator,
        action="EMPLOYEE_RULE_ASSIGNED",
        target_type="employee",
        target_id=employee.id,
        before=before,
        after=model_snapshot(employee),
        reason=reason,
    )
    db.refresh(employee)
    return employee


def assign_rule_to_department(
    db: Session,
    department_id: int,
    rule_id: int | None,
    *,
    operator: Operator,
    reason: str | None = None,
) -> Department:
    department = db.get(Department, department_id)
    if department is None:
        raise NotFoundError("department", department_id)
    if rule_id is not None:
        get_rule(db, rule_id)

    before = model_snapshot(department)
    department.attendance_rule_id = rule_id
    db.flush()
    commit_with_audit(
        db,
        operator,
        action="DEPARTMENT_RULE_ASSIGNED",
        target_type="department",
        target_id=department.id,
        before=before,
        after=model_snapshot(department),
        reason=reason,
    )
    db.refresh(department)
    return department
