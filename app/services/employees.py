from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.audit import Operator, commit_with_audit, model_snapshot
from app.errors import ApiError, NotFoundError, ValidationError
from app.models import Department, Employee, EmployeeStatus
from app.schemas import DepartmentCreate, DepartmentUpdate, EmployeeCreate, EmployeeUpdate

logger = logging.getLogger("app.employees")

_UPDATABLE_EMPLOYEE_FIELDS = (
    "employee_no",
    "full_name",
    "department_id",
    "status",
    "work_location",
    "location_start_date",
    "location_end_date",
    "leave_start_date",
    "leave_end_date",
    "hire_date",
)
_NON_NULLABLE_FIELDS = frozenset({"employee_no", "full_name", "status", "work_location"})


def _employee_no_taken() -> ApiError:
    return ApiError(status_code=409, code="EMPLOYEE_NO_TAKEN", message="Employee number already exists.")


def get_employee(db: Session, employee_id: int, *, include_deleted: bool = False) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None or (employee.is_deleted and not include_deleted):
        raise NotFoundError("employee", employee_id)
    return employee


def _ensure_department(db: Session, department_id: int | None) -> None:
    if department_id is not None and db.get(Department, department_id) is None:
        raise NotFoundError("department", department_id)


def _ensure_employee_no_free(db: Session, employee_no: str, *, exclude_id: int | None = None) -> None:
    # Soft-deleted employees keep their number.
    stmt = select(Employee.id).where(Employee.employee_no == employee_no)
    if exclude_id is not None:
        stmt = stmt.where(Employee.id != exclude_id)
    if db.scalar(stmt) is not None:
        raise _employee_no_taken()


def _check_windows(employee: Employee) -> None:
    for label, start, end in (
        ("location", employee.location_start_date, employee.location_end_date),
        ("leave", employee.leave_start_date, employee.leave_end_date),
    ):
        if start is not None and end is not None and end < start:
            raise ValidationError(f"{label}_end_date must be greater than or equal to {label}_start_date.")


def list_employees(
    db: Session,
    *,
    department_id: int | None = None,
    status: EmployeeStatus | None = None,
    search: str | None = None,
) -> list[Employee]:
    stmt = select(Employee).where(Employee.deleted_at.is_(None)).order_by(Employee.employee_no.asc())
    if department_id is not None:
        stmt = stmt.where(Employee.department_id == department_id)
    if status is not None:
        stmt = stmt.where(Employee.status == status)
    term = (search or "").strip()
    if term:
        pattern = f"%{term}%"
        stmt = stmt.where(or_(Employee.full_name.ilike(pattern), Employee.employee_no.ilike(pattern)))
    return list(db.scalars(stmt).all())


def create_employee(db: Session, payload: EmployeeCreate, *, operator: Operator) -> Employee:
    employee_no = payload.employee_no.strip()
    _ensure_employee_no_free(db, employee_no)
    _ensure_department(db, payload.department_id)

    employee = Employee(
        employee_no=employee_no,
        full_name=payload.full_name.strip(),
        department_id=payload.department_id,
        status=payload.status,
        work_location=payload.work_location,
        location_start_date=payload.location_start_date,
        location_end_date=payload.location_end_date,
        leave_start_date=payload.leave_start_date,
        leave_end_date=payload.leave_end_date,
        hire_date=payload.hire_date,
    )
    db.add(employee)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise _employee_no_taken()

    commit_with_audit(
        db,
        operator,
        action="CREATE_EMPLOYEE",
        target_type="employee",
        target_id=employee.id,
        after=model_snapshot(employee),
    )
    db.refresh(employee)
    return employee


def update_employee(db: Session, employee_id: int, payload: EmployeeUpdate, *, operator: Operator) -> Employee:
    employee = get_employee(db, employee_id)
    changes = {
        name: getattr(payload, name)
        for name in _UPDATABLE_EMPLOYEE_FIELDS
        if name in payload.model_fields_set
    }
    for name in _NON_NULLABLE_FIELDS:
        if name in changes and changes[name] is None:
            raise ValidationError(f"{name} must not be null.")

    if "employee_no" in changes:
        changes["employee_no"] = changes["employee_no"].strip()
        _ensure_employee_no_free(db, changes["employee_no"], exclude_id=employee.id)
    if "full_name" in changes:
        changes["full_name"] = changes["full_name"].strip()
    if "department_id" in changes:
        _ensure_department(db, changes["department_id"])

    before = model_snapshot(employee)
    for name, value in changes.items():
        setattr(employee, name, value)
    _check_windows(employee)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise _employee_no_taken()

    commit_with_audit(
        db,
        operator,
        action="UPDATE_EMPLOYEE",
        target_type="employee",
        target_id=employee.id,
        before=before,
        after=model_snapshot(employee),
        reason=payload.reason,
    )
    db.refresh(employee)
    return employee


def soft_delete_employee(
    db: Session,
    employee_id: int,
    *,
    operator: Operator,
    reason: str | None = None,
) -> Employee:
    employee = get_employee(db, employee_id)
    before = model_snapshot(employee)
    employee.deleted_at = datetime.now(timezone.utc)
    db.flush()

    commit_with_audit(
        db,
        operator,
        action="DELETE_EMPLOYEE",
        target_type="employee",
        target_id=employee.id,
        before=before,
        after=model_snapshot(employee),
        reason=reason,
    )
    logger.info("employee_soft_deleted", extra={"employee_id": employee.id, "operated_by": operator.user_id})
    db.refresh(employee)
    return employee


def list_departments(db: Session) -> list[Department]:
    return list(db.scalars(select(Department).order_by(Department.code.asc())).all())


def create_department(db: Session, payload: DepartmentCreate, *, operator: Operator) -> Department:
    department = Department(
        code=payload.code.strip(),
        name=payload.name.strip(),
        description=payload.description,
    )
    db.add(department)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ApiError(status_code=409, code="DEPARTMENT_CODE_TAKEN", message="Department code already exists.")

    commit_with_audit(
        db,
        operator,
        action="DEPARTMENT_CREATED",
        target_type="department",
        target_id=department.id,
        after=model_snapshot(department),
    )
    db.refresh(department)
    return department


def update_department(
    db: Session,
    department_id: int,
    payload: DepartmentUpdate,
    *,
    operator: Operator,
) -> Department:
    """Rename or re-describe a department; its code and members stay put."""
    department = db.get(Department, department_id)
    if department is None:
        raise NotFoundError("department", department_id)

    before = model_snapshot(department)
    department.name = payload.name.strip()
    if "description" in payload.model_fields_set:
        department.description = payload.description
    db.flush()

    commit_with_audit(
        db,
        operator,
        action="DEPARTMENT_UPDATED",
        target_type="department",
        target_id=department.id,
        before=before,
        after=model_snapshot(department),
    )
    db.refresh(department)
    return department
