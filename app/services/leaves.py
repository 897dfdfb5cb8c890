from __future__ import annotations

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from app.audit import Operator, commit_with_audit, model_snapshot
from app.errors import ApiError, NotFoundError, ValidationError
from app.models import Employee, LeaveRequest, LeaveStatus
from app.schemas import LeaveRequestCreate

PROCESSED_STATUSES = (LeaveStatus.APPROVED, LeaveStatus.REJECTED)


def create_request(db: Session, employee_id: int, payload: LeaveRequestCreate) -> LeaveRequest:
    employee = db.get(Employee, employee_id)
    if employee is None or employee.is_deleted:
        raise NotFoundError("employee", employee_id)

    if payload.end_date < payload.start_date:
        raise ValidationError("end_date must be greater than or equal to start_date.")

    leave = LeaveRequest(
        employee_id=employee_id,
        type=payload.type,
        start_date=payload.start_date,
        end_date=payload.end_date,
        reason=payload.reason,
        status=LeaveStatus.PENDING,
    )
    db.add(leave)
    db.commit()
    db.refresh(leave)
    return leave


def list_for_employee(db: Session, employee_id: int) -> list[LeaveRequest]:
    stmt = (
        select(LeaveRequest)
        .where(LeaveRequest.employee_id == employee_id)
        .order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc())
    )
    return list(db.scalars(stmt).all())


def list_pending(db: Session) -> list[LeaveRequest]:
    stmt = (
        select(LeaveRequest)
        .options(selectinload(LeaveRequest.employee))
        .where(LeaveRequest.status == LeaveStatus.PENDING)
        .order_by(LeaveRequest.created_at.asc(), LeaveRequest.id.asc())
    )
    return list(db.scalars(stmt).all())


def list_processed(db: Session) -> list[LeaveRequest]:
    stmt = (
        select(LeaveRequest)
        .options(selectinload(LeaveRequest.employee))
        .where(LeaveRequest.status.in_(PROCESSED_STATUSES))
        .order_by(LeaveRequest.updated_at.desc(), LeaveRequest.id.desc())
    )
    return list(db.scalars(stmt).all())


def pending_count(db: Session) -> int:
    stmt = select(func.count(LeaveRequest.id)).where(LeaveRequest.status == LeaveStatus.PENDING)
    return int(db.scalar(stmt) or 0)


def unread_count(db: Session, employee_id: int) -> int:
    stmt = select(func.count(LeaveRequest.id)).where(
        LeaveRequest.employee_id == employee_id,
        LeaveRequest.status.in_(PROCESSED_STATUSES),
        LeaveRequest.is_read_by_employee.is_(False),
    )
    return int(db.scalar(stmt) or 0)


def mark_read(db: Session, employee_id: int) -> int:
    """Mark every decided request of the employee as seen; returns how many changed."""
    result = db.execute(
        update(LeaveRequest)
        .where(
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.status.in_(PROCESSED_STATUSES),
            LeaveRequest.is_read_by_employee.is_(False),
        )
        .values(is_read_by_employee=True)
        .execution_options(synchronize_session="fetch")
    )
    db.commit()
    return int(result.rowcount or 0)


def update_status(db: Session, leave_id: int, status: LeaveStatus, *, operator: Operator) -> LeaveRequest:
    if status not in PROCESSED_STATUSES:
        raise ValidationError("Leave requests can only be approved or rejected.")

    leave = db.get(LeaveRequest, leave_id)
    if leave is None:
        raise NotFoundError("leave_request", leave_id)
    if leave.status != LeaveStatus.PENDING:
        raise ApiError(status_code=409, code="LEAVE_ALREADY_PROCESSED", message="Leave request is already processed.")

    before = model_snapshot(leave)
    leave.status = status
    leave.approved_by = operator.user_id
    leave.is_read_by_employee = False
    db.flush()

    commit_with_audit(
        db,
        operator,
        action="LEAVE_APPROVED" if status == LeaveStatus.APPROVED else "LEAVE_REJECTED",
        target_type="leave_request",
        target_id=leave.id,
        before=before,
        after=model_snapshot(leave),
    )
    db.refresh(leave)
    return leave
