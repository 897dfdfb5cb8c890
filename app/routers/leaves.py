from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.audit import Operator
from app.db import get_db
from app.schemas import (
    LeaveNotificationResponse,
    LeaveRequestCreate,
    LeaveRequestRead,
    LeaveStatusUpdateRequest,
)
from app.security import (
    MANAGEMENT_ROLES,
    ROLE_VIEWER,
    require_employee_operator,
    require_operator,
    require_roles,
)
from app.services import leaves as leave_service

router = APIRouter(prefix="/api/leaves", tags=["leaves"])


@router.post("", response_model=LeaveRequestRead, status_code=status.HTTP_201_CREATED)
def submit_leave_request(
    payload: LeaveRequestCreate,
    operator: Operator = Depends(require_employee_operator),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    leave = leave_service.create_request(db, int(operator.employee_id), payload)
    return LeaveRequestRead.model_validate(leave)


@router.get("/my", response_model=list[LeaveRequestRead])
def list_my_leave_requests(
    operator: Operator = Depends(require_employee_operator),
    db: Session = Depends(get_db),
) -> list[LeaveRequestRead]:
    return [LeaveRequestRead.model_validate(item) for item in leave_service.list_for_employee(db, int(operator.employee_id))]


@router.get("/notifications", response_model=LeaveNotificationResponse)
def leave_notifications(
    operator: Operator = Depends(require_operator),
    db: Session = Depends(get_db),
) -> LeaveNotificationResponse:
    if operator.role in MANAGEMENT_ROLES:
        return LeaveNotificationResponse(count=leave_service.pending_count(db))
    if operator.role == ROLE_VIEWER and operator.employee_id is not None:
        return LeaveNotificationResponse(count=leave_service.unread_count(db, operator.employee_id))
    return LeaveNotificationResponse(count=0)


@router.post("/mark-read", response_model=LeaveNotificationResponse)
def mark_leave_results_read(
    operator: Operator = Depends(require_employee_operator),
    db: Session = Depends(get_db),
) -> LeaveNotificationResponse:
    leave_service.mark_read(db, int(operator.employee_id))
    return LeaveNotificationResponse(count=leave_service.unread_count(db, int(operator.employee_id)))


@router.get(
    "/pending",
    response_model=list[LeaveRequestRead],
    dependencies=[Depends(require_roles(*MANAGEMENT_ROLES))],
)
def list_pending_leave_requests(db: Session = Depends(get_db)) -> list[LeaveRequestRead]:
    return [LeaveRequestRead.model_validate(item) for item in leave_service.list_pending(db)]


@router.get(
    "/history",
    response_model=list[LeaveRequestRead],
    dependencies=[Depends(require_roles(*MANAGEMENT_ROLES))],
)
def list_processed_leave_requests(db: Session = Depends(get_db)) -> list[LeaveRequestRead]:
    return [LeaveRequestRead.model_validate(item) for item in leave_service.list_processed(db)]


@router.patch("/{leave_id}/status", response_model=LeaveRequestRead)
def decide_leave_request(
    leave_id: int,
    payload: LeaveStatusUpdateRequest,
    operator: Operator = Depends(require_roles(*MANAGEMENT_ROLES)),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    leave = leave_service.update_status(db, leave_id, payload.status, operator=operator)
    return LeaveRequestRead.model_validate(leave)
