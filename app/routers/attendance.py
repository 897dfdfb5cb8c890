from datetime import date

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.audit import Operator
from app.db import get_db
from app.errors import ApiError
from app.schemas import AttendanceRecordRead, EmployeeRecordViewRead, PunchRequest, PunchResponse
from app.security import ROLE_TERMINAL, ROLE_VIEWER, require_employee_operator, require_roles
from app.settings import get_attendance_timezone
from app.services import ledger
from app.services.punches import punch

router = APIRouter(tags=["attendance"])


def _to_record_read(record) -> AttendanceRecordRead:
    return AttendanceRecordRead(**ledger.record_to_dict(record))


def _resolve_punch_employee(operator: Operator, payload: PunchRequest) -> int:
    if operator.role == ROLE_TERMINAL:
        if payload.employee_id is None:
            raise ApiError(
                status_code=422,
                code="EMPLOYEE_REQUIRED",
                message="A terminal must name the employee it punches for.",
            )
        return payload.employee_id

    if operator.employee_id is None:
        raise ApiError(
            status_code=400,
            code="EMPLOYEE_NOT_LINKED",
            message="This account is not linked to an employee record.",
        )
    if payload.employee_id is not None and payload.employee_id != operator.employee_id:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Employees can only punch for themselves.")
    return operator.employee_id


@router.post("/api/attendance/punch", response_model=PunchResponse)
def punch_attendance(
    request: Request,
    payload: PunchRequest | None = None,
    operator: Operator = Depends(require_roles(ROLE_VIEWER, ROLE_TERMINAL)),
    db: Session = Depends(get_db),
) -> PunchResponse:
    employee_id = _resolve_punch_employee(operator, payload or PunchRequest())
    request.state.employee_id = employee_id
    result = punch(db, employee_id, operator.user_id)
    return PunchResponse(action=result.action, record=_to_record_read(result.record))


@router.get("/api/attendance/me/today", response_model=EmployeeRecordViewRead)
def my_today(
    operator: Operator = Depends(require_employee_operator),
    db: Session = Depends(get_db),
) -> EmployeeRecordViewRead:
    tz = get_attendance_timezone()
    today = ledger.local_date_of(ledger.normalize_record_time(None), tz)
    view = ledger.employee_view(db, int(operator.employee_id), today, tz=tz)
    return EmployeeRecordViewRead(**view.to_dict())


@router.get("/api/attendance/me/history", response_model=list[AttendanceRecordRead])
def my_history(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    operator: Operator = Depends(require_employee_operator),
    db: Session = Depends(get_db),
) -> list[AttendanceRecordRead]:
    records = ledger.history(
        db,
        int(operator.employee_id),
        start_date=start_date,
        end_date=end_date,
        tz=get_attendance_timezone(),
    )
    return [_to_record_read(item) for item in records]
