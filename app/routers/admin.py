from dataclasses import replace
from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from app.audit import SYSTEM, Operator, list_audit_logs, log_audit
from app.db import get_db
from app.errors import ApiError, NotFoundError
from app.models import EmployeeStatus
from app.schemas import (
    AdminAuthResponse,
    AdminLoginRequest,
    AttendanceRecordCreateRequest,
    AttendanceRecordDeleteResponse,
    AttendanceRecordRead,
    AttendanceRecordUpdateRequest,
    AttendanceRuleCreate,
    AttendanceRuleRead,
    AttendanceRuleUpdate,
    AuditLogRead,
    DashboardStatsResponse,
    DepartmentCreate,
    DepartmentRead,
    DepartmentUpdate,
    EmployeeCreate,
    EmployeeRead,
    EmployeeRecordViewRead,
    EmployeeUpdate,
    RuleAssignmentRequest,
    SoftDeleteResponse,
    TriggerResultRead,
)
from app.security import (
    MANAGEMENT_ROLES,
    ROLE_ADMIN,
    ROLE_HR,
    create_access_token,
    ensure_login_attempt_allowed,
    register_login_failure,
    register_login_success,
    require_roles,
    verify_admin_credentials,
)
from app.settings import get_attendance_timezone, get_trigger_times
from app.services import employees as employee_service
from app.services import ledger, rules
from app.services.exports import build_snapshot_xlsx_bytes
from app.services.lifecycle import DailyLifecycleScheduler, DailyTrigger

router = APIRouter(tags=["admin"])

TriggerPath = Literal["reset", "absence-check", "auto-checkout"]

_scheduler: DailyLifecycleScheduler | None = None


def get_scheduler() -> DailyLifecycleScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = DailyLifecycleScheduler(
            trigger_times={DailyTrigger(name): value for name, value in get_trigger_times().items()},
        )
    return _scheduler


def _client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def _today() -> date:
    return ledger.local_date_of(ledger.normalize_record_time(None), get_attendance_timezone())


def _to_record_read(record) -> AttendanceRecordRead:
    return AttendanceRecordRead(**ledger.record_to_dict(record))


def _to_view_reads(views: list[ledger.EmployeeRecordView]) -> list[EmployeeRecordViewRead]:
    return [EmployeeRecordViewRead(**item.to_dict()) for item in views]


@router.post("/api/admin/auth/login", response_model=AdminAuthResponse)
def admin_login(
    payload: AdminLoginRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AdminAuthResponse:
    username = payload.username.strip()
    ip = _client_ip(request)
    request.state.actor = "system"
    request.state.actor_id = "system"
    login_operator = replace(SYSTEM, request_id=getattr(request.state, "request_id", None))

    if ip:
        ensure_login_attempt_allowed(ip)

    if not verify_admin_credentials(username, payload.password):
        if ip:
            register_login_failure(ip)
        log_audit(
            db,
            login_operator,
            action="ADMIN_LOGIN_FAIL",
            target_type="admin",
            target_id=username or "-",
            after={"ip": ip},
        )
        raise ApiError(status_code=401, code="INVALID_CREDENTIALS", message="Invalid credentials.")

    if ip:
        register_login_success(ip)
    token, expires_in, _claims = create_access_token(sub=username, role=ROLE_ADMIN)
    request.state.actor = ROLE_ADMIN
    request.state.actor_id = username
    log_audit(
        db,
        login_operator,
        action="ADMIN_LOGIN_SUCCESS",
        target_type="admin",
        target_id=username,
        after={"ip": ip},
    )
    return AdminAuthResponse(access_token=token, expires_in=expires_in)


@router.get(
    "/api/admin/records/snapshot",
    response_model=list[EmployeeRecordViewRead],
    dependencies=[Depends(require_roles(*MANAGEMENT_ROLES))],
)
def get_daily_snapshot(
    day: date | None = Query(default=None),
    category: str = Query(default=ledger.ALL_CATEGORIES),
    department_id: int | None = Query(default=None, ge=1),
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> list[EmployeeRecordViewRead]:
    views = ledger.daily_snapshot(
        db,
        day or _today(),
        category,
        include_inactive=include_inactive,
        department_id=department_id,
        tz=get_attendance_timezone(),
    )
    return _to_view_reads(views)


@router.get(
    "/api/admin/records/exceptions",
    response_model=list[EmployeeRecordViewRead],
    dependencies=[Depends(require_roles(*MANAGEMENT_ROLES))],
)
def get_exceptions(
    day: date | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[EmployeeRecordViewRead]:
    return _to_view_reads(ledger.exception_list(db, day or _today(), tz=get_attendance_timezone()))


@router.get(
    "/api/admin/records/dashboard",
    response_model=DashboardStatsResponse,
    dependencies=[Depends(require_roles(*MANAGEMENT_ROLES))],
)
def get_dashboard(
    day: date | None = Query(default=None),
    db: Session = Depends(get_db),
) -> DashboardStatsResponse:
    return DashboardStatsResponse(**ledger.dashboard_counts(db, day or _today(), tz=get_attendance_timezone()))


@router.get(
    "/api/admin/records/history/{employee_id}",
    response_model=list[AttendanceRecordRead],
    dependencies=[Depends(require_roles(*MANAGEMENT_ROLES))],
)
def get_employee_history(
    employee_id: int,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[AttendanceRecordRead]:
    records = ledger.history(
        db,
        employee_id,
        start_date=start_date,
        end_date=end_date,
        tz=get_attendance_timezone(),
    )
    return [_to_record_read(item) for item in records]


@router.get(
    "/api/admin/records/export.xlsx",
    dependencies=[Depends(require_roles(*MANAGEMENT_ROLES))],
)
def export_snapshot_xlsx(
    day: date | None = Query(default=None),
    db: Session = Depends(get_db),
) -> Response:
    target_day = day or _today()
    content = build_snapshot_xlsx_bytes(db, target_day, tz=get_attendance_timezone())
    filename = f"attendance_{target_day.isoformat()}.xlsx"
    return Response(
        content=content,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post(
    "/api/admin/records",
    response_model=AttendanceRecordRead,
    status_code=status.HTTP_201_CREATED,
)
def create_manual_record(
    payload: AttendanceRecordCreateRequest,
    operator: Operator = Depends(require_roles(*MANAGEMENT_ROLES)),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    record = ledger.create_manual_record(
        db,
        employee_id=payload.employee_id,
        status=payload.status,
        reason=payload.reason,
        operator=operator,
        record_time=payload.record_time,
        tz=get_attendance_timezone(),
    )
    return _to_record_read(record)


@router.patch("/api/admin/records/{record_id}", response_model=AttendanceRecordRead)
def correct_record(
    record_id: int,
    payload: AttendanceRecordUpdateRequest,
    operator: Operator = Depends(require_roles(*MANAGEMENT_ROLES)),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    correction = ledger.update(db, record_id, payload.status, operator=operator, reason=payload.reason)
    return _to_record_read(correction)


@router.delete("/api/admin/records/{record_id}", response_model=AttendanceRecordDeleteResponse)
def delete_record(
    record_id: int,
    operator: Operator = Depends(require_roles(ROLE_ADMIN, ROLE_HR)),
    db: Session = Depends(get_db),
) -> AttendanceRecordDeleteResponse:
    if not ledger.delete(db, record_id, operator=operator):
        raise NotFoundError("attendance_record", record_id)
    return AttendanceRecordDeleteResponse(ok=True, id=record_id)


@router.post(
    "/api/admin/triggers/{trigger}",
    response_model=TriggerResultRead,
    dependencies=[Depends(require_roles(ROLE_ADMIN))],
)
def run_trigger(
    trigger: TriggerPath,
    db: Session = Depends(get_db),
    scheduler: DailyLifecycleScheduler = Depends(get_scheduler),
) -> TriggerResultRead:
    result = scheduler.run(db, DailyTrigger(trigger.replace("-", "_")))
    return TriggerResultRead(**result.to_dict())


@router.get(
    "/api/admin/triggers",
    response_model=list[TriggerResultRead],
    dependencies=[Depends(require_roles(*MANAGEMENT_ROLES))],
)
def list_trigger_runs(
    scheduler: DailyLifecycleScheduler = Depends(get_scheduler),
) -> list[TriggerResultRead]:
    return [TriggerResultRead(**item.to_dict()) for item in scheduler.last_runs.values()]


@router.get(
    "/api/admin/rules",
    response_model=list[AttendanceRuleRead],
    dependencies=[Depends(require_roles(*MANAGEMENT_ROLES))],
)
def list_rules(db: Session = Depends(get_db)) -> list[AttendanceRuleRead]:
    return [AttendanceRuleRead.model_validate(item) for item in rules.list_rules(db)]


@router.post("/api/admin/rules", response_model=AttendanceRuleRead, status_code=status.HTTP_201_CREATED)
def create_rule(
    payload: AttendanceRuleCreate,
    operator: Operator = Depends(require_roles(ROLE_ADMIN)),
    db: Session = Depends(get_db),
) -> AttendanceRuleRead:
    return AttendanceRuleRead.model_validate(rules.create_rule(db, payload, operator=operator))


@router.patch("/api/admin/rules/{rule_id}", response_model=AttendanceRuleRead)
def update_rule(
    rule_id: int,
    payload: AttendanceRuleUpdate,
    operator: Operator = Depends(require_roles(ROLE_ADMIN)),
    db: Session = Depends(get_db),
) -> AttendanceRuleRead:
    return AttendanceRuleRead.model_validate(rules.update_rule(db, rule_id, payload, operator=operator))


@router.post("/api/admin/rules/{rule_id}/default", response_model=AttendanceRuleRead)
def set_default_rule(
    rule_id: int,
    operator: Operator = Depends(require_roles(ROLE_ADMIN)),
    db: Session = Depends(get_db),
) -> AttendanceRuleRead:
    return AttendanceRuleRead.model_validate(rules.set_default_rule(db, rule_id, operator=operator))


@router.delete("/api/admin/rules/{rule_id}", response_model=SoftDeleteResponse)
def delete_rule(
    rule_id: int,
    operator: Operator = Depends(require_roles(ROLE_ADMIN)),
    db: Session = Depends(get_db),
) -> SoftDeleteResponse:
    rules.delete_rule(db, rule_id, operator=operator)
    return SoftDeleteResponse(ok=True, id=rule_id)


@router.put("/api/admin/employees/{employee_id}/rule", response_model=EmployeeRead)
def assign_employee_rule(
    employee_id: int,
    payload: RuleAssignmentRequest,
    operator: Operator = Depends(require_roles(ROLE_ADMIN, ROLE_HR)),
    db: Session = Depends(get_db),
) -> EmployeeRead:
    employee = rules.assign_rule_to_employee(
        db,
        employee_id,
        payload.rule_id,
        operator=operator,
        reason=payload.reason,
    )
    return EmployeeRead.model_validate(employee)


@router.put("/api/admin/departments/{department_id}/rule", response_model=DepartmentRead)
def assign_department_rule(
    department_id: int,
    payload: RuleAssignmentRequest,
    operator: Operator = Depends(require_roles(ROLE_ADMIN, ROLE_HR)),
    db: Session = Depends(get_db),
) -> DepartmentRead:
    department = rules.assign_rule_to_department(
        db,
        department_id,
        payload.rule_id,
        operator=operator,
        reason=payload.reason,
    )
    return DepartmentRead.model_validate(department)


@router.get(
    "/api/admin/employees",
    response_model=list[EmployeeRead],
    dependencies=[Depends(require_roles(*MANAGEMENT_ROLES))],
)
def list_employees(
    department_id: int | None = Query(default=None, ge=1),
    status_filter: EmployeeStatus | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None, max_length=255),
    db: Session = Depends(get_db),
) -> list[EmployeeRead]:
    employees = employee_service.list_employees(
        db,
        department_id=department_id,
        status=status_filter,
        search=search,
    )
    return [EmployeeRead.model_validate(item) for item in employees]


@router.get(
    "/api/admin/employees/{employee_id}",
    response_model=EmployeeRead,
    dependencies=[Depends(require_roles(*MANAGEMENT_ROLES))],
)
def get_employee(employee_id: int, db: Session = Depends(get_db)) -> EmployeeRead:
    return EmployeeRead.model_validate(employee_service.get_employee(db, employee_id, include_deleted=True))


@router.post("/api/admin/employees", response_model=EmployeeRead, status_code=status.HTTP_201_CREATED)
def create_employee(
    payload: EmployeeCreate,
    operator: Operator = Depends(require_roles(ROLE_ADMIN, ROLE_HR)),
    db: Session = Depends(get_db),
) -> EmployeeRead:
    return EmployeeRead.model_validate(employee_service.create_employee(db, payload, operator=operator))


@router.patch("/api/admin/employees/{employee_id}", response_model=EmployeeRead)
def update_employee(
    employee_id: int,
    payload: EmployeeUpdate,
    operator: Operator = Depends(require_roles(ROLE_ADMIN, ROLE_HR)),
    db: Session = Depends(get_db),
) -> EmployeeRead:
    employee = employee_service.update_employee(db, employee_id, payload, operator=operator)
    return EmployeeRead.model_validate(employee)


@router.delete("/api/admin/employees/{employee_id}", response_model=SoftDeleteResponse)
def delete_employee(
    employee_id: int,
    reason: str | None = Query(default=None, max_length=1000),
    operator: Operator = Depends(require_roles(ROLE_ADMIN, ROLE_HR)),
    db: Session = Depends(get_db),
) -> SoftDeleteResponse:
    employee_service.soft_delete_employee(db, employee_id, operator=operator, reason=reason)
    return SoftDeleteResponse(ok=True, id=employee_id)


@router.get(
    "/api/admin/departments",
    response_model=list[DepartmentRead],
    dependencies=[Depends(require_roles(*MANAGEMENT_ROLES))],
)
def list_departments(db: Session = Depends(get_db)) -> list[DepartmentRead]:
    return [DepartmentRead.model_validate(item) for item in employee_service.list_departments(db)]


@router.post("/api/admin/departments", response_model=DepartmentRead, status_code=status.HTTP_201_CREATED)
def create_department(
    payload: DepartmentCreate,
    operator: Operator = Depends(require_roles(ROLE_ADMIN, ROLE_HR)),
    db: Session = Depends(get_db),
) -> DepartmentRead:
    return DepartmentRead.model_validate(employee_service.create_department(db, payload, operator=operator))


@router.patch("/api/admin/departments/{department_id}", response_model=DepartmentRead)
def update_department(
    department_id: int,
    payload: DepartmentUpdate,
    operator: Operator = Depends(require_roles(ROLE_ADMIN, ROLE_HR)),
    db: Session = Depends(get_db),
) -> DepartmentRead:
    department = employee_service.update_department(db, department_id, payload, operator=operator)
    return DepartmentRead.model_validate(department)


@router.get(
    "/api/admin/audit-logs",
    response_model=list[AuditLogRead],
    dependencies=[Depends(require_roles(ROLE_ADMIN, ROLE_HR))],
)
def get_audit_logs(
    target_type: str | None = Query(default=None, max_length=64),
    target_id: str | None = Query(default=None, max_length=255),
    limit: int = Query(default=200, ge=1, le=1000),
    db: Session = Depends(get_db),
) -> list[AuditLogRead]:
    entries = list_audit_logs(db, target_type=target_type, target_id=target_id, limit=limit)
    return [AuditLogRead.model_validate(item) for item in entries]
