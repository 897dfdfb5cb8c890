from datetime import date, datetime, time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.models import AuditActorType, EmployeeStatus, LeaveStatus, LeaveType, WorkLocation
from app.services.status_engine import StatusCategory, StatusLabel


def _check_window(start: date | None, end: date | None, label: str) -> None:
    if start is not None and end is not None and end < start:
        raise ValueError(f"{label}_end_date must be greater than or equal to {label}_start_date")


class AdminLoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class AdminAuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class AttendanceRuleUpdate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    standard_check_in: time
    standard_check_out: time = time(18, 0)
    late_grace_minutes: int = Field(default=15, ge=0, le=24 * 60)
    absent_threshold_minutes: int = Field(default=120, ge=0, le=24 * 60)

    @model_validator(mode="after")
    def _thresholds_are_ordered(self) -> "AttendanceRuleUpdate":
        if self.absent_threshold_minutes <= self.late_grace_minutes:
            raise ValueError("absent_threshold_minutes must exceed late_grace_minutes")
        if self.standard_check_out <= self.standard_check_in:
            raise ValueError("standard_check_out must be later than standard_check_in")
        return self


class AttendanceRuleCreate(AttendanceRuleUpdate):
    is_default: bool = False


class AttendanceRuleRead(BaseModel):
    id: int
    name: str
    standard_check_in: time
    standard_check_out: time
    late_grace_minutes: int
    absent_threshold_minutes: int
    is_default: bool

    model_config = ConfigDict(from_attributes=True)


class RuleAssignmentRequest(BaseModel):
    rule_id: int | None = Field(default=None, ge=1)
    reason: str | None = Field(default=None, max_length=1000)


class DepartmentCreate(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=1000)


class DepartmentUpdate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=1000)


class DepartmentRead(BaseModel):
    id: int
    code: str
    name: str
    description: str | None
    attendance_rule_id: int | None

    model_config = ConfigDict(from_attributes=True)


class EmployeeCreate(BaseModel):
    employee_no: str = Field(min_length=1, max_length=64)
    full_name: str = Field(min_length=1, max_length=255)
    department_id: int | None = Field(default=None, ge=1)
    status: EmployeeStatus = EmployeeStatus.PROSPECTIVE
    work_location: WorkLocation = WorkLocation.OFFICE
    location_start_date: date | None = None
    location_end_date: date | None = None
    leave_start_date: date | None = None
    leave_end_date: date | None = None
    hire_date: date | None = None

    @model_validator(mode="after")
    def _windows_are_ordered(self) -> "EmployeeCreate":
        _check_window(self.location_start_date, self.location_end_date, "location")
        _check_window(self.leave_start_date, self.leave_end_date, "leave")
        return self


class EmployeeUpdate(BaseModel):
    """Partial update; only fields present in the payload are applied."""

    employee_no: str | None = Field(default=None, min_length=1, max_length=64)
    full_name: str | None = Field(default=None, min_length=1, max_length=255)
    department_id: int | None = Field(default=None, ge=1)
    status: EmployeeStatus | None = None
    work_location: WorkLocation | None = None
    location_start_date: date | None = None
    location_end_date: date | None = None
    leave_start_date: date | None = None
    leave_end_date: date | None = None
    hire_date: date | None = None
    reason: str | None = Field(default=None, max_length=1000)


class EmployeeRead(BaseModel):
    id: int
    employee_no: str
    full_name: str
    department_id: int | None
    attendance_rule_id: int | None
    status: EmployeeStatus
    work_location: WorkLocation
    location_start_date: date | None
    location_end_date: date | None
    leave_start_date: date | None
    leave_end_date: date | None
    hire_date: date | None
    deleted_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class AttendanceRecordRead(BaseModel):
    id: int
    employee_id: int
    status: str
    category: StatusCategory
    record_time: datetime
    recorder: str
    reason: str | None
    corrects_record_id: int | None


class AttendanceRecordCreateRequest(BaseModel):
    employee_id: int = Field(ge=1)
    status: StatusLabel
    record_time: datetime | None = None
    reason: str = Field(min_length=1, max_length=1000)


class AttendanceRecordUpdateRequest(BaseModel):
    status: StatusLabel
    reason: str = Field(min_length=1, max_length=1000)

    @field_validator("reason")
    @classmethod
    def _reason_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("reason must not be blank")
        return value.strip()


class AttendanceRecordDeleteResponse(BaseModel):
    ok: bool
    id: int


class PunchRequest(BaseModel):
    employee_id: int | None = Field(default=None, ge=1)


class PunchResponse(BaseModel):
    action: str
    record: AttendanceRecordRead


class EmployeeRecordViewRead(BaseModel):
    employee_id: int
    employee_no: str
    full_name: str
    department_id: int | None
    record_id: int | None
    status: str
    category: StatusCategory
    record_time: datetime | None
    recorder: str
    reason: str | None


class DashboardStatsResponse(BaseModel):
    date: date
    total_employees: int
    counts: dict[str, int]
    exceptions: int


class TriggerFailureRead(BaseModel):
    employee_id: int
    code: str
    message: str


class TriggerResultRead(BaseModel):
    trigger: str
    day: date
    started_at: datetime
    finished_at: datetime
    considered: int
    count: int
    by_status: dict[str, int]
    failures: list[TriggerFailureRead]
    details: dict[str, Any] = Field(default_factory=dict)


class AuditLogRead(BaseModel):
    id: int
    ts_utc: datetime
    actor_type: AuditActorType
    operated_by: str
    action: str
    target_type: str
    target_id: str
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    reason: str | None

    model_config = ConfigDict(from_attributes=True)


class SoftDeleteResponse(BaseModel):
    ok: bool
    id: int


class LeaveRequestCreate(BaseModel):
    type: LeaveType
    start_date: date
    end_date: date
    reason: str | None = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def _range_is_ordered(self) -> "LeaveRequestCreate":
        _check_window(self.start_date, self.end_date, "leave")
        return self


class LeaveStatusUpdateRequest(BaseModel):
    status: LeaveStatus

    @field_validator("status")
    @classmethod
    def _must_be_decision(cls, value: LeaveStatus) -> LeaveStatus:
        if value == LeaveStatus.PENDING:
            raise ValueError("status must be APPROVED or REJECTED")
        return value


class LeaveRequestRead(BaseModel):
    id: int
    employee_id: int
    type: LeaveType
    start_date: date
    end_date: date
    reason: str | None
    status: LeaveStatus
    approved_by: str | None
    is_read_by_employee: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LeaveNotificationResponse(BaseModel):
    count: int
