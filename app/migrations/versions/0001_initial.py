"""Initial attendance ledger schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

employee_status = postgresql.ENUM(
    "PROSPECTIVE",
    "ACTIVE",
    "ON_LEAVE",
    "RESIGNED",
    "TERMINATED",
    name="employee_status",
    create_type=False,
)
work_location = postgresql.ENUM(
    "OFFICE",
    "REMOTE",
    "WORKSITE",
    name="work_location",
    create_type=False,
)
leave_type = postgresql.ENUM("PAID", "UNPAID", name="leave_type", create_type=False)
leave_status = postgresql.ENUM(
    "PENDING",
    "APPROVED",
    "REJECTED",
    name="leave_status",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "ADMIN",
    "EMPLOYEE",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in (employee_status, work_location, leave_type, leave_status, audit_actor_type):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "attendance_rules",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("standard_check_in", sa.Time(timezone=False), nullable=False),
        sa.Column(
            "standard_check_out",
            sa.Time(timezone=False),
            nullable=False,
            server_default=sa.text("'18:00:00'"),
        ),
        sa.Column("late_grace_minutes", sa.Integer(), nullable=False, server_default=sa.text("15")),
        sa.Column("absent_threshold_minutes", sa.Integer(), nullable=False, server_default=sa.text("120")),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("name", name="uq_attendance_rules_name"),
        sa.CheckConstraint("late_grace_minutes >= 0", name="ck_attendance_rules_grace_non_negative"),
        sa.CheckConstraint(
            "absent_threshold_minutes > late_grace_minutes",
            name="ck_attendance_rules_absent_after_grace",
        ),
    )
    op.create_index(
        "uq_attendance_rules_single_default",
        "attendance_rules",
        ["is_default"],
        unique=True,
        postgresql_where=sa.text("is_default"),
    )

    op.create_table(
        "departments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.String(length=1000), nullable=True),
        sa.Column("attendance_rule_id", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        sa.UniqueConstraint("code", name="uq_departments_code"),
        sa.ForeignKeyConstraint(["attendance_rule_id"], ["attendance_rules.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_departments_attendance_rule_id", "departments", ["attendance_rule_id"])

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_no", sa.String(length=64), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("department_id", sa.Integer(), nullable=True),
        sa.Column("attendance_rule_id", sa.Integer(), nullable=True),
        sa.Column("status", employee_status, nullable=False, server_default=sa.text("'PROSPECTIVE'")),
        sa.Column("work_location", work_location, nullable=False, server_default=sa.text("'OFFICE'")),
        sa.Column("location_start_date", sa.Date(), nullable=True),
        sa.Column("location_end_date", sa.Date(), nullable=True),
        sa.Column("leave_start_date", sa.Date(), nullable=True),
        sa.Column("leave_end_date", sa.Date(), nullable=True),
        sa.Column("hire_date", sa.Date(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["attendance_rule_id"], ["attendance_rules.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_employees_employee_no", "employees", ["employee_no"], unique=True)
    op.create_index("ix_employees_department_id", "employees", ["department_id"])
    op.create_index("ix_employees_attendance_rule_id", "employees", ["attendance_rule_id"])
    op.create_index("ix_employees_deleted_at", "employees", ["deleted_at"])

    op.create_table(
        "attendance_records",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=64), nullable=False),
        sa.Column("record_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("recorder", sa.String(length=255), nullable=False),
        sa.Column("reason", sa.String(length=1000), nullable=True),
        sa.Column("corrects_record_id", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["corrects_record_id"], ["attendance_records.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_attendance_records_employee_id", "attendance_records", ["employee_id"])
    op.create_index("ix_attendance_records_record_time", "attendance_records", ["record_time"])
    op.create_index(
        "ix_attendance_records_employee_time",
        "attendance_records",
        ["employee_id", "record_time", "id"],
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _timestamp("ts_utc"),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("operated_by", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("target_type", sa.String(length=64), nullable=False),
        sa.Column("target_id", sa.String(length=255), nullable=False),
        sa.Column("before", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("after", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("reason", sa.String(length=1000), nullable=True),
        sa.Column("request_id", sa.String(length=128), nullable=True),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"])
    op.create_index("ix_audit_logs_target", "audit_logs", ["target_type", "target_id"])

    op.create_table(
        "leave_requests",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("type", leave_type, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("reason", sa.String(length=1000), nullable=True),
        sa.Column("status", leave_status, nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("approved_by", sa.String(length=255), nullable=True),
        sa.Column("is_read_by_employee", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.CheckConstraint("end_date >= start_date", name="ck_leave_requests_date_range"),
    )
    op.create_index("ix_leave_requests_employee_id", "leave_requests", ["employee_id"])
    op.create_index("ix_leave_requests_status", "leave_requests", ["status"])

    op.execute(
        sa.text(
            """
            INSERT INTO attendance_rules (
              name,
              standard_check_in,
              standard_check_out,
              late_grace_minutes,
              absent_threshold_minutes,
              is_default
            )
            VALUES ('Default', '09:00:00', '18:00:00', 15, 120, true)
            """
        )
    )


def downgrade() -> None:
    op.drop_index("ix_leave_requests_status", table_name="leave_requests")
    op.drop_index("ix_leave_requests_employee_id", table_name="leave_requests")
    op.drop_table("leave_requests")
    op.drop_index("ix_audit_logs_target", table_name="audit_logs")
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_attendance_records_employee_time", table_name="attendance_records")
    op.drop_index("ix_attendance_records_record_time", table_name="attendance_records")
    op.drop_index("ix_attendance_records_employee_id", table_name="attendance_records")
    op.drop_table("attendance_records")
    op.drop_index("ix_employees_deleted_at", table_name="employees")
    op.drop_index("ix_employees_attendance_rule_id", table_name="employees")
    op.drop_index("ix_employees_department_id", table_name="employees")
    op.drop_index("ix_employees_employee_no", table_name="employees")
    op.drop_table("employees")
    op.drop_index("ix_departments_attendance_rule_id", table_name="departments")
    op.drop_table("departments")
    op.drop_index("uq_attendance_rules_single_default", table_name="attendance_rules")
    op.drop_table("attendance_rules")

    bind = op.get_bind()
    for enum_type in (audit_actor_type, leave_status, leave_type, work_location, employee_status):
        enum_type.drop(bind, checkfirst=True)
