#!/usr/bin/env python
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, text


EXPECTED_HEAD = "0001_initial"
REQUIRED_TABLES = [
    "attendance_rules",
    "departments",
    "employees",
    "attendance_records",
    "audit_logs",
    "leave_requests",
]


def load_env_if_exists() -> None:
    env_file = Path(".env")
    if not env_file.exists():
        return
    for raw_line in env_file.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def run() -> dict:
    load_env_if_exists()
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL not found (.env or env vars).")

    engine = create_engine(database_url)
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "database_url": database_url,
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    with engine.connect() as conn:
        tables = set(
            conn.execute(
                text(
                    """
                    select table_name
                    from information_schema.tables
                    where table_schema='public'
                    """
                )
            ).scalars()
        )

        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        missing_tables = [table for table in REQUIRED_TABLES if table not in tables]
        add("missing_tables", "fail" if missing_tables else "ok", {"tables": missing_tables})

        if "attendance_rules" in tables:
            default_count = conn.execute(
                text("select count(*) from attendance_rules where is_default = true")
            ).scalar()
            add(
                "single_default_rule",
                "ok" if default_count == 1 else "fail",
                {"default_rules": int(default_count or 0)},
            )

        if "attendance_records" in tables:
            orphan_employees = conn.execute(
                text(
                    """
                    select r.id
                    from attendance_records r
                    left join employees e on e.id = r.employee_id
                    where e.id is null
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "attendance_orphan_employee",
                "fail" if orphan_employees else "ok",
                {"sample_ids": [row[0] for row in orphan_employees]},
            )

            future_records = conn.execute(
                text(
                    """
                    select id
                    from attendance_records
                    where record_time > now() + interval '1 day'
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "attendance_future_records",
                "warn" if future_records else "ok",
                {"sample_ids": [row[0] for row in future_records]},
            )

        if "employees" in tables:
            duplicate_numbers = conn.execute(
                text(
                    """
                    select employee_no, count(*)
                    from employees
                    group by employee_no
                    having count(*) > 1
                    """
                )
            ).fetchall()
            add(
                "duplicate_employee_no",
                "fail" if duplicate_numbers else "ok",
                {"rows": [list(row) for row in duplicate_numbers]},
            )

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
