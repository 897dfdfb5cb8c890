"""Organization-wide daily transitions: reset, absence check, auto-checkout.

Each trigger walks the active employees once, employee by employee. A failed
employee is recorded and skipped; earlier commits stay. Re-running a trigger
re-evaluates the ledger, so already-processed employees no longer match its
precondition and nothing is written twice.
"""

from __future__ import annotations

import enum
import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any

from sqlalchemy.orm import Session

from app.audit import SYSTEM_OPERATOR
from app.errors import ApiError, ConfigurationError, PartialBatchFailure
from app.settings import get_attendance_timezone
from app.services import ledger
from app.services.rules import get_default_rule, resolve
from app.services.status_engine import (
    CHECKED_IN_CATEGORIES,
    EmployeeSnapshot,
    RuleThresholds,
    StatusLabel,
    category_for,
    compute_status,
)

logger = logging.getLogger("app.lifecycle")


class DailyTrigger(str, enum.Enum):
    RESET = "reset"
    ABSENCE_CHECK = "absence_check"
    AUTO_CHECKOUT = "auto_checkout"


DEFAULT_TRIGGER_TIMES: dict[DailyTrigger, time] = {
    DailyTrigger.RESET: time(7, 0),
    DailyTrigger.ABSENCE_CHECK: time(14, 0),
    DailyTrigger.AUTO_CHECKOUT: time(20, 0),
}


@dataclass(slots=True)
class TriggerResult:
    trigger: DailyTrigger
    day: date
    started_at: datetime
    finished_at: datetime | None = None
    considered: int = 0
    count: int = 0
    by_status: Counter[str] = field(default_factory=Counter)
    failures: list[PartialBatchFailure] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def partial(self) -> bool:
        return bool(self.failures)

    def to_dict(self) -> dict[str, Any]:
        return {
            "trigger": self.trigger.value,
            "day": self.day,
            "started_at": self.started_at,
            "finished_at": self.finished_at or self.started_at,
            "considered": self.considered,
            "count": self.count,
            "by_status": dict(self.by_status),
            "failures": [item.to_dict() for item in self.failures],
            "details": dict(self.details),
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DailyLifecycleScheduler:
    """Runs the three daily triggers against a caller-supplied session.

    The only state kept is the result of each trigger's last run and the local
    day each trigger last ran on schedule. Timing is someone else's job: a
    timer loop, cron, or an administrator. Manual runs never count as the
    scheduled run.
    """

    def __init__(
        self,
        *,
        tz: tzinfo | None = None,
        clock: Callable[[], datetime] | None = None,
        trigger_times: dict[DailyTrigger, time] | None = None,
    ) -> None:
        self._tz = tz
        self._clock = clock or _utcnow
        self.trigger_times = dict(trigger_times or DEFAULT_TRIGGER_TIMES)
        self.last_runs: dict[DailyTrigger, TriggerResult] = {}
        self.scheduled_days: dict[DailyTrigger, date] = {}

    @property
    def tz(self) -> tzinfo:
        return self._tz or get_attendance_timezone()

    def now(self) -> datetime:
        return ledger.as_utc(self._clock())

    def run(
        self,
        db: Session,
        trigger: DailyTrigger,
        *,
        now: datetime | None = None,
        scheduled: bool = False,
    ) -> TriggerResult:
        handlers = {
            DailyTrigger.RESET: self._reset_employee,
            DailyTrigger.ABSENCE_CHECK: self._absence_check_employee,
            DailyTrigger.AUTO_CHECKOUT: self._auto_checkout_employee,
        }
        run_at = ledger.as_utc(now) if now is not None else self.now()
        result = TriggerResult(trigger=trigger, day=run_at.astimezone(self.tz).date(), started_at=run_at)
        logger.info("lifecycle_trigger_started", extra={"trigger": trigger.value, "day": result.day})

        try:
            if trigger != DailyTrigger.RESET:
                get_default_rule(db)
            employees = [
                (item.id, EmployeeSnapshot.from_employee(item)) for item in ledger.list_snapshot_employees(db)
            ]
            for employee_id, snapshot in employees:
                result.considered += 1
                try:
                    handlers[trigger](db, employee_id, snapshot, run_at, result)
                except ConfigurationError:
                    db.rollback()
                    raise
                except Exception as exc:
                    db.rollback()
                    code = exc.code if isinstance(exc, ApiError) else exc.__class__.__name__
                    result.failures.append(PartialBatchFailure(employee_id=employee_id, code=code, message=str(exc)))
                    logger.warning(
                        "lifecycle_employee_failed",
                        exc_info=True,
                        extra={"trigger": trigger.value, "employee_id": employee_id, "code": code},
                    )
        except Exception:
            logger.exception(
                "lifecycle_trigger_failed",
                extra={"trigger": trigger.value, "day": result.day, "processed": result.count},
            )
            raise

        if trigger == DailyTrigger.RESET:
            result.count = result.considered
        result.finished_at = self.now()
        self.last_runs[trigger] = result
        if scheduled:
            self.scheduled_days[trigger] = result.day

        log_extra = {
            "trigger": trigger.value,
            "day": result.day,
            "considered": result.considered,
            "count": result.count,
            "by_status": dict(result.by_status),
            "failure_count": len(result.failures),
        }
        if result.partial:
            logger.error("lifecycle_trigger_partial", extra=log_extra)
        else:
            logger.info("lifecycle_trigger_finished", extra=log_extra)
        return result

    def run_reset(self, db: Session, *, now: datetime | None = None) -> TriggerResult:
        return self.run(db, DailyTrigger.RESET, now=now)

    def run_absence_check(self, db: Session, *, now: datetime | None = None) -> TriggerResult:
        return self.run(db, DailyTrigger.ABSENCE_CHECK, now=now)

    def run_auto_checkout(self, db: Session, *, now: datetime | None = None) -> TriggerResult:
        return self.run(db, DailyTrigger.AUTO_CHECKOUT, now=now)

    def due_triggers(self, now: datetime | None = None) -> list[DailyTrigger]:
        """Triggers whose nominal time has passed today and that have not run on schedule today."""
        local_now = (ledger.as_utc(now) if now is not None else self.now()).astimezone(self.tz)
        today = local_now.date()
        due: list[DailyTrigger] = []
        for trigger, nominal in sorted(self.trigger_times.items(), key=lambda item: item[1]):
            if local_now.time() < nominal:
                continue
            if self.scheduled_days.get(trigger) == today:
                continue
            due.append(trigger)
        return due

    def _reset_employee(
        self,
        db: Session,
        employee_id: int,
        snapshot: EmployeeSnapshot,
        run_at: datetime,
        result: TriggerResult,
    ) -> None:
        # Nothing is written: a day without entries already reads as unattended.
        if ledger.latest(db, employee_id, result.day, tz=self.tz) is None:
            result.by_status[StatusLabel.UNATTENDED.value] += 1
        previous = ledger.latest(db, employee_id, result.day - timedelta(days=1), tz=self.tz)
        if previous is not None and category_for(previous.status) in CHECKED_IN_CATEGORIES:
            result.details.setdefault("stale_open_employee_ids", []).append(employee_id)

    def _absence_check_employee(
        self,
        db: Session,
        employee_id: int,
        snapshot: EmployeeSnapshot,
        run_at: datetime,
        result: TriggerResult,
    ) -> None:
        current = ledger.latest(db, employee_id, result.day, tz=self.tz)
        if current is not None and current.status != StatusLabel.UNATTENDED.value:
            return

        rule = RuleThresholds.from_rule(resolve(db, employee_id))
        label = compute_status(None, rule, snapshot, run_at, tz=self.tz)
        ledger.append(db, employee_id, label, SYSTEM_OPERATOR, run_at)
        result.count += 1
        result.by_status[label.value] += 1

    def _auto_checkout_employee(
        self,
        db: Session,
        employee_id: int,
        snapshot: EmployeeSnapshot,
        run_at: datetime,
        result: TriggerResult,
    ) -> None:
        current = ledger.latest(db, employee_id, result.day, tz=self.tz)
        if current is None or category_for(current.status) not in CHECKED_IN_CATEGORIES:
            return

        ledger.append(db, employee_id, StatusLabel.AUTO_CHECKOUT, SYSTEM_OPERATOR, run_at)
        result.count += 1
        result.by_status[StatusLabel.AUTO_CHECKOUT.value] += 1
