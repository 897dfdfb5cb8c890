from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any

from sqlalchemy import inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import AuditWriteFailure
from app.models import AuditActorType, AuditLog
from app.settings import get_settings

logger = logging.getLogger("app.audit")

SYSTEM_OPERATOR = "SYSTEM"


@dataclass(frozen=True, slots=True)
class Operator:
    """Resolved identity of whoever triggers a mutation."""

    user_id: str
    role: str
    actor_type: AuditActorType = AuditActorType.ADMIN
    department_id: int | None = None
    employee_id: int | None = None
    request_id: str | None = None


SYSTEM = Operator(user_id=SYSTEM_OPERATOR, role="system", actor_type=AuditActorType.SYSTEM)


def _json_value(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    return value


def model_snapshot(obj: Any) -> dict[str, Any]:
    """Column values of an ORM instance as a JSON-safe dict."""
    mapper = inspect(obj).mapper
    return {attr.key: _json_value(getattr(obj, attr.key)) for attr in mapper.column_attrs}


def _build_entry(
    operator: Operator,
    *,
    action: str,
    target_type: str,
    target_id: str | int,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    reason: str | None,
) -> AuditLog:
    return AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=operator.actor_type,
        operated_by=operator.user_id,
        action=action,
        target_type=target_type,
        target_id=str(target_id),
        before=before,
        after=after,
        reason=reason,
        request_id=operator.request_id,
    )


def _log_context(operator: Operator, *, action: str, target_type: str, target_id: str | int) -> dict[str, Any]:
    return {
        "request_id": operator.request_id,
        "action": action,
        "actor_type": operator.actor_type.value,
        "operated_by": operator.user_id,
        "target_type": target_type,
        "target_id": str(target_id),
    }


def log_audit(
    db: Session,
    operator: Operator,
    *,
    action: str,
    target_type: str,
    target_id: str | int,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
    reason: str | None = None,
) -> AuditLog | None:
    """Best-effort audit write in its own commit.

    A failed write is logged and swallowed; the business mutation it documents
    has already been committed by the caller.
    """
    context = _log_context(operator, action=action, target_type=target_type, target_id=target_id)
    entry = _build_entry(
        operator,
        action=action,
        target_type=target_type,
        target_id=target_id,
        before=before,
        after=after,
        reason=reason,
    )
    db.add(entry)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.warning("audit_log_write_failed", exc_info=True, extra=context)
        return None

    logger.info("audit_event", extra=context)
    return entry


def commit_with_audit(
    db: Session,
    operator: Operator,
    *,
    action: str,
    target_type: str,
    target_id: str | int,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
    reason: str | None = None,
) -> AuditLog | None:
    """Commit the pending primary changes on ``db`` and document them.

    Under the default policy the primary commit happens first and the audit
    entry follows via :func:`log_audit`. With ``audit_strict`` enabled the
    entry joins the primary transaction, so both land or neither does.
    """
    if not get_settings().audit_strict:
        db.commit()
        return log_audit(
            db,
            operator,
            action=action,
            target_type=target_type,
            target_id=target_id,
            before=before,
            after=after,
            reason=reason,
        )

    context = _log_context(operator, action=action, target_type=target_type, target_id=target_id)
    entry = _build_entry(
        operator,
        action=action,
        target_type=target_type,
        target_id=target_id,
        before=before,
        after=after,
        reason=reason,
    )
    db.add(entry)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("audit_log_write_failed_strict", exc_info=True, extra=context)
        raise AuditWriteFailure(f"Audit entry for {action} could not be written; change rolled back.") from exc

    logger.info("audit_event", extra=context)
    return entry


def list_audit_logs(
    db: Session,
    *,
    target_type: str | None = None,
    target_id: str | None = None,
    limit: int = 200,
) -> list[AuditLog]:
    stmt = select(AuditLog).order_by(AuditLog.ts_utc.desc(), AuditLog.id.desc()).limit(limit)
    if target_type is not None:
        stmt = stmt.where(AuditLog.target_type == target_type)
    if target_id is not None:
        stmt = stmt.where(AuditLog.target_id == str(target_id))
    return list(db.scalars(stmt).all())
