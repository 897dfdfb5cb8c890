from __future__ import annotations

import hmac
import threading
from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from passlib.exc import UnknownHashError

from app.audit import Operator
from app.errors import ApiError
from app.models import AuditActorType
from app.settings import get_settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

_LOCK = threading.Lock()
_FAILED_ATTEMPTS: dict[str, deque[datetime]] = defaultdict(deque)
_MAX_ATTEMPTS = 10
_ATTEMPT_WINDOW = timedelta(minutes=10)

ROLE_ADMIN = "admin"
ROLE_HR = "hr"
ROLE_MANAGER = "manager"
ROLE_VIEWER = "viewer"
ROLE_TERMINAL = "terminal"
KNOWN_ROLES = frozenset({ROLE_ADMIN, ROLE_HR, ROLE_MANAGER, ROLE_VIEWER, ROLE_TERMINAL})
MANAGEMENT_ROLES = (ROLE_ADMIN, ROLE_HR, ROLE_MANAGER)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _cleanup_attempts(ip: str, now: datetime) -> None:
    queue = _FAILED_ATTEMPTS[ip]
    threshold = now - _ATTEMPT_WINDOW
    while queue and queue[0] < threshold:
        queue.popleft()
    if not queue:
        _FAILED_ATTEMPTS.pop(ip, None)


def ensure_login_attempt_allowed(ip: str) -> None:
    now = _utcnow()
    with _LOCK:
        _cleanup_attempts(ip, now)
        queue = _FAILED_ATTEMPTS.get(ip, deque())
        if len(queue) >= _MAX_ATTEMPTS:
            raise ApiError(
                status_code=429,
                code="TOO_MANY_ATTEMPTS",
                message="Too many failed login attempts. Please try again later.",
            )


def register_login_failure(ip: str) -> None:
    now = _utcnow()
    with _LOCK:
        _cleanup_attempts(ip, now)
        _FAILED_ATTEMPTS[ip].append(now)


def register_login_success(ip: str) -> None:
    with _LOCK:
        _FAILED_ATTEMPTS.pop(ip, None)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError, UnknownHashError):
        # Invalid/legacy hash values should not crash auth flow.
        return False


def verify_admin_credentials(username: str, password: str) -> bool:
    settings = get_settings()
    env_username = (settings.admin_user or "").strip()
    env_pass_hash = (settings.admin_pass_hash or "").strip()

    # Common deployment copy/paste issue: quoted env values.
    if len(env_username) >= 2 and env_username[0] == env_username[-1] and env_username[0] in {"'", '"'}:
        env_username = env_username[1:-1]
    if len(env_pass_hash) >= 2 and env_pass_hash[0] == env_pass_hash[-1] and env_pass_hash[0] in {"'", '"'}:
        env_pass_hash = env_pass_hash[1:-1]

    if not hmac.compare_digest(username, env_username):
        return False
    if not env_pass_hash:
        return False
    return verify_password(password, env_pass_hash)


def create_access_token(
    *,
    sub: str,
    role: str = ROLE_ADMIN,
    employee_id: int | None = None,
    department_id: int | None = None,
) -> tuple[str, int, dict[str, Any]]:
    if role not in KNOWN_ROLES:
        raise ValueError(f"Unknown operator role: {role}")
    settings = get_settings()
    now = _utcnow()
    claims = {
        "sub": sub,
        "role": role,
        "employee_id": employee_id,
        "department_id": department_id,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.access_token_minutes)).timestamp()),
        "jti": str(uuid4()),
        "typ": "access",
    }
    token = jwt.encode(claims, settings.jwt_secret, algorithm="HS256")
    return token, settings.access_token_minutes * 60, claims


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    if payload.get("typ") != "access":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token type is invalid.")

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")

    if payload.get("role") not in KNOWN_ROLES:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Unknown role.")

    return payload


def _optional_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def require_operator(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Operator:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    payload = decode_token(credentials.credentials)
    role = str(payload["role"])
    actor_type = AuditActorType.EMPLOYEE if role == ROLE_VIEWER else AuditActorType.ADMIN

    request.state.actor = role
    request.state.actor_id = str(payload["sub"])
    return Operator(
        user_id=str(payload["sub"]),
        role=role,
        actor_type=actor_type,
        department_id=_optional_int(payload.get("department_id")),
        employee_id=_optional_int(payload.get("employee_id")),
        request_id=getattr(request.state, "request_id", None),
    )


def require_roles(*roles: str) -> Callable[..., Operator]:
    unknown = set(roles) - KNOWN_ROLES
    if unknown:
        raise ValueError(f"Unknown operator roles: {sorted(unknown)}")

    def _dependency(operator: Operator = Depends(require_operator)) -> Operator:
        if operator.role not in roles:
            raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
        return operator

    return _dependency


def require_employee_operator(operator: Operator = Depends(require_roles(ROLE_VIEWER))) -> Operator:
    if operator.employee_id is None:
        raise ApiError(
            status_code=400,
            code="EMPLOYEE_NOT_LINKED",
            message="This account is not linked to an employee record.",
        )
    return operator
