from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class ConfigurationError(ApiError):
    """Fatal misconfiguration, e.g. no default attendance rule.

    Never recovered from inside a request or trigger; the operation halts and
    operators are alerted through the error log.
    """

    def __init__(self, message: str, *, code: str = "CONFIGURATION_ERROR"):
        super().__init__(status_code=500, code=code, message=message)


class NotFoundError(ApiError):
    def __init__(self, entity: str, entity_id: object | None = None):
        label = entity.replace("_", " ").capitalize()
        message = f"{label} not found." if entity_id is None else f"{label} {entity_id} not found."
        super().__init__(status_code=404, code=f"{entity.upper()}_NOT_FOUND", message=message)
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(ApiError):
    def __init__(self, message: str, *, code: str = "VALIDATION_ERROR"):
        super().__init__(status_code=422, code=code, message=message)


class AuditWriteFailure(ApiError):
    def __init__(self, message: str = "Audit log could not be written."):
        super().__init__(status_code=500, code="AUDIT_WRITE_FAILED", message=message)


@dataclass(frozen=True, slots=True)
class PartialBatchFailure:
    employee_id: int
    code: str
    message: str

    def to_dict(self) -> dict[str, object]:
        return {"employee_id": self.employee_id, "code": self.code, "message": self.message}


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
