from typing import Any

from pydantic import BaseModel


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict[str, Any] = {}
    # True when the same request may succeed if sent again later (contention)
    retryable: bool = False
    request_id: str


class ErrorResponse(BaseModel):
    error: ErrorDetail


def error_body(
    code: str,
    message: str,
    request_id: str,
    details: dict[str, Any] | None = None,
    retryable: bool = False,
) -> dict[str, Any]:
    return ErrorResponse(
        error=ErrorDetail(
            code=code,
            message=message,
            details=details or {},
            retryable=retryable,
            request_id=request_id,
        )
    ).model_dump(mode="json")
