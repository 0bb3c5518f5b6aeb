from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InvalidRequestError, is_retryable_status

__all__ = [
    "RemoteCallRequest",
    "RemoteCallResponse",
    "RemoteErrorResponse",
    "parse_request",
    "is_retryable_status",
]


class RemoteCallRequest(BaseModel):
    """BigQuery が送ってくるバッチ呼び出しの封筒"""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    request_id: Optional[str] = Field(None, alias="requestId")
    caller: Optional[str] = None
    session_user: Optional[str] = Field(None, alias="sessionUser")
    user_defined_context: Dict[str, str] = Field(
        default_factory=dict, alias="userDefinedContext"
    )
    calls: List[List[Any]]

    @field_validator("user_defined_context", mode="before")
    @classmethod
    def default_empty_context(cls, value: Optional[Dict[str, str]]) -> Dict[str, str]:
        return {} if value is None else value


class RemoteCallResponse(BaseModel):
    replies: List[Any]


class RemoteErrorResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    error_message: str = Field(..., alias="errorMessage")


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg', 'invalid value')}"


def parse_request(payload: Any) -> RemoteCallRequest:
    if not isinstance(payload, dict):
        raise InvalidRequestError("request body must be a JSON object")
    if "calls" not in payload:
        raise InvalidRequestError("request body is missing 'calls'")
    try:
        return RemoteCallRequest.model_validate(payload)
    except ValidationError as exc:
        raise InvalidRequestError(
            f"invalid request body ({_first_error(exc)})"
        ) from exc
