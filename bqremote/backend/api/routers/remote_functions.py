import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from bqremote.backend.config import (
    MAX_BATCHING_ROWS,
    REPLY_CACHE_ENABLED,
    REPLY_CACHE_TTL_SECONDS,
)
from bqremote.backend.database import get_db
from bqremote.backend.services.batch_service import BatchService
from bqremote.backend.services.builtin_functions import build_default_registry
from bqremote.backend.services.envelope import RemoteErrorResponse, parse_request
from bqremote.backend.services.errors import InvalidRequestError, RemoteFunctionError
from bqremote.backend.services.registry import FunctionRegistry
from bqremote.backend.services.reply_cache import ReplyCacheRepository

router = APIRouter()

logger = logging.getLogger(__name__)

_REGISTRY: Optional[FunctionRegistry] = None


def get_registry() -> FunctionRegistry:
    global _REGISTRY
    if _REGISTRY is None:
        _REGISTRY = build_default_registry()
    return _REGISTRY


def get_batch_service(
    db: Session = Depends(get_db),
    registry: FunctionRegistry = Depends(get_registry),
) -> BatchService:
    reply_cache = (
        ReplyCacheRepository(db, ttl_seconds=REPLY_CACHE_TTL_SECONDS)
        if REPLY_CACHE_ENABLED
        else None
    )
    return BatchService(
        registry,
        max_batching_rows=MAX_BATCHING_ROWS,
        reply_cache=reply_cache,
    )


def error_response(message: str, status_code: int) -> JSONResponse:
    body = RemoteErrorResponse(errorMessage=message).model_dump(by_alias=True)
    return JSONResponse(content=body, status_code=status_code)


async def _read_payload(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        raise InvalidRequestError("request body is empty")
    try:
        return json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidRequestError(f"request body is not valid JSON: {exc}") from exc


async def _handle(
    request: Request, service: BatchService, function_name: Optional[str]
) -> JSONResponse:
    # 例外はすべて errorMessage に変換する (BigQuery は status でリトライ可否を決める)
    try:
        payload = await _read_payload(request)
        call_request = parse_request(payload)
        response = await run_in_threadpool(service.process, function_name, call_request)
    except RemoteFunctionError as exc:
        return error_response(exc.message, exc.status_code)
    except Exception:
        logger.exception("Unexpected failure while serving %s", function_name or "/")
        return error_response("internal error", 500)
    return JSONResponse(content=response.model_dump())


@router.post("/")
async def call_by_context(
    request: Request,
    service: BatchService = Depends(get_batch_service),
):
    """Dispatch on userDefinedContext.function."""

    return await _handle(request, service, None)


@router.post("/functions/{function_name}")
async def call_function(
    function_name: str,
    request: Request,
    service: BatchService = Depends(get_batch_service),
):
    return await _handle(request, service, function_name)
