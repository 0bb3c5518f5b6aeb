"""Cloud Functions style entry point for the remote functions.

Deploy with ``--entry-point=remote_function_handler``. The handler receives
the framework request object and returns ``(body, status, headers)``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from bqremote.backend.config import (
    MAX_BATCHING_ROWS,
    REPLY_CACHE_ENABLED,
    REPLY_CACHE_TTL_SECONDS,
    configure_logging,
)
from bqremote.backend.database import Base, SessionLocal, engine
from bqremote.backend.services.batch_service import BatchService
from bqremote.backend.services.builtin_functions import build_default_registry
from bqremote.backend.services.envelope import parse_request
from bqremote.backend.services.errors import InvalidRequestError, RemoteFunctionError
from bqremote.backend.services.registry import FunctionRegistry
from bqremote.backend.services.reply_cache import ReplyCacheRepository

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Content-Type": "application/json"}

# ウォームスタート時に再利用するためグローバルに保持する
_REGISTRY: Optional[FunctionRegistry] = None
_TABLES_READY = False


def _get_registry() -> FunctionRegistry:
    global _REGISTRY
    if _REGISTRY is None:
        configure_logging()
        _REGISTRY = build_default_registry()
    return _REGISTRY


def _ensure_tables() -> None:
    global _TABLES_READY
    if not _TABLES_READY:
        Base.metadata.create_all(bind=engine)
        _TABLES_READY = True


def _respond(body: Dict[str, Any], status: int) -> Tuple[str, int, Dict[str, str]]:
    return json.dumps(body), status, dict(JSON_HEADERS)


def _function_name(request: Any) -> Optional[str]:
    args = getattr(request, "args", None) or {}
    return args.get("function") or None


def _open_reply_cache() -> Optional[ReplyCacheRepository]:
    """Open the reply cache, or return None when its database is unavailable."""

    if not REPLY_CACHE_ENABLED:
        return None
    session = None
    try:
        _ensure_tables()
        session = SessionLocal()
        return ReplyCacheRepository(session, ttl_seconds=REPLY_CACHE_TTL_SECONDS)
    except SQLAlchemyError as exc:
        # キャッシュが使えなくても関数の評価は続ける
        logger.warning("Reply cache unavailable, serving without it: %s", exc)
        if session is not None:
            session.close()
        return None


def remote_function_handler(request: Any) -> Tuple[str, int, Dict[str, str]]:
    registry = _get_registry()
    function_name = _function_name(request)
    reply_cache: Optional[ReplyCacheRepository] = None
    try:
        payload = request.get_json(silent=True)
        if payload is None:
            raise InvalidRequestError("request body is not valid JSON")
        call_request = parse_request(payload)
        reply_cache = _open_reply_cache()
        service = BatchService(
            registry,
            max_batching_rows=MAX_BATCHING_ROWS,
            reply_cache=reply_cache,
        )
        response = service.process(function_name, call_request)
    except RemoteFunctionError as exc:
        return _respond({"errorMessage": exc.message}, exc.status_code)
    except Exception:
        logger.exception("Unexpected failure in remote function handler")
        return _respond({"errorMessage": "internal error"}, 500)
    finally:
        if reply_cache is not None:
            reply_cache.db.close()
    return _respond(response.model_dump(), 200)
