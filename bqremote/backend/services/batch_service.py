"""Evaluate one BigQuery batch against a registered remote function.

BigQuery may deliver the same batch more than once (for example after a
network fault on the response), so a batch with a ``requestId`` is answered
from the reply cache when it has already been computed.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .envelope import RemoteCallRequest, RemoteCallResponse
from .errors import BatchTooLargeError, RemoteFunctionError, RowEvaluationError
from .registry import FunctionRegistry, RemoteFunction
from .reply_cache import CacheKey, ReplyCacheRepository, digest_calls

logger = logging.getLogger(__name__)


class BatchService:
    def __init__(
        self,
        registry: FunctionRegistry,
        *,
        max_batching_rows: Optional[int] = None,
        reply_cache: Optional[ReplyCacheRepository] = None,
    ):
        self.registry = registry
        self.max_batching_rows = max_batching_rows
        self.reply_cache = reply_cache

    def _check_batch_size(self, request: RemoteCallRequest) -> None:
        limit = self.max_batching_rows
        if limit and len(request.calls) > limit:
            raise BatchTooLargeError(
                f"batch of {len(request.calls)} rows exceeds max_batching_rows={limit}"
            )

    def _cache_key(
        self, function: RemoteFunction, request: RemoteCallRequest
    ) -> Optional[CacheKey]:
        if self.reply_cache is None or not request.request_id:
            return None
        return CacheKey(
            request_id=request.request_id,
            function_name=function.name,
            calls_digest=digest_calls(request.calls),
        )

    def _lookup(self, key: Optional[CacheKey]) -> Optional[List[Any]]:
        if key is None or self.reply_cache is None:
            return None
        try:
            return self.reply_cache.get(key)
        except SQLAlchemyError as exc:
            # キャッシュが使えなくても関数の評価は続ける
            logger.warning("Reply cache lookup failed for %s: %s", key.request_id, exc)
            self.reply_cache.db.rollback()
            return None

    def _store(self, key: Optional[CacheKey], replies: List[Any]) -> None:
        if key is None or self.reply_cache is None:
            return
        try:
            self.reply_cache.save(key, replies)
        except SQLAlchemyError as exc:
            logger.warning("Reply cache store failed for %s: %s", key.request_id, exc)
            self.reply_cache.db.rollback()

    def evaluate(self, function: RemoteFunction, calls: List[List[Any]]) -> List[Any]:
        replies: List[Any] = []
        for index, row in enumerate(calls):
            try:
                replies.append(function.invoke(row))
            except RemoteFunctionError as exc:
                logger.warning("%s failed on row %d: %s", function.name, index, exc)
                raise RowEvaluationError(
                    index, exc, status_code=exc.status_code
                ) from exc
            except (ValueError, TypeError, ArithmeticError) as exc:
                logger.warning("%s failed on row %d: %s", function.name, index, exc)
                raise RowEvaluationError(index, exc) from exc
        return replies

    def process(
        self, function_name: Optional[str], request: RemoteCallRequest
    ) -> RemoteCallResponse:
        function = self.registry.resolve(function_name, request.user_defined_context)
        self._check_batch_size(request)

        key = self._cache_key(function, request)
        cached = self._lookup(key)
        if cached is not None and len(cached) == len(request.calls):
            logger.info(
                "Replaying %d cached replies for request %s", len(cached), key.request_id
            )
            return RemoteCallResponse(replies=cached)

        replies = self.evaluate(function, request.calls)
        self._store(key, replies)
        logger.info(
            "Evaluated %s on %d rows (caller=%s)",
            function.name,
            len(replies),
            request.caller,
        )
        return RemoteCallResponse(replies=replies)
