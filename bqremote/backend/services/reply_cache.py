from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Sequence

from sqlalchemy.orm import Session

from bqremote.backend.models import CachedReply


def digest_calls(calls: Sequence[Sequence[Any]]) -> str:
    encoded = json.dumps(calls, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CacheKey:
    request_id: str
    function_name: str
    calls_digest: str


class ReplyCacheRepository:
    def __init__(self, db: Session, ttl_seconds: Optional[int] = None):
        self.db = db
        self.ttl_seconds = ttl_seconds

    def _cutoff(self, now: datetime) -> Optional[datetime]:
        if not self.ttl_seconds or self.ttl_seconds <= 0:
            return None
        return now - timedelta(seconds=self.ttl_seconds)

    def _query(self, key: CacheKey):
        return self.db.query(CachedReply).filter(
            CachedReply.request_id == key.request_id,
            CachedReply.function_name == key.function_name,
            CachedReply.calls_digest == key.calls_digest,
        )

    def get(self, key: CacheKey, now: Optional[datetime] = None) -> Optional[List[Any]]:
        query = self._query(key)
        cutoff = self._cutoff(now or _utcnow())
        if cutoff is not None:
            query = query.filter(CachedReply.created_at >= cutoff)
        entity = query.first()
        if entity is None:
            return None
        return list(entity.replies)

    def save(
        self, key: CacheKey, replies: List[Any], now: Optional[datetime] = None
    ) -> CachedReply:
        created_at = now or _utcnow()
        entity = self._query(key).first()
        if entity is None:
            entity = CachedReply(
                request_id=key.request_id,
                function_name=key.function_name,
                calls_digest=key.calls_digest,
                row_count=len(replies),
                replies=replies,
                created_at=created_at,
            )
            self.db.add(entity)
        else:
            entity.replies = replies
            entity.row_count = len(replies)
            entity.created_at = created_at

        self.db.commit()
        return entity

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        cutoff = self._cutoff(now or _utcnow())
        if cutoff is None:
            return 0
        deleted = (
            self.db.query(CachedReply)
            .filter(CachedReply.created_at < cutoff)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return int(deleted or 0)
