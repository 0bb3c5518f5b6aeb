from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from bqremote.backend.database import Base
from bqremote.backend.models import CachedReply
from bqremote.backend.services.batch_service import BatchService
from bqremote.backend.services.builtin_functions import build_default_registry
from bqremote.backend.services.envelope import parse_request
from bqremote.backend.services.errors import (
    ArityError,
    BatchTooLargeError,
    RowEvaluationError,
    UnknownFunctionError,
    UnsupportedTypeError,
)
from bqremote.backend.services.registry import FunctionRegistry
from bqremote.backend.services.reply_cache import (
    CacheKey,
    ReplyCacheRepository,
    digest_calls,
)
from bqremote.backend.services.value_codec import BigQueryType

_ = (CachedReply,)


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)


def test_registry_rejects_duplicates_and_unsupported_types():
    registry = FunctionRegistry()
    registry.register("echo", lambda v: v, args=["STRING"], returns="STRING")
    with pytest.raises(ValueError):
        registry.register("echo", lambda v: v, args=["STRING"], returns="STRING")
    with pytest.raises(UnsupportedTypeError):
        registry.register("geo", lambda v: v, args=["GEOGRAPHY"], returns="STRING")
    with pytest.raises(UnsupportedTypeError):
        registry.register("arr", lambda v: v, args=["STRING"], returns="ARRAY")


def test_registry_resolves_explicit_name_before_context():
    registry = build_default_registry()
    context = {"function": "normalize_text"}
    assert registry.resolve("add_integers", context).name == "add_integers"
    assert registry.resolve(None, context).name == "normalize_text"
    with pytest.raises(UnknownFunctionError):
        registry.resolve(None, {})
    with pytest.raises(UnknownFunctionError):
        registry.resolve(None, {"function": "nope"})


def test_invoke_checks_arity():
    registry = build_default_registry()
    with pytest.raises(ArityError):
        registry.get("days_between").invoke(["2024-01-01"])
    with pytest.raises(ArityError):
        registry.get("add_integers").invoke([])
    assert registry.get("days_between").invoke(["2024-01-01", "2024-03-01"]) == 60
    assert registry.get("bytes_to_hex").invoke(["AAH/"]) == "0001ff"


def test_process_sums_rows():
    service = BatchService(build_default_registry())
    request = parse_request({"calls": [[1, 2, 3], [None], [5, None]]})
    response = service.process("add_integers", request)
    assert response.replies == [6, None, 5]


def test_process_rejects_oversized_batch():
    service = BatchService(build_default_registry(), max_batching_rows=1)
    request = parse_request({"calls": [[1], [2]]})
    with pytest.raises(BatchTooLargeError):
        service.process("add_integers", request)


def test_failing_row_reports_its_index():
    registry = FunctionRegistry()

    @registry.function("inverse", args=[BigQueryType.FLOAT64], returns="FLOAT64")
    def inverse(value):
        return 1 / value

    service = BatchService(registry)
    request = parse_request({"calls": [[2.0], [0.0]]})
    with pytest.raises(RowEvaluationError) as excinfo:
        service.process("inverse", request)
    assert excinfo.value.row_index == 1
    assert excinfo.value.status_code == 400
    assert not excinfo.value.retryable


def test_replayed_request_is_not_reevaluated(db_session: Session):
    registry = FunctionRegistry()
    calls = []

    @registry.function("counted", args=["INT64"], returns="INT64")
    def counted(value):
        calls.append(value)
        return value + 1

    service = BatchService(registry, reply_cache=ReplyCacheRepository(db_session))
    payload = {"requestId": "abc", "calls": [[1], [2]]}

    first = service.process("counted", parse_request(payload))
    second = service.process("counted", parse_request(payload))

    assert first.replies == second.replies == [2, 3]
    assert calls == [1, 2]

    changed = service.process(
        "counted", parse_request({"requestId": "abc", "calls": [[10]]})
    )
    assert changed.replies == [11]
    assert calls == [1, 2, 10]


def test_requests_without_id_are_not_cached(db_session: Session):
    service = BatchService(
        build_default_registry(), reply_cache=ReplyCacheRepository(db_session)
    )
    service.process("add_integers", parse_request({"calls": [[1]]}))
    assert db_session.query(CachedReply).count() == 0


def test_reply_cache_ttl_and_purge(db_session: Session):
    repo = ReplyCacheRepository(db_session, ttl_seconds=3600)
    key = CacheKey("req", "add_integers", digest_calls([[1, 2]]))
    saved_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    repo.save(key, [3], now=saved_at)

    assert repo.get(key, now=saved_at + timedelta(minutes=10)) == [3]
    assert repo.get(key, now=saved_at + timedelta(hours=2)) is None

    assert repo.purge_expired(now=saved_at + timedelta(minutes=10)) == 0
    assert repo.purge_expired(now=saved_at + timedelta(hours=2)) == 1
    assert db_session.query(CachedReply).count() == 0


def test_digest_depends_on_order():
    assert digest_calls([[1], [2]]) != digest_calls([[2], [1]])
    assert digest_calls([[1], [2]]) == digest_calls([[1], [2]])


def test_null_user_defined_context_reads_as_empty():
    request = parse_request({"userDefinedContext": None, "calls": [[1]]})
    assert request.user_defined_context == {}
    with pytest.raises(UnknownFunctionError):
        BatchService(build_default_registry()).process(None, request)
