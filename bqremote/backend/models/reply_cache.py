from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Integer,
    String,
    UniqueConstraint,
    func,
)

from bqremote.backend.database import Base


class CachedReply(Base):
    """処理済みバッチの応答。同一バッチの再送時にそのまま返す。"""

    __tablename__ = "cached_replies"
    __table_args__ = (
        UniqueConstraint(
            "request_id", "function_name", "calls_digest", name="uq_cached_reply"
        ),
    )

    cached_reply_id = Column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
        index=True,
    )
    request_id = Column(String(255), nullable=False, index=True)
    function_name = Column(String(128), nullable=False)
    calls_digest = Column(String(64), nullable=False)
    row_count = Column(Integer, nullable=False, default=0)
    replies = Column(JSON, nullable=False)
    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
