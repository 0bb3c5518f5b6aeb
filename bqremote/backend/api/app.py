from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# routers
from bqremote.backend.api.routers.functions import router as functions_router
from bqremote.backend.api.routers.remote_functions import (
    router as remote_functions_router,
)
from bqremote.backend.config import (
    ALLOWED_ORIGINS,
    REPLY_CACHE_ENABLED,
    REPLY_CACHE_TTL_SECONDS,
    configure_logging,
)
from bqremote.backend.database import Base, SessionLocal, engine
from bqremote.backend.models import CachedReply  # noqa: F401
from bqremote.backend.services.reply_cache import ReplyCacheRepository

configure_logging()

# アプリケーションインスタンス
app = FastAPI(title="BigQuery Remote Function API v1")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/v1/health")
def health():
    return {"status": "ok"}


# BigQuery から呼ばれるエンドポイントはプレフィックスなし (CREATE FUNCTION の endpoint に直接書く)
app.include_router(remote_functions_router, tags=["remote-functions"])
app.include_router(functions_router, prefix="/api/v1/functions", tags=["functions"])


@app.on_event("startup")
def on_startup() -> None:
    Base.metadata.create_all(bind=engine)
    if REPLY_CACHE_ENABLED:
        with SessionLocal() as session:
            ReplyCacheRepository(
                session, ttl_seconds=REPLY_CACHE_TTL_SECONDS
            ).purge_expired()
