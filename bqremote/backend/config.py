import logging
import os

from dotenv import find_dotenv, load_dotenv

# --- 環境設定 ---
env_path = find_dotenv()
if env_path:
    load_dotenv(env_path)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() not in {"0", "false", "no", ""}


DEFAULT_SQLITE_URL = "sqlite:///./bqremote.db"
DATABASE_URL = os.getenv("DATABASE_URL", DEFAULT_SQLITE_URL)

# BigQuery 側の max_batching_rows と揃えておく
MAX_BATCHING_ROWS = int(os.getenv("MAX_BATCHING_ROWS", "500"))

REPLY_CACHE_ENABLED = _env_flag("REPLY_CACHE_ENABLED", "1")
REPLY_CACHE_TTL_SECONDS = int(os.getenv("REPLY_CACHE_TTL_SECONDS", "3600"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

_default_allowed_origins = [
    "http://localhost",
    "http://127.0.0.1",
    "http://localhost:8080",
    "http://127.0.0.1:8080",
]

_env_origins = os.getenv("ALLOWED_ORIGINS")
if _env_origins:
    ALLOWED_ORIGINS = [
        origin.strip() for origin in _env_origins.split(",") if origin.strip()
    ]
else:
    ALLOWED_ORIGINS = _default_allowed_origins


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
