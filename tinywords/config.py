from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path

from loguru import logger


PROJECT_ROOT = Path(__file__).resolve().parents[1]
DB_PATH = Path(os.getenv("TINYWORDS_DB_PATH", str(PROJECT_ROOT / "tinywords.db")))

DEFAULT_TIMEZONE = os.getenv("TINYWORDS_DEFAULT_TIMEZONE", "Asia/Seoul")
DEFAULT_USER_ID = os.getenv("TINYWORDS_DEFAULT_USER_ID", "user-1")
IDEMPOTENCY_TTL_SECONDS = int(os.getenv("TINYWORDS_IDEMPOTENCY_TTL_SECONDS", "86400"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

LLM_BASE_URL = os.getenv("TINYWORDS_LLM_BASE_URL", "https://api.openai.com/v1")
LLM_MODEL = os.getenv("TINYWORDS_LLM_MODEL", "gpt-4o")
LLM_TIMEOUT_SECONDS = float(os.getenv("TINYWORDS_LLM_TIMEOUT_SECONDS", "30"))
LLM_MAX_RETRIES = 1

ALLOWED_DAILY_TARGETS = (3, 4, 5)


@dataclass(frozen=True)
class PlanDefaults:
    daily_target: int = 3
    level: str = "A2"
    learning_focus: str = "travel"
    known_words_limit: int = 200
    recent_words_limit: int = 25


def configure_logging(level: str | None = None) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=level or LOG_LEVEL,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | {name}:{function} - {message}",
    )


def ensure_dirs() -> None:
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
