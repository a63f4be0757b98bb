# backend/ranker/core/config.py
"""
Central config & environment helpers.
- Loads env (.env) early
- Builds one explicit `Settings` object that factories receive at startup
  (IDP adapter, LLM handle, database, FastAPI app)
- Holds HEURISTIC_WEIGHTS used by the fallback grader
- configure_logging() for the process-wide log format
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from dotenv import load_dotenv

# Load .env once for the whole app
load_dotenv(override=False)


# --- helpers ----------------------------------------------------------------

def _env_str(env: Mapping[str, str], key: str, default: str = "") -> str:
    return (env.get(key) or default).strip()


def _env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = (env.get(key) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = (env.get(key) or "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = (env.get(key) or "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


# --- settings ---------------------------------------------------------------

_DEFAULT_ORIGINS = (
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
)


@dataclass(frozen=True)
class Settings:
    # storage
    database_url: str = "sqlite:///./ranker.db"
    db_echo: bool = False

    # extraction provider
    parser: str = "fixture"
    idp_start_url: str = ""
    idp_base_url: str = ""
    idp_api_key: str = ""
    idp_timeout_seconds: float = 30.0
    fixture_delay_seconds: float = 1.0
    fallback_to_fixtures: bool = True
    callback_hmac_secret: str = ""

    # grading
    gemini_api_key: str = ""
    llm_model: str = "gemini-2.0-flash"
    llm_timeout_seconds: float = 60.0
    model_version: str = "v1"

    # processing
    worker_pool_size: int = 1
    auto_run: bool = True

    # http / ops
    allowed_origins: List[str] = field(default_factory=lambda: list(_DEFAULT_ORIGINS))
    log_level: str = "INFO"

    @property
    def llm_enabled(self) -> bool:
        return bool(self.gemini_api_key)

    @property
    def webhook_verification_enabled(self) -> bool:
        return bool(self.callback_hmac_secret)


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from the environment (or an explicit mapping, handy in tests).
    Gemini key lookup order:
    GEMINI_API_KEY, then GOOGLE_API_KEY, then GEMINI_APIKEY.
    """
    env = os.environ if env is None else env

    extra_origins = [
        o.strip() for o in _env_str(env, "ALLOWED_ORIGINS").split(",") if o.strip()
    ]
    origins = list(dict.fromkeys([*_DEFAULT_ORIGINS, *extra_origins]))

    gemini_key = (
        _env_str(env, "GEMINI_API_KEY")
        or _env_str(env, "GOOGLE_API_KEY")
        or _env_str(env, "GEMINI_APIKEY")
    )

    return Settings(
        database_url=_env_str(env, "DATABASE_URL", "sqlite:///./ranker.db"),
        db_echo=_env_bool(env, "DB_ECHO", False),
        parser=_env_str(env, "PARSER", "fixture").lower(),
        idp_start_url=_env_str(env, "IDP_START_URL") or _env_str(env, "MULE_START_URL"),
        idp_base_url=_env_str(env, "IDP_BASE_URL"),
        idp_api_key=_env_str(env, "IDP_API_KEY"),
        idp_timeout_seconds=_env_float(env, "IDP_TIMEOUT_SECONDS", 30.0),
        fixture_delay_seconds=_env_float(env, "IDP_FIXTURE_DELAY_SECONDS", 1.0),
        fallback_to_fixtures=_env_bool(env, "IDP_FALLBACK_TO_FIXTURES", True),
        callback_hmac_secret=_env_str(env, "CALLBACK_HMAC_SECRET"),
        gemini_api_key=gemini_key,
        llm_model=_env_str(env, "LLM_MODEL", "gemini-2.0-flash"),
        llm_timeout_seconds=_env_float(env, "LLM_TIMEOUT_SECONDS", 60.0),
        model_version=_env_str(env, "MODEL_VERSION", "v1"),
        worker_pool_size=max(1, _env_int(env, "RANKER_WORKERS", 1)),
        auto_run=_env_bool(env, "RANKER_AUTO_RUN", True),
        allowed_origins=origins,
        log_level=_env_str(env, "LOG_LEVEL", "INFO").upper(),
    )


# --- logging ----------------------------------------------------------------

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install one stream handler on the root logger (idempotent)."""
    root = logging.getLogger()
    if not any(getattr(h, "_ranker", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handler._ranker = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(getattr(logging, (level or "INFO").upper(), logging.INFO))


# --- heuristic grading weights (read by pipeline/grading) -------------------

HEURISTIC_WEIGHTS: Dict[str, float] = {
    "base": 50,
    "per_skill": 8,
    "skill_cap": 32,
    "experience_senior": 15,
    "experience_met": 12,
    "experience_solid": 10,
    "experience_some": 5,
    "education": 8,
}

# Years implied by experience-level words when the JD gives no number.
SENIORITY_YEARS: Dict[str, int] = {
    "principal": 8,
    "staff": 7,
    "director": 8,
    "lead": 5,
    "senior": 5,
    "mid": 3,
    "intermediate": 3,
    "junior": 1,
    "entry": 1,
}
