"""
Centralized configuration: all environment variables, paths, and constants.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path

_log = logging.getLogger(__name__)


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _optional_int(name: str):
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        _log.warning("%s=%r is not an integer; ignoring", name, raw)
        return None


DATA_DIR = Path(os.getenv("DATA_DIR", "/app/data")).resolve()
DATA_DIR.mkdir(parents=True, exist_ok=True)
LEDGER_DIR = DATA_DIR / "ledger"
STORE_BACKEND = os.getenv("STORE_BACKEND", "jsonl").strip().lower()

ECONOMY_EPOCH_SECRET = os.getenv("ECONOMY_EPOCH_SECRET", "").strip()
CRON_SECRET = os.getenv("CRON_SECRET", "").strip()

# --- Economy ---
STARTING_BALANCE = float(os.getenv("STARTING_BALANCE", "100"))
STRUGGLING_THRESHOLD = float(os.getenv("STRUGGLING_THRESHOLD", "10"))
BANKRUPTCY_THRESHOLD = float(os.getenv("BANKRUPTCY_THRESHOLD", "1"))
PLATFORM_FEE_RATE = float(os.getenv("PLATFORM_FEE_RATE", "0.05"))
UPKEEP_COST = float(os.getenv("UPKEEP_COST", "1.0"))
ECONOMY_SEED = _optional_int("ECONOMY_SEED")

# --- Narrative (text generation) ---
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "").rstrip("/")
LLM_MODEL = os.getenv("LLM_MODEL", os.getenv("OLLAMA_MODEL", "llama3.1:8b"))
LLM_API_KEY = os.getenv("LLM_API_KEY", "").strip()
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "15"))
NARRATIVE_MAX_WORKERS = int(os.getenv("NARRATIVE_MAX_WORKERS", "4"))
DIARY_AGENTS_PER_EPOCH = int(os.getenv("DIARY_AGENTS_PER_EPOCH", "5"))
SOCIAL_MIN_POSTS = int(os.getenv("SOCIAL_MIN_POSTS", "3"))
SOCIAL_MAX_POSTS = int(os.getenv("SOCIAL_MAX_POSTS", "5"))
SOCIAL_REPLY_CHANCE = float(os.getenv("SOCIAL_REPLY_CHANCE", "0.3"))
NARRATIVE_TASK_ATTEMPTS = int(os.getenv("NARRATIVE_TASK_ATTEMPTS", "2"))
NARRATIVE_INLINE = _flag("NARRATIVE_INLINE")

# --- Predictions ---
BET_MIN = int(os.getenv("BET_MIN", "10"))
BET_MAX = int(os.getenv("BET_MAX", "500"))
STARTING_POINTS = int(os.getenv("STARTING_POINTS", "1000"))
BET_RATE_LIMIT = int(os.getenv("BET_RATE_LIMIT", "10"))
BET_RATE_WINDOW_SECONDS = float(os.getenv("BET_RATE_WINDOW_SECONDS", "60"))

BACKEND_VERSION = "1.0.0"


def validate_config() -> None:
    """Log warnings for missing/insecure configuration. Called once at startup."""
    if not ECONOMY_EPOCH_SECRET and not CRON_SECRET:
        _log.warning(
            "ECONOMY_EPOCH_SECRET and CRON_SECRET are both empty; privileged "
            "endpoints (epoch, settle, generate) will reject every request."
        )
    if STORE_BACKEND not in ("jsonl", "memory"):
        _log.warning("STORE_BACKEND=%r is unknown; falling back to jsonl.", STORE_BACKEND)
    elif STORE_BACKEND == "memory":
        _log.warning("STORE_BACKEND=memory: the ledger is lost on restart.")
    if BANKRUPTCY_THRESHOLD >= STRUGGLING_THRESHOLD:
        _log.warning(
            "BANKRUPTCY_THRESHOLD (%s) >= STRUGGLING_THRESHOLD (%s); the struggling band is empty.",
            BANKRUPTCY_THRESHOLD, STRUGGLING_THRESHOLD,
        )
    if BET_MIN <= 0 or BET_MIN > BET_MAX:
        _log.warning("Bet bounds look wrong: BET_MIN=%s BET_MAX=%s", BET_MIN, BET_MAX)
    if not LLM_BASE_URL:
        _log.info("LLM_BASE_URL not set; diary and social generation will report failures.")
    if SOCIAL_MIN_POSTS > SOCIAL_MAX_POSTS:
        _log.warning(
            "SOCIAL_MIN_POSTS (%s) > SOCIAL_MAX_POSTS (%s); using the max.",
            SOCIAL_MIN_POSTS, SOCIAL_MAX_POSTS,
        )
