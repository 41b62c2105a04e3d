"""
Shared settings and text utilities for the TenderMatch backend
"""

import os
import re
from typing import List, Optional
from dotenv import load_dotenv

# Load environment variables from the project root, then the working directory
load_dotenv(os.path.join(os.path.dirname(__file__), '..', '.env'))
load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


# Generation service
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-5-20250929")
DEFAULT_MAX_TOKENS = _env_int("DEFAULT_MAX_TOKENS", 8000)
DEFAULT_TEMPERATURE = _env_float("DEFAULT_TEMPERATURE", 0.3)
GENERATION_TIMEOUT_SECONDS = _env_float("GENERATION_TIMEOUT_SECONDS", 120.0)

# Admission and retry
TOKENS_PER_MINUTE = _env_int("TOKENS_PER_MINUTE", 30000)
MIN_CALL_INTERVAL_SECONDS = _env_float("MIN_CALL_INTERVAL_SECONDS", 1.0)
MAX_IN_FLIGHT_GENERATIONS = _env_int("MAX_IN_FLIGHT_GENERATIONS", 4)
RATE_LIMIT_MAX_RETRIES = _env_int("RATE_LIMIT_MAX_RETRIES", 3)
RATE_LIMIT_BACKOFF_SECONDS = _env_float("RATE_LIMIT_BACKOFF_SECONDS", 2.0)
CHARS_PER_TOKEN = _env_int("CHARS_PER_TOKEN", 4)

# Scoring
SCORING_FORMULA_VERSION = os.getenv("SCORING_FORMULA_VERSION", "score-formula-v1")
DEFAULT_RESPONSE_LANGUAGE = os.getenv("DEFAULT_RESPONSE_LANGUAGE", "italiano")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "tendermatch.log")

# HTTP
DEV_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]


def get_cors_origins() -> List[str]:
    """Origins from CORS_ORIGINS (comma separated), localhost origins otherwise"""
    raw = os.getenv("CORS_ORIGINS")
    if raw:
        return [origin.strip() for origin in raw.split(",") if origin.strip()]
    return list(DEV_CORS_ORIGINS)


_SEPARATOR_RUN = re.compile(r"[^a-z0-9]+")
_FENCE_OPEN = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n?")
_FENCE_CLOSE = re.compile(r"\n?\s*```\s*$")

# Signatures that break a character-based token estimate
_PDF_SIGNATURE = re.compile(r"%PDF-\d")
_DATA_URI = re.compile(r"data:[\w.+-]+/[\w.+-]+;base64,", re.IGNORECASE)
_BASE64_RUN = re.compile(r"[A-Za-z0-9+/]{200,}={0,2}")


def normalize_identifier(value: Optional[str]) -> str:
    """Lowercase and collapse whitespace/punctuation runs to a single underscore"""
    if not value:
        return ""
    return _SEPARATOR_RUN.sub("_", str(value).lower()).strip("_")


def strip_code_fences(text: str) -> str:
    """Remove a leading ```lang marker and a trailing ``` marker"""
    stripped = (text or "").strip()
    if stripped.startswith("```"):
        stripped = _FENCE_OPEN.sub("", stripped, count=1)
        stripped = _FENCE_CLOSE.sub("", stripped, count=1)
    return stripped.strip()


def looks_like_binary_payload(text: str) -> bool:
    """Heuristic: does the text carry an embedded PDF or base64 blob?"""
    if not text:
        return False
    return bool(
        _PDF_SIGNATURE.search(text)
        or _DATA_URI.search(text)
        or _BASE64_RUN.search(text)
    )
