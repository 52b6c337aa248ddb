"""
Environment-driven settings shared by every service.
Values are read once, at import time, from the process environment and .env.
"""

import os
from typing import Optional

from dotenv import load_dotenv

# Load .env only once here
load_dotenv()


def _bounded_int(name: str, default: int, low: int, high: int) -> int:
    """
    Read an integer setting, falling back to the default when it is
    missing, malformed, or outside [low, high].
    """
    raw = os.getenv(name)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    if value < low or value > high:
        return default
    return value


def _optional_id(name: str) -> Optional[int]:
    raw = os.getenv(name)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# --- SESSIONS ---
SESSION_SECRET = os.getenv("SESSION_SECRET")
if not SESSION_SECRET:
    raise RuntimeError("SESSION_SECRET is missing. Set it in .env")

# --- PASSWORDS ---
DEFAULT_HASH_TIME_COST = 3
PASSWORD_HASH_TIME_COST = _bounded_int("PASSWORD_HASH_TIME_COST", DEFAULT_HASH_TIME_COST, 1, 10)

# --- DONATIONS ---
ANONYMOUS_DONOR_USER_ID = _optional_id("ANONYMOUS_DONOR_USER_ID")

# --- EMAIL ---
SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = _bounded_int("SMTP_PORT", 587, 1, 65535)
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
SMTP_USE_TLS = _flag("SMTP_USE_TLS", True)
EMAIL_FROM = os.getenv("EMAIL_FROM") or SMTP_USER

# --- PHOTO UPLOADS ---
UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER")
PHOTO_URL_PREFIX = os.getenv("PHOTO_URL_PREFIX", "/uploads").rstrip("/")
MAX_UPLOAD_BYTES = 5 * 1024 * 1024  # 5 MB

# --- SERVER ---
GATEWAY_PORT = _bounded_int("GATEWAY_PORT", 5050, 1, 65535)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# --- PUBLIC PAGES ---
VIDEO_URL = os.getenv("VIDEO_URL", "https://www.youtube.com/watch?v=dQw4w9WgXcQ")
