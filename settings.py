import os
import logging

from dotenv import load_dotenv

load_dotenv()

SECRET_KEY = os.getenv("SECRET_KEY", "fallback")
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "False").lower() == "true"
DB_PATH_RAW = os.getenv("DB_PATH", "data/adgate.db")
LOG_LEVEL = str(os.getenv("LOG_LEVEL", "INFO") or "INFO").strip().upper()

try:
    LOCAL_SESSION_HOURS = int(os.getenv("LOCAL_SESSION_HOURS", "24") or 24)
except Exception:
    LOCAL_SESSION_HOURS = 24
try:
    LOCAL_IDLE_HOURS = int(os.getenv("LOCAL_IDLE_HOURS", "4") or 4)
except Exception:
    LOCAL_IDLE_HOURS = 4
try:
    SESSION_SWEEP_SECONDS = int(os.getenv("SESSION_SWEEP_SECONDS", "30") or 30)
except Exception:
    SESSION_SWEEP_SECONDS = 30
try:
    USER_SESSION_DAYS = int(os.getenv("USER_SESSION_DAYS", "7") or 7)
except Exception:
    USER_SESSION_DAYS = 7
try:
    AUTH_RESOLVE_TIMEOUT = float(os.getenv("AUTH_RESOLVE_TIMEOUT", "3") or 3)
except Exception:
    AUTH_RESOLVE_TIMEOUT = 3.0
try:
    LOGIN_MAX_ATTEMPTS = int(os.getenv("LOGIN_MAX_ATTEMPTS", "5") or 5)
except Exception:
    LOGIN_MAX_ATTEMPTS = 5
try:
    LOGIN_WINDOW = int(os.getenv("LOGIN_WINDOW", "300") or 300)
except Exception:
    LOGIN_WINDOW = 300

CLIENT_COOKIE = "cid"
USER_SESSION_COOKIE = "user_session"
CLIENT_COOKIE_MAX_AGE = 86400 * 365

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


def _resolve_db_path(p: str) -> str:
    p = os.path.expanduser(str(p or "").strip())
    if not p:
        p = "data/adgate.db"
    if os.path.isabs(p):
        return os.path.normpath(p)
    return os.path.normpath(os.path.join(BASE_DIR, p))


DB_PATH = _resolve_db_path(DB_PATH_RAW)


def setup_logging() -> None:
    level = getattr(logging, LOG_LEVEL, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(message)s")
