import logging
import os

from dotenv import load_dotenv

load_dotenv()


def _require_env(name: str) -> str:
    value = (os.environ.get(name) or "").strip()
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _require_session_secret() -> str:
    raw = (os.environ.get("SESSION_SIGNING_SECRET") or "").strip()
    if len(raw) < 32:
        raise RuntimeError("SESSION_SIGNING_SECRET must be set and at least 32 characters long.")
    return raw


def _flag_env(name: str, default: str) -> bool:
    return str(os.environ.get(name, default)).strip().lower() in {"1", "true", "yes", "on"}


FABTRACK_API_BASE_URL = _require_env("FABTRACK_API_BASE_URL").rstrip("/")
FABTRACK_API_TIMEOUT_SECONDS = float(os.environ.get("FABTRACK_API_TIMEOUT_SECONDS") or "10")
SESSION_SIGNING_SECRET = _require_session_secret()
SESSION_COOKIE_HTTPS_ONLY = _flag_env("SESSION_COOKIE_HTTPS_ONLY", "false")
WORKSPACE_TTL_SECONDS = int(os.environ.get("WORKSPACE_TTL_SECONDS") or str(60 * 60 * 12))
LOG_LEVEL = (os.environ.get("LOG_LEVEL") or "INFO").strip().upper()
PORTAL_HOST = (os.environ.get("PORTAL_HOST") or "127.0.0.1").strip()
PORTAL_PORT = int(os.environ.get("PORTAL_PORT") or "8000")

logging.getLogger("fabtrack").setLevel(LOG_LEVEL)
