"""session-distill configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default

# Project whose capture directory is read when no explicit project is given
PROJECT_DIR = Path(os.getenv("SESSION_DISTILL_PROJECT_DIR", os.getcwd())).resolve()

# Capture layout (relative to a project dir)
DATA_DIR_NAME = os.getenv("SESSION_DISTILL_DATA_DIR", ".clens")
SESSIONS_SUBDIR = "sessions"
DISTILLED_SUBDIR = "distilled"
LINKS_FILENAME = "_links.jsonl"

# Thresholds
IDLE_THRESHOLD_MS = 300_000
CHAIN_GAP_THRESHOLD_MS = 5_000
TIMELINE_CAP = _env_int("SESSION_DISTILL_TIMELINE_CAP", 500)
COMM_SEQUENCE_CAP = _env_int("SESSION_DISTILL_COMM_SEQUENCE_CAP", 500)
GIT_TIMEOUT_SECONDS = _env_int("SESSION_DISTILL_GIT_TIMEOUT", 10)

# Observability
OTEL_ENABLED = _env_bool("SESSION_DISTILL_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("SESSION_DISTILL_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("SESSION_DISTILL_OTEL_SERVICE_NAME", "session-distill")
PROM_PORT = _env_int("SESSION_DISTILL_PROM_PORT", 9464)

# Server settings
HOST = os.getenv("SESSION_DISTILL_HOST", "0.0.0.0")
PORT = int(os.getenv("SESSION_DISTILL_PORT", "8000"))
FRONTEND_ORIGIN = os.getenv("SESSION_DISTILL_FRONTEND_ORIGIN", "http://localhost:3000")


def sessions_dir(project_dir: str | Path) -> Path:
    return Path(project_dir) / DATA_DIR_NAME / SESSIONS_SUBDIR


def distilled_dir(project_dir: str | Path) -> Path:
    return Path(project_dir) / DATA_DIR_NAME / DISTILLED_SUBDIR


def links_path(project_dir: str | Path) -> Path:
    return sessions_dir(project_dir) / LINKS_FILENAME
