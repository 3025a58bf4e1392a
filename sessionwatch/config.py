"""sessionwatch configuration."""
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


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name)
    if not value:
        return default
    return Path(value).expanduser()


CLAUDE_HOME = Path.home() / ".claude"

# Watched directories
PROJECTS_DIR = _env_path("SESSIONWATCH_PROJECTS_DIR", CLAUDE_HOME / "projects")
SIGNALS_DIR = _env_path("SESSIONWATCH_SIGNALS_DIR", CLAUDE_HOME / "session-signals")

# Watching
DEBOUNCE_MS = _env_int("SESSIONWATCH_DEBOUNCE_MS", 200)
# How often a missing projects or signals directory is checked for again
DIR_POLL_SECONDS = _env_float("SESSIONWATCH_DIR_POLL_SECONDS", 5.0)

# Status derivation
STALE_TIMEOUT_SECONDS = _env_float("SESSIONWATCH_STALE_TIMEOUT_SECONDS", 15.0)
SWEEP_INTERVAL_SECONDS = _env_float("SESSIONWATCH_SWEEP_INTERVAL_SECONDS", 10.0)

# Git lookups
GIT_BRANCH_TTL_SECONDS = _env_float("SESSIONWATCH_GIT_BRANCH_TTL_SECONDS", 5.0)
GIT_REPO_TTL_SECONDS = _env_float("SESSIONWATCH_GIT_REPO_TTL_SECONDS", 300.0)
GIT_TIMEOUT_SECONDS = _env_float("SESSIONWATCH_GIT_TIMEOUT_SECONDS", 5.0)

# Logging / observability
LOG_LEVEL = os.getenv("SESSIONWATCH_LOG_LEVEL", "INFO")
OTEL_ENABLED = _env_bool("SESSIONWATCH_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("SESSIONWATCH_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("SESSIONWATCH_OTEL_SERVICE_NAME", "sessionwatch")
PROM_PORT = _env_int("SESSIONWATCH_PROM_PORT", 9464)

# Server settings
HOST = os.getenv("SESSIONWATCH_HOST", "127.0.0.1")
PORT = int(os.getenv("SESSIONWATCH_PORT", "4450"))
