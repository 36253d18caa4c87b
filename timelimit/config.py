"""Central configuration for timelimit."""

import os
from pathlib import Path

# ── Paths ──────────────────────────────────────────────────────────────
_PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Load .env from project root
_env_path = _PROJECT_ROOT / ".env"
if _env_path.exists():
    for _line in _env_path.read_text().splitlines():
        _line = _line.strip()
        if _line and not _line.startswith("#") and "=" in _line:
            _k, _, _v = _line.partition("=")
            os.environ.setdefault(_k.strip(), _v.strip())


def _default_data_dir() -> Path:
    env = os.environ.get("TIMELIMIT_DATA_DIR")
    if env:
        return Path(env)
    if (_PROJECT_ROOT / "pyproject.toml").exists():
        return _PROJECT_ROOT / "data"
    return Path("/Library/Application Support/timelimit")


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if not value:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


DATA_DIR = _default_data_dir()
DB_PATH = DATA_DIR / "time-limit.db"
LOG_PATH = DATA_DIR / "time-limit.log"
ERROR_LOG_PATH = DATA_DIR / "time-limit-error.log"
STATUS_PATH = DATA_DIR / "status.txt"
LIMITS_PATH = Path(os.environ.get("TIMELIMIT_LIMITS", str(DATA_DIR / "limits.json")))

# ── Scheduling ─────────────────────────────────────────────────────────
CHECK_INTERVAL = 60  # seconds between launchd invocations
TICK_MINUTES = 1     # one recorded row == one CHECK_INTERVAL of usage

# ── Warnings ───────────────────────────────────────────────────────────
WARNING_WINDOW = 30  # minutes; warn only inside this window
WARNING_STEP = 5     # warn every N minutes inside the window (plus the last minute)
SPEAK_WARNINGS = _env_bool("TIMELIMIT_SPEAK_WARNINGS", True)

# ── Enforcement ────────────────────────────────────────────────────────
ALERT_TITLE = "System Usage Time Limit"
ALERT_GIVE_UP_SECONDS = 10
GRACE_SECONDS = _env_int("TIMELIMIT_GRACE_SECONDS", 30)
ENFORCE_ACTION = os.environ.get("TIMELIMIT_ENFORCE_ACTION", "logout")  # "logout" | "sleep"

# ── Logging ────────────────────────────────────────────────────────────
LOG_RETENTION_DAYS = 30

# ── Subprocess ─────────────────────────────────────────────────────────
COMMAND_TIMEOUT = 10  # seconds for osascript / say
