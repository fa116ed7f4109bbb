from __future__ import annotations

import os
from pathlib import Path

APP_NAME = "rice-mill-management"
STATE_VERSION = "0.3.0"

DEFAULT_BIN_RETENTION_DAYS = 7
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


def project_root() -> Path:
    # .../src/ricemill/config.py -> parents[2] == project root
    return Path(__file__).resolve().parents[2]


def data_dir_setting() -> Path:
    raw = str(os.getenv("RICEMILL_DATA_DIR") or "").strip()
    return Path(raw) if raw else project_root() / "data"


def bin_retention_days() -> int:
    try:
        days = int(os.getenv("RICEMILL_BIN_RETENTION_DAYS") or DEFAULT_BIN_RETENTION_DAYS)
    except ValueError:
        days = DEFAULT_BIN_RETENTION_DAYS
    return max(1, days)


def server_host() -> str:
    return str(os.getenv("RICEMILL_HOST") or "").strip() or DEFAULT_HOST


def server_port() -> int:
    try:
        return int(os.getenv("RICEMILL_PORT") or DEFAULT_PORT)
    except ValueError:
        return DEFAULT_PORT


def log_level() -> str:
    return (str(os.getenv("RICEMILL_LOG_LEVEL") or "").strip() or "INFO").upper()
