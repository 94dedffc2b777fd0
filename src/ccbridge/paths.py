from __future__ import annotations

import os
from pathlib import Path


def bridge_home() -> Path:
    env = os.environ.get("CCBRIDGE_HOME", "").strip()
    if env:
        return Path(env).expanduser().resolve()
    return (Path.home() / ".ccbridge").resolve()


def ensure_home() -> Path:
    home = bridge_home()
    home.mkdir(parents=True, exist_ok=True)
    return home


def db_path() -> Path:
    return ensure_home() / "bridge.db"


def listener_lock_path() -> Path:
    return ensure_home() / "listener.lock"


def listener_pid_path() -> Path:
    return ensure_home() / "listener.pid"


def hook_log_path() -> Path:
    return ensure_home() / "hooks.log"
