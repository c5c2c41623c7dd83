"""Shared filesystem path helpers for Locker."""
from __future__ import annotations

import os
import sys
from pathlib import Path

from platformdirs import PlatformDirs

_APP_NAME = "Locker"
_LINUX_APP_NAME = "locker"
_STORE_ENV = "LOCKER_STORE_DIR"


def runtime_config_dir() -> Path:
    """Return the per-user runtime configuration directory."""
    if sys.platform in ("win32", "darwin"):
        dirs = PlatformDirs(appname=_APP_NAME, appauthor=None, roaming=True)
    else:
        dirs = PlatformDirs(appname=_LINUX_APP_NAME, appauthor=None, roaming=False)
    return Path(dirs.user_config_path)


def default_store_dir() -> Path:
    value = os.getenv(_STORE_ENV)
    if value:
        return Path(value).expanduser()
    return Path.home() / ".locker"
