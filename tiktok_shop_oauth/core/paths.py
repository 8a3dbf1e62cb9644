from __future__ import annotations

import os
import sys
from pathlib import Path

APP_DIR_NAME = "tiktok-shop-oauth"


def _platform_data_dir() -> Path:
    if sys.platform == "win32":
        return Path(os.getenv("APPDATA") or Path.home() / "AppData" / "Roaming") / APP_DIR_NAME
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_DIR_NAME
    return Path(os.getenv("XDG_DATA_HOME") or Path.home() / ".local" / "share") / APP_DIR_NAME


def data_dir() -> Path:
    """Directory for config, tokens and logs; ``TIKTOK_DATA_DIR`` wins, then a
    ``data/`` folder next to a source checkout, then the per-user data dir."""
    env_dir = os.getenv("TIKTOK_DATA_DIR")
    if env_dir:
        return Path(env_dir).expanduser().resolve()
    checkout_data = Path(__file__).resolve().parents[2] / "data"
    if checkout_data.is_dir():
        return checkout_data
    return _platform_data_dir()


def config_file() -> Path:
    return data_dir() / "config.json"


def logs_dir() -> Path:
    return data_dir() / "logs"


__all__ = ["config_file", "data_dir", "logs_dir"]
