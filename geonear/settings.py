# geonear/settings.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from geonear.CONSTANTS import (
    DATA_DIR,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CSV_NAME,
    DEFAULT_LEAF_SIZE,
    ROOT,
)


def env_bool(key, default = False):
    """
    Parse boolean-like env vars: 1/0, true/false, yes/no
    Inputs:
        key: (str) environment variable key
        default: (bool) default value if env var is not set
    Returns:
        (bool) parsed boolean value
    """

    val = os.getenv(key)
    if val is None:
        return default

    return val.strip().lower() in {"1", "true", "yes", "y", "on"}


def env_list(key, default=None):
    """
    Parse a comma-separated environment variable into a list of strings.

    Inputs:
        key: (str) environment variable key
        default: (list or None) default list if env var is not set

    Returns:
        (list) list of parsed string values
    """
    val = os.getenv(key)
    if not val:
        return list(default or [])
    return [x.strip() for x in val.split(",") if x.strip()]


def env_int(key, default):
    """
    Parse an environment variable into an integer.

    Inputs:
        key: (str) environment variable key
        default: (int) default integer value if env var is not set

    Returns:
        (int) parsed integer value
    """
    val = os.getenv(key)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def env_log_level(key, default):
    """
    Parse a logging level name from the environment.

    Inputs:
        key: (str) environment variable key
        default: (str) level name used when unset or not a known level

    Returns:
        (str) upper-cased level name, e.g. "DEBUG"
    """
    val = os.getenv(key)
    if val is None:
        return default
    level = val.strip().upper()
    # getLevelName maps known names to ints and echoes "Level X" otherwise
    if isinstance(logging.getLevelName(level), int):
        return level
    return default


def env_path(key):
    """
    Read an optional filesystem path from the environment.

    Inputs:
        key: (str) environment variable key

    Returns:
        (Path or None) the path, or None when unset or blank
    """
    val = os.getenv(key)
    if val is None or not val.strip():
        return None
    return Path(val.strip()).expanduser()


@dataclass(frozen=True)
class Settings:
    """
    Runtime configuration for the geonear nearest-location service.

    All values can be overridden via environment variables so the app can run
    unchanged on any server, container, or host.
    """
    app_name: str
    host: str
    port: int
    debug: bool
    log_level: str
    data_dir: Path
    locations_csv_path: Optional[Path]
    index_leaf_size: int
    csv_chunk_size: int
    eager_index_build: bool
    allowed_origins: List[str]
    cors_allow_credentials: bool
    cors_allow_headers: List[str]

    def is_prod(self):
        """
        Check if the application is running in production mode.

        Returns:
            (bool) True if debug mode is off, otherwise False
        """
        return not self.debug

    def source_candidates(self):
        """
        Default dataset locations, tried in order when no override is set.

        Returns:
            (list) candidate paths
        """
        return [
            Path.cwd() / DEFAULT_CSV_NAME,
            self.data_dir / DEFAULT_CSV_NAME,
            ROOT / DEFAULT_CSV_NAME,
        ]


@lru_cache(maxsize=1)
def get_settings():
    """
    Load and cache application settings from environment variables.

    Returns:
        (Settings) a settings dataclass instance with all config values
    """
    return Settings(
        app_name=os.getenv("APP_NAME", "geonear"),
        host=os.getenv("HOST", "0.0.0.0"),
        port=env_int("PORT", 8000),
        debug=env_bool("DEBUG", True),
        log_level=env_log_level("LOG_LEVEL", "INFO"),
        data_dir=Path(os.getenv("DATA_DIR", str(DATA_DIR))),
        locations_csv_path=env_path("LOCATIONS_CSV_PATH"),
        index_leaf_size=max(1, env_int("INDEX_LEAF_SIZE", DEFAULT_LEAF_SIZE)),
        csv_chunk_size=max(1, env_int("CSV_CHUNK_SIZE", DEFAULT_CHUNK_SIZE)),
        eager_index_build=env_bool("EAGER_INDEX_BUILD", True),
        allowed_origins=env_list("ALLOWED_ORIGINS", ["*"]),
        cors_allow_credentials=env_bool("CORS_ALLOW_CREDENTIALS", False),
        cors_allow_headers=env_list("CORS_ALLOW_HEADERS", ["*"]),
    )
