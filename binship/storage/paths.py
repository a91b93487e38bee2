"""Path resolution for binship storage locations.

Every location lives under BINSHIP_HOME unless its own environment variable
overrides it.

Contract:
- Inputs: Environment variables (BINSHIP_HOME and per-directory overrides)
- Outputs: Resolved Path objects
- Side Effects: Creates directories if they don't exist
"""

import os
from pathlib import Path


def get_home_dir() -> Path:
    """Get BINSHIP_HOME from environment.

    Returns:
        Path to root directory (default: .binship)
    """
    root = os.environ.get("BINSHIP_HOME", ".binship")
    return Path(root).resolve()


def _resolve_dir(default: Path, env_var: str) -> Path:
    directory = default
    env_override: str | None = os.environ.get(env_var)
    if env_override is not None:
        directory = Path(env_override).resolve()
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def get_config_dir() -> Path:
    """Get configuration directory ($BINSHIP_HOME/config, or BINSHIP_CONFIG_DIR)."""
    return _resolve_dir(get_home_dir() / "config", "BINSHIP_CONFIG_DIR")


def get_cache_dir() -> Path:
    """Get compilation cache directory.

    Returns:
        Path to cache directory ($BINSHIP_HOME/cache)

    Environment Variables:
        BINSHIP_CACHE_DIR: Override cache directory location

    Example:
        >>> cache_dir = get_cache_dir()
        >>> assert cache_dir.name == "cache" or "BINSHIP_CACHE_DIR" in os.environ
    """
    return _resolve_dir(get_home_dir() / "cache", "BINSHIP_CACHE_DIR")


def get_state_dir() -> Path:
    """Get state directory holding deployment history ($BINSHIP_HOME/state)."""
    return _resolve_dir(get_home_dir() / "state", "BINSHIP_STATE_DIR")


def get_build_dir() -> Path:
    """Get scratch directory for generated sources and backend work ($BINSHIP_HOME/build)."""
    return _resolve_dir(get_home_dir() / "build", "BINSHIP_BUILD_DIR")


def get_log_dir() -> Path:
    """Get log directory ($BINSHIP_HOME/logs, or BINSHIP_LOG_DIR)."""
    return _resolve_dir(get_home_dir() / "logs", "BINSHIP_LOG_DIR")
