"""Configuration loading for binship.

Contract:
- Inputs: Config file paths, environment variables
- Outputs: BinshipSettings objects
- Side Effects: Creates default config file if missing
"""

import logging
import os
from pathlib import Path

import yaml

from ..storage.paths import get_config_dir
from .settings import BinshipSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = """# binship configuration
# Every key can be overridden with a BINSHIP_ environment variable
# (for example BINSHIP_PARALLELISM=20).

log_level: "info"

# Build
backend: "zipapp"
compile_jobs: 2
optimization: "release"
size_limit_mb: 50
enforce_size_limit: false
auto_acquire_toolchain: false

# Deployment
install_dir: "/opt/binship"
parallelism: 10
host_timeout: 300
max_retries: 3
verify: true
success_policy: "all"

# Embedded into generated programs
# runtime:
#   controller_endpoint: "https://controller.example.com/reports"
#   execution_timeout: 300
#   report_interval: 30
#   heartbeat_interval: 60
"""


def get_config_path() -> Path:
    """Get path to config file.

    Returns:
        Path to binship.yaml in config directory
    """
    return get_config_dir() / "binship.yaml"


def create_default_config(config_path: Path | None = None) -> None:
    config_path = config_path or get_config_path()
    if config_path.exists():
        logger.debug(f"Config file already exists: {config_path}")
        return
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(DEFAULT_CONFIG, encoding="utf-8")
    logger.info(f"Created default config: {config_path}")


def load_config(config_path: Path | None = None) -> BinshipSettings:
    """Load configuration from YAML and environment.

    Precedence is defaults < YAML < environment variables.

    Args:
        config_path: Optional config file path (default: binship.yaml in config dir)

    Returns:
        Validated settings

    Example:
        >>> settings = load_config()
        >>> assert settings.parallelism > 0
    """
    if config_path is None:
        config_path = get_config_path()

    if not config_path.exists():
        create_default_config(config_path)

    yaml_settings: dict = {}
    try:
        with open(config_path, encoding="utf-8") as f:
            yaml_settings = yaml.safe_load(f) or {}
        logger.debug(f"Loaded config from {config_path}")
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load config from {config_path}: {e}")
        logger.info("Using default settings and environment variables")

    # Only pass YAML values that don't have corresponding env vars
    filtered_yaml = {
        key: value for key, value in yaml_settings.items() if f"BINSHIP_{key.upper()}" not in os.environ
    }

    settings = BinshipSettings(**filtered_yaml)
    logger.info(
        f"Configuration loaded: backend={settings.backend}, parallelism={settings.parallelism}, "
        f"compile_jobs={settings.compile_jobs}"
    )
    return settings
