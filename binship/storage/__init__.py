"""Storage layer for binship state."""

from .json_store import load_model
from .json_store import save_model
from .paths import get_build_dir
from .paths import get_cache_dir
from .paths import get_config_dir
from .paths import get_home_dir
from .paths import get_log_dir
from .paths import get_state_dir

__all__ = [
    "get_build_dir",
    "get_cache_dir",
    "get_config_dir",
    "get_home_dir",
    "get_log_dir",
    "get_state_dir",
    "load_model",
    "save_model",
]
