"""Configuration for binship."""

from .loader import load_config
from .settings import BinshipSettings

__all__ = [
    "BinshipSettings",
    "load_config",
]
