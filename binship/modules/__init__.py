"""Task module resolution."""

from .resolver import ModuleResolver

__all__ = [
    "ModuleResolver",
]
