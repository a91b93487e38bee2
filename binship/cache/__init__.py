"""Compilation cache."""

from .fingerprint import compute_fingerprint
from .models import CacheEntry
from .models import CacheIndex
from .models import CacheStats
from .store import CompilationCache

__all__ = [
    "CacheEntry",
    "CacheIndex",
    "CacheStats",
    "CompilationCache",
    "compute_fingerprint",
]
