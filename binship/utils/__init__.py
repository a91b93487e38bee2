"""Shared helpers."""

from .checksums import file_checksum

__all__ = [
    "file_checksum",
]
