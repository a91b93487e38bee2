"""Compilation cache models."""

from datetime import UTC
from datetime import datetime

from pydantic import Field

from ..models.artifacts import BinaryArtifact
from ..models.base import CamelCaseModel


class CacheEntry(CamelCaseModel):
    """Cached artifact for one fingerprint.

    Stored in cache/index.json. The artifact file itself lives under
    cache/artifacts/<fingerprint>/.
    """

    fingerprint: str = Field(description="Cache key")
    artifact: BinaryArtifact = Field(description="Reference to the compiled binary")
    checksum: str = Field(description="SHA-256 recorded when the entry was stored")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_used_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class CacheIndex(CamelCaseModel):
    entries: dict[str, CacheEntry] = Field(default_factory=dict, description="Map of fingerprint to entry")
    last_updated: datetime = Field(default_factory=lambda: datetime.now(UTC))


class CacheStats(CamelCaseModel):
    entries: int
    total_bytes: int
    max_bytes: int | None
    hits: int
    misses: int
    evictions: int
    in_flight: int
