"""Compilation cache with single-flight builds.

Contract:
- Inputs: Fingerprints, compiled artifacts, build callables
- Outputs: Cached artifacts or misses
- Side Effects: Reads/writes cache/index.json, deletes evicted artifact directories
"""

import asyncio
import logging
import shutil
from collections.abc import Awaitable
from collections.abc import Callable
from datetime import UTC
from datetime import datetime
from pathlib import Path

from ..errors import CacheCorruption
from ..models.artifacts import BinaryArtifact
from ..storage.json_store import load_model
from ..storage.json_store import save_model
from ..utils.checksums import file_checksum
from .models import CacheEntry
from .models import CacheIndex
from .models import CacheStats

logger = logging.getLogger(__name__)

BuildFn = Callable[[], Awaitable[BinaryArtifact]]


class CompilationCache:
    """Fingerprint-keyed artifact cache.

    At most one build runs per fingerprint: ``get_or_build`` registers an
    in-flight future for the first caller, and concurrent callers await it.
    Entries are validated by checksum before reuse; a mismatch purges the
    entry and is reported as a miss. Total artifact size is bounded with
    least-recently-used eviction that skips in-flight and pinned
    fingerprints. Callers pin the artifacts they still have to use.

    Example:
        >>> cache = CompilationCache(Path(".binship/cache"), max_size_bytes=1 << 30)
        >>> artifact, built = await cache.get_or_build(fingerprint, build)
    """

    def __init__(self, cache_dir: Path, max_size_bytes: int | None = None) -> None:
        self.cache_dir = Path(cache_dir)
        self.artifacts_dir = self.cache_dir / "artifacts"
        self.index_path = self.cache_dir / "index.json"
        self.max_size_bytes = max_size_bytes
        self.artifacts_dir.mkdir(parents=True, exist_ok=True)

        self._index = load_model(self.index_path, CacheIndex) or CacheIndex()
        self._lock = asyncio.Lock()
        self._in_flight: dict[str, asyncio.Future[BinaryArtifact]] = {}
        self._pins: dict[str, int] = {}
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        logger.debug(f"Loaded cache index with {len(self._index.entries)} entries from {self.index_path}")

    def artifact_dir(self, fingerprint: str) -> Path:
        return self.artifacts_dir / fingerprint

    def _save_index(self) -> None:
        self._index.last_updated = datetime.now(UTC)
        save_model(self.index_path, self._index)

    async def _remove_artifact(self, fingerprint: str) -> None:
        await asyncio.to_thread(shutil.rmtree, self.artifact_dir(fingerprint), True)

    async def _validate(self, entry: CacheEntry) -> None:
        """Raise CacheCorruption if the artifact is missing or altered."""
        try:
            checksum, size = await asyncio.to_thread(file_checksum, Path(entry.artifact.path))
        except OSError as e:
            raise CacheCorruption(f"Cached artifact {entry.artifact.path} unreadable: {e}") from e
        if checksum != entry.checksum or size != entry.artifact.size:
            raise CacheCorruption(
                f"Cached artifact {entry.artifact.path} checksum mismatch: expected {entry.checksum}, got {checksum}"
            )

    async def lookup(self, fingerprint: str) -> BinaryArtifact | None:
        """Return the validated artifact for ``fingerprint``, or None on a miss."""
        async with self._lock:
            entry = self._index.entries.get(fingerprint)
        if entry is None:
            self.misses += 1
            return None

        try:
            await self._validate(entry)
        except CacheCorruption as e:
            logger.warning(f"Purging corrupt cache entry {fingerprint[:12]}: {e}")
            await self.invalidate(fingerprint)
            self.misses += 1
            return None

        async with self._lock:
            current = self._index.entries.get(fingerprint)
            if current is not None:
                current.last_used_at = datetime.now(UTC)
                self._save_index()
        self.hits += 1
        return entry.artifact

    async def store(self, fingerprint: str, artifact: BinaryArtifact) -> None:
        """Record ``artifact`` for ``fingerprint`` and evict down to the size bound."""
        now = datetime.now(UTC)
        async with self._lock:
            self._index.entries[fingerprint] = CacheEntry(
                fingerprint=fingerprint,
                artifact=artifact,
                checksum=artifact.checksum,
                created_at=now,
                last_used_at=now,
            )
            await self._evict_locked(protect=fingerprint)
            self._save_index()
        logger.info(f"Cached {artifact.target_triple} artifact under {fingerprint[:12]}")

    async def invalidate(self, fingerprint: str) -> bool:
        """Remove an entry and its artifact. Returns whether an entry existed."""
        async with self._lock:
            entry = self._index.entries.pop(fingerprint, None)
            if entry is not None:
                self._save_index()
        if entry is None:
            return False
        await self._remove_artifact(fingerprint)
        logger.info(f"Invalidated cache entry {fingerprint[:12]}")
        return True

    def _total_bytes(self) -> int:
        return sum(entry.artifact.size for entry in self._index.entries.values())

    def pin(self, fingerprint: str) -> None:
        """Keep ``fingerprint`` out of eviction until a matching ``unpin``."""
        self._pins[fingerprint] = self._pins.get(fingerprint, 0) + 1

    def unpin(self, fingerprint: str) -> None:
        remaining = self._pins.get(fingerprint, 0) - 1
        if remaining > 0:
            self._pins[fingerprint] = remaining
        else:
            self._pins.pop(fingerprint, None)

    def pinned(self) -> set[str]:
        return set(self._pins)

    async def evict(self) -> int:
        """Evict down to the size bound. Returns the number of entries removed."""
        async with self._lock:
            evicted = await self._evict_locked()
            if evicted:
                self._save_index()
        return evicted

    async def _evict_locked(self, protect: str | None = None) -> int:
        if self.max_size_bytes is None:
            return 0
        total = self._total_bytes()
        if total <= self.max_size_bytes:
            return 0

        candidates = sorted(
            (
                entry
                for fingerprint, entry in self._index.entries.items()
                if fingerprint != protect and fingerprint not in self._in_flight and fingerprint not in self._pins
            ),
            key=lambda entry: entry.last_used_at,
        )
        evicted = 0
        for entry in candidates:
            if total <= self.max_size_bytes:
                break
            del self._index.entries[entry.fingerprint]
            await self._remove_artifact(entry.fingerprint)
            total -= entry.artifact.size
            self.evictions += 1
            evicted += 1
            logger.info(f"Evicted cache entry {entry.fingerprint[:12]} ({entry.artifact.size} bytes)")

        if total > self.max_size_bytes:
            logger.warning(f"Cache holds {total} bytes over its {self.max_size_bytes} byte limit (entries in use)")
        return evicted

    async def get_or_build(self, fingerprint: str, build: BuildFn, force: bool = False) -> tuple[BinaryArtifact, bool]:
        """Return a cached artifact or build it, at most once per fingerprint.

        Args:
            fingerprint: Cache key
            build: Coroutine function producing the artifact on a miss
            force: Discard any cached entry and rebuild

        Returns:
            (artifact, built) where ``built`` is True only for the caller that
            actually ran ``build``

        Raises:
            Whatever ``build`` raises; failures are shared with every waiter
            and nothing is cached
        """
        async with self._lock:
            future = self._in_flight.get(fingerprint)
            owner = future is None
            if future is None:
                future = asyncio.get_running_loop().create_future()
                self._in_flight[fingerprint] = future

        if not owner:
            logger.debug(f"Waiting for in-flight build {fingerprint[:12]}")
            return await asyncio.shield(future), False

        try:
            if force:
                await self.invalidate(fingerprint)
            else:
                cached = await self.lookup(fingerprint)
                if cached is not None:
                    future.set_result(cached)
                    return cached, False

            artifact = await build()
            await self.store(fingerprint, artifact)
            future.set_result(artifact)
            return artifact, True
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unobserved failure is not logged again by asyncio
            future.exception()
            raise
        finally:
            self._in_flight.pop(fingerprint, None)

    def in_flight(self) -> set[str]:
        return set(self._in_flight)

    def entries(self) -> list[CacheEntry]:
        return sorted(self._index.entries.values(), key=lambda entry: entry.last_used_at, reverse=True)

    def stats(self) -> CacheStats:
        return CacheStats(
            entries=len(self._index.entries),
            total_bytes=self._total_bytes(),
            max_bytes=self.max_size_bytes,
            hits=self.hits,
            misses=self.misses,
            evictions=self.evictions,
            in_flight=len(self._in_flight),
        )

    async def clear(self) -> int:
        """Drop every entry that is neither in flight nor pinned. Returns the number removed."""
        async with self._lock:
            removable = [fp for fp in self._index.entries if fp not in self._in_flight and fp not in self._pins]
            for fingerprint in removable:
                del self._index.entries[fingerprint]
            self._save_index()
        for fingerprint in removable:
            await self._remove_artifact(fingerprint)
        logger.info(f"Cleared {len(removable)} cache entries")
        return len(removable)
