"""Tests for the fingerprint-keyed compilation cache."""

import asyncio
from pathlib import Path

import pytest

from binship.cache.store import CompilationCache
from binship.errors import CompileError
from binship.models.artifacts import BinaryArtifact
from binship.utils.checksums import file_checksum


def write_artifact(cache: CompilationCache, fingerprint: str, size: int = 16) -> BinaryArtifact:
    path = cache.artifact_dir(fingerprint) / "agent"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(fingerprint.encode()[:1] * size)
    checksum, actual = file_checksum(path)
    return BinaryArtifact(
        target_triple="x86_64-unknown-linux-gnu",
        path=str(path),
        checksum=checksum,
        size=actual,
        fingerprint=fingerprint,
    )


@pytest.fixture
def cache(tmp_path: Path) -> CompilationCache:
    return CompilationCache(tmp_path / "cache")


@pytest.mark.unit
class TestLookupAndStore:
    """Tests for hits, misses and corruption handling."""

    @pytest.mark.asyncio
    async def test_miss_then_hit(self, cache) -> None:
        assert await cache.lookup("aaa") is None

        artifact = write_artifact(cache, "aaa")
        await cache.store("aaa", artifact)

        assert await cache.lookup("aaa") == artifact
        stats = cache.stats()
        assert (stats.hits, stats.misses, stats.entries) == (1, 1, 1)

    @pytest.mark.asyncio
    async def test_index_persists(self, cache, tmp_path) -> None:
        await cache.store("aaa", write_artifact(cache, "aaa"))

        reopened = CompilationCache(tmp_path / "cache")
        assert (await reopened.lookup("aaa")) is not None

    @pytest.mark.asyncio
    async def test_corrupt_entry_purged_and_rebuilt(self, cache) -> None:
        artifact = write_artifact(cache, "aaa")
        await cache.store("aaa", artifact)
        Path(artifact.path).write_bytes(b"tampered")

        assert await cache.lookup("aaa") is None
        assert cache.stats().entries == 0
        assert not cache.artifact_dir("aaa").exists()

        async def build() -> BinaryArtifact:
            return write_artifact(cache, "aaa")

        rebuilt, built = await cache.get_or_build("aaa", build)
        assert built
        assert rebuilt.checksum == artifact.checksum

    @pytest.mark.asyncio
    async def test_missing_artifact_is_a_miss(self, cache) -> None:
        artifact = write_artifact(cache, "aaa")
        await cache.store("aaa", artifact)
        Path(artifact.path).unlink()

        assert await cache.lookup("aaa") is None

    @pytest.mark.asyncio
    async def test_invalidate(self, cache) -> None:
        await cache.store("aaa", write_artifact(cache, "aaa"))

        assert await cache.invalidate("aaa")
        assert not await cache.invalidate("aaa")
        assert not cache.artifact_dir("aaa").exists()


@pytest.mark.unit
class TestSingleFlight:
    """Tests for at-most-one build per fingerprint."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_build(self, cache) -> None:
        calls = 0

        async def build() -> BinaryArtifact:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.05)
            return write_artifact(cache, "fp")

        results = await asyncio.gather(*(cache.get_or_build("fp", build) for _ in range(5)))

        assert calls == 1
        assert sorted(built for _, built in results) == [False, False, False, False, True]
        assert len({artifact.checksum for artifact, _ in results}) == 1
        assert cache.in_flight() == set()

    @pytest.mark.asyncio
    async def test_cached_result_not_rebuilt(self, cache) -> None:
        async def build() -> BinaryArtifact:
            return write_artifact(cache, "fp")

        _, first = await cache.get_or_build("fp", build)
        _, second = await cache.get_or_build("fp", build)
        assert (first, second) == (True, False)

    @pytest.mark.asyncio
    async def test_force_rebuilds(self, cache) -> None:
        calls = 0

        async def build() -> BinaryArtifact:
            nonlocal calls
            calls += 1
            return write_artifact(cache, "fp")

        await cache.get_or_build("fp", build)
        _, built = await cache.get_or_build("fp", build, force=True)
        assert built
        assert calls == 2

    @pytest.mark.asyncio
    async def test_failure_shared_and_not_cached(self, cache) -> None:
        calls = 0

        async def build() -> BinaryArtifact:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.02)
            raise CompileError("syntax error")

        results = await asyncio.gather(
            cache.get_or_build("fp", build), cache.get_or_build("fp", build), return_exceptions=True
        )

        assert calls == 1
        assert all(isinstance(result, CompileError) for result in results)
        assert cache.stats().entries == 0
        assert cache.in_flight() == set()


@pytest.mark.unit
class TestEviction:
    """Tests for the size bound."""

    @pytest.mark.asyncio
    async def test_least_recently_used_evicted_first(self, tmp_path) -> None:
        cache = CompilationCache(tmp_path / "cache", max_size_bytes=250)
        await cache.store("a", write_artifact(cache, "a", 100))
        await asyncio.sleep(0.01)
        await cache.store("b", write_artifact(cache, "b", 100))
        await asyncio.sleep(0.01)
        assert await cache.lookup("a") is not None
        await asyncio.sleep(0.01)

        await cache.store("c", write_artifact(cache, "c", 100))

        remaining = {entry.fingerprint for entry in cache.entries()}
        assert remaining == {"a", "c"}
        assert cache.stats().evictions == 1
        assert not cache.artifact_dir("b").exists()

    @pytest.mark.asyncio
    async def test_in_flight_entries_never_evicted(self, tmp_path) -> None:
        cache = CompilationCache(tmp_path / "cache", max_size_bytes=150)
        await cache.store("a", write_artifact(cache, "a", 100))

        cache._in_flight["a"] = asyncio.get_running_loop().create_future()
        await cache.store("b", write_artifact(cache, "b", 100))

        assert {entry.fingerprint for entry in cache.entries()} == {"a", "b"}
        assert await cache.clear() == 1
        assert {entry.fingerprint for entry in cache.entries()} == {"a"}
        cache._in_flight.pop("a").cancel()

    @pytest.mark.asyncio
    async def test_pinned_entries_kept_until_unpinned(self, tmp_path) -> None:
        cache = CompilationCache(tmp_path / "cache", max_size_bytes=150)
        cache.pin("a")
        cache.pin("a")
        await cache.store("a", write_artifact(cache, "a", 100))
        await cache.store("b", write_artifact(cache, "b", 100))

        assert {entry.fingerprint for entry in cache.entries()} == {"a", "b"}
        assert cache.artifact_dir("a").exists()
        assert await cache.clear() == 1

        await cache.store("b", write_artifact(cache, "b", 100))
        cache.unpin("a")
        assert cache.pinned() == {"a"}
        cache.unpin("a")
        assert cache.pinned() == set()

        assert await cache.evict() == 1
        assert not cache.artifact_dir("a").exists()
        assert {entry.fingerprint for entry in cache.entries()} == {"b"}

    @pytest.mark.asyncio
    async def test_clear_removes_everything(self, cache) -> None:
        await cache.store("a", write_artifact(cache, "a"))
        await cache.store("b", write_artifact(cache, "b"))

        assert await cache.clear() == 2
        assert cache.stats().entries == 0
