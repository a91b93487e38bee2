"""Tests for target resolution, host grouping and toolchains."""

import pytest

from binship.errors import ToolchainMissing
from binship.errors import UnsupportedTarget
from binship.models.inventory import HostInfo
from binship.models.inventory import Inventory
from binship.targets.resolver import TargetResolver
from binship.targets.toolchain import ToolchainManager
from binship.targets.triples import find_target
from binship.targets.triples import normalize_arch
from binship.targets.triples import normalize_os


@pytest.mark.unit
class TestNormalization:
    """Tests for metadata aliases."""

    @pytest.mark.parametrize(("raw", "expected"), [("amd64", "x86_64"), ("ARM64", "aarch64"), ("sparc", None)])
    def test_arch_aliases(self, raw, expected) -> None:
        assert normalize_arch(raw) == expected

    @pytest.mark.parametrize(("raw", "expected"), [("macOS", "darwin"), ("win32", "windows"), ("", None)])
    def test_os_aliases(self, raw, expected) -> None:
        assert normalize_os(raw) == expected

    def test_linux_defaults_to_glibc(self) -> None:
        assert find_target("x86_64", "linux").triple == "x86_64-unknown-linux-gnu"

    def test_darwin_ignores_libc(self) -> None:
        assert find_target("aarch64", "darwin", "musl").triple == "aarch64-apple-darwin"


@pytest.mark.unit
class TestTargetResolver:
    """Tests for per-host resolution and grouping."""

    def test_resolve_from_metadata(self) -> None:
        host = HostInfo(host_id="h", arch="arm64", os="linux", libc="musl")
        assert TargetResolver().resolve_host(host) == "aarch64-unknown-linux-musl"

    def test_host_triple_wins_over_metadata(self) -> None:
        host = HostInfo(host_id="h", arch="arm64", os="linux", target_triple="x86_64-apple-darwin")
        assert TargetResolver().resolve_host(host) == "x86_64-apple-darwin"

    def test_override_wins_over_everything(self) -> None:
        host = HostInfo(host_id="h", target_triple="x86_64-apple-darwin")
        assert TargetResolver("aarch64-unknown-linux-gnu").resolve_host(host) == "aarch64-unknown-linux-gnu"

    def test_invalid_override_rejected(self) -> None:
        with pytest.raises(UnsupportedTarget, match="Unsupported target override"):
            TargetResolver("riscv64-unknown-linux-gnu")

    def test_unsupported_host_triple(self) -> None:
        with pytest.raises(UnsupportedTarget) as exc_info:
            TargetResolver().resolve_host(HostInfo(host_id="h", target_triple="mips-unknown-linux-gnu"))
        assert exc_info.value.host_id == "h"

    def test_remote_host_without_metadata(self) -> None:
        with pytest.raises(UnsupportedTarget, match="Cannot resolve target"):
            TargetResolver().resolve_host(HostInfo(host_id="h", connection="ssh"))

    def test_group_hosts(self, inventory) -> None:
        grouping = TargetResolver().group_hosts(inventory)

        assert grouping.units == {
            "aarch64-unknown-linux-gnu": ["edge1"],
            "x86_64-unknown-linux-gnu": ["web1", "web2"],
        }
        assert grouping.failures == {}

    def test_group_hosts_isolates_failures(self) -> None:
        inventory = Inventory.from_document(
            {
                "hosts": {
                    "ok": {"arch": "x86_64", "os": "linux"},
                    "odd": {"arch": "sparc", "os": "solaris"},
                }
            }
        )
        grouping = TargetResolver().group_hosts(inventory, ["ok", "odd", "ghost"])

        assert grouping.units == {"x86_64-unknown-linux-gnu": ["ok"]}
        assert sorted(grouping.failures) == ["ghost", "odd"]
        assert all(error.kind == "unsupported_target" for error in grouping.failures.values())


@pytest.mark.unit
class TestToolchainManager:
    """Tests for toolchain checks and acquisition."""

    @pytest.mark.asyncio
    async def test_available_toolchain(self, fake_backend) -> None:
        await ToolchainManager(fake_backend).ensure("x86_64-unknown-linux-gnu")
        assert fake_backend.acquired == []

    @pytest.mark.asyncio
    async def test_missing_without_auto_acquire(self, backend_factory) -> None:
        backend = backend_factory(available=set())
        with pytest.raises(ToolchainMissing) as exc_info:
            await ToolchainManager(backend).ensure("aarch64-unknown-linux-gnu")

        assert exc_info.value.target_triple == "aarch64-unknown-linux-gnu"
        assert backend.acquired == []

    @pytest.mark.asyncio
    async def test_auto_acquire_once(self, backend_factory) -> None:
        backend = backend_factory(available=set())
        manager = ToolchainManager(backend, auto_acquire=True)

        await manager.ensure("aarch64-unknown-linux-gnu")
        await manager.ensure("aarch64-unknown-linux-gnu")
        assert backend.acquired == ["aarch64-unknown-linux-gnu"]
