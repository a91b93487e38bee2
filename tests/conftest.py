"""
Shared pytest fixtures for the binship test suite.

Provides fixtures for:
- Isolated BINSHIP_HOME and environment
- Sample plans and inventories
- Fake compiler backends and transports for failure injection
- Pipeline services wired to temporary storage
"""

import asyncio
import hashlib
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from binship.cache.store import CompilationCache
from binship.compilation.backends.base import BuildOutput
from binship.compilation.backends.base import CompilerBackend
from binship.compilation.compiler import Compiler
from binship.config.settings import BinshipSettings
from binship.deploy.history import DeploymentHistory
from binship.deploy.transport import LocalTransport
from binship.errors import CompileError
from binship.errors import TransferError
from binship.models.artifacts import BuildFlags
from binship.models.inventory import HostInfo
from binship.models.inventory import Inventory
from binship.runtime.models import ExecutionPlan
from binship.services.pipeline import PipelineService
from binship.targets.toolchain import ToolchainManager


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point BINSHIP_HOME at a temp dir and drop inherited BINSHIP_ variables."""
    for key in list(os.environ):
        if key.startswith("BINSHIP_"):
            monkeypatch.delenv(key)
    home = tmp_path / "home"
    monkeypatch.setenv("BINSHIP_HOME", str(home))
    monkeypatch.chdir(tmp_path)
    return home


@pytest.fixture
def sample_plan_data() -> dict[str, Any]:
    """Plan with task a followed by b and c, which both depend on a."""
    return {
        "metadata": {"vars": {"env": "prod"}},
        "plays": [
            {
                "play_id": "setup",
                "name": "Setup",
                "batches": [
                    {
                        "batch_id": "b1",
                        "tasks": [
                            {"task_id": "a", "module": "set_fact", "args": {"stage": "ready"}},
                            {
                                "task_id": "b",
                                "module": "debug",
                                "args": {"msg": "from b"},
                                "dependencies": ["a"],
                                "parallel_safe": True,
                            },
                            {
                                "task_id": "c",
                                "module": "debug",
                                "args": {"var": "stage"},
                                "dependencies": ["a"],
                                "parallel_safe": True,
                            },
                        ],
                    }
                ],
            }
        ],
        "total_tasks": 3,
    }


@pytest.fixture
def sample_plan(sample_plan_data: dict[str, Any]) -> ExecutionPlan:
    return ExecutionPlan.model_validate(sample_plan_data)


@pytest.fixture
def inventory() -> Inventory:
    """Two linux x86_64 hosts and one arm64 host, all reached locally."""
    return Inventory.from_document(
        {
            "hosts": {
                "web1": {"connection": "local", "arch": "x86_64", "os": "linux", "vars": {"role": "web"}},
                "web2": {"connection": "local", "arch": "amd64", "os": "linux"},
                "edge1": {"connection": "local", "arch": "arm64", "os": "linux", "install_dir": "/srv/agent"},
            }
        }
    )


@pytest.fixture
def two_hosts(inventory: Inventory) -> Inventory:
    return inventory.subset(["web1", "web2"])


class FakeBackend(CompilerBackend):
    """Backend writing a deterministic pseudo-binary derived from the sources."""

    name = "fake"

    def __init__(
        self,
        available: set[str] | None = None,
        fail_targets: set[str] | None = None,
        payload_size: int = 0,
        delay: float = 0.0,
    ) -> None:
        self.available = available
        self.fail_targets = fail_targets or set()
        self.payload_size = payload_size
        self.delay = delay
        self.builds: list[str] = []
        self.acquired: list[str] = []

    async def toolchain_available(self, target_triple: str) -> bool:
        return self.available is None or target_triple in self.available

    async def acquire(self, target_triple: str) -> bool:
        self.acquired.append(target_triple)
        if self.available is not None:
            self.available.add(target_triple)
        return True

    async def build(
        self, source_dir: Path, target_triple: str, flags: BuildFlags, work_dir: Path, output_path: Path
    ) -> BuildOutput:
        self.builds.append(target_triple)
        if self.delay:
            await asyncio.sleep(self.delay)
        if target_triple in self.fail_targets:
            raise CompileError(f"fake toolchain rejected {target_triple}", diagnostics="error: boom")

        digest = hashlib.sha256()
        for path in sorted(source_dir.rglob("*")):
            if path.is_file():
                digest.update(path.relative_to(source_dir).as_posix().encode())
                digest.update(path.read_bytes())
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(b"#!fake\n" + digest.hexdigest().encode() + b"\0" * self.payload_size)
        return BuildOutput(path=output_path, diagnostics=f"built {target_triple}")


class FakeTransport(LocalTransport):
    """LocalTransport with failure injection per host."""

    def __init__(self, root: Path) -> None:
        super().__init__(root)
        self.upload_failures: dict[str, int] = {}
        self.always_fail: set[str] = set()
        self.corrupt: set[str] = set()
        self.upload_delay: dict[str, float] = {}
        self.uploads: list[str] = []

    async def upload(self, host: HostInfo, local_path: Path, remote_path: str) -> None:
        self.uploads.append(host.host_id)
        delay = self.upload_delay.get(host.host_id)
        if delay:
            await asyncio.sleep(delay)
        if host.host_id in self.always_fail:
            raise TransferError(f"connection refused by {host.host_id}")
        remaining = self.upload_failures.get(host.host_id, 0)
        if remaining:
            self.upload_failures[host.host_id] = remaining - 1
            raise TransferError(f"transient failure on {host.host_id}")
        await super().upload(host, local_path, remote_path)
        if host.host_id in self.corrupt:
            self.resolve(host, remote_path).write_bytes(b"corrupted")


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def backend_factory() -> type[FakeBackend]:
    """The FakeBackend class, for tests needing custom failure injection."""
    return FakeBackend


@pytest.fixture
def fake_transport(tmp_path: Path) -> FakeTransport:
    return FakeTransport(tmp_path / "hosts")


@pytest.fixture
def history(tmp_path: Path) -> DeploymentHistory:
    return DeploymentHistory(tmp_path / "state")


@pytest.fixture
def make_service(tmp_path: Path, fake_transport: FakeTransport) -> Callable[..., PipelineService]:
    """Factory building a PipelineService on temp storage with a fake backend."""

    def _make(backend: CompilerBackend | None = None, **overrides: Any) -> PipelineService:
        backend = backend or FakeBackend()
        settings = BinshipSettings(
            **{"retry_backoff_base": 0.0, "retry_backoff_max": 0.0, "install_dir": "/opt/binship", **overrides}
        )
        cache = CompilationCache(tmp_path / "cache", max_size_bytes=settings.cache_max_bytes)
        compiler = Compiler(
            backend,
            build_dir=tmp_path / "build",
            output_dir=cache.artifacts_dir,
            compile_jobs=settings.compile_jobs,
            size_limit_bytes=settings.size_limit_bytes,
            enforce_size_limit=settings.enforce_size_limit,
        )
        return PipelineService(
            settings=settings,
            cache=cache,
            compiler=compiler,
            toolchain=ToolchainManager(backend, auto_acquire=settings.auto_acquire_toolchain),
            history=DeploymentHistory(tmp_path / "state"),
            transport=fake_transport,
        )

    return _make
