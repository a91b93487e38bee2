"""Self-contained Python zip application backend.

The generated tree is byte-compiled as a syntax check, its requirements are
installed next to it for the target platform, and the result is packed into
a single executable archive with ``zipapp``.
"""

import asyncio
import logging
import shutil
import sys
import zipapp
import zipfile
from pathlib import Path

from ...errors import CompileError
from ...models.artifacts import BuildFlags
from ...targets.triples import SUPPORTED_TARGETS
from ...targets.triples import detect_local_platform
from ...targets.triples import find_target
from ..process import run_command
from .base import BuildOutput
from .base import CompilerBackend

logger = logging.getLogger(__name__)

STRIP_DIR_NAMES = ("__pycache__", "tests", "test")
STRIP_DIR_SUFFIXES = (".dist-info", ".egg-info")
STRIP_FILE_SUFFIXES = (".pyi", ".pyc")


def strip_tree(root: Path) -> int:
    """Remove caches, package metadata, tests and stubs. Returns bytes freed."""
    freed = 0
    for path in sorted(root.rglob("*"), key=lambda p: len(p.parts), reverse=True):
        if not path.exists():
            continue
        if path.is_dir() and (path.name in STRIP_DIR_NAMES or path.name.endswith(STRIP_DIR_SUFFIXES)):
            freed += sum(f.stat().st_size for f in path.rglob("*") if f.is_file())
            shutil.rmtree(path)
        elif path.is_file() and path.suffix in STRIP_FILE_SUFFIXES:
            freed += path.stat().st_size
            path.unlink()
    return freed


class ZipappBackend(CompilerBackend):
    """Builds ``.pyz`` executables with the builder's Python and pip.

    Example:
        >>> backend = ZipappBackend(python_version="3.11")
        >>> await backend.toolchain_available("x86_64-unknown-linux-gnu")
        True
    """

    name = "zipapp"

    def __init__(self, python: str | None = None, python_version: str = "3.11") -> None:
        self.python = python or sys.executable
        self.python_version = python_version
        self._pip_ok: bool | None = None

    def _is_native(self, target_triple: str) -> bool:
        arch, os_name, libc = detect_local_platform()
        if arch is None or os_name is None:
            return False
        native = find_target(arch, os_name, libc)
        return native is not None and native.triple == target_triple

    async def toolchain_available(self, target_triple: str) -> bool:
        if target_triple not in SUPPORTED_TARGETS:
            return False
        if self._pip_ok is None:
            result = await run_command(self.python, "-m", "pip", "--version")
            self._pip_ok = result.ok
            if not result.ok:
                logger.warning(f"pip is not available for {self.python}: {result.output}")
        return self._pip_ok

    async def acquire(self, target_triple: str) -> bool:
        result = await run_command(self.python, "-m", "ensurepip", "--upgrade")
        self._pip_ok = None
        if not result.ok:
            logger.warning(f"ensurepip failed: {result.output}")
        return result.ok

    def _pip_install_args(self, target_triple: str, requirements: Path, site_dir: Path) -> list[str]:
        args = [
            self.python,
            "-m",
            "pip",
            "install",
            "--disable-pip-version-check",
            "--no-compile",
            "--target",
            str(site_dir),
            "-r",
            str(requirements),
        ]
        if not self._is_native(target_triple):
            for tag in SUPPORTED_TARGETS[target_triple].pip_platforms:
                args += ["--platform", tag]
            args += ["--only-binary=:all:", "--implementation", "cp", "--python-version", self.python_version]
        return args

    async def build(
        self,
        source_dir: Path,
        target_triple: str,
        flags: BuildFlags,
        work_dir: Path,
        output_path: Path,
    ) -> BuildOutput:
        diagnostics: list[str] = []

        check = await run_command(self.python, "-m", "compileall", "-q", str(source_dir))
        if not check.ok:
            raise CompileError(f"Generated program for {target_triple} does not compile", check.output)

        staging = work_dir / "app"
        if staging.exists():
            shutil.rmtree(staging)
        await asyncio.to_thread(shutil.copytree, source_dir, staging)

        requirements = staging / "requirements.txt"
        if requirements.exists():
            install = await run_command(*self._pip_install_args(target_triple, requirements, staging))
            diagnostics.append(install.output)
            if not install.ok:
                raise CompileError(f"Dependency installation for {target_triple} failed", install.output)

        if flags.strip:
            freed = await asyncio.to_thread(strip_tree, staging)
            diagnostics.append(f"strip: removed {freed} bytes")

        output_path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(
            zipapp.create_archive,
            staging,
            target=output_path,
            interpreter="/usr/bin/env python3",
            compressed=flags.compress,
        )
        output_path.chmod(0o755)

        try:
            with zipfile.ZipFile(output_path) as archive:
                archive.getinfo("__main__.py")
        except (zipfile.BadZipFile, KeyError) as e:
            raise CompileError(f"Archive for {target_triple} is invalid: {e}") from e

        return BuildOutput(path=output_path, diagnostics="\n".join(d for d in diagnostics if d))
