"""Native single-file executables built with PyApp.

A wheel of the generated program is built first, then PyApp's Rust
launcher is compiled for the target with ``cargo`` and configured through
``PYAPP_*`` environment variables to embed that wheel.
"""

import logging
import shutil
import sys
from pathlib import Path

from ...errors import CompileError
from ...models.artifacts import BuildFlags
from ...targets.triples import SUPPORTED_TARGETS
from ..process import run_command
from .base import BuildOutput
from .base import CompilerBackend

logger = logging.getLogger(__name__)

EXEC_MODULE = "binship_entry"


class PyAppBackend(CompilerBackend):
    """Builds native launchers around the generated program.

    Args:
        pyapp_source_dir: Unpacked PyApp source tree (contains Cargo.toml)
        python: Interpreter used to build the wheel
        python_version: Python distribution embedded by PyApp
    """

    name = "pyapp"

    def __init__(self, pyapp_source_dir: Path, python: str | None = None, python_version: str = "3.11") -> None:
        self.pyapp_source_dir = Path(pyapp_source_dir)
        self.python = python or sys.executable
        self.python_version = python_version

    async def _installed_targets(self) -> set[str]:
        result = await run_command("rustup", "target", "list", "--installed")
        if not result.ok:
            return set()
        return {line.strip() for line in result.stdout.splitlines() if line.strip()}

    async def toolchain_available(self, target_triple: str) -> bool:
        if target_triple not in SUPPORTED_TARGETS:
            return False
        cargo = await run_command("cargo", "--version")
        if not cargo.ok:
            logger.warning("cargo not found, install Rust: https://rustup.rs")
            return False
        if not (self.pyapp_source_dir / "Cargo.toml").exists():
            logger.warning(f"PyApp source not found at {self.pyapp_source_dir}")
            return False
        return target_triple in await self._installed_targets()

    async def acquire(self, target_triple: str) -> bool:
        logger.info(f"Installing Rust target {target_triple}")
        result = await run_command("rustup", "target", "add", target_triple)
        if not result.ok:
            logger.warning(f"rustup target add {target_triple} failed: {result.output}")
        return result.ok

    async def build(
        self,
        source_dir: Path,
        target_triple: str,
        flags: BuildFlags,
        work_dir: Path,
        output_path: Path,
    ) -> BuildOutput:
        wheel_dir = work_dir / "wheel"
        if wheel_dir.exists():
            shutil.rmtree(wheel_dir)
        wheel = await run_command(
            self.python, "-m", "pip", "wheel", "--no-deps", "--wheel-dir", str(wheel_dir), str(source_dir)
        )
        if not wheel.ok:
            raise CompileError(f"Building wheel for {target_triple} failed", wheel.output)
        wheels = sorted(wheel_dir.glob("*.whl"))
        if not wheels:
            raise CompileError(f"No wheel produced for {target_triple}", wheel.output)

        profile = "dev" if flags.profile == "debug" else "release"
        env = {
            "PYAPP_PROJECT_PATH": str(wheels[0]),
            "PYAPP_EXEC_MODULE": EXEC_MODULE,
            "PYAPP_PYTHON_VERSION": self.python_version,
            "PYAPP_DISTRIBUTION_EMBED": "true",
            "CARGO_TARGET_DIR": str(work_dir / "target"),
            "CARGO_PROFILE_RELEASE_STRIP": "symbols" if flags.strip else "none",
        }
        if flags.profile == "size":
            env["CARGO_PROFILE_RELEASE_OPT_LEVEL"] = "z"
            env["CARGO_PROFILE_RELEASE_LTO"] = "true"

        argv = ["cargo", "build", "--target", target_triple]
        if profile == "release":
            argv.append("--release")
        result = await run_command(*argv, cwd=self.pyapp_source_dir, env=env)
        if not result.ok:
            raise CompileError(f"cargo build for {target_triple} failed with code {result.returncode}", result.output)

        out_dir = work_dir / "target" / target_triple / ("release" if profile == "release" else "debug")
        suffix = SUPPORTED_TARGETS[target_triple].executable_suffix
        built = out_dir / f"pyapp{suffix}"
        if not built.exists():
            raise CompileError(f"Built binary not found in {out_dir}", result.output)

        output_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(built, output_path)
        output_path.chmod(0o755)
        return BuildOutput(path=output_path, diagnostics="\n".join([wheel.output, result.output]).strip())
