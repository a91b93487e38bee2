"""Compiler backend interface."""

from abc import ABC
from abc import abstractmethod
from dataclasses import dataclass
from pathlib import Path

from ...models.artifacts import BuildFlags


@dataclass(frozen=True)
class BuildOutput:
    path: Path
    diagnostics: str = ""


class CompilerBackend(ABC):
    """Turns a generated source tree into a single executable for a target.

    ``toolchain_available`` and ``acquire`` let the toolchain manager check
    and install what a target needs before any build starts.
    """

    name: str = ""

    @abstractmethod
    async def toolchain_available(self, target_triple: str) -> bool: ...

    async def acquire(self, target_triple: str) -> bool:
        """Try to install the toolchain for ``target_triple``. Returns success."""
        return False

    @abstractmethod
    async def build(
        self,
        source_dir: Path,
        target_triple: str,
        flags: BuildFlags,
        work_dir: Path,
        output_path: Path,
    ) -> BuildOutput:
        """Build ``source_dir`` into ``output_path``.

        Raises:
            CompileError: With the toolchain's diagnostics on failure
        """
