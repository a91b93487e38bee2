"""Compiler front end.

Contract:
- Inputs: GeneratedSource, target triple, BuildFlags, fingerprint
- Outputs: BinaryArtifact with checksum, size and diagnostics
- Side Effects: Writes the source tree and artifact, runs toolchain subprocesses
"""

import asyncio
import logging
import shutil
from pathlib import Path

from ..codegen.generator import write_source
from ..codegen.render import GeneratedSource
from ..errors import SizeLimitExceeded
from ..models.artifacts import BinaryArtifact
from ..models.artifacts import BuildFlags
from ..targets.triples import SUPPORTED_TARGETS
from ..utils.checksums import file_checksum
from .backends.base import CompilerBackend

logger = logging.getLogger(__name__)


class Compiler:
    """Runs a backend over generated sources with bounded concurrency.

    Artifacts are written to ``<output_dir>/<fingerprint>/``, which is the
    cache's artifact directory, so cached artifacts are never copied.

    Args:
        backend: Toolchain backend
        build_dir: Scratch directory for sources and intermediate files
        output_dir: Directory receiving finished artifacts
        compile_jobs: Maximum concurrent compilations
        size_limit_bytes: Size above which a warning (or error) is produced
        enforce_size_limit: Raise SizeLimitExceeded instead of warning
    """

    def __init__(
        self,
        backend: CompilerBackend,
        build_dir: Path,
        output_dir: Path,
        compile_jobs: int = 2,
        size_limit_bytes: int | None = None,
        enforce_size_limit: bool = False,
    ) -> None:
        self.backend = backend
        self.build_dir = Path(build_dir)
        self.output_dir = Path(output_dir)
        self.size_limit_bytes = size_limit_bytes
        self.enforce_size_limit = enforce_size_limit
        self._semaphore = asyncio.Semaphore(compile_jobs)

    async def compile(
        self,
        source: GeneratedSource,
        target_triple: str,
        flags: BuildFlags,
        fingerprint: str,
        binary_name: str,
    ) -> BinaryArtifact:
        """Compile one generated program.

        Raises:
            CompileError: If the toolchain rejects the program (not retried)
            SizeLimitExceeded: If the binary is too large and the limit is enforced
        """
        async with self._semaphore:
            work_dir = self.build_dir / fingerprint
            source_dir = await asyncio.to_thread(write_source, source, work_dir / "src")
            suffix = SUPPORTED_TARGETS[target_triple].executable_suffix
            output_path = self.output_dir / fingerprint / f"{binary_name}{suffix}"

            logger.info(f"Compiling {target_triple} ({flags.profile}) with {self.backend.name} -> {output_path}")
            output = await self.backend.build(source_dir, target_triple, flags, work_dir, output_path)

            checksum, size = await asyncio.to_thread(file_checksum, output.path)
            warnings: list[str] = []
            if self.size_limit_bytes is not None and size > self.size_limit_bytes:
                if self.enforce_size_limit:
                    output.path.unlink(missing_ok=True)
                    raise SizeLimitExceeded(size, self.size_limit_bytes)
                message = f"Binary size {size} bytes exceeds limit of {self.size_limit_bytes} bytes"
                logger.warning(f"{target_triple}: {message}")
                warnings.append(message)

            if flags.profile != "debug":
                await asyncio.to_thread(shutil.rmtree, work_dir, True)

            logger.info(f"Compiled {target_triple}: {size} bytes, sha256 {checksum[:12]}")
            return BinaryArtifact(
                target_triple=target_triple,
                path=str(output.path.resolve()),
                checksum=checksum,
                size=size,
                build_flags=flags,
                binary_name=binary_name,
                fingerprint=fingerprint,
                diagnostics=output.diagnostics,
                warnings=warnings,
            )
