"""Code generation for compilation units.

Contract:
- Inputs: CompilationUnit, resolved modules, runtime configuration, static files
- Outputs: Prepared units (payload embedded) and GeneratedSource trees
- Side Effects: Reads module and static files; ``write_source`` writes a tree
"""

import logging
import shutil
from collections.abc import Iterable
from pathlib import Path

from ..errors import PlanError
from ..models.units import CompilationUnit
from ..models.units import ModuleSpec
from ..runtime.models import RuntimeConfig
from .embedder import Embedder
from .embedder import StaticFileRef
from .ir import build_ir
from .ir import load_runtime_skeleton
from .render import GeneratedSource
from .render import render

logger = logging.getLogger(__name__)


class CodeGenerator:
    """Turns compilation units into deterministic source trees.

    Example:
        >>> generator = CodeGenerator()
        >>> unit = generator.prepare(unit, modules, RuntimeConfig())
        >>> source = generator.generate(unit)
        >>> write_source(source, Path("build/src"))
    """

    def __init__(
        self,
        embedder: Embedder | None = None,
        runtime_files: tuple[tuple[str, str], ...] | None = None,
    ) -> None:
        self.embedder = embedder or Embedder()
        self.runtime_files = runtime_files if runtime_files is not None else load_runtime_skeleton()

    def prepare(
        self,
        unit: CompilationUnit,
        modules: list[ModuleSpec],
        runtime_config: RuntimeConfig,
        static_files: Iterable[StaticFileRef] = (),
    ) -> CompilationUnit:
        """Attach modules and the embedded payload to a unit.

        Raises:
            PlanError: If any task references a module absent from ``modules``
        """
        provided = {spec.name for spec in modules}
        missing = sorted(unit.plan.module_names() - provided)
        if missing:
            raise PlanError(
                f"Cannot generate program for {unit.target_triple}, missing modules: {', '.join(missing)}",
                missing_modules=missing,
            )

        needed = sorted((spec for spec in modules if spec.name in unit.plan.module_names()), key=lambda s: s.name)
        payload = self.embedder.embed(unit.plan, runtime_config, static_files)
        return unit.model_copy(update={"modules": needed, "payload": payload})

    def generate(self, unit: CompilationUnit) -> GeneratedSource:
        """Render the source tree of a prepared unit.

        Raises:
            PlanError: If the unit was not prepared or lacks a referenced module
        """
        if unit.payload is None:
            raise PlanError(f"Compilation unit {unit.target_triple} has no embedded payload")
        provided = {spec.name for spec in unit.modules}
        missing = sorted(unit.plan.module_names() - provided)
        if missing:
            raise PlanError(f"Missing modules: {', '.join(missing)}", missing_modules=missing)

        sources = {
            spec.name: Path(spec.source_path).read_text(encoding="utf-8")
            for spec in unit.modules
            if spec.source_path is not None
        }
        ir = build_ir(unit.target_triple, unit.payload, unit.modules, sources, self.runtime_files)
        source = render(ir)
        logger.debug(f"Generated {len(source.files)} file(s) for {unit.target_triple} (digest {source.digest()[:12]})")
        return source


def write_source(source: GeneratedSource, dest: Path) -> Path:
    """Materialize a generated tree, replacing whatever ``dest`` held."""
    if dest.exists():
        shutil.rmtree(dest)
    for rel_path, text in source.files:
        path = dest / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    return dest
