"""Intermediate representation of a generated program.

``build_ir`` is pure: it only rearranges its inputs into frozen values, so
the representation can be inspected and tested without rendering.
"""

import hashlib
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from ..models.units import EmbeddedPayload
from ..models.units import ModuleSpec

# Bump whenever rendering changes so old cache entries stop matching
GENERATOR_VERSION = "1"

RUNTIME_PACKAGE = "binship_runtime"
RUNTIME_REQUIREMENTS = ("click>=8.1", "httpx>=0.25", "pydantic>=2.5")

_RUNTIME_DIR = Path(__file__).resolve().parent.parent / "runtime"


@dataclass(frozen=True)
class ModuleWrapper:
    """Dispatch table entry for one module."""

    name: str
    version: str
    import_path: str
    class_name: str
    source: str | None = None


@dataclass(frozen=True)
class ProgramIR:
    target_triple: str
    plan_json: str
    config_json: str
    static_files: tuple[tuple[str, bytes], ...]
    modules: tuple[ModuleWrapper, ...]
    runtime_files: tuple[tuple[str, str], ...]
    requirements: tuple[str, ...]
    generator_version: str = GENERATOR_VERSION

    @property
    def extra_modules(self) -> tuple[ModuleWrapper, ...]:
        return tuple(module for module in self.modules if module.source is not None)


@lru_cache(maxsize=1)
def load_runtime_skeleton() -> tuple[tuple[str, str], ...]:
    """Read the runtime package sources, sorted by relative path."""
    files = []
    for path in sorted(_RUNTIME_DIR.rglob("*.py")):
        if "__pycache__" in path.parts:
            continue
        files.append((path.relative_to(_RUNTIME_DIR).as_posix(), path.read_text(encoding="utf-8")))
    return tuple(files)


def skeleton_digest(runtime_files: tuple[tuple[str, str], ...]) -> str:
    digest = hashlib.sha256()
    for rel_path, text in runtime_files:
        digest.update(rel_path.encode())
        digest.update(b"\0")
        digest.update(text.encode())
        digest.update(b"\0")
    return digest.hexdigest()


def build_ir(
    target_triple: str,
    payload: EmbeddedPayload,
    modules: list[ModuleSpec],
    module_sources: Mapping[str, str],
    runtime_files: tuple[tuple[str, str], ...],
) -> ProgramIR:
    """Assemble the program representation.

    Args:
        target_triple: Target the program is built for
        payload: Embedded plan, config and static files
        modules: Resolved modules for the dispatch table
        module_sources: Source text of non-builtin modules keyed by name
        runtime_files: Runtime skeleton as (relative path, text) pairs
    """
    wrappers = tuple(
        ModuleWrapper(
            name=spec.name,
            version=spec.version,
            import_path=spec.import_path,
            class_name=spec.class_name,
            source=None if spec.builtin else module_sources[spec.name],
        )
        for spec in sorted(modules, key=lambda spec: spec.name)
    )
    return ProgramIR(
        target_triple=target_triple,
        plan_json=payload.execution_plan,
        config_json=payload.runtime_config,
        static_files=tuple(sorted(payload.static_files.items())),
        modules=wrappers,
        runtime_files=tuple(sorted(runtime_files)),
        requirements=RUNTIME_REQUIREMENTS,
    )
