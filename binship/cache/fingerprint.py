"""Fingerprints identifying compilable units.

A fingerprint is the SHA-256 of a canonical JSON document describing
everything that influences the produced binary: the embedded plan and
runtime config, static file contents, the module set (name, version and
source digest), the target triple, the build flags, the binary name and
the generator/runtime versions.
"""

import hashlib

from ..codegen.embedder import canonical_json
from ..codegen.ir import GENERATOR_VERSION
from ..codegen.ir import load_runtime_skeleton
from ..codegen.ir import skeleton_digest
from ..errors import PlanError
from ..models.artifacts import BuildFlags
from ..models.units import CompilationUnit


def compute_fingerprint(
    unit: CompilationUnit,
    flags: BuildFlags,
    binary_name: str,
    runtime_files: tuple[tuple[str, str], ...] | None = None,
) -> str:
    """Fingerprint a prepared compilation unit.

    Raises:
        PlanError: If the unit has no embedded payload yet
    """
    if unit.payload is None:
        raise PlanError(f"Compilation unit {unit.target_triple} must be prepared before fingerprinting")

    payload = unit.payload
    document = {
        "generator": GENERATOR_VERSION,
        "runtime": skeleton_digest(runtime_files if runtime_files is not None else load_runtime_skeleton()),
        "plan": payload.execution_plan,
        "config": payload.runtime_config,
        "static_files": {name: hashlib.sha256(data).hexdigest() for name, data in sorted(payload.static_files.items())},
        "modules": [
            {"name": spec.name, "version": spec.version, "digest": spec.digest}
            for spec in sorted(unit.modules, key=lambda spec: spec.name)
        ],
        "target": unit.target_triple,
        "flags": flags.model_dump(mode="json"),
        "binary_name": binary_name,
    }
    return hashlib.sha256(canonical_json(document).encode("utf-8")).hexdigest()
