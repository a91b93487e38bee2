"""Render a ProgramIR into source text.

Rendering is a pure function of the IR: no clock, environment or
filesystem access, and every collection is emitted in sorted order. Equal
IR therefore renders byte-identical trees.
"""

import base64
import hashlib
import re
from dataclasses import dataclass

from .ir import RUNTIME_PACKAGE
from .ir import ProgramIR

EXTRA_PACKAGE = "binship_modules"
ENTRY_PACKAGE = "binship_entry"

HEADER = '"""Generated by binship for {target}. Do not edit."""\n'


@dataclass(frozen=True)
class GeneratedSource:
    """Rendered source tree as sorted (relative path, text) pairs."""

    target_triple: str
    files: tuple[tuple[str, str], ...]

    def as_dict(self) -> dict[str, str]:
        return dict(self.files)

    def digest(self) -> str:
        digest = hashlib.sha256()
        for rel_path, text in self.files:
            digest.update(rel_path.encode())
            digest.update(b"\0")
            digest.update(text.encode())
            digest.update(b"\0")
        return digest.hexdigest()


def _alias(name: str) -> str:
    return "_" + re.sub(r"\W", "_", name)


def render_embedded(ir: ProgramIR) -> str:
    lines = [
        HEADER.format(target=ir.target_triple),
        "import base64",
        "",
        f"TARGET_TRIPLE = {ir.target_triple!r}",
        f"EXECUTION_PLAN = {ir.plan_json!r}",
        f"RUNTIME_CONFIG = {ir.config_json!r}",
        "",
        "_STATIC_FILES = {",
    ]
    for name, data in ir.static_files:
        lines.append(f"    {name!r}: {base64.b64encode(data).decode('ascii')!r},")
    lines += [
        "}",
        "",
        "",
        "def static_files():",
        "    return {name: base64.b64decode(data) for name, data in _STATIC_FILES.items()}",
        "",
    ]
    return "\n".join(lines)


def render_dispatch(ir: ProgramIR) -> str:
    lines = [HEADER.format(target=ir.target_triple)]
    for module in ir.modules:
        lines.append(f"from {module.import_path} import {module.class_name} as {_alias(module.name)}")
    lines += ["", "MODULES = {"]
    for module in ir.modules:
        lines.append(f"    {module.name!r}: {_alias(module.name)},")
    lines += ["}", "", "MODULE_VERSIONS = {"]
    for module in ir.modules:
        lines.append(f"    {module.name!r}: {module.version!r},")
    lines += ["}", ""]
    return "\n".join(lines)


def render_entry(ir: ProgramIR) -> str:
    return "\n".join(
        [
            HEADER.format(target=ir.target_triple),
            "import sys",
            "",
            f"from {RUNTIME_PACKAGE} import _embedded",
            f"from {RUNTIME_PACKAGE}.dispatch import MODULES",
            f"from {RUNTIME_PACKAGE}.main import run_program",
            "",
            "",
            "def main():",
            "    return run_program(",
            "        _embedded.EXECUTION_PLAN, _embedded.RUNTIME_CONFIG, _embedded.static_files(), MODULES",
            "    )",
            "",
            "",
            'if __name__ == "__main__":',
            "    sys.exit(main())",
            "",
        ]
    )


def render_root_main(ir: ProgramIR) -> str:
    return "\n".join(
        [
            HEADER.format(target=ir.target_triple),
            "import sys",
            "",
            f"from {ENTRY_PACKAGE}.__main__ import main",
            "",
            "sys.exit(main())",
            "",
        ]
    )


def render_pyproject(ir: ProgramIR) -> str:
    packages = [ENTRY_PACKAGE, RUNTIME_PACKAGE, f"{RUNTIME_PACKAGE}.modules"]
    if ir.extra_modules:
        packages.append(EXTRA_PACKAGE)
    dependencies = ", ".join(f'"{requirement}"' for requirement in ir.requirements)
    package_list = ", ".join(f'"{package}"' for package in packages)
    return "\n".join(
        [
            "[build-system]",
            'requires = ["setuptools>=68", "wheel"]',
            'build-backend = "setuptools.build_meta"',
            "",
            "[project]",
            'name = "binship-program"',
            'version = "0.1.0"',
            'requires-python = ">=3.11"',
            f"dependencies = [{dependencies}]",
            "",
            "[tool.setuptools]",
            f"packages = [{package_list}]",
            "",
        ]
    )


def render(ir: ProgramIR) -> GeneratedSource:
    """Render the complete source tree for ``ir``."""
    files: dict[str, str] = {}
    for rel_path, text in ir.runtime_files:
        files[f"{RUNTIME_PACKAGE}/{rel_path}"] = text

    files[f"{RUNTIME_PACKAGE}/_embedded.py"] = render_embedded(ir)
    files[f"{RUNTIME_PACKAGE}/dispatch.py"] = render_dispatch(ir)
    files[f"{ENTRY_PACKAGE}/__init__.py"] = ""
    files[f"{ENTRY_PACKAGE}/__main__.py"] = render_entry(ir)
    files["__main__.py"] = render_root_main(ir)

    if ir.extra_modules:
        files[f"{EXTRA_PACKAGE}/__init__.py"] = ""
        for module in ir.extra_modules:
            files[f"{EXTRA_PACKAGE}/{module.name}.py"] = module.source or ""

    files["requirements.txt"] = "".join(f"{requirement}\n" for requirement in ir.requirements)
    files["pyproject.toml"] = render_pyproject(ir)

    return GeneratedSource(target_triple=ir.target_triple, files=tuple(sorted(files.items())))
