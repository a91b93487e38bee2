"""Compiler backends."""

from pathlib import Path

from .base import BuildOutput
from .base import CompilerBackend
from .pyapp import PyAppBackend
from .zipapp import ZipappBackend


def create_backend(
    name: str,
    python: str | None = None,
    python_version: str = "3.11",
    pyapp_source_dir: str | None = None,
) -> CompilerBackend:
    """Instantiate a backend by its configured name.

    Raises:
        ValueError: For an unknown backend, or pyapp without a source dir
    """
    if name == "zipapp":
        return ZipappBackend(python=python, python_version=python_version)
    if name == "pyapp":
        if not pyapp_source_dir:
            raise ValueError("The pyapp backend requires pyapp_source_dir")
        return PyAppBackend(Path(pyapp_source_dir), python=python, python_version=python_version)
    raise ValueError(f"Unknown compiler backend: {name}")


__all__ = [
    "BuildOutput",
    "CompilerBackend",
    "PyAppBackend",
    "ZipappBackend",
    "create_backend",
]
