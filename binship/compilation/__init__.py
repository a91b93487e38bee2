"""Compilation of generated programs."""

from .backends import CompilerBackend
from .backends import create_backend
from .compiler import Compiler
from .process import CommandResult
from .process import run_command

__all__ = [
    "CommandResult",
    "Compiler",
    "CompilerBackend",
    "create_backend",
    "run_command",
]
