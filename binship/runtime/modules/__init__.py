"""Built-in task modules shipped inside every generated program."""

from .base import TaskModule
from .command import CommandModule
from .debug import DebugModule
from .facts import SetFactModule
from .files import CopyModule
from .files import FileModule

BUILTIN_MODULES: dict[str, type[TaskModule]] = {
    module.name: module for module in (CommandModule, CopyModule, DebugModule, FileModule, SetFactModule)
}

__all__ = [
    "BUILTIN_MODULES",
    "CommandModule",
    "CopyModule",
    "DebugModule",
    "FileModule",
    "SetFactModule",
    "TaskModule",
]
