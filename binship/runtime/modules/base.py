"""Capability interface every task module implements.

A module is looked up by name in the generated dispatch table. It declares
its parameter contract statically so the runtime can reject bad arguments
before anything is executed.
"""

from abc import ABC
from abc import abstractmethod
from typing import Any
from typing import ClassVar

from ..context import ExecutionContext
from ..models import ModuleResult


class TaskModule(ABC):
    """Base class for task modules.

    Subclasses set ``name`` and implement ``execute``. ``parameter_aliases``
    maps alternate argument names to canonical ones and is applied before
    required parameters are checked.
    """

    name: ClassVar[str] = ""
    version: ClassVar[str] = "1.0.0"
    required_parameters: ClassVar[tuple[str, ...]] = ()
    parameter_aliases: ClassVar[dict[str, str]] = {}

    def normalize(self, args: dict[str, Any]) -> dict[str, Any]:
        """Return a copy of ``args`` with aliases rewritten to canonical names.

        An explicit canonical argument wins over its alias.
        """
        normalized: dict[str, Any] = {}
        for key, value in args.items():
            canonical = self.parameter_aliases.get(key, key)
            if canonical != key and canonical in args:
                continue
            normalized[canonical] = value
        return normalized

    def check(self, args: dict[str, Any]) -> list[str]:
        """Collect every parameter problem for already normalized ``args``."""
        errors = [f"missing required parameter: {param}" for param in self.required_parameters if param not in args]
        if errors:
            return errors
        return self.validate(args)

    def validate(self, args: dict[str, Any]) -> list[str]:
        """Module specific validation. Returns a list of error messages."""
        return []

    @abstractmethod
    async def execute(self, args: dict[str, Any], context: ExecutionContext) -> ModuleResult:
        """Run the module against ``context``. Returns the module result."""
