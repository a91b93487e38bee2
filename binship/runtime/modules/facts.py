from typing import Any

from ..context import ExecutionContext
from ..models import ModuleResult
from .base import TaskModule


class SetFactModule(TaskModule):
    """Publish every argument as a fact for later tasks and conditions."""

    name = "set_fact"
    version = "1.0.0"

    def validate(self, args: dict[str, Any]) -> list[str]:
        if not args:
            return ["at least one fact is required"]
        invalid = sorted(key for key in args if not key.isidentifier())
        if invalid:
            return [f"invalid fact names: {', '.join(invalid)}"]
        return []

    async def execute(self, args: dict[str, Any], context: ExecutionContext) -> ModuleResult:
        return ModuleResult(msg=f"set {len(args)} fact(s)", results={"facts": dict(args)})
