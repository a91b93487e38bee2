from typing import Any

from ..conditions import MISSING
from ..conditions import resolve_path
from ..context import ExecutionContext
from ..models import ModuleResult
from .base import TaskModule


class DebugModule(TaskModule):
    """Print a message or the value of a variable."""

    name = "debug"
    version = "1.0.0"
    parameter_aliases = {"message": "msg"}

    def validate(self, args: dict[str, Any]) -> list[str]:
        if "msg" in args and "var" in args:
            return ["parameters are mutually exclusive: msg, var"]
        return []

    async def execute(self, args: dict[str, Any], context: ExecutionContext) -> ModuleResult:
        if "var" in args:
            path = str(args["var"])
            value = resolve_path(path, context.variables, context.facts)
            if value is MISSING:
                value = "VARIABLE IS NOT DEFINED"
            return ModuleResult(msg=f"{path}: {value}", results={path: value})
        return ModuleResult(msg=str(args.get("msg", "Hello world!")))
