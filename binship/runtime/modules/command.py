import asyncio
import shlex
from pathlib import Path
from typing import Any

from ..context import ExecutionContext
from ..models import ModuleResult
from .base import TaskModule


class CommandModule(TaskModule):
    """Run a command on the host.

    ``cmd`` may be a string (split with shlex unless ``shell`` is true) or
    an argv list. ``creates`` skips the command when that path exists.
    """

    name = "command"
    version = "1.0.0"
    required_parameters = ("cmd",)
    parameter_aliases = {"_raw_params": "cmd", "command": "cmd", "argv": "cmd"}

    def validate(self, args: dict[str, Any]) -> list[str]:
        cmd = args["cmd"]
        if isinstance(cmd, list):
            if not cmd or not all(isinstance(part, str) for part in cmd):
                return ["cmd list must be a non-empty list of strings"]
        elif not isinstance(cmd, str) or not cmd.strip():
            return ["cmd must be a non-empty string or list"]
        if "timeout" in args and (not isinstance(args["timeout"], int | float) or args["timeout"] <= 0):
            return ["timeout must be a positive number"]
        return []

    async def execute(self, args: dict[str, Any], context: ExecutionContext) -> ModuleResult:
        creates = args.get("creates")
        if creates and Path(creates).exists():
            return ModuleResult(msg=f"skipped, since {creates} exists", results={"skipped": True})
        if context.check_mode:
            return ModuleResult(changed=True, msg="command would run (check mode)")

        cmd = args["cmd"]
        cwd = args.get("chdir")
        if args.get("shell") and isinstance(cmd, str):
            process = await asyncio.create_subprocess_shell(
                cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE, cwd=cwd
            )
        else:
            argv = cmd if isinstance(cmd, list) else shlex.split(cmd)
            process = await asyncio.create_subprocess_exec(
                *argv, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE, cwd=cwd
            )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=args.get("timeout"))
        except (TimeoutError, asyncio.CancelledError):
            process.kill()
            await process.wait()
            raise

        rc = process.returncode
        return ModuleResult(
            changed=True,
            failed=rc != 0,
            msg="" if rc == 0 else f"non-zero return code {rc}",
            stdout=stdout.decode(errors="replace").rstrip("\n"),
            stderr=stderr.decode(errors="replace").rstrip("\n"),
            rc=rc,
        )
