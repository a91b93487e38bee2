"""Async subprocess helper used by compiler backends and transports."""

import asyncio
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    argv: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


async def run_command(
    *argv: str,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> CommandResult:
    """Run a command and capture its output.

    ``env`` entries are added to the current environment. A missing
    executable yields returncode 127 instead of raising.

    Raises:
        TimeoutError: If the command runs longer than ``timeout`` (it is killed)
    """
    full_env = None
    if env is not None:
        full_env = os.environ.copy()
        full_env.update(env)

    logger.debug(f"Running: {' '.join(argv)}")
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=cwd,
            env=full_env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        return CommandResult(tuple(argv), 127, "", str(e))

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except (TimeoutError, asyncio.CancelledError):
        proc.kill()
        await proc.wait()
        raise

    result = CommandResult(tuple(argv), proc.returncode or 0, stdout.decode(errors="replace"), stderr.decode(errors="replace"))
    if not result.ok:
        logger.debug(f"Command {argv[0]} exited with {result.returncode}: {result.stderr.strip()[:500]}")
    return result
