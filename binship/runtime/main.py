"""Entry point of every generated program.

The generated ``__main__.py`` passes its embedded constants and dispatch
table here. Exit codes: 0 success, 1 failure, 130 cancelled.
"""

import asyncio
import json
import logging
import platform
import shutil
import signal
import socket
import sys
import tempfile
from collections.abc import Mapping
from pathlib import Path

import click

from .cancellation import CancellationToken
from .context import ExecutionContext
from .engine import PlanExecutor
from .models import ExecutionPlan
from .models import ExecutionReport
from .models import RuntimeConfig
from .modules.base import TaskModule
from .reporting import ControllerReporter

logger = logging.getLogger(__name__)

RUNTIME_VERSION = "0.1.0"
EXIT_CANCELLED = 130


def configure_logging(config: RuntimeConfig, override: str | None = None) -> None:
    level = "DEBUG" if config.verbose else (override or config.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def gather_facts(host_id: str) -> dict:
    return {
        "hostname": host_id,
        "system": platform.system().lower(),
        "architecture": platform.machine().lower(),
        "python_version": platform.python_version(),
    }


def materialize_static_files(static_files: Mapping[str, bytes], workspace: Path) -> dict[str, Path]:
    paths: dict[str, Path] = {}
    for name in sorted(static_files):
        target = workspace / "files" / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(static_files[name])
        paths[name] = target
    return paths


def _install_signal_handlers(token: CancellationToken) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, token.cancel, f"received {sig.name}")
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handler support
            logger.debug(f"Signal handler for {sig.name} not installed")


async def execute(
    plan: ExecutionPlan,
    config: RuntimeConfig,
    modules: Mapping[str, type[TaskModule]],
    context: ExecutionContext,
    token: CancellationToken | None = None,
) -> ExecutionReport:
    """Run the plan, with controller reporting when an endpoint is configured."""
    token = token or CancellationToken()
    executor = PlanExecutor(plan, config, modules, context, token)

    if not config.controller_endpoint:
        return await executor.run()

    async with ControllerReporter(config.controller_endpoint, context.host_id) as reporter:
        background = [
            asyncio.create_task(
                reporter.run_periodic(config.heartbeat_interval, reporter.send_heartbeat, token, "heartbeat")
            ),
            asyncio.create_task(
                reporter.run_periodic(
                    config.report_interval, lambda: reporter.send_progress(executor.progress()), token, "progress"
                )
            ),
        ]
        try:
            report = await executor.run()
        finally:
            for task in background:
                task.cancel()
            await asyncio.gather(*background, return_exceptions=True)
        await reporter.report(report)
    return report


async def _main(
    plan: ExecutionPlan,
    config: RuntimeConfig,
    static_files: Mapping[str, bytes],
    modules: Mapping[str, type[TaskModule]],
    host_id: str,
    check_mode: bool,
) -> ExecutionReport:
    token = CancellationToken()
    _install_signal_handlers(token)

    workspace = Path(tempfile.mkdtemp(prefix="binship-"))
    try:
        variables = dict(plan.metadata.get("vars", {}))
        variables.update(plan.metadata.get("host_vars", {}).get(host_id, {}))
        context = ExecutionContext(
            host_id=host_id,
            variables=variables,
            facts=gather_facts(host_id),
            static_files=materialize_static_files(static_files, workspace),
            workspace=workspace,
            check_mode=check_mode,
        )
        return await execute(plan, config, modules, context, token)
    finally:
        if config.cleanup_on_completion:
            shutil.rmtree(workspace, ignore_errors=True)
        else:
            logger.info(f"Keeping workspace {workspace}")


def build_command(
    plan_json: str,
    config_json: str,
    static_files: Mapping[str, bytes],
    modules: Mapping[str, type[TaskModule]],
) -> click.Command:
    @click.command()
    @click.option("--host", "host_id", default=None, help="Host id used for play filtering and host vars")
    @click.option("--check", is_flag=True, help="Report what would change without changing anything")
    @click.option("--dump-plan", is_flag=True, help="Print the embedded plan and exit")
    @click.option("--log-level", default=None, help="Override the embedded log level")
    @click.version_option(RUNTIME_VERSION, prog_name="binship-runtime")
    def main(host_id: str | None, check: bool, dump_plan: bool, log_level: str | None) -> int:
        plan = ExecutionPlan.model_validate_json(plan_json)
        config = RuntimeConfig.model_validate_json(config_json)

        if dump_plan:
            click.echo(json.dumps(json.loads(plan_json), indent=2, sort_keys=True))
            return 0

        configure_logging(config, log_level)
        host_id = host_id or socket.gethostname()
        logger.info(f"Executing {plan.count_tasks()} task(s) on {host_id}")

        report = asyncio.run(_main(plan, config, static_files, modules, host_id, check))
        click.echo(report.model_dump_json(indent=2))

        if report.cancelled:
            return EXIT_CANCELLED
        return 0 if report.success else 1

    return main


def run_program(
    plan_json: str,
    config_json: str,
    static_files: Mapping[str, bytes],
    modules: Mapping[str, type[TaskModule]],
    argv: list[str] | None = None,
) -> int:
    """Parse arguments, execute the embedded plan and return the exit code."""
    command = build_command(plan_json, config_json, static_files, modules)
    try:
        return command.main(args=argv, prog_name="binship-runtime", standalone_mode=False)
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except click.Abort:
        return EXIT_CANCELLED
