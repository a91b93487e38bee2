"""binship CLI.

Compiles execution plans into per-target binaries, deploys them, and
manages what is installed on each host.
"""

import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import NoReturn

import click
from pydantic import BaseModel
from pydantic import ValidationError

from .codegen.embedder import StaticFileRef
from .config.loader import load_config
from .config.settings import BinshipSettings
from .errors import BinshipError
from .models.inventory import HostInfo
from .models.inventory import Inventory
from .models.reports import BuildReport
from .plan.loader import load_inventory
from .plan.loader import load_plan
from .runtime.cancellation import CancellationToken
from .services.pipeline import BuildOptions
from .services.pipeline import DeployOptions
from .services.pipeline import PipelineService

logger = logging.getLogger(__name__)

EXIT_CANCELLED = 130


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def echo_json(data: BaseModel | dict) -> None:
    if isinstance(data, BaseModel):
        click.echo(data.model_dump_json(by_alias=True, indent=2))
        return
    payload = {
        key: value.model_dump(mode="json", by_alias=True) if isinstance(value, BaseModel) else value
        for key, value in data.items()
    }
    click.echo(json.dumps(payload, indent=2))


def fail(message: str, code: int = 1) -> NoReturn:
    click.echo(f"Error: {message}", err=True)
    sys.exit(code)


def parse_static_files(values: tuple[str, ...]) -> list[StaticFileRef]:
    """Parse ``SOURCE[:TARGET]`` arguments. TARGET defaults to the file name."""
    refs = []
    for value in values:
        source, _, target = value.partition(":")
        refs.append(StaticFileRef(source_path=source, target_path=target or Path(source).name))
    return refs


def select_hosts(inventory: Inventory, host_ids: tuple[str, ...]) -> list[HostInfo]:
    ids = list(host_ids) or sorted(inventory.hosts)
    try:
        return [inventory.get(host_id) for host_id in ids]
    except KeyError as e:
        fail(str(e.args[0]))


async def with_signal_token(coro_fn):
    """Run ``coro_fn(token)`` with SIGINT/SIGTERM wired to a cancellation token."""
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, token.cancel, f"received {signal.Signals(sig).name}")
        except NotImplementedError:
            logger.debug(f"Signal handlers unavailable for {sig}")
    try:
        return await coro_fn(token), token
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except NotImplementedError:
                pass


def deploy_options(
    parallelism: int | None,
    host_timeout: float | None,
    global_timeout: float | None,
    verify: bool | None,
    dry_run: bool,
    deployment_id: str | None,
) -> DeployOptions:
    return DeployOptions(
        parallelism=parallelism,
        host_timeout=host_timeout,
        global_timeout=global_timeout,
        verify=verify,
        dry_run=dry_run,
        deployment_id=deployment_id,
    )


def build_option_flags(f):
    f = click.option("--target", "target_override", default=None, help="Compile every host for this target triple")(f)
    f = click.option("--force", "force_rebuild", is_flag=True, help="Rebuild even when a cached artifact exists")(f)
    f = click.option("--host", "host_ids", multiple=True, help="Restrict to these hosts")(f)
    f = click.option("--file", "files", multiple=True, help="Static file to embed, SOURCE[:TARGET]")(f)
    f = click.option("--binary-name", default=None, help="Name of the installed executable")(f)
    return f


def deploy_option_flags(f):
    f = click.option("--parallelism", type=int, default=None, help="Concurrent host deployments")(f)
    f = click.option("--host-timeout", type=float, default=None, help="Seconds allowed per host")(f)
    f = click.option("--global-timeout", type=float, default=None, help="Seconds allowed for the whole deployment")(f)
    f = click.option("--verify/--no-verify", default=None, help="Verify checksums before activation")(f)
    f = click.option("--deployment-id", default=None, help="Identifier for this deployment")(f)
    return f


@click.group()
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None, help="Path to binship.yaml")
@click.option("--log-level", default=None, help="Override the configured log level")
@click.pass_context
def cli(ctx, config_path: Path | None, log_level: str | None):
    """binship - compile execution plans into binaries and ship them to hosts."""
    settings = load_config(config_path)
    if log_level:
        settings.log_level = log_level.lower()
    configure_logging(settings.log_level)
    ctx.obj = settings


def get_service(ctx) -> PipelineService:
    settings: BinshipSettings = ctx.obj
    try:
        return PipelineService.from_settings(settings)
    except ValueError as e:
        fail(str(e))


@cli.command()
@click.argument("plan_path", type=click.Path(exists=True, path_type=Path))
@click.argument("inventory_path", type=click.Path(exists=True, path_type=Path))
@build_option_flags
@click.option("--dry-run", is_flag=True, help="Validate and plan without compiling")
@click.option("--output", type=click.Path(path_type=Path), default=None, help="Write the build report to this file")
@click.pass_context
def compile(
    ctx, plan_path, inventory_path, target_override, force_rebuild, host_ids, files, binary_name, dry_run, output
):
    """Compile PLAN for every host in INVENTORY."""
    service = get_service(ctx)
    options = BuildOptions(
        target_override=target_override,
        force_rebuild=force_rebuild,
        dry_run=dry_run,
        compile_only=True,
        host_ids=list(host_ids) or None,
        binary_name=binary_name,
    )
    try:
        plan, inventory = load_plan(plan_path), load_inventory(inventory_path)
        report = asyncio.run(service.compile(plan, inventory, options, parse_static_files(files)))
    except BinshipError as e:
        fail(f"{e.kind}: {e}")

    if output is not None:
        output.write_text(report.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
    echo_json(report)
    if not report.success:
        sys.exit(1)


@cli.command()
@click.argument("build_report_path", type=click.Path(exists=True, path_type=Path))
@click.argument("inventory_path", type=click.Path(exists=True, path_type=Path))
@deploy_option_flags
@click.option("--dry-run", is_flag=True, help="Plan the deployment without transferring anything")
@click.pass_context
def deploy(
    ctx, build_report_path, inventory_path, parallelism, host_timeout, global_timeout, verify, deployment_id, dry_run
):
    """Deploy the artifacts listed in a build report written by ``compile --output``."""
    service = get_service(ctx)
    options = deploy_options(parallelism, host_timeout, global_timeout, verify, dry_run, deployment_id)
    try:
        build = BuildReport.model_validate_json(build_report_path.read_text(encoding="utf-8"))
        inventory = load_inventory(inventory_path)
        report, token = asyncio.run(with_signal_token(lambda t: service.deploy(build, inventory, options, t)))
    except ValidationError as e:
        fail(f"Invalid build report {build_report_path}: {e}")
    except BinshipError as e:
        fail(f"{e.kind}: {e}")

    echo_json(report)
    if token.cancelled:
        sys.exit(EXIT_CANCELLED)
    if not report.success:
        sys.exit(1)


@cli.command()
@click.argument("plan_path", type=click.Path(exists=True, path_type=Path))
@click.argument("inventory_path", type=click.Path(exists=True, path_type=Path))
@build_option_flags
@deploy_option_flags
@click.option("--dry-run", is_flag=True, help="Validate and plan without compiling or transferring")
@click.option("--compile-only", is_flag=True, help="Stop after compilation")
@click.pass_context
def run(
    ctx, plan_path, inventory_path, target_override, force_rebuild, host_ids, files, binary_name, parallelism,
    host_timeout, global_timeout, verify, deployment_id, dry_run, compile_only,
):
    """Compile PLAN and deploy the binaries to the hosts in INVENTORY."""
    service = get_service(ctx)
    build_options = BuildOptions(
        target_override=target_override,
        force_rebuild=force_rebuild,
        dry_run=dry_run,
        compile_only=compile_only,
        host_ids=list(host_ids) or None,
        binary_name=binary_name,
    )
    options = deploy_options(parallelism, host_timeout, global_timeout, verify, dry_run, deployment_id)
    static_files = parse_static_files(files)
    try:
        plan, inventory = load_plan(plan_path), load_inventory(inventory_path)
        report, token = asyncio.run(
            with_signal_token(lambda t: service.run(plan, inventory, build_options, options, static_files, t))
        )
    except BinshipError as e:
        fail(f"{e.kind}: {e}")

    echo_json(report)
    if token.cancelled:
        sys.exit(EXIT_CANCELLED)
    if not report.success:
        sys.exit(1)


@cli.command()
@click.argument("inventory_path", type=click.Path(exists=True, path_type=Path))
@click.option("--deployment-id", default=None, help="Roll back every host of this deployment")
@click.option("--host", "host_id", default=None, help="Roll back a single host")
@click.option("--binary", "binary_name", default=None, help="Binary name (default from config)")
@click.pass_context
def rollback(ctx, inventory_path, deployment_id, host_id, binary_name):
    """Re-activate the previously deployed version."""
    if bool(deployment_id) == bool(host_id):
        fail("Specify exactly one of --deployment-id or --host")
    service = get_service(ctx)
    try:
        inventory = load_inventory(inventory_path)
        if deployment_id:
            results = asyncio.run(service.rollback_deployment(deployment_id, inventory))
        else:
            host = select_hosts(inventory, (host_id,))[0]
            result = asyncio.run(service.rollback_host(host, binary_name))
            results = {result.host_id: result}
    except KeyError as e:
        fail(str(e.args[0]))
    except BinshipError as e:
        fail(f"{e.kind}: {e}")

    echo_json(results)
    if any(result.error_kind for result in results.values()):
        sys.exit(1)


@cli.command()
@click.argument("inventory_path", type=click.Path(exists=True, path_type=Path))
@click.option("--host", "host_ids", multiple=True, help="Hosts to clean (default: all)")
@click.option("--binary", "binary_name", default=None, help="Binary name (default from config)")
@click.pass_context
def cleanup(ctx, inventory_path, host_ids, binary_name):
    """Remove the binary, its releases and upload remnants from hosts."""
    service = get_service(ctx)
    try:
        hosts = select_hosts(load_inventory(inventory_path), host_ids)
    except BinshipError as e:
        fail(f"{e.kind}: {e}")
    results = asyncio.run(service.cleanup(hosts, binary_name))
    echo_json(results)
    if not all(result.ok for result in results.values()):
        sys.exit(1)


@cli.command()
@click.argument("inventory_path", type=click.Path(exists=True, path_type=Path))
@click.option("--host", "host_ids", multiple=True, help="Hosts to verify (default: all)")
@click.option("--binary", "binary_name", default=None, help="Binary name (default from config)")
@click.pass_context
def verify(ctx, inventory_path, host_ids, binary_name):
    """Check that each host runs the binary its history says it does."""
    service = get_service(ctx)
    try:
        hosts = select_hosts(load_inventory(inventory_path), host_ids)
    except BinshipError as e:
        fail(f"{e.kind}: {e}")
    results = asyncio.run(service.verify(hosts, binary_name))
    echo_json(results)
    if not all(result.ok for result in results.values()):
        sys.exit(1)


@cli.group()
def cache():
    """Inspect and manage the compilation cache."""
    pass


@cache.command()
@click.pass_context
def stats(ctx):
    """Show cache size and entry count."""
    service = get_service(ctx)
    echo_json(service.cache.stats())


@cache.command()
@click.pass_context
def clear(ctx):
    """Remove every cached artifact."""
    service = get_service(ctx)
    removed = asyncio.run(service.cache.clear())
    click.echo(f"Removed {removed} cache entries")


@cache.command()
@click.argument("fingerprint")
@click.pass_context
def invalidate(ctx, fingerprint: str):
    """Remove one cached artifact by fingerprint."""
    service = get_service(ctx)
    if asyncio.run(service.cache.invalidate(fingerprint)):
        click.echo(f"Invalidated {fingerprint}")
    else:
        fail(f"No cache entry for {fingerprint}")


def main():
    """Entry point for the binship CLI."""
    try:
        cli()
    except KeyboardInterrupt:
        click.echo("\nInterrupted", err=True)
        sys.exit(EXIT_CANCELLED)


if __name__ == "__main__":
    main()
