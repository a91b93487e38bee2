"""Build-and-deploy pipeline service.

Ties plan validation, target resolution, code generation, compilation,
caching and deployment together. Unit-scoped and host-scoped failures
become report entries; everything else propagates.

Contract:
- Inputs: ExecutionPlan, Inventory, BuildOptions, DeployOptions
- Outputs: BuildReport, DeploymentReport, RunReport
- Side Effects: Writes cache, build and state directories; runs toolchains;
  transfers binaries to hosts
"""

import asyncio
import logging
from collections.abc import Iterable
from pathlib import Path

from pydantic import BaseModel
from pydantic import Field

from ..cache.fingerprint import compute_fingerprint
from ..cache.store import CompilationCache
from ..codegen.embedder import StaticFileRef
from ..codegen.generator import CodeGenerator
from ..compilation.backends import create_backend
from ..compilation.compiler import Compiler
from ..config.loader import load_config
from ..config.settings import BinshipSettings
from ..deploy.history import DeploymentHistory
from ..deploy.manager import DeploymentManager
from ..deploy.manager import TransportFactory
from ..deploy.transport import Transport
from ..deploy.transport import default_transport_factory
from ..errors import BinshipError
from ..models.artifacts import BuildFlags
from ..models.deployments import DeploymentReport
from ..models.deployments import HostCleanup
from ..models.deployments import HostDeploymentResult
from ..models.deployments import HostVerification
from ..models.inventory import HostInfo
from ..models.inventory import Inventory
from ..models.reports import BuildReport
from ..models.reports import RunReport
from ..models.reports import UnitBuildResult
from ..models.reports import UnitStatus
from ..models.reports import UnresolvedHost
from ..models.units import CompilationUnit
from ..modules.resolver import ModuleResolver
from ..plan.loader import plan_subset
from ..plan.validation import validate_plan
from ..runtime.cancellation import CancellationToken
from ..runtime.models import ExecutionPlan
from ..storage.paths import get_build_dir
from ..storage.paths import get_cache_dir
from ..storage.paths import get_state_dir
from ..targets.resolver import TargetResolver
from ..targets.toolchain import ToolchainManager

logger = logging.getLogger(__name__)


class BuildOptions(BaseModel):
    """Per-invocation compile options."""

    target_override: str | None = Field(default=None, description="Compile every host for this triple")
    force_rebuild: bool = Field(default=False, description="Ignore cached artifacts")
    dry_run: bool = Field(default=False, description="Validate and plan without compiling")
    compile_only: bool = Field(default=False, description="Stop after compilation in run()")
    host_ids: list[str] | None = Field(default=None, description="Restrict to these hosts")
    binary_name: str | None = Field(default=None, description="Installed executable name (defaults to settings)")


class DeployOptions(BaseModel):
    """Per-invocation deployment options; unset values fall back to settings."""

    parallelism: int | None = Field(default=None, ge=1)
    host_timeout: float | None = Field(default=None, gt=0)
    global_timeout: float | None = Field(default=None, gt=0)
    verify: bool | None = None
    dry_run: bool = False
    deployment_id: str | None = None


class PipelineService:
    """Compile plans into per-target binaries and deploy them.

    Example:
        >>> service = PipelineService.from_settings()
        >>> report = await service.run(plan, inventory)
        >>> report.success
        True
    """

    def __init__(
        self,
        settings: BinshipSettings,
        cache: CompilationCache,
        compiler: Compiler,
        toolchain: ToolchainManager,
        history: DeploymentHistory,
        transport: Transport | TransportFactory,
        generator: CodeGenerator | None = None,
        resolver: ModuleResolver | None = None,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self.compiler = compiler
        self.toolchain = toolchain
        self.history = history
        self.transport = transport
        self.generator = generator or CodeGenerator()
        self.resolver = resolver or ModuleResolver(Path(d) for d in settings.module_dirs)

    @classmethod
    def from_settings(
        cls,
        settings: BinshipSettings | None = None,
        transport: Transport | TransportFactory | None = None,
    ) -> "PipelineService":
        """Wire a service from configuration and the storage directories."""
        settings = settings or load_config()
        backend = create_backend(
            settings.backend,
            python=settings.builder_python,
            python_version=settings.target_python_version,
            pyapp_source_dir=settings.pyapp_source_dir,
        )
        cache = CompilationCache(get_cache_dir(), max_size_bytes=settings.cache_max_bytes)
        compiler = Compiler(
            backend,
            build_dir=get_build_dir(),
            output_dir=cache.artifacts_dir,
            compile_jobs=settings.compile_jobs,
            size_limit_bytes=settings.size_limit_bytes,
            enforce_size_limit=settings.enforce_size_limit,
        )
        return cls(
            settings=settings,
            cache=cache,
            compiler=compiler,
            toolchain=ToolchainManager(backend, auto_acquire=settings.auto_acquire_toolchain),
            history=DeploymentHistory(get_state_dir()),
            transport=transport or default_transport_factory(settings.ssh_options),
        )

    @property
    def build_flags(self) -> BuildFlags:
        return BuildFlags(profile=self.settings.optimization, strip=self.settings.strip, compress=self.settings.compress)

    async def compile(
        self,
        plan: ExecutionPlan,
        inventory: Inventory,
        options: BuildOptions | None = None,
        static_files: Iterable[StaticFileRef] = (),
    ) -> BuildReport:
        """Compile one binary per target triple.

        The plan is validated before anything is compiled. Hosts whose
        target cannot be resolved and units whose compilation fails are
        reported without affecting the other units.

        Raises:
            PlanError: If the plan is structurally invalid
            UnsupportedTarget: If ``target_override`` is not a supported triple
        """
        pins: list[str] = []
        try:
            return await self._compile(plan, inventory, options, static_files, pins)
        finally:
            await self._release(pins, evict=False)

    async def _compile(
        self,
        plan: ExecutionPlan,
        inventory: Inventory,
        options: BuildOptions | None,
        static_files: Iterable[StaticFileRef],
        pins: list[str],
    ) -> BuildReport:
        """Compile every unit, pinning each fingerprint it fetches from the cache into ``pins``."""
        options = options or BuildOptions()
        validate_plan(plan, self.resolver.available())
        target_resolver = TargetResolver(options.target_override)

        host_ids = options.host_ids or plan.hosts or None
        grouping = target_resolver.group_hosts(inventory, host_ids)
        static_files = list(static_files)

        units = await asyncio.gather(
            *(
                self._build_unit(plan, inventory, triple, hosts, options, static_files, pins)
                for triple, hosts in sorted(grouping.units.items())
            )
        )
        unresolved = [
            UnresolvedHost(host_id=host_id, error_kind=error.kind, error=str(error))
            for host_id, error in sorted(grouping.failures.items())
        ]
        report = BuildReport(units=list(units), unresolved=unresolved)
        logger.info(
            f"Compile finished: {len(report.deployable())}/{len(report.units)} units ready, "
            f"{len(unresolved)} unresolved hosts"
        )
        return report

    async def _release(self, pins: list[str], evict: bool = True) -> None:
        """Unpin the fingerprints of one operation.

        A compile-only result keeps its artifacts until the next store evicts
        them; after a deployment the cache is brought back under its bound.
        """
        for fingerprint in pins:
            self.cache.unpin(fingerprint)
        if evict and pins:
            await self.cache.evict()

    async def _build_unit(
        self,
        plan: ExecutionPlan,
        inventory: Inventory,
        target_triple: str,
        host_ids: list[str],
        options: BuildOptions,
        static_files: list[StaticFileRef],
        pins: list[str],
    ) -> UnitBuildResult:
        flags = self.build_flags
        binary_name = options.binary_name or self.settings.binary_name
        try:
            subset = plan_subset(plan, host_ids, inventory)
            modules = self.resolver.resolve_all(subset.module_names())
            unit = self.generator.prepare(
                CompilationUnit(target_triple=target_triple, host_ids=host_ids, plan=subset),
                modules,
                self.settings.runtime,
                static_files,
            )
            fingerprint = compute_fingerprint(unit, flags, binary_name, self.generator.runtime_files)

            if options.dry_run:
                return UnitBuildResult(
                    target_triple=target_triple, host_ids=host_ids, status=UnitStatus.PLANNED, fingerprint=fingerprint
                )

            async def build():
                await self.toolchain.ensure(target_triple)
                source = self.generator.generate(unit)
                return await self.compiler.compile(source, target_triple, flags, fingerprint, binary_name)

            self.cache.pin(fingerprint)
            pins.append(fingerprint)
            artifact, built = await self.cache.get_or_build(fingerprint, build, force=options.force_rebuild)
        except BinshipError as e:
            logger.error(f"Unit {target_triple} failed ({e.kind}): {e}")
            return UnitBuildResult(
                target_triple=target_triple,
                host_ids=host_ids,
                status=UnitStatus.FAILED,
                error_kind=e.kind,
                error=str(e),
            )

        return UnitBuildResult(
            target_triple=target_triple,
            host_ids=host_ids,
            status=UnitStatus.BUILT if built else UnitStatus.CACHED,
            fingerprint=fingerprint,
            artifact=artifact,
        )

    def manager(self, options: DeployOptions | None = None) -> DeploymentManager:
        """Create a deployment manager with ``options`` applied over settings."""
        options = options or DeployOptions()
        settings = self.settings
        return DeploymentManager(
            history=self.history,
            transport=self.transport,
            parallelism=options.parallelism or settings.parallelism,
            host_timeout=options.host_timeout or settings.host_timeout,
            global_timeout=options.global_timeout if options.global_timeout is not None else settings.global_timeout,
            max_retries=settings.max_retries,
            retry_backoff_base=settings.retry_backoff_base,
            retry_backoff_max=settings.retry_backoff_max,
            verify=options.verify if options.verify is not None else settings.verify,
            install_dir=settings.install_dir,
            success_policy=settings.success_policy,
            success_threshold=settings.success_threshold,
        )

    async def deploy(
        self,
        build_report: BuildReport,
        inventory: Inventory,
        options: DeployOptions | None = None,
        token: CancellationToken | None = None,
    ) -> DeploymentReport:
        """Deploy the artifacts of a build report. Units without an artifact are skipped."""
        options = options or DeployOptions()
        return await self.manager(options).submit(
            build_report.deployable(),
            inventory,
            deployment_id=options.deployment_id,
            dry_run=options.dry_run,
            token=token,
        )

    async def run(
        self,
        plan: ExecutionPlan,
        inventory: Inventory,
        build_options: BuildOptions | None = None,
        deploy_options: DeployOptions | None = None,
        static_files: Iterable[StaticFileRef] = (),
        token: CancellationToken | None = None,
    ) -> RunReport:
        """Compile, then deploy whatever compiled."""
        build_options = build_options or BuildOptions()
        deploy_options = deploy_options or DeployOptions()
        pins: list[str] = []
        try:
            build = await self._compile(plan, inventory, build_options, static_files, pins)
            if build_options.compile_only:
                return RunReport(build=build)

            if build_options.dry_run:
                deployment = await self.manager(deploy_options).submit(
                    build.units,
                    inventory,
                    deployment_id=deploy_options.deployment_id,
                    dry_run=True,
                    binary_name=build_options.binary_name or self.settings.binary_name,
                )
                return RunReport(build=build, deployment=deployment)

            deployment = await self.deploy(build, inventory, deploy_options, token)
            return RunReport(build=build, deployment=deployment)
        finally:
            await self._release(pins)

    async def rollback_deployment(self, deployment_id: str, inventory: Inventory) -> dict[str, HostDeploymentResult]:
        return await self.manager().rollback_deployment(deployment_id, inventory)

    async def rollback_host(self, host: HostInfo, binary_name: str | None = None) -> HostDeploymentResult:
        return await self.manager().rollback_host(host, binary_name or self.settings.binary_name)

    async def cleanup(self, hosts: list[HostInfo], binary_name: str | None = None) -> dict[str, HostCleanup]:
        return await self.manager().cleanup(hosts, binary_name or self.settings.binary_name)

    async def verify(self, hosts: list[HostInfo], binary_name: str | None = None) -> dict[str, HostVerification]:
        return await self.manager().verify_hosts(hosts, binary_name or self.settings.binary_name)
