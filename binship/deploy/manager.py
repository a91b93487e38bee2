"""Deployment manager: parallel transfer, verification, activation and rollback.

Contract:
- Inputs: Built units (artifact + host ids), inventory, deployment options
- Outputs: DeploymentReport with the final status of every host
- Side Effects: Transfers files to hosts, writes deployment history
"""

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from pathlib import PurePosixPath

from ..errors import BinshipError
from ..errors import NoPriorVersion
from ..errors import TransferError
from ..errors import VerificationMismatch
from ..models.artifacts import BinaryArtifact
from ..models.deployments import DeploymentRecord
from ..models.deployments import DeploymentReport
from ..models.deployments import DeploymentRun
from ..models.deployments import DeploymentStatus
from ..models.deployments import HostCleanup
from ..models.deployments import HostDeploymentResult
from ..models.deployments import HostVerification
from ..models.deployments import SuccessPolicy
from ..models.inventory import HostInfo
from ..models.inventory import Inventory
from ..models.reports import UnitBuildResult
from ..models.reports import UnitStatus
from ..runtime.cancellation import CancellationToken
from .history import DeploymentHistory
from .transport import Transport

logger = logging.getLogger(__name__)

TransportFactory = Callable[[HostInfo], Transport]

STAGING_DIR = ".staging"


def new_deployment_id() -> str:
    return f"dep-{uuid.uuid4().hex[:12]}"


def new_record_id() -> str:
    return f"rec-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class RemotePaths:
    """Where one binary version lives on a host.

    Uploads land in ``staging`` and only reach ``release`` once verified. A
    release referenced by a record is never overwritten.
    """

    release: str
    active: str
    staging: str

    @property
    def staging_dir(self) -> str:
        return str(PurePosixPath(self.staging).parent)


@dataclass
class HostRun:
    """Mutable progress of one host within a deployment."""

    host: HostInfo
    artifact: BinaryArtifact
    status: DeploymentStatus = DeploymentStatus.PENDING
    attempts: int = 0
    uploaded: bool = False
    paths: RemotePaths | None = None

    @property
    def host_id(self) -> str:
        return self.host.host_id

    def move(self, target: DeploymentStatus) -> None:
        self.status = self.status.transition(target)

    def result(self, **kwargs) -> HostDeploymentResult:
        return HostDeploymentResult(host_id=self.host_id, status=self.status, attempts=self.attempts, **kwargs)


class ResultCollector:
    """Append-only per-host result map shared by the workers."""

    def __init__(self) -> None:
        self._results: dict[str, HostDeploymentResult] = {}
        self._lock = asyncio.Lock()

    async def add(self, result: HostDeploymentResult) -> None:
        async with self._lock:
            if result.host_id in self._results:
                raise ValueError(f"Result for {result.host_id} already recorded")
            self._results[result.host_id] = result

    def snapshot(self) -> dict[str, HostDeploymentResult]:
        return dict(self._results)


class DeploymentManager:
    """Distributes artifacts to hosts and tracks what is active where.

    Hosts are processed by a bounded worker pool. One host's failure never
    affects another host. A deployment can be cancelled through its token
    (explicitly or by the global timeout); hosts still waiting for a slot end
    Cancelled and hosts in flight end Failed with kind ``cancelled``.

    Args:
        history: Persistent record store
        transport: A transport, or a factory choosing one per host
        parallelism: Maximum hosts processed at once
        host_timeout: Seconds allowed for one host
        global_timeout: Seconds allowed for the whole deployment
        max_retries: Upload retries after the first attempt
        verify: Compare remote checksum and size before activation
        install_dir: Default install directory for hosts without one
    """

    def __init__(
        self,
        history: DeploymentHistory,
        transport: Transport | TransportFactory,
        parallelism: int = 10,
        host_timeout: float = 300.0,
        global_timeout: float | None = None,
        max_retries: int = 3,
        retry_backoff_base: float = 1.0,
        retry_backoff_max: float = 30.0,
        verify: bool = True,
        install_dir: str = "/opt/binship",
        success_policy: SuccessPolicy = "all",
        success_threshold: float = 1.0,
    ) -> None:
        if parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        self.history = history
        self.transport = transport
        self.parallelism = parallelism
        self.host_timeout = host_timeout
        self.global_timeout = global_timeout
        self.max_retries = max_retries
        self.retry_backoff_base = retry_backoff_base
        self.retry_backoff_max = retry_backoff_max
        self.verify = verify
        self.install_dir = install_dir
        self.success_policy = success_policy
        self.success_threshold = success_threshold

    def transport_for(self, host: HostInfo) -> Transport:
        if isinstance(self.transport, Transport):
            return self.transport
        return self.transport(host)

    def remote_paths(self, host: HostInfo, binary_name: str, checksum: str, deployment_id: str = "") -> RemotePaths:
        root = PurePosixPath(host.install_dir or self.install_dir)
        releases = root / "releases"
        return RemotePaths(
            release=str(releases / checksum / binary_name),
            active=str(root / binary_name),
            staging=str(releases / STAGING_DIR / f"{deployment_id}-{host.host_id}" / binary_name),
        )

    def backoff(self, attempt: int) -> float:
        return min(self.retry_backoff_base * 2**attempt, self.retry_backoff_max)

    async def submit(
        self,
        units: list[UnitBuildResult],
        inventory: Inventory,
        deployment_id: str | None = None,
        dry_run: bool = False,
        binary_name: str | None = None,
        token: CancellationToken | None = None,
    ) -> DeploymentReport:
        """Deploy every built unit to its hosts.

        Args:
            units: Build results; units without an artifact are ignored
            inventory: Host connection details
            deployment_id: Identifier for this run (generated when omitted)
            dry_run: Plan only; every host is reported Pending
            binary_name: Name recorded in the report (defaults to the artifacts')
            token: Cancellation token; a new one is created when omitted

        Returns:
            DeploymentReport containing every assigned host
        """
        deployment_id = deployment_id or new_deployment_id()
        runs = [] if dry_run else self._assign(units, inventory)
        if binary_name is None:
            artifacts = [unit.artifact for unit in units if unit.artifact is not None]
            binary_name = artifacts[0].binary_name if artifacts else "binship-agent"
        report = DeploymentReport(
            deployment_id=deployment_id,
            binary_name=binary_name,
            policy=self.success_policy,
            threshold=self.success_threshold,
            dry_run=dry_run,
        )

        if dry_run:
            for unit in units:
                if unit.status == UnitStatus.FAILED:
                    continue
                for host_id in unit.host_ids:
                    inventory.get(host_id)
                    report.hosts[host_id] = HostDeploymentResult(
                        host_id=host_id,
                        status=DeploymentStatus.PENDING,
                        checksum=unit.artifact.checksum if unit.artifact else None,
                    )
            logger.info(f"Dry run {deployment_id}: {len(report.hosts)} hosts planned")
            return report

        logger.info(f"Starting deployment {deployment_id} to {len(runs)} hosts (parallelism {self.parallelism})")
        token = token or CancellationToken()
        collector = ResultCollector()
        semaphore = asyncio.Semaphore(self.parallelism)

        loop = asyncio.get_running_loop()
        timer = None
        if self.global_timeout is not None:
            timer = loop.call_later(self.global_timeout, token.cancel, "global timeout")

        tasks = [asyncio.create_task(self._deploy_host(run, deployment_id, semaphore, token, collector)) for run in runs]
        watcher = asyncio.create_task(_cancel_on(token, tasks))
        try:
            await asyncio.gather(*tasks, return_exceptions=True)
        except asyncio.CancelledError:
            token.cancel("deployment cancelled")
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        finally:
            watcher.cancel()
            if timer is not None:
                timer.cancel()

        results = collector.snapshot()
        for run in runs:
            if run.host_id not in results:
                results[run.host_id] = await self._unfinished(run, token)
        report.hosts = {host_id: results[host_id] for host_id in sorted(results)}

        deployment_run = DeploymentRun(
            deployment_id=deployment_id,
            binary_name=binary_name,
            host_records={host_id: r.record_id for host_id, r in report.hosts.items() if r.record_id},
        )
        self.history.save_run(deployment_run)

        active = len(report.hosts_with(DeploymentStatus.ACTIVE))
        logger.info(f"Deployment {deployment_id} finished: {active}/{len(runs)} hosts active, success={report.success}")
        return report

    def _assign(self, units: list[UnitBuildResult], inventory: Inventory) -> list[HostRun]:
        runs: list[HostRun] = []
        seen: set[str] = set()
        for unit in units:
            if unit.artifact is None:
                continue
            for host_id in unit.host_ids:
                if host_id in seen:
                    raise ValueError(f"Host {host_id} assigned to more than one unit")
                seen.add(host_id)
                runs.append(HostRun(host=inventory.get(host_id), artifact=unit.artifact))
        return runs

    async def _deploy_host(
        self,
        run: HostRun,
        deployment_id: str,
        semaphore: asyncio.Semaphore,
        token: CancellationToken,
        collector: ResultCollector,
    ) -> None:
        try:
            await semaphore.acquire()
        except asyncio.CancelledError:
            if not token.cancelled:
                raise
            await collector.add(await self._unfinished(run, token))
            return

        try:
            if token.cancelled:
                result = await self._unfinished(run, token)
            else:
                try:
                    async with asyncio.timeout(self.host_timeout):
                        result = await self._transfer_and_activate(run, deployment_id)
                except TimeoutError:
                    logger.warning(f"Host {run.host_id} timed out after {self.host_timeout}s")
                    result = await self._abort(run, "timeout", f"Host deployment exceeded {self.host_timeout}s")
                except asyncio.CancelledError:
                    if not token.cancelled:
                        raise
                    result = await self._abort(run, "cancelled", token.reason or "cancelled")
                except BinshipError as e:
                    logger.error(f"Deployment to {run.host_id} failed: {e}")
                    result = await self._abort(run, e.kind, str(e))
                except Exception as e:
                    logger.exception(f"Unexpected error deploying to {run.host_id}")
                    result = await self._abort(run, "internal_error", str(e))
            await collector.add(result)
        finally:
            semaphore.release()

    async def _transfer_and_activate(self, run: HostRun, deployment_id: str) -> HostDeploymentResult:
        host, artifact = run.host, run.artifact
        transport = self.transport_for(host)
        paths = self.remote_paths(host, artifact.binary_name, artifact.checksum, deployment_id)
        run.paths = paths

        run.move(DeploymentStatus.TRANSFERRING)
        await self._upload(run, transport, paths)

        if self.verify:
            run.move(DeploymentStatus.VERIFYING)
            checksum, size = await transport.checksum(host, paths.staging)
            if checksum != artifact.checksum or size != artifact.size:
                return await self._recover_mismatch(run, transport, paths, deployment_id, checksum)

        activation = asyncio.ensure_future(self._activate(run, transport, paths, deployment_id))
        try:
            return await asyncio.shield(activation)
        except asyncio.CancelledError:
            logger.warning(f"Cancellation during activation on {host.host_id}; completing activation first")
            return await activation

    async def _upload(self, run: HostRun, transport: Transport, paths: RemotePaths) -> None:
        for attempt in range(self.max_retries + 1):
            run.attempts = attempt + 1
            try:
                await transport.upload(run.host, Path(run.artifact.path), paths.staging)
                run.uploaded = True
                return
            except TransferError as e:
                if attempt >= self.max_retries:
                    raise
                delay = self.backoff(attempt)
                logger.warning(f"Upload to {run.host_id} failed (attempt {attempt + 1}), retrying in {delay:.1f}s: {e}")
                await asyncio.sleep(delay)

    async def _activate(
        self, run: HostRun, transport: Transport, paths: RemotePaths, deployment_id: str
    ) -> HostDeploymentResult:
        host, artifact = run.host, run.artifact
        previous = self.history.current(host.host_id, artifact.binary_name)
        await self._promote(run, transport, paths)
        await transport.activate(host, paths.release, paths.active)

        record = DeploymentRecord(
            record_id=new_record_id(),
            deployment_id=deployment_id,
            host_id=host.host_id,
            binary_name=artifact.binary_name,
            checksum=artifact.checksum,
            size=artifact.size,
            release_path=paths.release,
            status=DeploymentStatus.ACTIVE,
            previous_record_id=previous.record_id if previous else None,
        )
        self.history.append(record)
        run.move(DeploymentStatus.ACTIVE)
        logger.info(f"Activated {artifact.binary_name} {artifact.checksum[:12]} on {host.host_id}")
        return run.result(checksum=artifact.checksum, record_id=record.record_id)

    async def _promote(self, run: HostRun, transport: Transport, paths: RemotePaths) -> None:
        """Move the staged upload to its release path.

        A release that a record already references and that is still present
        on the host is kept as is; the staged copy is discarded instead.
        """
        recorded = any(
            record.release_path == paths.release
            for record in self.history.load(run.host_id, run.artifact.binary_name).records
        )
        if recorded and await transport.exists(run.host, paths.release):
            logger.debug(f"Reusing recorded release {paths.release} on {run.host_id}")
        else:
            await transport.promote(run.host, paths.staging, paths.release)
        await self._discard_staging(run, transport, paths)

    async def _recover_mismatch(
        self, run: HostRun, transport: Transport, paths: RemotePaths, deployment_id: str, actual: str
    ) -> HostDeploymentResult:
        host, artifact = run.host, run.artifact
        error = VerificationMismatch(host.host_id, artifact.checksum, actual)
        logger.error(str(error))
        await self._discard_staging(run, transport, paths)

        current = self.history.current(host.host_id, artifact.binary_name)
        if current is None:
            run.move(DeploymentStatus.FAILED)
            return run.result(error_kind=error.kind, error=str(error))

        await transport.activate(host, current.release_path, paths.active)
        record = DeploymentRecord(
            record_id=new_record_id(),
            deployment_id=deployment_id,
            host_id=host.host_id,
            binary_name=artifact.binary_name,
            checksum=artifact.checksum,
            size=artifact.size,
            release_path=paths.staging,
            status=DeploymentStatus.ROLLED_BACK,
            previous_record_id=current.record_id,
        )
        self.history.append(record, make_current=False)
        run.move(DeploymentStatus.ROLLED_BACK)
        logger.warning(f"Restored {current.checksum[:12]} on {host.host_id} after failed verification")
        return run.result(checksum=current.checksum, record_id=record.record_id, error_kind=error.kind, error=str(error))

    async def _discard_staging(self, run: HostRun, transport: Transport, paths: RemotePaths) -> None:
        try:
            await transport.remove(run.host, [paths.staging_dir])
        except TransferError as e:
            logger.warning(f"Could not clean up {paths.staging_dir} on {run.host_id}: {e}")

    async def _abort(self, run: HostRun, error_kind: str, message: str) -> HostDeploymentResult:
        """Finish a host that could not complete, cleaning up its upload."""
        if run.status == DeploymentStatus.PENDING:
            if error_kind == "cancelled":
                run.move(DeploymentStatus.CANCELLED)
                return run.result(error_kind=error_kind, error=message)
            run.move(DeploymentStatus.TRANSFERRING)
        if run.status.is_final:
            return run.result(error_kind=error_kind, error=message)

        if run.paths is not None and (run.uploaded or run.attempts):
            await self._discard_staging(run, self.transport_for(run.host), run.paths)

        run.move(DeploymentStatus.FAILED)
        current = self.history.current(run.host_id, run.artifact.binary_name)
        return run.result(checksum=current.checksum if current else None, error_kind=error_kind, error=message)

    async def _unfinished(self, run: HostRun, token: CancellationToken) -> HostDeploymentResult:
        reason = token.reason or "cancelled"
        if run.status == DeploymentStatus.PENDING:
            run.move(DeploymentStatus.CANCELLED)
            return run.result(error_kind="cancelled", error=reason)
        return await self._abort(run, "cancelled", reason)

    async def rollback_host(self, host: HostInfo, binary_name: str) -> HostDeploymentResult:
        """Re-activate the version that was active before the current one.

        Raises:
            NoPriorVersion: If there is no current record or it has no
                predecessor. Nothing is changed in that case.
            TransferError: If the prior release cannot be activated
        """
        current = self.history.current(host.host_id, binary_name)
        prior = self.history.get(host.host_id, binary_name, current.previous_record_id) if current else None
        if current is None or prior is None:
            raise NoPriorVersion(host.host_id, binary_name)

        paths = self.remote_paths(host, binary_name, prior.checksum)
        await self.transport_for(host).activate(host, prior.release_path, paths.active)

        self.history.update_status(host.host_id, binary_name, current.record_id, DeploymentStatus.ROLLED_BACK)
        record = DeploymentRecord(
            record_id=new_record_id(),
            deployment_id=f"rollback-{uuid.uuid4().hex[:12]}",
            host_id=host.host_id,
            binary_name=binary_name,
            checksum=prior.checksum,
            size=prior.size,
            release_path=prior.release_path,
            status=DeploymentStatus.ACTIVE,
            previous_record_id=prior.previous_record_id,
            rolled_back_from=current.record_id,
        )
        self.history.append(record)
        logger.info(f"Rolled back {binary_name} on {host.host_id} from {current.checksum[:12]} to {prior.checksum[:12]}")
        return HostDeploymentResult(
            host_id=host.host_id,
            status=DeploymentStatus.ROLLED_BACK,
            checksum=prior.checksum,
            record_id=record.record_id,
        )

    async def rollback_deployment(self, deployment_id: str, inventory: Inventory) -> dict[str, HostDeploymentResult]:
        """Roll back every host whose active version came from ``deployment_id``.

        Hosts that have since moved to another version are left alone.

        Raises:
            KeyError: If the deployment run is unknown
        """
        deployment_run = self.history.load_run(deployment_id)
        if deployment_run is None:
            raise KeyError(f"Unknown deployment: {deployment_id}")

        binary_name = deployment_run.binary_name
        semaphore = asyncio.Semaphore(self.parallelism)
        results: dict[str, HostDeploymentResult] = {}

        async def rollback_one(host_id: str) -> None:
            current = self.history.current(host_id, binary_name)
            if current is None or current.deployment_id != deployment_id:
                logger.info(f"Skipping {host_id}: active version is not from {deployment_id}")
                return
            async with semaphore:
                try:
                    results[host_id] = await self.rollback_host(inventory.get(host_id), binary_name)
                except (BinshipError, KeyError) as e:
                    kind = e.kind if isinstance(e, BinshipError) else "unknown_host"
                    logger.error(f"Rollback of {host_id} failed: {e}")
                    results[host_id] = HostDeploymentResult(
                        host_id=host_id,
                        status=DeploymentStatus.FAILED,
                        checksum=current.checksum,
                        record_id=current.record_id,
                        error_kind=kind,
                        error=str(e),
                    )

        await asyncio.gather(*(rollback_one(host_id) for host_id in sorted(deployment_run.host_records)))
        return {host_id: results[host_id] for host_id in sorted(results)}

    async def cleanup(self, hosts: list[HostInfo], binary_name: str) -> dict[str, HostCleanup]:
        """Remove the active binary, every recorded release and upload remnants."""
        semaphore = asyncio.Semaphore(self.parallelism)

        async def cleanup_one(host: HostInfo) -> HostCleanup:
            history = self.history.load(host.host_id, binary_name)
            base = self.remote_paths(host, binary_name, "")
            targets = [base.active]
            for record in history.records:
                paths = self.remote_paths(host, binary_name, record.checksum)
                for path in (paths.release, str(PurePosixPath(paths.release).parent)):
                    if path not in targets:
                        targets.append(path)
            targets.append(str(PurePosixPath(base.staging_dir).parent))
            async with semaphore:
                try:
                    removed = await self.transport_for(host).remove(host, targets)
                except TransferError as e:
                    logger.error(f"Cleanup of {host.host_id} failed: {e}")
                    return HostCleanup(host_id=host.host_id, error=str(e))
            self.history.clear_current(host.host_id, binary_name)
            logger.info(f"Cleaned up {binary_name} on {host.host_id} ({len(removed)} paths removed)")
            return HostCleanup(host_id=host.host_id, removed=removed)

        results = await asyncio.gather(*(cleanup_one(host) for host in hosts))
        return {result.host_id: result for result in sorted(results, key=lambda r: r.host_id)}

    async def verify_hosts(self, hosts: list[HostInfo], binary_name: str) -> dict[str, HostVerification]:
        """Compare each host's active binary with its current record."""
        semaphore = asyncio.Semaphore(self.parallelism)

        async def verify_one(host: HostInfo) -> HostVerification:
            current = self.history.current(host.host_id, binary_name)
            if current is None:
                return HostVerification(host_id=host.host_id, ok=False, error="No active deployment recorded")
            active = self.remote_paths(host, binary_name, current.checksum).active
            async with semaphore:
                try:
                    checksum, size = await self.transport_for(host).checksum(host, active)
                except TransferError as e:
                    return HostVerification(host_id=host.host_id, ok=False, expected=current.checksum, error=str(e))
            ok = checksum == current.checksum and size == current.size
            if not ok:
                logger.warning(f"Active {binary_name} on {host.host_id} does not match record {current.record_id}")
            return HostVerification(host_id=host.host_id, ok=ok, expected=current.checksum, actual=checksum)

        results = await asyncio.gather(*(verify_one(host) for host in hosts))
        return {result.host_id: result for result in sorted(results, key=lambda r: r.host_id)}


async def _cancel_on(token: CancellationToken, tasks: list[asyncio.Task]) -> None:
    reason = await token.wait()
    logger.warning(f"Cancelling deployment: {reason}")
    for task in tasks:
        if not task.done():
            task.cancel()
