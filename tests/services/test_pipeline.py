"""End-to-end tests for the build-and-deploy pipeline."""

import pytest

from binship.errors import PlanError
from binship.errors import UnsupportedTarget
from binship.models.deployments import DeploymentStatus
from binship.models.inventory import Inventory
from binship.models.reports import UnitStatus
from binship.runtime.models import ExecutionPlan
from binship.services.pipeline import BuildOptions
from binship.services.pipeline import DeployOptions

X86 = "x86_64-unknown-linux-gnu"
ARM = "aarch64-unknown-linux-gnu"


def units_by_triple(report):
    return {unit.target_triple: unit for unit in report.units}


@pytest.mark.integration
class TestPipelineRun:
    """Compile and deploy through PipelineService."""

    @pytest.mark.asyncio
    async def test_compile_and_deploy(self, tmp_path, make_service, sample_plan, two_hosts) -> None:
        service = make_service()
        report = await service.run(sample_plan, two_hosts)

        assert report.success
        unit = report.build.units[0]
        assert unit.status == UnitStatus.BUILT
        assert unit.host_ids == ["web1", "web2"]
        assert report.deployment.hosts_with(DeploymentStatus.ACTIVE) == ["web1", "web2"]
        for host_id in ("web1", "web2"):
            active = tmp_path / "hosts" / host_id / "opt" / "binship" / "binship-agent"
            assert active.read_bytes().startswith(b"#!fake\n")

    @pytest.mark.asyncio
    async def test_second_compile_hits_cache(self, make_service, fake_backend, sample_plan, two_hosts) -> None:
        service = make_service(fake_backend)
        first = await service.compile(sample_plan, two_hosts)
        second = await service.compile(sample_plan, two_hosts)

        assert units_by_triple(second)[X86].status == UnitStatus.CACHED
        assert units_by_triple(second)[X86].fingerprint == units_by_triple(first)[X86].fingerprint
        assert fake_backend.builds == [X86]

    @pytest.mark.asyncio
    async def test_force_rebuild(self, make_service, fake_backend, sample_plan, two_hosts) -> None:
        service = make_service(fake_backend)
        await service.compile(sample_plan, two_hosts)
        report = await service.compile(sample_plan, two_hosts, BuildOptions(force_rebuild=True))

        assert report.units[0].status == UnitStatus.BUILT
        assert fake_backend.builds == [X86, X86]

    @pytest.mark.asyncio
    async def test_invalid_plan_compiles_nothing(self, make_service, fake_backend, two_hosts) -> None:
        plan = ExecutionPlan.model_validate(
            {
                "plays": [
                    {
                        "play_id": "p",
                        "batches": [
                            {
                                "batch_id": "b",
                                "tasks": [
                                    {"task_id": "a", "module": "debug", "dependencies": ["b"]},
                                    {"task_id": "b", "module": "debug", "dependencies": ["a"]},
                                ],
                            }
                        ],
                    }
                ]
            }
        )
        with pytest.raises(PlanError):
            await make_service(fake_backend).run(plan, two_hosts)
        assert fake_backend.builds == []

    @pytest.mark.asyncio
    async def test_unknown_module_rejected(self, make_service, sample_plan, two_hosts) -> None:
        plan = sample_plan.model_copy(deep=True)
        plan.plays[0].batches[0].tasks[1].module = "apt"

        with pytest.raises(PlanError) as exc_info:
            await make_service().compile(plan, two_hosts)
        assert exc_info.value.missing_modules == ["apt"]

    @pytest.mark.asyncio
    async def test_module_file_without_class_rejected(
        self, tmp_path, make_service, fake_backend, sample_plan, two_hosts
    ) -> None:
        plugins = tmp_path / "plugins"
        plugins.mkdir()
        (plugins / "helpers.py").write_text("def shared():\n    return 1\n")
        plan = sample_plan.model_copy(deep=True)
        plan.plays[0].batches[0].tasks[1].module = "helpers"

        with pytest.raises(PlanError) as exc_info:
            await make_service(fake_backend, module_dirs=[str(plugins)]).compile(plan, two_hosts)
        assert exc_info.value.missing_modules == ["helpers"]
        assert fake_backend.builds == []

    @pytest.mark.asyncio
    async def test_unresolvable_host_isolated(self, make_service, sample_plan) -> None:
        inventory = Inventory.from_document(
            {
                "hosts": {
                    "web1": {"connection": "local", "arch": "x86_64", "os": "linux"},
                    "mainframe": {"connection": "local", "arch": "s390x", "os": "linux"},
                }
            }
        )
        report = await make_service().run(sample_plan, inventory)

        assert not report.success
        assert [(u.host_id, u.error_kind) for u in report.build.unresolved] == [("mainframe", "unsupported_target")]
        assert report.deployment.hosts_with(DeploymentStatus.ACTIVE) == ["web1"]

    @pytest.mark.asyncio
    async def test_missing_toolchain_fails_only_its_unit(
        self, make_service, backend_factory, sample_plan, inventory
    ) -> None:
        backend = backend_factory(available={X86})
        report = await make_service(backend).run(sample_plan, inventory)

        units = units_by_triple(report.build)
        assert units[ARM].status == UnitStatus.FAILED
        assert units[ARM].error_kind == "toolchain_missing"
        assert units[X86].status == UnitStatus.BUILT
        assert report.deployment.hosts_with(DeploymentStatus.ACTIVE) == ["web1", "web2"]
        assert "edge1" not in report.deployment.hosts

    @pytest.mark.asyncio
    async def test_cached_unit_needs_no_toolchain(self, make_service, backend_factory, sample_plan, two_hosts) -> None:
        backend = backend_factory(available={X86})
        await make_service(backend).compile(sample_plan, two_hosts)

        backend.available = set()
        report = await make_service(backend).compile(sample_plan, two_hosts)

        assert [(unit.status, unit.error_kind) for unit in report.units] == [(UnitStatus.CACHED, None)]
        assert backend.builds == [X86]

    @pytest.mark.asyncio
    async def test_small_cache_keeps_artifacts_until_deployed(
        self, make_service, backend_factory, sample_plan, inventory
    ) -> None:
        service = make_service(backend_factory(payload_size=1000), cache_max_bytes=1500)
        report = await service.run(sample_plan, inventory)

        assert report.success
        assert report.deployment.hosts_with(DeploymentStatus.ACTIVE) == ["edge1", "web1", "web2"]
        assert service.cache.pinned() == set()
        assert service.cache.stats().entries == 1
        assert service.cache.stats().total_bytes <= 1500

    @pytest.mark.asyncio
    async def test_toolchain_acquired_when_enabled(self, make_service, backend_factory, sample_plan, inventory) -> None:
        backend = backend_factory(available={X86})
        report = await make_service(backend, auto_acquire_toolchain=True).compile(sample_plan, inventory)

        assert report.success
        assert backend.acquired == [ARM]

    @pytest.mark.asyncio
    async def test_compile_error_isolated(self, make_service, backend_factory, sample_plan, inventory) -> None:
        backend = backend_factory(fail_targets={ARM})
        report = await make_service(backend).run(sample_plan, inventory)

        units = units_by_triple(report.build)
        assert units[ARM].error_kind == "compile_error"
        assert report.deployment.hosts_with(DeploymentStatus.ACTIVE) == ["web1", "web2"]

    @pytest.mark.asyncio
    async def test_target_override_single_unit(self, make_service, sample_plan, inventory) -> None:
        report = await make_service().compile(sample_plan, inventory, BuildOptions(target_override=ARM))

        assert [unit.target_triple for unit in report.units] == [ARM]
        assert report.units[0].host_ids == ["edge1", "web1", "web2"]

    @pytest.mark.asyncio
    async def test_invalid_target_override(self, make_service, sample_plan, inventory) -> None:
        with pytest.raises(UnsupportedTarget):
            await make_service().compile(sample_plan, inventory, BuildOptions(target_override="pdp11-unknown-none"))

    @pytest.mark.asyncio
    async def test_host_selection(self, make_service, sample_plan, inventory) -> None:
        report = await make_service().compile(sample_plan, inventory, BuildOptions(host_ids=["edge1"]))
        assert [unit.host_ids for unit in report.units] == [["edge1"]]

    @pytest.mark.asyncio
    async def test_dry_run(self, make_service, fake_backend, fake_transport, sample_plan, two_hosts) -> None:
        report = await make_service(fake_backend).run(sample_plan, two_hosts, BuildOptions(dry_run=True))

        assert report.build.units[0].status == UnitStatus.PLANNED
        assert report.build.units[0].fingerprint
        assert report.deployment.hosts_with(DeploymentStatus.PENDING) == ["web1", "web2"]
        assert report.success
        assert fake_backend.builds == []
        assert fake_transport.uploads == []

    @pytest.mark.asyncio
    async def test_compile_only(self, make_service, fake_transport, sample_plan, two_hosts) -> None:
        report = await make_service().run(sample_plan, two_hosts, BuildOptions(compile_only=True))

        assert report.deployment is None
        assert fake_transport.uploads == []

    @pytest.mark.asyncio
    async def test_binary_name_and_deployment_id(self, tmp_path, make_service, sample_plan, two_hosts) -> None:
        service = make_service()
        report = await service.run(
            sample_plan, two_hosts, BuildOptions(binary_name="agent"), DeployOptions(deployment_id="dep-fixed")
        )

        assert report.deployment.deployment_id == "dep-fixed"
        assert report.deployment.binary_name == "agent"
        assert service.history.load_run("dep-fixed") is not None
        assert (tmp_path / "hosts" / "web1" / "opt" / "binship" / "agent").is_file()
        assert service.history.current("web1", "agent") is not None

    @pytest.mark.asyncio
    async def test_rollback_through_service(self, make_service, sample_plan, two_hosts) -> None:
        service = make_service()
        await service.run(sample_plan, two_hosts)

        changed = sample_plan.model_copy(deep=True)
        changed.plays[0].batches[0].tasks[0].args = {"stage": "next"}
        second = await service.run(changed, two_hosts)

        results = await service.rollback_deployment(second.deployment.deployment_id, two_hosts)
        assert {r.status for r in results.values()} == {DeploymentStatus.ROLLED_BACK}

        verified = await service.verify(list(two_hosts.hosts.values()))
        assert all(v.ok for v in verified.values())
