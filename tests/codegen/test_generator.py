"""Tests for code generation, embedding and fingerprints."""

import json
import subprocess
import sys
from pathlib import Path

import pytest

from binship.cache.fingerprint import compute_fingerprint
from binship.codegen.embedder import Embedder
from binship.codegen.embedder import StaticFileRef
from binship.codegen.embedder import canonical_json
from binship.codegen.generator import CodeGenerator
from binship.codegen.generator import write_source
from binship.errors import EmbedError
from binship.errors import PlanError
from binship.models.artifacts import BuildFlags
from binship.models.units import CompilationUnit
from binship.modules.resolver import ModuleResolver
from binship.runtime.models import RuntimeConfig

PLUGIN_SOURCE = '''
from binship_runtime.modules.base import TaskModule
from binship_runtime.models import ModuleResult


class DeployAppModule(TaskModule):
    name = "deploy_app"
    version = "2.1.0"

    async def execute(self, args, context):
        return ModuleResult(changed=True, msg="deployed")
'''


@pytest.fixture
def generator() -> CodeGenerator:
    return CodeGenerator()


@pytest.fixture
def unit(sample_plan) -> CompilationUnit:
    return CompilationUnit(target_triple="x86_64-unknown-linux-gnu", host_ids=["web1"], plan=sample_plan)


@pytest.fixture
def prepared(generator, unit, sample_plan) -> CompilationUnit:
    modules = ModuleResolver().resolve_all(sample_plan.module_names())
    return generator.prepare(unit, modules, RuntimeConfig())


@pytest.mark.unit
class TestCanonicalJson:
    """Tests for canonical serialization."""

    def test_sorted_compact_unescaped(self) -> None:
        assert canonical_json({"b": 1, "a": "été"}) == '{"a":"été","b":1}'

    def test_key_order_does_not_matter(self) -> None:
        assert canonical_json({"x": 1, "y": [1, 2]}) == canonical_json({"y": [1, 2], "x": 1})

    def test_unserializable_raises(self) -> None:
        with pytest.raises(EmbedError):
            canonical_json({"value": object()})

    def test_nan_rejected(self) -> None:
        with pytest.raises(EmbedError):
            canonical_json({"value": float("nan")})


@pytest.mark.unit
class TestEmbedder:
    """Tests for payload construction."""

    def test_static_files_embedded_by_target(self, tmp_path, sample_plan) -> None:
        source = tmp_path / "app.conf"
        source.write_bytes(b"port=80\n")

        payload = Embedder().embed(
            sample_plan, RuntimeConfig(), [StaticFileRef(source_path=str(source), target_path="/etc/app.conf")]
        )
        assert payload.static_files == {"etc/app.conf": b"port=80\n"}
        assert json.loads(payload.execution_plan)["total_tasks"] == 3

    def test_parent_traversal_rejected(self, tmp_path, sample_plan) -> None:
        ref = StaticFileRef(source_path=str(tmp_path / "x"), target_path="../escape")
        with pytest.raises(EmbedError):
            Embedder().embed(sample_plan, RuntimeConfig(), [ref])

    def test_unreadable_static_file_skipped(self, tmp_path, sample_plan) -> None:
        ref = StaticFileRef(source_path=str(tmp_path / "missing"), target_path="missing")
        payload = Embedder().embed(sample_plan, RuntimeConfig(), [ref])
        assert payload.static_files == {}


@pytest.mark.unit
class TestCodeGenerator:
    """Tests for prepare/generate."""

    def test_prepare_keeps_only_needed_modules(self, prepared) -> None:
        assert [spec.name for spec in prepared.modules] == ["debug", "set_fact"]
        assert prepared.payload is not None

    def test_prepare_reports_missing_modules(self, generator, unit) -> None:
        with pytest.raises(PlanError) as exc_info:
            generator.prepare(unit, [], RuntimeConfig())
        assert exc_info.value.missing_modules == ["debug", "set_fact"]

    def test_generate_requires_payload(self, generator, unit) -> None:
        with pytest.raises(PlanError, match="no embedded payload"):
            generator.generate(unit)

    def test_generated_tree_layout(self, generator, prepared) -> None:
        files = generator.generate(prepared).as_dict()

        assert "__main__.py" in files
        assert "binship_runtime/engine.py" in files
        assert "binship_runtime/_embedded.py" in files
        assert "binship_entry/__main__.py" in files
        assert "binship_modules/__init__.py" not in files
        dispatch = files["binship_runtime/dispatch.py"]
        assert "'debug': _debug," in dispatch
        assert "'set_fact': _set_fact," in dispatch
        assert "'command'" not in dispatch

    def test_generation_is_deterministic(self, generator, unit, sample_plan) -> None:
        modules = ModuleResolver().resolve_all(sample_plan.module_names())
        first = generator.generate(generator.prepare(unit, modules, RuntimeConfig()))
        second = CodeGenerator().generate(CodeGenerator().prepare(unit, modules, RuntimeConfig()))

        assert first.files == second.files
        assert first.digest() == second.digest()

    def test_static_files_rendered_base64(self, generator, unit, sample_plan, tmp_path) -> None:
        source = tmp_path / "motd"
        source.write_bytes(b"hello")
        modules = ModuleResolver().resolve_all(sample_plan.module_names())
        prepared = generator.prepare(
            unit, modules, RuntimeConfig(), [StaticFileRef(source_path=str(source), target_path="motd")]
        )

        embedded = generator.generate(prepared).as_dict()["binship_runtime/_embedded.py"]
        assert "'motd': 'aGVsbG8='," in embedded

    def test_extra_module_copied(self, generator, tmp_path, sample_plan) -> None:
        plugins = tmp_path / "plugins"
        plugins.mkdir()
        (plugins / "deploy_app.py").write_text(PLUGIN_SOURCE)

        plan = sample_plan.model_copy(deep=True)
        plan.plays[0].batches[0].tasks[0].module = "deploy_app"
        resolver = ModuleResolver([plugins])
        modules = resolver.resolve_all(plan.module_names())
        unit = CompilationUnit(target_triple="aarch64-unknown-linux-gnu", host_ids=["edge1"], plan=plan)

        files = generator.generate(generator.prepare(unit, modules, RuntimeConfig())).as_dict()
        assert files["binship_modules/deploy_app.py"] == PLUGIN_SOURCE
        assert "from binship_modules.deploy_app import DeployAppModule as _deploy_app" in files[
            "binship_runtime/dispatch.py"
        ]
        assert "'deploy_app': '2.1.0'," in files["binship_runtime/dispatch.py"]

    def test_write_source_replaces_tree(self, generator, prepared, tmp_path) -> None:
        dest = tmp_path / "src"
        dest.mkdir()
        (dest / "stale.py").write_text("old")

        write_source(generator.generate(prepared), dest)
        assert not (dest / "stale.py").exists()
        assert (dest / "__main__.py").is_file()


@pytest.mark.unit
class TestModuleResolver:
    """Tests for module discovery."""

    def test_builtins_available(self) -> None:
        assert {"command", "copy", "debug", "file", "set_fact"} <= ModuleResolver().available()

    def test_unknown_modules_listed(self) -> None:
        with pytest.raises(PlanError) as exc_info:
            ModuleResolver().resolve_all({"nope", "debug", "other"})
        assert exc_info.value.missing_modules == ["nope", "other"]

    def test_extra_directory_shadows_builtin(self, tmp_path: Path) -> None:
        (tmp_path / "debug.py").write_text(PLUGIN_SOURCE.replace('"deploy_app"', '"debug"'))
        spec = ModuleResolver([tmp_path]).resolve("debug")

        assert spec is not None
        assert not spec.builtin
        assert spec.import_path == "binship_modules.debug"

    def test_available_requires_matching_class(self, tmp_path: Path) -> None:
        (tmp_path / "deploy_app.py").write_text(PLUGIN_SOURCE)
        (tmp_path / "helpers.py").write_text("def shared():\n    return 1\n")
        (tmp_path / "broken.py").write_text("class (:\n")

        available = ModuleResolver([tmp_path]).available()

        assert "deploy_app" in available
        assert "helpers" not in available
        assert "broken" not in available

    def test_invalid_python_raises(self, tmp_path: Path) -> None:
        (tmp_path / "broken.py").write_text("class (:\n")
        with pytest.raises(PlanError, match="not valid Python"):
            ModuleResolver([tmp_path]).resolve("broken")


@pytest.mark.unit
class TestFingerprint:
    """Tests for fingerprint stability and sensitivity."""

    def test_stable_for_equal_inputs(self, prepared) -> None:
        assert compute_fingerprint(prepared, BuildFlags(), "agent") == compute_fingerprint(
            prepared, BuildFlags(), "agent"
        )

    def test_changes_with_flags(self, prepared) -> None:
        assert compute_fingerprint(prepared, BuildFlags(), "agent") != compute_fingerprint(
            prepared, BuildFlags(profile="debug"), "agent"
        )

    def test_changes_with_binary_name(self, prepared) -> None:
        assert compute_fingerprint(prepared, BuildFlags(), "a") != compute_fingerprint(prepared, BuildFlags(), "b")

    def test_changes_with_target(self, prepared) -> None:
        other = prepared.model_copy(update={"target_triple": "aarch64-unknown-linux-gnu"})
        assert compute_fingerprint(prepared, BuildFlags(), "a") != compute_fingerprint(other, BuildFlags(), "a")

    def test_requires_prepared_unit(self, unit) -> None:
        with pytest.raises(PlanError):
            compute_fingerprint(unit, BuildFlags(), "agent")

    def test_size_profile_forces_postprocessing(self) -> None:
        flags = BuildFlags(profile="size", strip=False, compress=False)
        assert flags.strip and flags.compress


@pytest.mark.integration
class TestGeneratedProgram:
    """Runs rendered programs with the current interpreter."""

    def run_rendered(self, generator: CodeGenerator, unit: CompilationUnit, dest: Path, *args: str):
        write_source(generator.generate(unit), dest)
        return subprocess.run(
            [sys.executable, str(dest), *args], capture_output=True, text=True, timeout=120, check=False
        )

    def test_dependencies_complete_first_on_each_host(self, generator, sample_plan, tmp_path) -> None:
        unit = CompilationUnit(target_triple="x86_64-unknown-linux-gnu", host_ids=["web1", "web2"], plan=sample_plan)
        modules = ModuleResolver().resolve_all(sample_plan.module_names())
        prepared = generator.prepare(unit, modules, RuntimeConfig())

        for host_id in ("web1", "web2"):
            completed = self.run_rendered(generator, prepared, tmp_path / "src", "--host", host_id)

            assert completed.returncode == 0, completed.stderr
            report = json.loads(completed.stdout)
            assert report["host_id"] == host_id
            task_results = report["results"][0]["task_results"]
            assert [result["task_id"] for result in task_results][0] == "a"
            assert {result["task_id"] for result in task_results[1:]} == {"b", "c"}
            by_id = {result["task_id"]: result for result in task_results}
            assert by_id["c"]["module_result"]["msg"] == "stage: ready"

    def test_extra_module_dispatched(self, generator, sample_plan, tmp_path) -> None:
        plugins = tmp_path / "plugins"
        plugins.mkdir()
        (plugins / "deploy_app.py").write_text(PLUGIN_SOURCE)
        plan = sample_plan.model_copy(deep=True)
        plan.plays[0].batches[0].tasks[1].module = "deploy_app"
        modules = ModuleResolver([plugins]).resolve_all(plan.module_names())
        unit = CompilationUnit(target_triple="x86_64-unknown-linux-gnu", host_ids=["web1"], plan=plan)

        completed = self.run_rendered(
            generator, generator.prepare(unit, modules, RuntimeConfig()), tmp_path / "src", "--host", "web1"
        )

        assert completed.returncode == 0, completed.stderr
        by_id = {result["task_id"]: result for result in json.loads(completed.stdout)["results"][0]["task_results"]}
        assert by_id["b"]["module_result"]["msg"] == "deployed"
        assert by_id["b"]["module_result"]["changed"]
