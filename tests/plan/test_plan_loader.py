"""Tests for plan/inventory loading and per-unit subsets."""

import json

import pytest
import yaml

from binship.errors import PlanError
from binship.plan.loader import load_inventory
from binship.plan.loader import load_plan
from binship.plan.loader import plan_subset
from binship.runtime.models import ExecutionPlan


@pytest.mark.unit
class TestLoading:
    """Tests for reading documents from disk."""

    def test_load_yaml_plan(self, tmp_path, sample_plan_data) -> None:
        path = tmp_path / "plan.yaml"
        path.write_text(yaml.safe_dump(sample_plan_data))

        plan = load_plan(path)
        assert plan.count_tasks() == 3

    def test_load_json_plan(self, tmp_path, sample_plan_data) -> None:
        path = tmp_path / "plan.json"
        path.write_text(json.dumps(sample_plan_data))
        assert load_plan(path).plays[0].play_id == "setup"

    def test_invalid_plan_raises_plan_error(self, tmp_path) -> None:
        path = tmp_path / "plan.yaml"
        path.write_text("plays:\n  - batches: [1, 2]\n")
        with pytest.raises(PlanError, match="Invalid plan document"):
            load_plan(path)

    def test_missing_plan_file(self, tmp_path) -> None:
        with pytest.raises(PlanError):
            load_plan(tmp_path / "absent.yaml")

    def test_inventory_from_host_list(self, tmp_path) -> None:
        path = tmp_path / "inventory.yaml"
        path.write_text("- alpha\n- beta\n")

        inventory = load_inventory(path)
        assert sorted(inventory.hosts) == ["alpha", "beta"]
        assert inventory.get("alpha").connection == "local"

    def test_inventory_host_ids_filled(self, tmp_path) -> None:
        path = tmp_path / "inventory.yaml"
        path.write_text("hosts:\n  db1:\n    address: 10.0.0.5\n    user: deploy\n")

        host = load_inventory(path).get("db1")
        assert host.host_id == "db1"
        assert host.ssh_destination == "deploy@10.0.0.5"


@pytest.mark.unit
class TestPlanSubset:
    """Tests for restricting a plan to one unit's hosts."""

    @pytest.fixture
    def targeted_plan(self) -> ExecutionPlan:
        return ExecutionPlan.model_validate(
            {
                "plays": [
                    {"play_id": "all", "batches": [{"batch_id": "b", "tasks": [{"task_id": "t1", "module": "debug"}]}]},
                    {
                        "play_id": "web",
                        "hosts": ["web1", "web2"],
                        "batches": [{"batch_id": "b", "tasks": [{"task_id": "t2", "module": "debug"}]}],
                    },
                    {
                        "play_id": "edge",
                        "hosts": ["edge1"],
                        "batches": [{"batch_id": "b", "tasks": [{"task_id": "t3", "module": "debug"}]}],
                    },
                ]
            }
        )

    def test_subset_drops_untargeted_plays(self, targeted_plan, inventory) -> None:
        subset = plan_subset(targeted_plan, ["web1"], inventory)

        assert [play.play_id for play in subset.plays] == ["all", "web"]
        assert subset.plays[1].hosts == ["web1"]
        assert subset.total_tasks == 2
        assert subset.hosts == ["web1"]

    def test_subset_embeds_host_vars(self, targeted_plan, inventory) -> None:
        subset = plan_subset(targeted_plan, ["web2", "web1"], inventory)
        assert subset.metadata["host_vars"] == {"web1": {"role": "web"}}

    def test_subset_keeps_plan_metadata(self, sample_plan, inventory) -> None:
        subset = plan_subset(sample_plan, ["edge1"], inventory)
        assert subset.metadata["vars"] == {"env": "prod"}
        assert "host_vars" not in subset.metadata
