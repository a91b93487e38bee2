"""Loading plan and inventory documents, and deriving per-unit plan subsets.

Contract:
- Inputs: YAML or JSON files, validated plans, inventories
- Outputs: ExecutionPlan / Inventory models
- Side Effects: Reads files
"""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ..errors import PlanError
from ..models.inventory import Inventory
from ..runtime.models import ExecutionPlan

logger = logging.getLogger(__name__)


def load_document(path: Path) -> Any:
    """Parse a YAML or JSON file (JSON is valid YAML)."""
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f)


def load_plan(path: Path) -> ExecutionPlan:
    """Load and validate the shape of a plan document.

    Raises:
        PlanError: If the document is not a valid plan
    """
    try:
        return ExecutionPlan.model_validate(load_document(path) or {})
    except (OSError, yaml.YAMLError, ValidationError) as e:
        raise PlanError(f"Invalid plan document {path}: {e}") from e


def load_inventory(path: Path) -> Inventory:
    try:
        return Inventory.from_document(load_document(path))
    except (OSError, yaml.YAMLError, ValidationError) as e:
        raise PlanError(f"Invalid inventory document {path}: {e}") from e


def plan_subset(plan: ExecutionPlan, host_ids: list[str], inventory: Inventory | None = None) -> ExecutionPlan:
    """Restrict a plan to the plays that target any of ``host_ids``.

    Play host filters are narrowed to those hosts, and their inventory vars
    are embedded under ``metadata.host_vars`` so conditions can see them.
    """
    hosts = sorted(host_ids)
    plays = []
    for play in plan.plays:
        if play.hosts is None:
            plays.append(play)
            continue
        targeted = sorted(set(play.hosts) & set(hosts))
        if targeted:
            plays.append(play.model_copy(update={"hosts": targeted}))

    metadata = dict(plan.metadata)
    if inventory is not None:
        host_vars = {host_id: inventory.get(host_id).vars for host_id in hosts if inventory.get(host_id).vars}
        if host_vars:
            metadata["host_vars"] = host_vars

    subset = ExecutionPlan(metadata=metadata, plays=plays, hosts=hosts)
    subset.total_tasks = subset.count_tasks()
    return subset
