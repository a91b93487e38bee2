"""Execution plan validation.

Everything here runs before any compilation unit is built, so a broken plan
never reaches the compiler.

Contract:
- Inputs: ExecutionPlan, set of resolvable module names
- Outputs: Dependency order per play
- Side Effects: None
"""

import logging
from collections.abc import Iterable

from ..errors import PlanError
from ..runtime.models import ExecutionPlan
from ..runtime.models import Play

logger = logging.getLogger(__name__)


def topological_order(play: Play) -> list[str]:
    """Sort a play's tasks by dependency order using Kahn's algorithm.

    Args:
        play: Play whose dependencies all refer to tasks of the same play

    Returns:
        Task ids in an order where every dependency precedes its dependents

    Raises:
        PlanError: If a dependency is unknown or the dependencies form a cycle
    """
    tasks = list(play.iter_tasks())
    task_ids = [task.task_id for task in tasks]
    dependents: dict[str, list[str]] = {task_id: [] for task_id in task_ids}
    in_degree: dict[str, int] = {task_id: 0 for task_id in task_ids}

    for task in tasks:
        for dep in task.dependencies:
            if dep not in in_degree:
                raise PlanError(
                    f"Task '{task.task_id}' in play '{play.play_id}' depends on unknown task '{dep}'. "
                    f"Dependencies must refer to tasks of the same play."
                )
            dependents[dep].append(task.task_id)
            in_degree[task.task_id] += 1

    queue = [task_id for task_id in task_ids if in_degree[task_id] == 0]
    ordered: list[str] = []

    while queue:
        task_id = queue.pop(0)
        ordered.append(task_id)
        for dependent in dependents[task_id]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    if len(ordered) != len(task_ids):
        remaining = sorted(set(task_ids) - set(ordered))
        raise PlanError(f"Circular dependency detected in play '{play.play_id}': {', '.join(remaining)}")

    return ordered


def _check_batch_order(play: Play) -> None:
    batch_of: dict[str, int] = {}
    for index, batch in enumerate(play.batches):
        for task in batch.tasks:
            batch_of[task.task_id] = index
    for task in play.iter_tasks():
        for dep in task.dependencies:
            if batch_of[dep] > batch_of[task.task_id]:
                raise PlanError(
                    f"Task '{task.task_id}' depends on '{dep}', which runs in a later batch of play '{play.play_id}'"
                )


def validate_plan(plan: ExecutionPlan, available_modules: Iterable[str] | None = None) -> dict[str, list[str]]:
    """Check every structural invariant of a plan.

    Args:
        plan: Plan to validate
        available_modules: Names the module resolver can satisfy (skipped when None)

    Returns:
        Mapping of play id to its task ids in dependency order

    Raises:
        PlanError: On duplicate ids, unknown or later-batch dependencies, cycles,
            a wrong ``total_tasks`` or unknown modules
    """
    seen: set[str] = set()
    duplicates: set[str] = set()
    for task in plan.iter_tasks():
        if task.task_id in seen:
            duplicates.add(task.task_id)
        seen.add(task.task_id)
    if duplicates:
        raise PlanError(f"Duplicate task ids: {', '.join(sorted(duplicates))}")

    play_ids = [play.play_id for play in plan.plays]
    if len(set(play_ids)) != len(play_ids):
        raise PlanError("Duplicate play ids")

    orders: dict[str, list[str]] = {}
    for play in plan.plays:
        orders[play.play_id] = topological_order(play)
        _check_batch_order(play)

    actual = plan.count_tasks()
    if plan.total_tasks is not None and plan.total_tasks != actual:
        raise PlanError(f"Plan declares {plan.total_tasks} tasks but contains {actual}")

    if available_modules is not None:
        missing = sorted(plan.module_names() - set(available_modules))
        if missing:
            raise PlanError(f"Unknown modules referenced by plan: {', '.join(missing)}", missing_modules=missing)

    logger.debug(f"Plan validated: {len(plan.plays)} play(s), {actual} task(s)")
    return orders
