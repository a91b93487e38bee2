"""Plan execution engine.

Replays an execution plan on one host. Plays and batches run in declared
order. Inside a batch, tasks run in dependency waves: a task starts only
after all of its dependencies have finished, and only tasks marked
``parallel_safe`` run concurrently with each other.

Contract:
- Inputs: ExecutionPlan, RuntimeConfig, name-keyed module table, ExecutionContext
- Outputs: ExecutionReport (partial when cancelled)
- Side Effects: Whatever the dispatched modules do on the host
"""

import asyncio
import logging
import time
from collections.abc import Mapping
from datetime import UTC
from datetime import datetime

from .cancellation import CancellationToken
from .context import ExecutionContext
from .errors import ConditionError
from .models import Batch
from .models import ExecutionPlan
from .models import ExecutionReport
from .models import ModuleResult
from .models import Play
from .models import PlayResult
from .models import RuntimeConfig
from .models import Task
from .models import TaskResult
from .modules.base import TaskModule

logger = logging.getLogger(__name__)


class PlanExecutor:
    """Executes a plan against a module dispatch table.

    Example:
        >>> executor = PlanExecutor(plan, RuntimeConfig(), MODULES, ExecutionContext(host_id="web1"))
        >>> report = await executor.run()
    """

    def __init__(
        self,
        plan: ExecutionPlan,
        config: RuntimeConfig,
        modules: Mapping[str, type[TaskModule]],
        context: ExecutionContext,
        token: CancellationToken | None = None,
    ) -> None:
        self.plan = plan
        self.config = config
        self.modules = modules
        self.context = context
        self.token = token or CancellationToken()
        self._finished: set[str] = set()
        self._failed: set[str] = set()
        self._play_results: list[PlayResult] = []

    def progress(self) -> dict:
        """Snapshot of progress for periodic controller updates."""
        return {
            "host_id": self.context.host_id,
            "completed_tasks": len(self._finished),
            "failed_tasks": sorted(self._failed),
            "total_tasks": self.plan.count_tasks(),
        }

    async def run(self) -> ExecutionReport:
        """Execute every play that applies to this host."""
        started = time.monotonic()
        watchdog = None
        if self.config.execution_timeout:
            loop = asyncio.get_running_loop()
            watchdog = loop.call_later(
                self.config.execution_timeout, self.token.cancel, f"execution timeout after {self.config.execution_timeout}s"
            )

        try:
            for play in self.plan.plays:
                if self.token.cancelled:
                    break
                if not play.applies_to(self.context.host_id):
                    logger.debug(f"Skipping play {play.play_id}: host {self.context.host_id} not targeted")
                    continue
                self._play_results.append(await self._run_play(play))
        finally:
            if watchdog is not None:
                watchdog.cancel()

        cancelled = self.token.cancelled
        if cancelled:
            logger.warning(f"Execution cancelled ({self.token.reason}), returning partial report")

        success = not cancelled and all(result.success for result in self._play_results)
        return ExecutionReport(
            host_id=self.context.host_id,
            success=success,
            cancelled=cancelled,
            results=self._play_results,
            execution_time=time.monotonic() - started,
        )

    async def _run_play(self, play: Play) -> PlayResult:
        logger.info(f"Starting play {play.play_id} {play.name}".rstrip())
        task_results: list[TaskResult] = []
        for batch in play.batches:
            if self.token.cancelled:
                break
            task_results.extend(await self._run_batch(batch))
        success = not any(result.module_result.failed for result in task_results)
        return PlayResult(play_id=play.play_id, success=success, task_results=task_results)

    async def _run_batch(self, batch: Batch) -> list[TaskResult]:
        pending: dict[str, Task] = {task.task_id: task for task in batch.tasks}
        results: list[TaskResult] = []

        while pending:
            if self.token.cancelled:
                break

            ready = [task for task in pending.values() if all(dep in self._finished for dep in task.dependencies)]
            if not ready:
                # Validated plans never get here; guard against hand-built plans
                for task in pending.values():
                    results.append(self._record(task, ModuleResult(failed=True, msg="unresolvable dependencies")))
                break

            for task in ready:
                del pending[task.task_id]

            group: list[Task] = []
            for task in ready:
                if task.parallel_safe:
                    group.append(task)
                    continue
                results.extend(await self._run_group(group))
                group = []
                if self.token.cancelled:
                    break
                results.append(await self._run_task(task))
            results.extend(await self._run_group(group))

        logger.debug(f"Batch {batch.batch_id} finished with {len(results)} task result(s)")
        return results

    async def _run_group(self, group: list[Task]) -> list[TaskResult]:
        if not group or self.token.cancelled:
            return []
        if len(group) == 1:
            return [await self._run_task(group[0])]
        return list(await asyncio.gather(*(self._run_task(task) for task in group)))

    async def _run_task(self, task: Task) -> TaskResult:
        start_time = datetime.now(UTC)
        started = time.monotonic()

        failed_deps = [dep for dep in task.dependencies if dep in self._failed]
        if failed_deps:
            logger.warning(f"Skipping task {task.task_id}: dependency failed ({', '.join(failed_deps)})")
            result = ModuleResult(failed=True, msg="dependency failed", results={"skipped": True})
            return self._record(task, result, start_time, started)

        result = await self._dispatch(task)
        self.context.update_facts(result.facts)
        return self._record(task, result, start_time, started)

    async def _dispatch(self, task: Task) -> ModuleResult:
        module_cls = self.modules.get(task.module)
        if module_cls is None:
            return ModuleResult(failed=True, msg=f"module not found: {task.module}")

        try:
            if not self.context.evaluator().evaluate_all(task.conditions):
                logger.info(f"Skipping task {task.task_id}: conditions not met")
                return ModuleResult(msg="conditions not met", results={"skipped": True})
        except ConditionError as e:
            return ModuleResult(failed=True, msg=f"condition error: {e}")

        module = module_cls()
        args = module.normalize(task.args)
        errors = module.check(args)
        if errors:
            return ModuleResult(failed=True, msg=f"invalid parameters for {task.module}: {'; '.join(errors)}")

        attempts = self.config.max_retries + 1
        result = ModuleResult(failed=True, msg="not executed")
        for attempt in range(1, attempts + 1):
            logger.info(f"Running task {task.task_id} ({task.module}) attempt {attempt}/{attempts}")
            try:
                result = await module.execute(args, self.context)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Task {task.task_id} raised: {e}")
                result = ModuleResult(failed=True, msg=str(e))
            if not result.failed or attempt == attempts or self.token.cancelled:
                break
            logger.warning(f"Task {task.task_id} failed, retrying: {result.msg}")
        return result

    def _record(
        self,
        task: Task,
        result: ModuleResult,
        start_time: datetime | None = None,
        started: float | None = None,
    ) -> TaskResult:
        task_result = TaskResult(
            task_id=task.task_id,
            module_result=result,
            start_time=start_time or datetime.now(UTC),
            duration=time.monotonic() - started if started is not None else 0.0,
        )
        self._finished.add(task.task_id)
        if result.failed:
            self._failed.add(task.task_id)
        self.context.results[task.task_id] = task_result
        return task_result
