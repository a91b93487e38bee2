"""Plan, configuration and report models shared by the builder and generated programs.

These models define both the plan document binship consumes and the payload
embedded in every generated program, so they must only depend on pydantic.

Contract:
- Inputs: Plan documents (dicts/JSON), runtime configuration
- Outputs: Validated models, execution reports
- Side Effects: None
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import computed_field


class ConditionOperator(str, Enum):
    """Comparison operators available to task conditions."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


class Condition(BaseModel):
    """Guard evaluated before a task runs.

    ``variable`` is a dotted path looked up in the plan variables first,
    then in the facts gathered so far.
    """

    model_config = ConfigDict(extra="forbid")

    variable: str = Field(description="Dotted path to the value being tested")
    operator: ConditionOperator = Field(description="Comparison operator")
    value: Any = Field(default=None, description="Operand (unused for exists/not_exists)")


class Task(BaseModel):
    """Single unit of work executed by a named module."""

    model_config = ConfigDict(extra="ignore")

    task_id: str = Field(description="Identifier, unique across the whole plan")
    name: str = Field(default="", description="Human readable task name")
    module: str = Field(description="Name of the module that executes this task")
    args: dict[str, Any] = Field(default_factory=dict, description="Module arguments")
    dependencies: list[str] = Field(default_factory=list, description="Task ids that must finish first")
    conditions: list[Condition] = Field(default_factory=list, description="All must hold for the task to run")
    parallel_safe: bool = Field(default=False, description="May run concurrently with other parallel-safe tasks")


class Batch(BaseModel):
    """Group of tasks executed before the next batch starts."""

    model_config = ConfigDict(extra="ignore")

    batch_id: str
    tasks: list[Task] = Field(default_factory=list)


class Play(BaseModel):
    """Ordered list of batches, optionally limited to some hosts."""

    model_config = ConfigDict(extra="ignore")

    play_id: str
    name: str = ""
    hosts: list[str] | None = Field(default=None, description="Host filter (None means every host)")
    batches: list[Batch] = Field(default_factory=list)

    def applies_to(self, host_id: str) -> bool:
        return self.hosts is None or host_id in self.hosts

    def iter_tasks(self):
        for batch in self.batches:
            yield from batch.tasks


class ExecutionPlan(BaseModel):
    """Structured plays/batches/tasks graph targeted at a host inventory."""

    model_config = ConfigDict(extra="ignore")

    metadata: dict[str, Any] = Field(default_factory=dict)
    plays: list[Play] = Field(default_factory=list)
    total_tasks: int | None = Field(default=None, description="Declared task count (checked when present)")
    hosts: list[str] = Field(default_factory=list)

    def iter_tasks(self):
        for play in self.plays:
            yield from play.iter_tasks()

    def count_tasks(self) -> int:
        return sum(1 for _ in self.iter_tasks())

    def module_names(self) -> set[str]:
        return {task.module for task in self.iter_tasks()}


class RuntimeConfig(BaseModel):
    """Runtime configuration embedded in every generated program.

    Durations are whole seconds. A missing ``controller_endpoint`` disables
    reporting, and a missing ``execution_timeout`` means no overall limit.
    """

    model_config = ConfigDict(extra="forbid")

    controller_endpoint: str | None = None
    execution_timeout: int | None = 300
    report_interval: int = Field(default=30, ge=1)
    cleanup_on_completion: bool = True
    log_level: str = "info"
    heartbeat_interval: int = Field(default=60, ge=1)
    max_retries: int = Field(default=0, ge=0)
    verbose: bool = False


class ModuleResult(BaseModel):
    """Outcome of one module execution."""

    changed: bool = False
    failed: bool = False
    msg: str | None = None
    stdout: str | None = None
    stderr: str | None = None
    rc: int | None = None
    results: dict[str, Any] = Field(default_factory=dict)

    @property
    def skipped(self) -> bool:
        return bool(self.results.get("skipped"))

    @property
    def facts(self) -> dict[str, Any]:
        facts = self.results.get("facts")
        return facts if isinstance(facts, dict) else {}


class TaskResult(BaseModel):
    """Result of a task, as sent to the controller."""

    task_id: str
    module_result: ModuleResult
    start_time: datetime
    duration: float = Field(description="Wall time in seconds")


class PlayResult(BaseModel):
    play_id: str
    success: bool
    task_results: list[TaskResult] = Field(default_factory=list)


class ExecutionReport(BaseModel):
    """Final report of a plan execution on one host."""

    host_id: str | None = None
    success: bool
    cancelled: bool = False
    results: list[PlayResult] = Field(default_factory=list)
    execution_time: float = 0.0

    @computed_field  # type: ignore[misc]
    @property
    def failed_tasks(self) -> list[str]:
        return [
            result.task_id
            for play in self.results
            for result in play.task_results
            if result.module_result.failed
        ]
