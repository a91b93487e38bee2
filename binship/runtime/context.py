"""Execution context passed into every task step."""

from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Any

from .conditions import ConditionEvaluator
from .models import TaskResult


@dataclass
class ExecutionContext:
    """State owned by one plan execution.

    The runtime loop owns this value and hands it to each module by
    reference. Facts returned by modules are merged here, never into
    module-level globals.
    """

    host_id: str
    variables: dict[str, Any] = field(default_factory=dict)
    facts: dict[str, Any] = field(default_factory=dict)
    static_files: dict[str, Path] = field(default_factory=dict)
    workspace: Path | None = None
    check_mode: bool = False
    results: dict[str, TaskResult] = field(default_factory=dict)

    def update_facts(self, facts: dict[str, Any]) -> None:
        self.facts.update(facts)

    def evaluator(self) -> ConditionEvaluator:
        return ConditionEvaluator(self.variables, self.facts)

    def static_file(self, name: str) -> Path:
        """Look up a materialized static file by its embedded path.

        Raises:
            FileNotFoundError: If no static file was embedded under that path
        """
        try:
            return self.static_files[name]
        except KeyError:
            raise FileNotFoundError(f"Static file not embedded: {name}") from None
