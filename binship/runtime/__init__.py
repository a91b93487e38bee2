"""Runtime embedded in every generated program.

Everything in this package uses relative imports only: the code generator
copies it verbatim into each generated source tree as ``binship_runtime``.
"""

from .cancellation import CancellationToken
from .conditions import ConditionEvaluator
from .context import ExecutionContext
from .engine import PlanExecutor
from .models import Batch
from .models import Condition
from .models import ConditionOperator
from .models import ExecutionPlan
from .models import ExecutionReport
from .models import ModuleResult
from .models import Play
from .models import PlayResult
from .models import RuntimeConfig
from .models import Task
from .models import TaskResult

__all__ = [
    "Batch",
    "CancellationToken",
    "Condition",
    "ConditionEvaluator",
    "ConditionOperator",
    "ExecutionContext",
    "ExecutionPlan",
    "ExecutionReport",
    "ModuleResult",
    "Play",
    "PlayResult",
    "PlanExecutor",
    "RuntimeConfig",
    "Task",
    "TaskResult",
]
