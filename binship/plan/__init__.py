"""Plan loading and validation."""

from .loader import load_document
from .loader import load_inventory
from .loader import load_plan
from .loader import plan_subset
from .validation import topological_order
from .validation import validate_plan

__all__ = [
    "load_document",
    "load_inventory",
    "load_plan",
    "plan_subset",
    "topological_order",
    "validate_plan",
]
