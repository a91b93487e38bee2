"""Atomic JSON persistence for pydantic models.

Contract:
- Inputs: Paths, pydantic models
- Outputs: Validated models (or None when absent)
- Side Effects: Writes files via temp file + rename
"""

import logging
import os
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel
from pydantic import ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def save_model(path: Path, model: BaseModel) -> None:
    """Write ``model`` as JSON atomically.

    Args:
        path: Target file path
        model: Model to serialize (camelCase aliases are used when defined)

    Raises:
        RuntimeError: If the file cannot be written
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        temp_path.write_text(model.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
        os.replace(temp_path, path)
        logger.debug(f"Saved JSON to {path}")
    except OSError as e:
        if temp_path.exists():
            temp_path.unlink()
        raise RuntimeError(f"Failed to save JSON to {path}: {e}") from e


def load_model(path: Path, model_type: type[ModelT]) -> ModelT | None:
    """Load a model from ``path``.

    Returns:
        The validated model, or None if the file does not exist or is unreadable
    """
    if not path.exists():
        return None
    try:
        return model_type.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as e:
        logger.warning(f"Failed to load JSON from {path}: {e}")
        return None
