"""Serialize plan data into the payload a generated program carries.

Contract:
- Inputs: Plan subset, runtime configuration, static file references
- Outputs: EmbeddedPayload with canonical JSON strings
- Side Effects: Reads static files
"""

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from pathlib import PurePosixPath
from typing import Any

from pydantic import BaseModel
from pydantic import Field

from ..errors import EmbedError
from ..models.units import EmbeddedPayload
from ..runtime.models import ExecutionPlan
from ..runtime.models import RuntimeConfig

logger = logging.getLogger(__name__)


def canonical_json(data: Any) -> str:
    """Serialize ``data`` to canonical JSON.

    Keys are sorted, separators are compact and non-ASCII text is kept
    as-is, so equal data always yields identical text.

    Raises:
        EmbedError: If the data is not JSON serializable
    """
    try:
        return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise EmbedError(f"Payload is not canonical JSON serializable: {e}") from e


class StaticFileRef(BaseModel):
    """A local file to embed, and the path it is known by at runtime."""

    source_path: str = Field(description="File on the build host")
    target_path: str = Field(description="Relative path used by modules such as copy")


def _normalize_target(target_path: str) -> str:
    path = PurePosixPath(target_path.replace("\\", "/"))
    if path.is_absolute():
        path = path.relative_to("/")
    if ".." in path.parts or not path.parts:
        raise EmbedError(f"Invalid static file target path: {target_path}")
    return path.as_posix()


class Embedder:
    """Builds EmbeddedPayload values.

    Example:
        >>> payload = Embedder().embed(plan, RuntimeConfig())
        >>> payload.execution_plan.startswith("{")
        True
    """

    def embed(
        self,
        plan: ExecutionPlan,
        config: RuntimeConfig,
        static_files: Iterable[StaticFileRef] = (),
    ) -> EmbeddedPayload:
        files: dict[str, bytes] = {}
        for ref in static_files:
            target = _normalize_target(ref.target_path)
            try:
                files[target] = Path(ref.source_path).read_bytes()
            except OSError as e:
                logger.warning(f"Skipping static file {ref.source_path}: {e}")
                continue
            logger.debug(f"Embedded static file {ref.source_path} as {target} ({len(files[target])} bytes)")

        return EmbeddedPayload(
            execution_plan=canonical_json(plan.model_dump(mode="json")),
            runtime_config=canonical_json(config.model_dump(mode="json")),
            static_files=dict(sorted(files.items())),
        )
