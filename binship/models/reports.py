"""Build and run reports returned to callers."""

from enum import Enum

from pydantic import Field
from pydantic import computed_field

from .artifacts import BinaryArtifact
from .base import CamelCaseModel
from .deployments import DeploymentReport


class UnitStatus(str, Enum):
    """Outcome of one compilation unit."""

    BUILT = "built"
    CACHED = "cached"
    PLANNED = "planned"
    FAILED = "failed"


class UnitBuildResult(CamelCaseModel):
    target_triple: str
    host_ids: list[str]
    status: UnitStatus
    fingerprint: str | None = None
    artifact: BinaryArtifact | None = None
    error_kind: str | None = None
    error: str | None = None


class UnresolvedHost(CamelCaseModel):
    host_id: str
    error_kind: str
    error: str


class BuildReport(CamelCaseModel):
    """Per-unit outcomes of a compile run."""

    units: list[UnitBuildResult] = Field(default_factory=list)
    unresolved: list[UnresolvedHost] = Field(default_factory=list)

    @computed_field  # type: ignore[misc]
    @property
    def success(self) -> bool:
        return not self.unresolved and all(unit.status != UnitStatus.FAILED for unit in self.units)

    def deployable(self) -> list[UnitBuildResult]:
        return [unit for unit in self.units if unit.artifact is not None]


class RunReport(CamelCaseModel):
    """Build report plus the deployment report for the units that built."""

    build: BuildReport
    deployment: DeploymentReport | None = None

    @computed_field  # type: ignore[misc]
    @property
    def success(self) -> bool:
        if not self.build.success:
            return False
        return self.deployment is None or self.deployment.success
