"""Deployment state models."""

from datetime import UTC
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import Field
from pydantic import computed_field

from ..errors import InvalidTransition
from .base import CamelCaseModel


class DeploymentStatus(str, Enum):
    """Per-host deployment status.

    State transitions:
    - PENDING -> TRANSFERRING | CANCELLED
    - TRANSFERRING -> VERIFYING | ACTIVE | FAILED | ROLLED_BACK
    - VERIFYING -> ACTIVE | FAILED | ROLLED_BACK

    ACTIVE, FAILED, ROLLED_BACK and CANCELLED are final for one run.
    TRANSFERRING -> ACTIVE is used when verification is disabled.
    """

    PENDING = "pending"
    TRANSFERRING = "transferring"
    VERIFYING = "verifying"
    ACTIVE = "active"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    CANCELLED = "cancelled"

    @property
    def is_final(self) -> bool:
        return self in (
            DeploymentStatus.ACTIVE,
            DeploymentStatus.FAILED,
            DeploymentStatus.ROLLED_BACK,
            DeploymentStatus.CANCELLED,
        )

    def can_transition_to(self, target: "DeploymentStatus") -> bool:
        return target in _TRANSITIONS.get(self, ())

    def transition(self, target: "DeploymentStatus") -> "DeploymentStatus":
        """Return ``target`` if the move is allowed.

        Raises:
            InvalidTransition: If the state machine forbids the move
        """
        if not self.can_transition_to(target):
            raise InvalidTransition(f"Cannot move deployment from {self.value} to {target.value}")
        return target


_TRANSITIONS: dict[DeploymentStatus, tuple[DeploymentStatus, ...]] = {
    DeploymentStatus.PENDING: (DeploymentStatus.TRANSFERRING, DeploymentStatus.CANCELLED),
    DeploymentStatus.TRANSFERRING: (
        DeploymentStatus.VERIFYING,
        DeploymentStatus.ACTIVE,
        DeploymentStatus.FAILED,
        DeploymentStatus.ROLLED_BACK,
    ),
    DeploymentStatus.VERIFYING: (
        DeploymentStatus.ACTIVE,
        DeploymentStatus.FAILED,
        DeploymentStatus.ROLLED_BACK,
    ),
}


class DeploymentRecord(CamelCaseModel):
    """Persisted state of one binary version on one host.

    Records for a (host, binary name) form a chain through
    ``previous_record_id``; the chain never cycles.
    """

    record_id: str = Field(description="Unique record identifier")
    deployment_id: str = Field(description="Deployment run that produced this record")
    host_id: str
    binary_name: str
    checksum: str = Field(description="SHA-256 of the installed binary")
    size: int = 0
    release_path: str = Field(description="Remote path of this version's release copy")
    status: DeploymentStatus
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    previous_record_id: str | None = Field(default=None, description="Record that was active before this one")
    rolled_back_from: str | None = Field(default=None, description="Record replaced when this one came from a rollback")


class HostHistory(CamelCaseModel):
    """Record chain for one (host, binary name) pair."""

    host_id: str
    binary_name: str
    records: list[DeploymentRecord] = Field(default_factory=list)
    current_record_id: str | None = None


class DeploymentRun(CamelCaseModel):
    """Index of the records produced by one deployment run."""

    deployment_id: str
    binary_name: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    host_records: dict[str, str] = Field(default_factory=dict, description="host_id -> record_id")


class HostDeploymentResult(CamelCaseModel):
    """Final outcome of one host in a deployment run."""

    host_id: str
    status: DeploymentStatus
    attempts: int = 0
    checksum: str | None = Field(default=None, description="Checksum active on the host after the run")
    record_id: str | None = None
    error_kind: str | None = None
    error: str | None = None


SuccessPolicy = Literal["all", "majority", "threshold"]


class DeploymentReport(CamelCaseModel):
    """Per-host status map plus the aggregated verdict."""

    deployment_id: str
    binary_name: str
    policy: SuccessPolicy = "all"
    threshold: float = 1.0
    dry_run: bool = False
    hosts: dict[str, HostDeploymentResult] = Field(default_factory=dict)

    def hosts_with(self, status: DeploymentStatus) -> list[str]:
        return sorted(host_id for host_id, result in self.hosts.items() if result.status == status)

    @computed_field  # type: ignore[misc]
    @property
    def success(self) -> bool:
        total = len(self.hosts)
        if total == 0:
            return True
        if self.dry_run:
            return all(result.status == DeploymentStatus.PENDING for result in self.hosts.values())
        active = len(self.hosts_with(DeploymentStatus.ACTIVE))
        if self.policy == "all":
            return active == total
        if self.policy == "majority":
            return active * 2 > total
        return active / total >= self.threshold


class HostVerification(CamelCaseModel):
    """Result of checking the active binary on a host against its record."""

    host_id: str
    ok: bool
    expected: str | None = None
    actual: str | None = None
    error: str | None = None


class HostCleanup(CamelCaseModel):
    """Result of removing a binary and its remnants from a host."""

    host_id: str
    removed: list[str] = Field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
