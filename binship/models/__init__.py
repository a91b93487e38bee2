"""Data models for binship."""

from .artifacts import BinaryArtifact
from .artifacts import BuildFlags
from .base import CamelCaseModel
from .deployments import DeploymentRecord
from .deployments import DeploymentReport
from .deployments import DeploymentRun
from .deployments import DeploymentStatus
from .deployments import HostDeploymentResult
from .deployments import HostCleanup
from .deployments import HostHistory
from .deployments import HostVerification
from .inventory import HostInfo
from .inventory import Inventory
from .reports import BuildReport
from .reports import RunReport
from .reports import UnitBuildResult
from .reports import UnitStatus
from .reports import UnresolvedHost
from .units import CompilationUnit
from .units import EmbeddedPayload
from .units import ModuleSpec

__all__ = [
    "BinaryArtifact",
    "BuildFlags",
    "BuildReport",
    "CamelCaseModel",
    "CompilationUnit",
    "DeploymentRecord",
    "DeploymentReport",
    "DeploymentRun",
    "DeploymentStatus",
    "EmbeddedPayload",
    "HostDeploymentResult",
    "HostCleanup",
    "HostHistory",
    "HostVerification",
    "HostInfo",
    "Inventory",
    "ModuleSpec",
    "RunReport",
    "UnitBuildResult",
    "UnitStatus",
    "UnresolvedHost",
]
