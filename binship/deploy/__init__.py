"""Deployment of compiled artifacts to hosts."""

from .history import DeploymentHistory
from .manager import DeploymentManager
from .manager import RemotePaths
from .manager import ResultCollector
from .manager import new_deployment_id
from .transport import LocalTransport
from .transport import SSHTransport
from .transport import Transport
from .transport import default_transport_factory

__all__ = [
    "DeploymentHistory",
    "DeploymentManager",
    "LocalTransport",
    "RemotePaths",
    "ResultCollector",
    "SSHTransport",
    "Transport",
    "default_transport_factory",
    "new_deployment_id",
]
