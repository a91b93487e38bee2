"""Service layer for binship."""

from .pipeline import BuildOptions
from .pipeline import DeployOptions
from .pipeline import PipelineService

__all__ = [
    "BuildOptions",
    "DeployOptions",
    "PipelineService",
]
