"""binship: compile execution plans into self-contained binaries and deploy them.

Public Interface:
    Modules:
    - plan: Plan loading, validation and per-unit subsets
    - codegen: Payload embedding and program generation
    - compilation: Toolchain backends and the compiler front end
    - cache: Fingerprint-keyed artifact cache
    - deploy: Transports, deployment history and the deployment manager
    - services: The build-and-deploy pipeline
    - runtime: Engine embedded in every generated program
"""

from .services import BuildOptions
from .services import DeployOptions
from .services import PipelineService

__version__ = "0.1.0"

__all__ = [
    "BuildOptions",
    "DeployOptions",
    "PipelineService",
    "__version__",
]
