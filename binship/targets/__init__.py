"""Target triple resolution and toolchains."""

from .triples import SUPPORTED_TARGETS
from .triples import TargetInfo
from .triples import detect_local_platform
from .triples import find_target
from .resolver import HostGrouping
from .resolver import TargetResolver
from .toolchain import ToolchainManager

__all__ = [
    "SUPPORTED_TARGETS",
    "HostGrouping",
    "TargetInfo",
    "TargetResolver",
    "ToolchainManager",
    "detect_local_platform",
    "find_target",
]
