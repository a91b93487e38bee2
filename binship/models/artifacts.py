"""Build flag and artifact models."""

from typing import Literal

from pydantic import Field
from pydantic import model_validator

from .base import CamelCaseModel


class BuildFlags(CamelCaseModel):
    """Optimization profile and post-processing flags.

    The ``size`` profile always strips and compresses.
    """

    profile: Literal["release", "size", "debug"] = "release"
    strip: bool = True
    compress: bool = True

    @model_validator(mode="after")
    def size_profile_implies_postprocessing(self) -> "BuildFlags":
        if self.profile == "size":
            self.strip = True
            self.compress = True
        return self


class BinaryArtifact(CamelCaseModel):
    """Compiled executable produced by the compiler.

    Owned by the compiler; the cache and deployment layers hold references
    to ``path`` and never copy the file.
    """

    target_triple: str = Field(description="Target the binary was built for")
    path: str = Field(description="Absolute path of the executable")
    checksum: str = Field(description="SHA-256 hex digest of the executable")
    size: int = Field(description="Size in bytes")
    build_flags: BuildFlags = Field(default_factory=BuildFlags)
    binary_name: str = Field(default="binship-agent", description="Name installed on hosts")
    fingerprint: str | None = Field(default=None, description="Cache key the artifact was built for")
    diagnostics: str = Field(default="", description="Toolchain output captured during the build")
    warnings: list[str] = Field(default_factory=list)
