"""Settings models for binship.

Contract:
- Inputs: Environment variables, YAML files
- Outputs: Validated settings objects
- Side Effects: None (read-only)
"""

from typing import Literal

from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict

from ..runtime.models import RuntimeConfig


class BinshipSettings(BaseSettings):
    """Configuration for the build and deployment pipeline.

    Attributes:
        log_level: Logging level (default: info)
        backend: Compiler backend, ``zipapp`` or ``pyapp`` (default: zipapp)
        compile_jobs: Concurrent compilations (default: 2)
        parallelism: Concurrent host deployments (default: 10)
        host_timeout: Seconds allowed for one host's deployment (default: 300)
        global_timeout: Seconds allowed for a whole deployment, None for no limit
        success_policy: ``all``, ``majority`` or ``threshold``

    Example:
        >>> settings = BinshipSettings()
        >>> assert settings.parallelism == 10
        >>> assert settings.success_policy == "all"
    """

    model_config = SettingsConfigDict(
        env_prefix="BINSHIP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = "info"

    # Build
    backend: Literal["zipapp", "pyapp"] = "zipapp"
    compile_jobs: int = Field(default=2, ge=1)
    optimization: Literal["release", "size", "debug"] = "release"
    strip: bool = True
    compress: bool = True
    size_limit_mb: float | None = 50.0
    enforce_size_limit: bool = False
    auto_acquire_toolchain: bool = False
    target_python_version: str = "3.11"
    builder_python: str | None = None
    pyapp_source_dir: str | None = None
    module_dirs: list[str] = Field(default_factory=list)
    cache_max_bytes: int = Field(default=2 * 1024**3, ge=0)

    # Deployment
    binary_name: str = "binship-agent"
    install_dir: str = "/opt/binship"
    parallelism: int = Field(default=10, ge=1)
    host_timeout: float = Field(default=300.0, gt=0)
    global_timeout: float | None = None
    max_retries: int = Field(default=3, ge=0)
    retry_backoff_base: float = Field(default=1.0, ge=0)
    retry_backoff_max: float = Field(default=30.0, ge=0)
    verify: bool = True
    success_policy: Literal["all", "majority", "threshold"] = "all"
    success_threshold: float = Field(default=1.0, ge=0.0, le=1.0)
    ssh_options: list[str] = Field(default_factory=lambda: ["-o", "BatchMode=yes"])

    # Embedded into generated programs
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.lower()

    @property
    def size_limit_bytes(self) -> int | None:
        if self.size_limit_mb is None:
            return None
        return int(self.size_limit_mb * 1024 * 1024)
