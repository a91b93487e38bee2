"""Compilation unit models."""

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from ..runtime.models import ExecutionPlan


class ModuleSpec(BaseModel):
    """A resolved module implementation.

    Built-in modules are part of the copied runtime. Extra modules carry the
    path of their source file, which is copied into the generated program.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    import_path: str = Field(description="Module path inside the generated program")
    class_name: str
    digest: str = Field(description="SHA-256 of the implementation source")
    source_path: str | None = Field(default=None, description="Source file for non-builtin modules")

    @property
    def builtin(self) -> bool:
        return self.source_path is None


class EmbeddedPayload(BaseModel):
    """Data carried inside a generated program.

    Both JSON strings are canonical: sorted keys, compact separators and
    unescaped non-ASCII text.
    """

    model_config = ConfigDict(frozen=True)

    execution_plan: str
    runtime_config: str
    static_files: dict[str, bytes] = Field(default_factory=dict)


class CompilationUnit(BaseModel):
    """Hosts sharing a target triple, compiled into one binary."""

    target_triple: str
    host_ids: list[str]
    plan: ExecutionPlan = Field(description="Plan subset relevant to these hosts")
    modules: list[ModuleSpec] = Field(default_factory=list)
    payload: EmbeddedPayload | None = None
