"""Error taxonomy for binship.

Every error raised by the build and deployment pipeline derives from
BinshipError and carries a stable ``kind`` string. Reports record the kind
so callers can retry or roll back selectively without parsing messages.

Contract:
- Inputs: None
- Outputs: Exception classes
- Side Effects: None
"""

from .runtime.errors import ControllerReportError

__all__ = [
    "BinshipError",
    "CacheCorruption",
    "CompileError",
    "ControllerReportError",
    "EmbedError",
    "InvalidTransition",
    "NoPriorVersion",
    "PlanError",
    "SizeLimitExceeded",
    "ToolchainMissing",
    "TransferError",
    "UnsupportedTarget",
    "VerificationMismatch",
]


class BinshipError(Exception):
    """Base class for all pipeline errors."""

    kind = "error"


class PlanError(BinshipError):
    """Plan is structurally invalid (cycle, unknown module, bad reference).

    Raised before any compilation unit is built.
    """

    kind = "plan_error"

    def __init__(self, message: str, missing_modules: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing_modules = sorted(missing_modules or [])


class EmbedError(BinshipError):
    """Payload could not be serialized."""

    kind = "embed_error"


class CacheCorruption(BinshipError):
    """Cached artifact failed checksum validation."""

    kind = "cache_corruption"


class UnsupportedTarget(BinshipError):
    """No supported target triple could be resolved for a host."""

    kind = "unsupported_target"

    def __init__(self, message: str, host_id: str | None = None) -> None:
        super().__init__(message)
        self.host_id = host_id


class ToolchainMissing(BinshipError):
    """Toolchain for a target triple is not available."""

    kind = "toolchain_missing"

    def __init__(self, target_triple: str, detail: str = "") -> None:
        message = f"Toolchain for {target_triple} is not available"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.target_triple = target_triple


class CompileError(BinshipError):
    """Toolchain rejected the generated program.

    Not retried automatically. The plan or module content must change first.
    """

    kind = "compile_error"

    def __init__(self, message: str, diagnostics: str = "") -> None:
        super().__init__(message)
        self.diagnostics = diagnostics


class SizeLimitExceeded(BinshipError):
    """Binary is larger than the configured limit and the limit is enforced."""

    kind = "size_limit_exceeded"

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Binary size {size} bytes exceeds limit of {limit} bytes")
        self.size = size
        self.limit = limit


class TransferError(BinshipError):
    """Artifact could not be copied to, or handled on, a host."""

    kind = "transfer_error"


class VerificationMismatch(BinshipError):
    """Remote checksum or size does not match the artifact."""

    kind = "verification_mismatch"

    def __init__(self, host_id: str, expected: str, actual: str) -> None:
        super().__init__(f"Verification failed on {host_id}: expected {expected}, got {actual}")
        self.host_id = host_id
        self.expected = expected
        self.actual = actual


class NoPriorVersion(BinshipError):
    """Rollback requested where no prior deployment record exists."""

    kind = "no_prior_version"

    def __init__(self, host_id: str, binary_name: str) -> None:
        super().__init__(f"No prior version of {binary_name} recorded for host {host_id}")
        self.host_id = host_id
        self.binary_name = binary_name


class InvalidTransition(BinshipError, ValueError):
    """Deployment status change not allowed by the state machine."""

    kind = "invalid_transition"
