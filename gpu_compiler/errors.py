"""Error kinds raised by the compile / load / execute pipeline.

Every stage fails fast. Nothing here is retried or degraded to a CPU path;
callers see the kind that names the failing transition.
"""

from __future__ import annotations


class GpuBackendError(RuntimeError):
    """Base class for all pipeline errors."""


class UnimplementedError(GpuBackendError):
    """The request is valid in general but not supported by this backend."""


class InvalidArgumentError(GpuBackendError, ValueError):
    """A caller-supplied value is malformed (null program, deleted buffer, ...)."""


class CompilationError(GpuBackendError):
    """Lowering, constraint checking or plan generation failed."""


class ResourceBindingError(GpuBackendError):
    """A compiled executable could not be bound to a client."""


class ResourceExhaustedError(GpuBackendError):
    """Device memory ran out."""


class ExecutionError(GpuBackendError):
    """Execute failed: bad arguments, unusable client or a device fault."""


class ProgramParseError(InvalidArgumentError):
    """Program text in either surface syntax could not be parsed."""

    def __init__(self, message: str, line: int | None = None):
        self.line = line
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)
