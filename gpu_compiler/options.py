"""Compile / load / execute option bags.

All three are frozen and default-constructible; the defaults are what a
caller gets by passing `CompileOptions()` etc.
"""

from __future__ import annotations

from dataclasses import dataclass

PRECISION_MODES = ("default", "highest")


@dataclass(frozen=True)
class CompileOptions:
    """Backend-recognized compile settings.

    num_replicas: number of execution instances (one device each).
    device_ids: target device subset; None = the topology's devices in order.
    precision: "highest" widens dot-product accumulation (float32 -> float64).
    debug_dump_plan: log the generated execution plan at DEBUG level.
    """
    num_replicas: int = 1
    device_ids: tuple[int, ...] | None = None
    precision: str = "default"
    debug_dump_plan: bool = False

    def __post_init__(self):
        if self.num_replicas < 1:
            raise ValueError(f"num_replicas must be >= 1, got {self.num_replicas}")
        if self.precision not in PRECISION_MODES:
            raise ValueError(f"precision must be one of {PRECISION_MODES}, got {self.precision!r}")
        if self.device_ids is not None:
            object.__setattr__(self, "device_ids", tuple(int(d) for d in self.device_ids))


@dataclass(frozen=True)
class LoadOptions:
    # False defers constant upload to each execute() call.
    preallocate_constants: bool = True


@dataclass(frozen=True)
class ExecuteOptions:
    # Argument buffers must match the parameter shape and dtype exactly.
    strict_shape_checking: bool = True
