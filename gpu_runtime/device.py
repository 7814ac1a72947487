"""Simulated GPU devices: memory accounting and one execution stream each."""

from __future__ import annotations

import itertools
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable

from gpu_compiler.errors import ResourceExhaustedError

ALLOCATOR_KINDS = ("default", "platform", "bfc")


@dataclass(frozen=True)
class AllocatorConfig:
    """Device memory allocator settings.

    kind: "platform" hands out the whole device memory; "default"/"bfc" cap
        the pool at memory_fraction of it.
    preallocate: reserve the whole pool up front instead of growing on demand.
    """
    kind: str = "default"
    memory_fraction: float = 0.75
    preallocate: bool = True

    def __post_init__(self):
        if self.kind not in ALLOCATOR_KINDS:
            raise ValueError(f"allocator kind must be one of {ALLOCATOR_KINDS}, got {self.kind!r}")
        if not 0.0 < self.memory_fraction <= 1.0:
            raise ValueError(f"memory_fraction must be in (0, 1], got {self.memory_fraction}")

    def pool_size(self, device_memory_bytes: int) -> int:
        if self.kind == "platform":
            return device_memory_bytes
        return int(device_memory_bytes * self.memory_fraction)


class Device:
    """One addressable GPU of a client."""

    def __init__(
        self,
        id: int,
        kind: str,
        process_index: int = 0,
        memory_limit_bytes: int = 1 << 30,
        local_hardware_id: int = 0,
        preallocate: bool = True,
    ):
        self._id = id
        self._kind = kind
        self._process_index = process_index
        self._local_hardware_id = local_hardware_id
        self._memory_limit = memory_limit_bytes
        self._preallocate = preallocate
        self._lock = threading.RLock()
        self._allocations: dict[int, int] = {}
        self._handles = itertools.count(1)
        self._peak = 0
        self._stream: ThreadPoolExecutor | None = None

    def __repr__(self) -> str:
        return f"Device(id={self._id}, kind={self._kind!r}, process_index={self._process_index})"

    @property
    def id(self) -> int:
        return self._id

    @property
    def kind(self) -> str:
        return self._kind

    @property
    def process_index(self) -> int:
        return self._process_index

    @property
    def local_hardware_id(self) -> int:
        return self._local_hardware_id

    @property
    def memory_limit_bytes(self) -> int:
        return self._memory_limit

    @property
    def bytes_in_use(self) -> int:
        with self._lock:
            return sum(self._allocations.values())

    @property
    def peak_bytes_in_use(self) -> int:
        return self._peak

    @property
    def bytes_reserved(self) -> int:
        return self._memory_limit if self._preallocate else self.bytes_in_use

    def allocate(self, nbytes: int) -> int:
        """Reserve nbytes of device memory and return an allocation handle."""
        with self._lock:
            in_use = sum(self._allocations.values())
            if in_use + nbytes > self._memory_limit:
                raise ResourceExhaustedError(
                    f"Out of memory on device {self._id}: requested {nbytes} bytes, "
                    f"{self._memory_limit - in_use} of {self._memory_limit} free"
                )
            handle = next(self._handles)
            self._allocations[handle] = nbytes
            self._peak = max(self._peak, in_use + nbytes)
            return handle

    def free(self, handle: int):
        with self._lock:
            self._allocations.pop(handle, None)

    def submit(self, fn: Callable[..., Any], *args) -> Future:
        """Enqueue work on this device's stream (work runs in FIFO order)."""
        with self._lock:
            if self._stream is None:
                self._stream = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"gpu{self._id}-stream")
            stream = self._stream
        return stream.submit(fn, *args)

    def shutdown(self):
        with self._lock:
            stream, self._stream = self._stream, None
        if stream is not None:
            stream.shutdown(wait=True)
