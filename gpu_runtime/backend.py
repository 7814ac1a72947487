"""Abstract runtime interfaces: device buffers and GPU clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Sequence

import numpy as np

from gpu_compiler import compile as compile_program
from gpu_compiler.compiled_program import CompiledExecutable
from gpu_compiler.options import CompileOptions, LoadOptions
from gpu_compiler.program import Lowerable
from gpu_compiler.topology import TopologyDescription

if TYPE_CHECKING:
    from gpu_runtime.device import Device
    from gpu_runtime.executor import LoadedExecutable


class DeviceBuffer(ABC):
    """Abstract device-resident array with numpy interop."""

    @property
    @abstractmethod
    def shape(self) -> tuple[int, ...]:
        ...

    @property
    @abstractmethod
    def dtype(self) -> np.dtype:
        ...

    @property
    @abstractmethod
    def device(self) -> Device:
        ...

    @property
    @abstractmethod
    def size_bytes(self) -> int:
        ...

    @property
    @abstractmethod
    def is_deleted(self) -> bool:
        ...

    @abstractmethod
    def block_until_ready(self) -> DeviceBuffer:
        ...

    @abstractmethod
    def to_numpy(self) -> np.ndarray:
        """Materialize the buffer on the host (blocks until ready)."""
        ...

    @abstractmethod
    def delete(self):
        ...


class Client(ABC):
    """Abstract GPU runtime client: a process-local view of a device fleet."""

    @property
    @abstractmethod
    def platform_name(self) -> str:
        ...

    @property
    @abstractmethod
    def platform_id(self) -> int:
        ...

    @property
    @abstractmethod
    def process_index(self) -> int:
        ...

    @property
    @abstractmethod
    def devices(self) -> list[Device]:
        ...

    @property
    @abstractmethod
    def addressable_devices(self) -> list[Device]:
        ...

    @property
    @abstractmethod
    def is_closed(self) -> bool:
        ...

    @abstractmethod
    def topology_description(self) -> TopologyDescription:
        ...

    @abstractmethod
    def load(self, executable: CompiledExecutable, options: LoadOptions | None = None) -> LoadedExecutable:
        """Bind a compiled executable to this client's devices (consumes it)."""
        ...

    @abstractmethod
    def buffer_from_numpy(self, array: Any, device: Device | None = None) -> DeviceBuffer:
        ...

    @abstractmethod
    def close(self):
        ...

    def compile_and_load(
        self,
        program: Lowerable,
        options: CompileOptions | None = None,
        load_options: LoadOptions | None = None,
    ) -> LoadedExecutable:
        """Compile for this client's own topology, then load the result."""
        executable = compile_program(program, self.topology_description(), self, options)
        return self.load(executable, load_options)

    def buffers_from_numpy(self, arrays: Sequence[Any], device: Device | None = None) -> list[DeviceBuffer]:
        return [self.buffer_from_numpy(a, device) for a in arrays]

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
