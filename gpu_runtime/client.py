"""Simulated GPU client: a numpy-backed device fleet behind the Client interface."""

from __future__ import annotations

import logging
import os
import threading
from typing import Any

from gpu_compiler.compiled_program import CompiledExecutable
from gpu_compiler.errors import (
    InvalidArgumentError,
    ResourceBindingError,
    ResourceExhaustedError,
    UnimplementedError,
)
from gpu_compiler.options import LoadOptions
from gpu_compiler.topology import GPU_PLATFORM_ID, GPU_PLATFORM_NAME, TopologyDescription
from gpu_runtime.backend import Client
from gpu_runtime.buffer import SimBuffer
from gpu_runtime.device import AllocatorConfig, Device
from gpu_runtime.executor import LoadedExecutable

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_NAME = "Simulated GPU"
DEFAULT_DEVICE_MEMORY_BYTES = 1 << 30

NUM_DEVICES_ENV = "GPU_SIM_NUM_DEVICES"
MEMORY_FRACTION_ENV = "GPU_SIM_MEMORY_FRACTION"


class SimulatedGpuClient(Client):
    """A process-local GPU client whose devices execute kernels with numpy."""

    def __init__(
        self,
        devices: list[Device],
        device_name: str = DEFAULT_DEVICE_NAME,
        process_index: int = 0,
        asynchronous: bool = True,
        allocator_config: AllocatorConfig | None = None,
    ):
        if not devices:
            raise InvalidArgumentError("A GPU client needs at least one device")
        self._devices = list(devices)
        self._device_name = device_name
        self._process_index = process_index
        self._asynchronous = asynchronous
        self._allocator_config = allocator_config or AllocatorConfig()
        self._lock = threading.Lock()
        self._closed = False

    def __repr__(self) -> str:
        return (
            f"SimulatedGpuClient(devices={[d.id for d in self._devices]}, "
            f"process_index={self._process_index})"
        )

    @property
    def platform_name(self) -> str:
        return GPU_PLATFORM_NAME

    @property
    def platform_id(self) -> int:
        return GPU_PLATFORM_ID

    @property
    def process_index(self) -> int:
        return self._process_index

    @property
    def device_name(self) -> str:
        return self._device_name

    @property
    def asynchronous(self) -> bool:
        return self._asynchronous

    @property
    def allocator_config(self) -> AllocatorConfig:
        return self._allocator_config

    @property
    def devices(self) -> list[Device]:
        with self._lock:
            return list(self._devices)

    @property
    def addressable_devices(self) -> list[Device]:
        return [d for d in self.devices if d.process_index == self._process_index]

    @property
    def is_closed(self) -> bool:
        return self._closed

    def lookup_device(self, device_id: int) -> Device | None:
        for device in self.devices:
            if device.id == device_id:
                return device
        return None

    def topology_description(self) -> TopologyDescription:
        return TopologyDescription(
            platform_id=self.platform_id,
            platform_name=self.platform_name,
            device_name=self._device_name,
            device_ids=tuple(d.id for d in self.devices),
        )

    def detach_device(self, device_id: int) -> Device:
        """Remove a device from the fleet, as if it had been unplugged."""
        with self._lock:
            for i, device in enumerate(self._devices):
                if device.id == device_id:
                    del self._devices[i]
                    break
            else:
                raise InvalidArgumentError(f"No device with id {device_id}")
        logger.info("Detached device %d", device_id)
        return device

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def load(self, executable: CompiledExecutable, options: LoadOptions | None = None) -> LoadedExecutable:
        """Bind `executable` to this client's devices.

        The executable is consumed on success. Any failure raises
        ResourceBindingError and leaves it loadable again.
        """
        if not isinstance(executable, CompiledExecutable):
            raise InvalidArgumentError(f"Expected a CompiledExecutable, got {type(executable).__name__}")
        options = options or LoadOptions()

        with executable.take() as plan:
            if self._closed:
                raise ResourceBindingError(f"Cannot load '{executable.name}': the client is closed")
            current = self.topology_description()
            if current != executable.topology:
                raise ResourceBindingError(
                    f"Cannot load '{executable.name}': it was compiled for {executable.topology} "
                    f"but the client now reports {current}"
                )
            devices = []
            for device_id in plan.device_assignment:
                device = self.lookup_device(device_id)
                if device is None or device.process_index != self._process_index:
                    raise ResourceBindingError(
                        f"Cannot load '{executable.name}': device {device_id} is not addressable"
                    )
                devices.append(device)
            try:
                loaded = LoadedExecutable(
                    self, executable.name, plan, devices, executable.fingerprint, options,
                )
            except ResourceExhaustedError as e:
                raise ResourceBindingError(f"Cannot load '{executable.name}': {e}") from e

        logger.info("Loaded '%s' on devices %s", executable.name, plan.device_assignment)
        return loaded

    def buffer_from_numpy(self, array: Any, device: Device | None = None) -> SimBuffer:
        """Copy a host array to `device` (the first addressable device by default)."""
        if self._closed:
            raise InvalidArgumentError("Cannot transfer to a closed client")
        if device is None:
            device = self.addressable_devices[0]
        elif all(d is not device for d in self.addressable_devices):
            raise InvalidArgumentError(f"{device} is not addressable from this client")
        return SimBuffer.from_numpy(array, device)

    def close(self):
        """Shut down device streams. Existing result buffers stay readable."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            devices = list(self._devices)
        for device in devices:
            device.shutdown()
        logger.info("Closed GPU client (%d device(s))", len(devices))


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidArgumentError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise InvalidArgumentError(f"{name} must be a number, got {raw!r}") from None


def get_gpu_client(
    asynchronous: bool = True,
    allocator_config: AllocatorConfig | None = None,
    distributed_client: Any = None,
    node_id: int = 0,
    num_devices: int | None = None,
    device_name: str = DEFAULT_DEVICE_NAME,
    device_memory_bytes: int = DEFAULT_DEVICE_MEMORY_BYTES,
) -> SimulatedGpuClient:
    """Create a GPU client.

    Args:
        asynchronous: Run replicas on per-device streams instead of inline.
        allocator_config: Memory pool settings. Defaults to AllocatorConfig()
            with memory_fraction taken from GPU_SIM_MEMORY_FRACTION if set.
        distributed_client: Multi-process coordination; not supported.
        node_id: This process's index; global device ids start at
            node_id * num_devices.
        num_devices: Devices on this node (GPU_SIM_NUM_DEVICES, else 1).
        device_name: Device kind reported in the topology.
        device_memory_bytes: Physical memory per device.
    """
    if distributed_client is not None:
        raise UnimplementedError("Multi-process GPU clients are not supported")
    if num_devices is None:
        num_devices = _env_int(NUM_DEVICES_ENV, 1)
    if num_devices < 1:
        raise InvalidArgumentError(f"num_devices must be >= 1, got {num_devices}")
    if node_id < 0:
        raise InvalidArgumentError(f"node_id must be >= 0, got {node_id}")
    if allocator_config is None:
        fraction = _env_float(MEMORY_FRACTION_ENV, AllocatorConfig.memory_fraction)
        try:
            allocator_config = AllocatorConfig(memory_fraction=fraction)
        except ValueError as e:
            raise InvalidArgumentError(f"{MEMORY_FRACTION_ENV}: {e}") from None

    pool_bytes = allocator_config.pool_size(device_memory_bytes)
    devices = [
        Device(
            id=node_id * num_devices + i,
            kind=device_name,
            process_index=node_id,
            memory_limit_bytes=pool_bytes,
            local_hardware_id=i,
            preallocate=allocator_config.preallocate,
        )
        for i in range(num_devices)
    ]
    client = SimulatedGpuClient(
        devices,
        device_name=device_name,
        process_index=node_id,
        asynchronous=asynchronous,
        allocator_config=allocator_config,
    )
    logger.info(
        "Created GPU client: %d x %s, %d bytes each (%s allocator)",
        num_devices, device_name, pool_bytes, allocator_config.kind,
    )
    return client
