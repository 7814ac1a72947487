"""SimBuffer: a device allocation holding a numpy array, with a readiness event."""

from __future__ import annotations

import threading
from typing import Any

import ml_dtypes  # noqa: F401 (registers bfloat16 with numpy)
import numpy as np

from gpu_compiler.dtypes import from_numpy_dtype
from gpu_compiler.errors import InvalidArgumentError
from gpu_runtime.backend import DeviceBuffer
from gpu_runtime.device import Device


class SimBuffer(DeviceBuffer):
    """Device buffer backed by host memory and charged to a Device's allocator.

    A buffer is either created ready (from_numpy) or pending (allocate) and
    later fulfilled by the stream that computes it. Its lifetime is
    independent of whatever produced it: deleting the executable or closing
    the client leaves the buffer readable until delete() is called.
    """

    def __init__(self, device: Device, shape: tuple[int, ...], dtype: np.dtype, handle: int):
        self._device = device
        self._shape = tuple(shape)
        self._dtype = np.dtype(dtype)
        self._handle = handle
        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._data: np.ndarray | None = None
        self._host_value: np.ndarray | None = None
        self._deleted = False

    def __repr__(self) -> str:
        state = "deleted" if self._deleted else ("ready" if self._ready.is_set() else "pending")
        return f"SimBuffer(shape={self._shape}, dtype={self._dtype}, device={self._device.id}, {state})"

    def __del__(self):
        if not getattr(self, "_deleted", True):
            self.delete()

    @property
    def shape(self) -> tuple[int, ...]:
        return self._shape

    @property
    def dtype(self) -> np.dtype:
        return self._dtype

    @property
    def device(self) -> Device:
        return self._device

    @property
    def size_bytes(self) -> int:
        return int(np.prod(self._shape, dtype=np.int64)) * self._dtype.itemsize

    @property
    def is_deleted(self) -> bool:
        return self._deleted

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    @staticmethod
    def allocate(device: Device, shape: tuple[int, ...], dtype: np.dtype) -> SimBuffer:
        """Reserve device memory for a buffer that a stream will fill later."""
        dtype = np.dtype(dtype)
        nbytes = int(np.prod(shape, dtype=np.int64)) * dtype.itemsize
        handle = device.allocate(nbytes)
        return SimBuffer(device, tuple(shape), dtype, handle)

    @staticmethod
    def from_numpy(data: Any, device: Device) -> SimBuffer:
        """Copy a host array onto `device`. The result is ready immediately."""
        array = np.asarray(data)
        try:
            from_numpy_dtype(array.dtype)
        except ValueError as e:
            raise InvalidArgumentError(str(e)) from None
        buf = SimBuffer.allocate(device, array.shape, array.dtype)
        buf._fulfill(array)
        return buf

    def _fulfill(self, value: np.ndarray):
        value = np.asarray(value)
        if value.dtype != self._dtype:
            value = value.astype(self._dtype)
        self._data = np.array(value, copy=True).reshape(self._shape)
        self._ready.set()

    def block_until_ready(self) -> SimBuffer:
        if self._deleted:
            raise InvalidArgumentError("Buffer has been deleted")
        self._ready.wait()
        return self

    def to_numpy(self) -> np.ndarray:
        """Return the buffer contents as a read-only numpy array.

        Repeated calls return the same array.
        """
        self.block_until_ready()
        with self._lock:
            if self._deleted:
                raise InvalidArgumentError("Buffer has been deleted")
            if self._host_value is None:
                host = self._data.copy()
                host.flags.writeable = False
                self._host_value = host
            return self._host_value

    def delete(self):
        """Free the device allocation. Deleting twice is a no-op."""
        with self._lock:
            if self._deleted:
                return
            self._deleted = True
            self._data = None
            self._host_value = None
        self._device.free(self._handle)
