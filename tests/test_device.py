"""Tests for simulated devices and the allocator configuration."""

import threading

import numpy as np
import pytest

from gpu_compiler.errors import ResourceExhaustedError
from gpu_runtime.buffer import SimBuffer
from gpu_runtime.device import AllocatorConfig, Device


class TestAllocatorConfig:
    def test_defaults(self):
        config = AllocatorConfig()
        assert config.kind == "default"
        assert config.memory_fraction == 0.75
        assert config.pool_size(1000) == 750

    def test_platform_uses_all_memory(self):
        assert AllocatorConfig(kind="platform").pool_size(1000) == 1000

    def test_invalid(self):
        with pytest.raises(ValueError):
            AllocatorConfig(kind="arena")
        with pytest.raises(ValueError):
            AllocatorConfig(memory_fraction=0.0)
        with pytest.raises(ValueError):
            AllocatorConfig(memory_fraction=1.5)


class TestDevice:
    def test_allocate_and_free(self):
        device = Device(0, "Sim", memory_limit_bytes=100)
        a = device.allocate(60)
        b = device.allocate(40)
        assert device.bytes_in_use == 100
        device.free(a)
        device.free(a)
        assert device.bytes_in_use == 40
        device.free(b)
        assert device.bytes_in_use == 0
        assert device.peak_bytes_in_use == 100

    def test_exhaustion(self):
        device = Device(3, "Sim", memory_limit_bytes=16)
        device.allocate(16)
        with pytest.raises(ResourceExhaustedError, match="device 3"):
            device.allocate(1)

    def test_reserved_bytes(self):
        assert Device(0, "Sim", memory_limit_bytes=64).bytes_reserved == 64
        lazy = Device(0, "Sim", memory_limit_bytes=64, preallocate=False)
        lazy.allocate(8)
        assert lazy.bytes_reserved == 8

    def test_stream_runs_in_order(self):
        device = Device(0, "Sim")
        seen = []
        futures = [device.submit(seen.append, i) for i in range(20)]
        for f in futures:
            f.result()
        device.shutdown()
        assert seen == list(range(20))

    def test_stream_uses_worker_thread(self):
        device = Device(0, "Sim")
        try:
            name = device.submit(lambda: threading.current_thread().name).result()
        finally:
            device.shutdown()
        assert name.startswith("gpu0-stream")

    def test_buffer_charged_to_device(self):
        device = Device(0, "Sim", memory_limit_bytes=1024)
        buf = SimBuffer.from_numpy(np.zeros(8, np.float64), device)
        assert buf.size_bytes == 64
        assert device.bytes_in_use == 64
        buf.delete()
        assert device.bytes_in_use == 0

    def test_pending_buffer(self):
        device = Device(0, "Sim")
        buf = SimBuffer.allocate(device, (2,), np.dtype(np.int32))
        assert not buf.is_ready
        buf._fulfill(np.array([4, 5]))
        assert buf.is_ready
        assert buf.to_numpy().tolist() == [4, 5]
        assert buf.to_numpy().dtype == np.int32
