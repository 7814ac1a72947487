"""Tests for the execution profiler."""

import numpy as np
import pytest

import gpu_compiler
from gpu_compiler.program import parse_program
from gpu_runtime.profiler import ProfileResult, profile
from tests.conftest import ADD_HLO


class TestProfiler:
    def test_profile_add(self, client):
        executable = gpu_compiler.compile(parse_program(ADD_HLO), client.topology_description(), client)
        loaded = client.load(executable)
        x = client.buffer_from_numpy(np.ones((2, 3), np.float32))
        result = profile(loaded, [[x, x]], warmup=1, iterations=4)
        assert isinstance(result, ProfileResult)
        assert result.iterations == 4
        assert 0.0 <= result.min_ms <= result.max_ms
        assert result.total_ms >= 0.0
        assert loaded.execution_count == 5
        # Profiled results are freed; only the argument stays resident.
        assert client.devices[0].bytes_in_use == x.size_bytes

    def test_rejects_zero_iterations(self, client):
        loaded = client.compile_and_load(parse_program(ADD_HLO))
        with pytest.raises(ValueError):
            profile(loaded, [[]], iterations=0)
