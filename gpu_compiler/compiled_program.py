"""CompiledExecutable: the opaque output of compilation (.gpubin format).

A compiled executable carries no meaning until a client loads it. Loading
consumes it: each artifact binds to at most one LoadedExecutable. A failed
load leaves it unconsumed and loadable again.
"""

from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Iterator

from gpu_compiler.codegen import BufferAllocation, ExecutionPlan, KernelCall
from gpu_compiler.errors import InvalidArgumentError, ResourceBindingError
from gpu_compiler.options import CompileOptions
from gpu_compiler.program import TensorSpec
from gpu_compiler.topology import TopologyDescription

_FORMAT = "gpubin"
_VERSION = 1


class CompiledExecutable:
    """A compiled program pinned to a topology; not runnable by itself."""

    def __init__(
        self,
        name: str,
        plan: ExecutionPlan,
        topology: TopologyDescription,
        fingerprint: str,
        compile_options: CompileOptions | None = None,
    ):
        self._name = name
        self._plan = plan
        self._topology = topology
        self._fingerprint = fingerprint
        self._compile_options = compile_options or CompileOptions()
        self._lock = threading.Lock()
        self._taken = False
        self._consumed = False

    def __repr__(self) -> str:
        state = "consumed" if self._consumed else "unbound"
        return f"CompiledExecutable(name={self._name!r}, devices={self.device_assignment}, {state})"

    @property
    def name(self) -> str:
        return self._name

    @property
    def topology(self) -> TopologyDescription:
        return self._topology

    @property
    def fingerprint(self) -> str:
        return self._fingerprint

    @property
    def compile_options(self) -> CompileOptions:
        return self._compile_options

    @property
    def input_specs(self) -> list[TensorSpec]:
        return list(self._plan.input_specs)

    @property
    def output_specs(self) -> list[TensorSpec]:
        return list(self._plan.output_specs)

    @property
    def device_assignment(self) -> list[int]:
        return list(self._plan.device_assignment)

    @property
    def num_replicas(self) -> int:
        return len(self._plan.device_assignment)

    @property
    def is_consumed(self) -> bool:
        return self._consumed

    @contextmanager
    def take(self) -> Iterator[ExecutionPlan]:
        """Hand the plan to a loading client.

        The executable is consumed only if the block exits normally; if the
        block raises, it is released for another attempt.
        """
        with self._lock:
            if self._consumed or self._taken:
                raise ResourceBindingError(
                    f"Compiled executable '{self._name}' has already been loaded; "
                    "compiled executables are single-use"
                )
            self._taken = True
        try:
            yield self._plan
        except BaseException:
            with self._lock:
                self._taken = False
            raise
        with self._lock:
            self._consumed = True

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def serialize(self) -> bytes:
        data = {
            "format": _FORMAT,
            "version": _VERSION,
            "name": self._name,
            "fingerprint": self._fingerprint,
            "topology": self._topology.to_dict(),
            "compile_options": _options_to_dict(self._compile_options),
            "execution_plan": _plan_to_dict(self._plan),
        }
        return json.dumps(data).encode()

    @staticmethod
    def deserialize(blob: bytes) -> CompiledExecutable:
        """Rebuild a fresh (unconsumed) executable from serialize() output."""
        try:
            data = json.loads(blob)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidArgumentError(f"Not a serialized executable: {e}") from e
        if not isinstance(data, dict) or data.get("format") != _FORMAT:
            raise InvalidArgumentError("Not a serialized executable: missing gpubin format tag")
        if data.get("version") != _VERSION:
            raise InvalidArgumentError(f"Unsupported gpubin version {data.get('version')}")
        return CompiledExecutable(
            name=data["name"],
            plan=_dict_to_plan(data["execution_plan"]),
            topology=TopologyDescription.from_dict(data["topology"]),
            fingerprint=data["fingerprint"],
            compile_options=_dict_to_options(data["compile_options"]),
        )

    def save(self, path: str):
        Path(path).write_bytes(self.serialize())

    @staticmethod
    def load(path: str) -> CompiledExecutable:
        return CompiledExecutable.deserialize(Path(path).read_bytes())


def _options_to_dict(options: CompileOptions) -> dict:
    d = asdict(options)
    if d["device_ids"] is not None:
        d["device_ids"] = list(d["device_ids"])
    return d


def _dict_to_options(d: dict) -> CompileOptions:
    device_ids = d.get("device_ids")
    return CompileOptions(
        num_replicas=d["num_replicas"],
        device_ids=tuple(device_ids) if device_ids is not None else None,
        precision=d["precision"],
        debug_dump_plan=d["debug_dump_plan"],
    )


def _tensor_to_dict(t: TensorSpec) -> dict:
    return {"name": t.name, "shape": list(t.shape), "dtype": t.dtype}


def _plan_to_dict(plan: ExecutionPlan) -> dict:
    return {
        "kernel_calls": [asdict(k) for k in plan.kernel_calls],
        "buffer_allocations": [asdict(b) for b in plan.buffer_allocations],
        "input_specs": [_tensor_to_dict(s) for s in plan.input_specs],
        "output_specs": [_tensor_to_dict(s) for s in plan.output_specs],
        "constants": plan.constants,
        "device_assignment": plan.device_assignment,
        "precision": plan.precision,
    }


def _dict_to_plan(d: dict) -> ExecutionPlan:
    return ExecutionPlan(
        kernel_calls=[KernelCall(**k) for k in d["kernel_calls"]],
        buffer_allocations=[BufferAllocation(**b) for b in d["buffer_allocations"]],
        input_specs=[TensorSpec(s["name"], tuple(s["shape"]), s["dtype"]) for s in d["input_specs"]],
        output_specs=[TensorSpec(s["name"], tuple(s["shape"]), s["dtype"]) for s in d["output_specs"]],
        constants=d["constants"],
        device_assignment=list(d["device_assignment"]),
        precision=d.get("precision", "default"),
    )
