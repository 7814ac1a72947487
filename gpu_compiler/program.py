"""Program representation: the in-memory dataflow graph handed to the compiler.

Both surface syntaxes (graph-IR text and the structured dialect) lower into
the same Program shape. A Program is immutable and compared structurally.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

import numpy as np

from gpu_compiler.dtypes import to_numpy_dtype
from gpu_compiler.errors import ProgramParseError


@dataclass(frozen=True)
class TensorSpec:
    name: str
    shape: tuple[int, ...]
    dtype: str = "float32"

    def __post_init__(self):
        object.__setattr__(self, "shape", tuple(int(d) for d in self.shape))

    @property
    def num_elements(self) -> int:
        return int(np.prod(self.shape, dtype=np.int64))

    @property
    def size_bytes(self) -> int:
        return self.num_elements * to_numpy_dtype(self.dtype).itemsize


@dataclass(frozen=True)
class OpNode:
    name: str
    op_type: str
    inputs: tuple[TensorSpec, ...]
    outputs: tuple[TensorSpec, ...]
    attrs: dict = field(default_factory=dict, hash=False)

    def __post_init__(self):
        object.__setattr__(self, "inputs", tuple(self.inputs))
        object.__setattr__(self, "outputs", tuple(self.outputs))


@dataclass(frozen=True)
class Program:
    """A computation graph: ordered parameters, ordered outputs, nodes in definition order."""
    name: str
    parameters: tuple[TensorSpec, ...]
    outputs: tuple[TensorSpec, ...]
    nodes: tuple[OpNode, ...]

    def __post_init__(self):
        object.__setattr__(self, "parameters", tuple(self.parameters))
        object.__setattr__(self, "outputs", tuple(self.outputs))
        object.__setattr__(self, "nodes", tuple(self.nodes))

    @property
    def input_arity(self) -> int:
        return len(self.parameters)

    @property
    def output_arity(self) -> int:
        return len(self.outputs)

    def get_node_by_name(self, name: str) -> OpNode | None:
        for node in self.nodes:
            if node.name == name:
                return node
        return None

    def lower(self) -> Program:
        return self

    def fingerprint(self) -> str:
        """sha256 of the canonical form, independent of value names."""
        canonical = json.dumps(_canonical_form(self), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()


@runtime_checkable
class Lowerable(Protocol):
    """Anything the compiler can lower to a Program."""

    def lower(self) -> Program:
        ...


def _canonical_form(program: Program) -> dict:
    renames: dict[str, str] = {}
    for i, spec in enumerate(program.parameters):
        renames[spec.name] = f"p{i}"
    for i, node in enumerate(program.nodes):
        for j, out in enumerate(node.outputs):
            renames[out.name] = f"v{i}.{j}"

    def spec(t: TensorSpec) -> list:
        return [renames.get(t.name, t.name), list(t.shape), t.dtype]

    return {
        "parameters": [spec(p) for p in program.parameters],
        "outputs": [spec(o) for o in program.outputs],
        "nodes": [
            {
                "op": n.op_type,
                "inputs": [spec(i) for i in n.inputs],
                "outputs": [spec(o) for o in n.outputs],
                "attrs": n.attrs,
            }
            for n in program.nodes
        ],
    }


def normalize_literal(value, shape: tuple[int, ...], dtype: str) -> list | int | float | bool:
    """Coerce a parsed constant to the declared shape/dtype as plain Python values.

    A single-element value is broadcast (splat) to the declared shape. Integer
    values outside the range of the declared type raise ValueError.
    """
    np_dtype = to_numpy_dtype(dtype)
    try:
        if np_dtype.kind in "iu":
            raw = np.asarray(value)
            info = np.iinfo(np_dtype)
            if raw.size and (raw.min() < info.min or raw.max() > info.max):
                raise ValueError(f"Literal out of range for {dtype} [{info.min}, {info.max}]")
        arr = np.asarray(value, dtype=np_dtype)
    except (OverflowError, TypeError) as e:
        raise ValueError(f"Invalid {dtype} literal: {e}") from e
    if arr.shape != tuple(shape):
        if arr.size != 1:
            raise ValueError(f"Literal of shape {arr.shape} does not match declared shape {tuple(shape)}")
        arr = np.broadcast_to(arr.reshape(()), tuple(shape))
    if dtype in ("float16", "bfloat16"):
        arr = arr.astype(np.float32)
    return arr.tolist()


# ---------------------------------------------------------------------------
# Dict / JSON form
# ---------------------------------------------------------------------------

def _parse_tensor_spec(d: dict) -> TensorSpec:
    return TensorSpec(
        name=d["name"],
        shape=tuple(d["shape"]),
        dtype=d.get("dtype", "float32"),
    )


def _parse_op_node(d: dict) -> OpNode:
    return OpNode(
        name=d["name"],
        op_type=d["op_type"],
        inputs=tuple(_parse_tensor_spec(i) for i in d.get("inputs", [])),
        outputs=tuple(_parse_tensor_spec(o) for o in d["outputs"]),
        attrs=d.get("attrs", {}),
    )


def load_program_from_dict(data: dict) -> Program:
    """Load a Program from its dict form (also used by tests)."""
    return Program(
        name=data.get("name", "unknown"),
        parameters=tuple(_parse_tensor_spec(p) for p in data.get("parameters", [])),
        outputs=tuple(_parse_tensor_spec(o) for o in data["outputs"]),
        nodes=tuple(_parse_op_node(n) for n in data.get("nodes", [])),
    )


def _tensor_to_dict(t: TensorSpec) -> dict:
    return {"name": t.name, "shape": list(t.shape), "dtype": t.dtype}


def program_to_dict(program: Program) -> dict:
    return {
        "name": program.name,
        "parameters": [_tensor_to_dict(p) for p in program.parameters],
        "outputs": [_tensor_to_dict(o) for o in program.outputs],
        "nodes": [
            {
                "name": n.name,
                "op_type": n.op_type,
                "inputs": [_tensor_to_dict(i) for i in n.inputs],
                "outputs": [_tensor_to_dict(o) for o in n.outputs],
                "attrs": n.attrs,
            }
            for n in program.nodes
        ],
    }


# ---------------------------------------------------------------------------
# Surface syntax dispatch
# ---------------------------------------------------------------------------

def detect_syntax(text: str) -> str:
    """Return "hlo" or "mlir" for program text."""
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("//"):
            continue
        if stripped.startswith("HloModule"):
            return "hlo"
        if stripped.startswith("module") or stripped.startswith("func.func"):
            return "mlir"
        break
    raise ProgramParseError("Unrecognized program syntax: expected 'HloModule' or 'module'")


def parse_program(text: str) -> Lowerable:
    """Parse program text in either surface syntax."""
    from gpu_compiler.hlo_text import parse_hlo_module
    from gpu_compiler.mlir_text import parse_mlir_module

    if detect_syntax(text) == "hlo":
        return parse_hlo_module(text)
    return parse_mlir_module(text)


def load_program(path: str) -> Lowerable:
    """Load a program file: .json (dict form), .mlir, or graph-IR text."""
    p = Path(path)
    if p.suffix == ".json":
        return load_program_from_dict(json.loads(p.read_text()))
    return parse_program(p.read_text())
