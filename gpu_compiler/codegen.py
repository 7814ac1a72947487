"""Code generator: maps a Program to a device execution plan.

Architecture:
    Every non-constant OpNode becomes one KernelCall naming a runtime
    kernel plus the parameters it needs (output shape/dtype, comparison
    direction, ...).
    Constants become plan-owned buffers that the runtime uploads at load
    time. Parameters are bound from the caller's argument buffers.

    HANDLED_OPS is the single source of truth for which ops the compiler
    accepts; constraint_checker.SUPPORTED_OPS is the same object. The
    runtime kernel table must cover KERNEL_OPS, which leaves out the ops
    that become plan buffers.

Design trade-offs:
    - No fusion, scheduling or layout assignment: kernels run in program
      order, one per node. The plan is deliberately a flat list so that the
      executor stays a straight loop.

    - Device assignment is resolved here, not at load time, so a compiled
      executable is pinned to the devices of the topology it was built for.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from gpu_compiler.dtypes import elem_size, is_floating
from gpu_compiler.errors import CompilationError
from gpu_compiler.options import CompileOptions
from gpu_compiler.program import OpNode, Program, TensorSpec, normalize_literal
from gpu_compiler.topology import TopologyDescription

logger = logging.getLogger(__name__)

ELEMENTWISE_BINARY_OPS = frozenset({
    "add", "subtract", "multiply", "divide", "maximum", "minimum", "power",
})
ELEMENTWISE_UNARY_OPS = frozenset({
    "negate", "abs", "exponential", "log", "sqrt", "tanh",
})
COMPARISON_DIRECTIONS = frozenset({"EQ", "NE", "LT", "LE", "GT", "GE"})

# op_type -> number of operands
OP_ARITY: dict[str, int] = {
    **{op: 2 for op in ELEMENTWISE_BINARY_OPS},
    **{op: 1 for op in ELEMENTWISE_UNARY_OPS},
    "constant": 0,
    "convert": 1,
    "reshape": 1,
    "transpose": 1,
    "dot": 2,
    "compare": 2,
    "select": 3,
}

HANDLED_OPS = frozenset(OP_ARITY)

# Ops lowered to plan buffers instead of kernel launches.
PLAN_BUFFER_OPS = frozenset({"constant"})
KERNEL_OPS = HANDLED_OPS - PLAN_BUFFER_OPS


@dataclass
class KernelCall:
    """A single kernel invocation on one device."""

    kernel_name: str
    input_buffers: list[str]
    output_buffers: list[str]
    params: dict = field(default_factory=dict)


@dataclass
class BufferAllocation:
    """Device memory the plan needs besides the caller's arguments."""

    name: str
    shape: list[int]
    dtype: str
    kind: str  # "constant", "temp" or "output"
    size_bytes: int = 0


@dataclass
class ExecutionPlan:
    """Complete execution plan for a compiled program."""

    kernel_calls: list[KernelCall]
    buffer_allocations: list[BufferAllocation]
    input_specs: list[TensorSpec]
    output_specs: list[TensorSpec]
    constants: dict[str, object]
    device_assignment: list[int]
    precision: str = "default"

    @property
    def constant_bytes(self) -> int:
        return sum(b.size_bytes for b in self.buffer_allocations if b.kind == "constant")

    @property
    def temp_bytes(self) -> int:
        return sum(b.size_bytes for b in self.buffer_allocations if b.kind == "temp")


def kernel_name_for(op_type: str) -> str:
    return f"{op_type}_kernel"


def resolve_device_assignment(options: CompileOptions, topology: TopologyDescription) -> list[int]:
    """Pick one device per replica from the requested subset (or the whole topology)."""
    candidates = options.device_ids if options.device_ids is not None else topology.device_ids
    unknown = [d for d in candidates if d not in topology.device_ids]
    if unknown:
        raise CompilationError(
            f"Requested device ids {unknown} are not part of the target topology "
            f"{list(topology.device_ids)}"
        )
    if len(set(candidates)) != len(candidates):
        raise CompilationError(f"Duplicate device ids in compile options: {list(candidates)}")
    if options.num_replicas > len(candidates):
        raise CompilationError(
            f"num_replicas={options.num_replicas} exceeds the {len(candidates)} available device(s)"
        )
    return list(candidates[:options.num_replicas])


def _size_bytes(spec: TensorSpec) -> int:
    return spec.num_elements * elem_size(spec.dtype)


def _gen_kernel_call(node: OpNode, options: CompileOptions) -> KernelCall:
    out = node.outputs[0]
    params: dict = {"out_shape": list(out.shape), "out_dtype": out.dtype}
    if node.op_type == "compare":
        params["direction"] = node.attrs["direction"]
    elif node.op_type == "transpose":
        params["permutation"] = list(node.attrs["permutation"])
    elif node.op_type == "dot":
        # Half types always accumulate in float32; "highest" widens float32 too.
        if options.precision == "highest" and is_floating(out.dtype):
            params["accumulate_dtype"] = "float64" if out.dtype in ("float32", "float64") else "float32"
    return KernelCall(
        kernel_name=kernel_name_for(node.op_type),
        input_buffers=[i.name for i in node.inputs],
        output_buffers=[out.name],
        params=params,
    )


def generate_execution_plan(
    program: Program,
    options: CompileOptions,
    topology: TopologyDescription,
) -> ExecutionPlan:
    """Generate an execution plan for a constraint-checked program."""
    device_assignment = resolve_device_assignment(options, topology)
    output_names = {o.name for o in program.outputs}

    kernel_calls: list[KernelCall] = []
    buffer_allocs: list[BufferAllocation] = []
    constants: dict[str, object] = {}

    for node in program.nodes:
        out = node.outputs[0]
        if node.op_type in PLAN_BUFFER_OPS:
            constants[out.name] = normalize_literal(node.attrs["value"], out.shape, out.dtype)
            buffer_allocs.append(BufferAllocation(
                name=out.name, shape=list(out.shape), dtype=out.dtype,
                kind="constant", size_bytes=_size_bytes(out),
            ))
            continue
        kernel_calls.append(_gen_kernel_call(node, options))
        buffer_allocs.append(BufferAllocation(
            name=out.name, shape=list(out.shape), dtype=out.dtype,
            kind="output" if out.name in output_names else "temp",
            size_bytes=_size_bytes(out),
        ))

    plan = ExecutionPlan(
        kernel_calls=kernel_calls,
        buffer_allocations=buffer_allocs,
        input_specs=list(program.parameters),
        output_specs=list(program.outputs),
        constants=constants,
        device_assignment=device_assignment,
        precision=options.precision,
    )
    if options.debug_dump_plan:
        logger.debug("Execution plan for '%s' on devices %s:", program.name, device_assignment)
        for call in kernel_calls:
            logger.debug("  %s(%s) -> %s %s", call.kernel_name, ", ".join(call.input_buffers),
                         ", ".join(call.output_buffers), call.params)
    return plan
