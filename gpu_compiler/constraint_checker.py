"""Validate backend constraints on a Program before code generation."""

from __future__ import annotations

from dataclasses import dataclass

from gpu_compiler.dtypes import DTYPE_MAP, is_floating

# Derived from codegen.HANDLED_OPS, the single source of truth for which
# ops the compiler can process.
from gpu_compiler.codegen import HANDLED_OPS as SUPPORTED_OPS  # noqa: F401
from gpu_compiler.codegen import (
    COMPARISON_DIRECTIONS,
    ELEMENTWISE_BINARY_OPS,
    ELEMENTWISE_UNARY_OPS,
    OP_ARITY,
)
from gpu_compiler.program import OpNode, Program, TensorSpec, normalize_literal

_FLOAT_ONLY_OPS = {"exponential", "log", "sqrt", "tanh"}


@dataclass
class ConstraintViolation:
    node_name: str
    message: str


def check_constraints(program: Program) -> list[ConstraintViolation]:
    """Check backend constraints. Returns list of violations (empty = OK)."""
    violations: list[ConstraintViolation] = []
    defined: dict[str, TensorSpec] = {}

    for spec in program.parameters:
        violations.extend(_check_spec(spec.name, spec))
        if spec.name in defined:
            violations.append(ConstraintViolation(spec.name, f"Duplicate parameter '{spec.name}'"))
        defined[spec.name] = spec

    for node in program.nodes:
        violations.extend(_check_node(node, defined))
        for out in node.outputs:
            if out.name in defined:
                violations.append(ConstraintViolation(node.name, f"Value '{out.name}' defined twice"))
            defined[out.name] = out

    for out in program.outputs:
        if out.name not in defined:
            violations.append(ConstraintViolation(out.name, f"Output '{out.name}' is never defined"))

    return violations


def _check_node(node: OpNode, defined: dict[str, TensorSpec]) -> list[ConstraintViolation]:
    if node.op_type not in SUPPORTED_OPS:
        return [ConstraintViolation(
            node.name,
            f"Unsupported op: {node.op_type}. Supported: {sorted(SUPPORTED_OPS)}"
        )]

    expected = OP_ARITY[node.op_type]
    if len(node.inputs) != expected:
        return [ConstraintViolation(
            node.name, f"{node.op_type} takes {expected} operand(s), got {len(node.inputs)}"
        )]
    if len(node.outputs) != 1:
        return [ConstraintViolation(node.name, "Each op must produce exactly one value")]

    violations: list[ConstraintViolation] = []
    for tensor in node.inputs:
        source = defined.get(tensor.name)
        if source is None:
            violations.append(ConstraintViolation(
                node.name, f"Operand '{tensor.name}' is used before it is defined"
            ))
        elif (source.shape, source.dtype) != (tensor.shape, tensor.dtype):
            violations.append(ConstraintViolation(
                node.name,
                f"Operand '{tensor.name}' declared as {tensor.dtype}{list(tensor.shape)} "
                f"but defined as {source.dtype}{list(source.shape)}"
            ))
    for tensor in node.inputs + node.outputs:
        violations.extend(_check_spec(node.name, tensor))

    if not violations:
        violations.extend(_check_op_types(node))
    return violations


def _check_spec(owner: str, tensor: TensorSpec) -> list[ConstraintViolation]:
    violations = []
    if any(d < 0 for d in tensor.shape):
        violations.append(ConstraintViolation(
            owner,
            f"Dynamic/invalid shape in tensor '{tensor.name}': {list(tensor.shape)}. "
            "Static shapes are required."
        ))
    if tensor.dtype not in DTYPE_MAP:
        violations.append(ConstraintViolation(owner, f"Unknown dtype '{tensor.dtype}' for '{tensor.name}'"))
    return violations


def _mismatch(node: OpNode, what: str) -> ConstraintViolation:
    return ConstraintViolation(node.name, f"{node.op_type}: {what}")


def _check_op_types(node: OpNode) -> list[ConstraintViolation]:
    ins = node.inputs
    out = node.outputs[0]
    op = node.op_type

    if op in ELEMENTWISE_BINARY_OPS:
        if any((t.shape, t.dtype) != (out.shape, out.dtype) for t in ins):
            return [_mismatch(node, "operands and result must share shape and dtype")]
    elif op in ELEMENTWISE_UNARY_OPS:
        if (ins[0].shape, ins[0].dtype) != (out.shape, out.dtype):
            return [_mismatch(node, "operand and result must share shape and dtype")]
        if op in _FLOAT_ONLY_OPS and not is_floating(out.dtype):
            return [_mismatch(node, f"requires a floating-point type, got {out.dtype}")]
    elif op == "compare":
        if node.attrs.get("direction") not in COMPARISON_DIRECTIONS:
            return [_mismatch(node, f"invalid direction {node.attrs.get('direction')!r}")]
        if (ins[0].shape, ins[0].dtype) != (ins[1].shape, ins[1].dtype):
            return [_mismatch(node, "operands must share shape and dtype")]
        if out.shape != ins[0].shape or out.dtype != "bool":
            return [_mismatch(node, "result must be a bool tensor of the operand shape")]
    elif op == "select":
        pred, on_true, on_false = ins
        if pred.dtype != "bool" or pred.shape not in (out.shape, ()):
            return [_mismatch(node, "predicate must be bool with the result shape (or scalar)")]
        if any((t.shape, t.dtype) != (out.shape, out.dtype) for t in (on_true, on_false)):
            return [_mismatch(node, "branches and result must share shape and dtype")]
    elif op == "convert":
        if ins[0].shape != out.shape:
            return [_mismatch(node, "convert cannot change the shape")]
    elif op == "reshape":
        if ins[0].num_elements != out.num_elements or ins[0].dtype != out.dtype:
            return [_mismatch(node, f"cannot reshape {list(ins[0].shape)} to {list(out.shape)}")]
    elif op == "transpose":
        perm = list(node.attrs.get("permutation", []))
        if sorted(perm) != list(range(len(ins[0].shape))):
            return [_mismatch(node, f"invalid permutation {perm}")]
        if tuple(ins[0].shape[p] for p in perm) != out.shape or ins[0].dtype != out.dtype:
            return [_mismatch(node, "result shape does not match the permuted operand")]
    elif op == "dot":
        return _check_dot(node)
    elif op == "constant":
        if "value" not in node.attrs:
            return [_mismatch(node, "missing literal value")]
        try:
            normalize_literal(node.attrs["value"], out.shape, out.dtype)
        except ValueError as e:
            return [_mismatch(node, str(e))]
    return []


def _check_dot(node: OpNode) -> list[ConstraintViolation]:
    lhs, rhs = node.inputs
    out = node.outputs[0]
    if not (1 <= len(lhs.shape) <= 2 and 1 <= len(rhs.shape) <= 2):
        return [_mismatch(node, "only rank-1 and rank-2 operands are supported")]
    if lhs.dtype != rhs.dtype or lhs.dtype != out.dtype:
        return [_mismatch(node, "operands and result must share dtype")]
    if lhs.shape[-1] != rhs.shape[0]:
        return [_mismatch(node, f"contracting dimensions differ: {lhs.shape[-1]} vs {rhs.shape[0]}")]
    expected = tuple(lhs.shape[:-1]) + tuple(rhs.shape[1:])
    if out.shape != expected:
        return [_mismatch(node, f"result shape must be {list(expected)}, got {list(out.shape)}")]
    return []
