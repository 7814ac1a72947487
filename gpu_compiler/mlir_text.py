"""Structured-dialect front end: `module { func.func @main ... }` -> Program.

Handles the pretty and generic op forms emitted for the mhlo/stablehlo
dialects, one statement per line:

    %0 = mhlo.constant dense<2> : tensor<i32>
    %1 = mhlo.add %arg0, %0 : tensor<i32>
    %2 = mhlo.convert %1 : (tensor<i32>) -> tensor<f32>
    %3 = "mhlo.transpose"(%x) {permutation = dense<[1, 0]> : tensor<2xi64>} : (tensor<2x3xf32>) -> tensor<3x2xf32>
    return %2 : tensor<f32>

Only @main is lowered. The resulting Program has the same shape the
graph-IR front end produces for the same computation.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass

from gpu_compiler.dtypes import MLIR_ELEMENT_TYPES
from gpu_compiler.errors import ProgramParseError
from gpu_compiler.program import OpNode, Program, TensorSpec, normalize_literal
from gpu_compiler.text_utils import matching_paren, split_top_level, strip_comment

_OPS = {
    "add", "subtract", "multiply", "divide", "maximum", "minimum", "power",
    "negate", "abs", "exponential", "log", "sqrt", "tanh",
    "convert", "reshape", "transpose", "dot", "compare", "select", "constant",
}
_DIALECTS = ("mhlo", "stablehlo")

_FUNC_RE = re.compile(r"^func\.func\s+(?:public\s+|private\s+)?@([\w.\-]+)\s*\(")
_ASSIGN_RE = re.compile(r"^%([\w.\-]+)\s*=\s*(.*)$")
_RETURN_RE = re.compile(r"^(?:func\.return|return|mhlo\.return|stablehlo\.return)\b\s*(.*)$")
_GENERIC_RE = re.compile(r'^"(\w+)\.(\w+)"\s*\(')
_PRETTY_RE = re.compile(r"^(\w+)\.(\w+)\b\s*(.*)$")
_TENSOR_RE = re.compile(r"^tensor<([^>]*)>$")
_DENSE_RE = re.compile(r"^dense<(.*)>\s*:\s*(tensor<[^>]*>)$")
_DIRECTION_RE = re.compile(r"comparison_direction\s+(\w+)")


@dataclass(frozen=True)
class MlirModule:
    """A parsed structured-dialect module; `lower()` yields its Program."""
    entry_name: str
    program: Program

    def lower(self) -> Program:
        return self.program


def parse_mlir_module(text: str, entry: str = "main") -> MlirModule:
    lines = text.splitlines()
    func_start = None
    signature = None
    for lineno, raw in enumerate(lines, start=1):
        line = strip_comment(raw).strip()
        m = _FUNC_RE.match(line)
        if m and m.group(1) == entry:
            func_start = lineno
            signature = line
            break
    if func_start is None:
        raise ProgramParseError(f"no func.func @{entry} in module")

    params = _parse_signature(signature, func_start)
    if not signature.endswith("{"):
        raise ProgramParseError("function body must open on the signature line", func_start)

    body: list[tuple[int, str]] = []
    closed = False
    for lineno in range(func_start + 1, len(lines) + 1):
        line = strip_comment(lines[lineno - 1]).strip()
        if not line:
            continue
        if line == "}":
            closed = True
            break
        body.append((lineno, line))
    if not closed:
        raise ProgramParseError(f"unterminated function @{entry}", func_start)

    return MlirModule(entry, _build_program(entry, params, body))


def _parse_signature(line: str, lineno: int) -> list[TensorSpec]:
    open_idx = line.index("(")
    close_idx = matching_paren(line, open_idx, lineno)
    params = []
    for arg in split_top_level(line[open_idx + 1:close_idx], "({[<", ")}]>"):
        name, sep, type_text = arg.partition(":")
        if not sep:
            raise ProgramParseError(f"malformed argument {arg!r}", lineno)
        # Drop argument attributes: "%arg0: tensor<2xf32> {mhlo.sharding = ...}"
        type_text = type_text.strip().split("{")[0].strip()
        params.append(_parse_tensor_type(name.strip().lstrip("%"), type_text, lineno))
    return params


def _build_program(name: str, params: list[TensorSpec], body: list[tuple[int, str]]) -> Program:
    env: dict[str, TensorSpec] = {p.name: p for p in params}
    nodes: list[OpNode] = []
    outputs: list[TensorSpec] | None = None

    for lineno, line in body:
        if outputs is not None:
            raise ProgramParseError("statement after return", lineno)
        ret = _RETURN_RE.match(line)
        if ret:
            operand_text = ret.group(1).split(":")[0]
            outputs = [_lookup(env, o, lineno) for o in split_top_level(operand_text)]
            continue
        m = _ASSIGN_RE.match(line)
        if m is None:
            raise ProgramParseError(f"unsupported statement {line!r}", lineno)
        value_name, rhs = m.group(1), m.group(2).strip()
        if value_name in env:
            raise ProgramParseError(f"value '%{value_name}' defined twice", lineno)

        if rhs.startswith('"'):
            node = _parse_generic(value_name, rhs, env, lineno)
        else:
            node = _parse_pretty(value_name, rhs, env, lineno)
        nodes.append(node)
        env[value_name] = node.outputs[0]

    if outputs is None:
        raise ProgramParseError(f"function @{name} has no return")

    return Program(name=name, parameters=tuple(params), outputs=tuple(outputs), nodes=tuple(nodes))


def _op_name(dialect: str, op: str, lineno: int) -> str:
    if dialect not in _DIALECTS:
        raise ProgramParseError(f"unsupported dialect '{dialect}'", lineno)
    if op not in _OPS:
        raise ProgramParseError(f"unsupported op '{dialect}.{op}'", lineno)
    return op


def _parse_generic(name: str, rhs: str, env: dict[str, TensorSpec], lineno: int) -> OpNode:
    m = _GENERIC_RE.match(rhs)
    if m is None:
        raise ProgramParseError(f"malformed generic op {rhs!r}", lineno)
    op = _op_name(m.group(1), m.group(2), lineno)
    paren = rhs.index("(", m.start(2))
    close = matching_paren(rhs, paren, lineno)
    operands = [_lookup(env, o, lineno) for o in split_top_level(rhs[paren + 1:close])]
    rest = rhs[close + 1:].strip()

    attr_text = ""
    if rest.startswith("{"):
        end = _matching_brace(rest, lineno)
        attr_text, rest = rest[1:end], rest[end + 1:].strip()
    if not rest.startswith(":"):
        raise ProgramParseError(f"missing type in {rhs!r}", lineno)
    result = _parse_tensor_type(name, _result_type(rest[1:].strip(), lineno), lineno)

    if op == "constant":
        value_text = _attr(attr_text, "value", lineno)
        return _constant_node(name, value_text, result, lineno)
    return OpNode(name, op, tuple(operands), (result,), _generic_attrs(op, attr_text, lineno))


def _parse_pretty(name: str, rhs: str, env: dict[str, TensorSpec], lineno: int) -> OpNode:
    m = _PRETTY_RE.match(rhs)
    if m is None:
        raise ProgramParseError(f"malformed op {rhs!r}", lineno)
    op = _op_name(m.group(1), m.group(2), lineno)
    rest = m.group(3)

    if op == "constant":
        dense = rest.strip()
        dm = _DENSE_RE.match(dense)
        if dm is None:
            raise ProgramParseError(f"expected dense<...> : tensor<...>, got {dense!r}", lineno)
        result = _parse_tensor_type(name, dm.group(2), lineno)
        return _constant_node(name, dense, result, lineno)

    operand_text, sep, type_text = rest.partition(" : ")
    if not sep:
        raise ProgramParseError(f"missing type in {rhs!r}", lineno)
    result = _parse_tensor_type(name, _result_type(type_text.strip(), lineno), lineno)

    attrs: dict = {}
    operand_parts = split_top_level(operand_text)
    if op == "compare":
        if not operand_parts or operand_parts[0].startswith("%"):
            raise ProgramParseError("compare requires a direction", lineno)
        attrs["direction"] = operand_parts[0].upper()
        operand_parts = [p for p in operand_parts[1:] if p.startswith("%")]
    elif op == "transpose":
        dims = [p for p in operand_parts if p.startswith("dims")]
        if not dims:
            raise ProgramParseError("transpose requires dims = [...]", lineno)
        attrs["permutation"] = _int_list(dims[0].partition("=")[2])
        operand_parts = [p for p in operand_parts if p.startswith("%")]
    operands = [_lookup(env, o, lineno) for o in operand_parts]
    return OpNode(name, op, tuple(operands), (result,), attrs)


def _generic_attrs(op: str, attr_text: str, lineno: int) -> dict:
    if op == "compare":
        dm = _DIRECTION_RE.search(attr_text)
        if dm is None:
            raise ProgramParseError("compare requires comparison_direction", lineno)
        return {"direction": dm.group(1).upper()}
    if op == "transpose":
        return {"permutation": _int_list(_attr(attr_text, "permutation", lineno))}
    return {}


def _attr(attr_text: str, key: str, lineno: int) -> str:
    for part in split_top_level(attr_text, "({[<", ")}]>"):
        k, sep, v = part.partition("=")
        if sep and k.strip() == key:
            return v.strip()
    raise ProgramParseError(f"missing attribute '{key}'", lineno)


def _constant_node(name: str, dense_text: str, result: TensorSpec, lineno: int) -> OpNode:
    dm = _DENSE_RE.match(dense_text.strip())
    if dm is None:
        raise ProgramParseError(f"expected dense<...> literal, got {dense_text!r}", lineno)
    try:
        value = normalize_literal(_parse_literal(dm.group(1)), result.shape, result.dtype)
    except ValueError as e:
        raise ProgramParseError(str(e), lineno) from e
    return OpNode(name, "constant", (), (result,), {"value": value})


def _result_type(type_text: str, lineno: int) -> str:
    """Result type of `(A, B) -> R`, `A, B` (last wins) or `R`."""
    if type_text.startswith("("):
        close = matching_paren(type_text, 0, lineno)
        arrow = type_text[close + 1:].strip()
        if not arrow.startswith("->"):
            raise ProgramParseError(f"malformed function type {type_text!r}", lineno)
        return arrow[2:].strip()
    return split_top_level(type_text, "({[<", ")}]>")[-1]


def _parse_tensor_type(name: str, type_text: str, lineno: int) -> TensorSpec:
    m = _TENSOR_RE.match(type_text.strip())
    if m is None:
        raise ProgramParseError(f"expected tensor type, got {type_text!r}", lineno)
    dims = m.group(1).split("x")
    elem = dims.pop()
    if elem not in MLIR_ELEMENT_TYPES:
        raise ProgramParseError(f"unsupported element type '{elem}'", lineno)
    if any(d == "?" for d in dims):
        raise ProgramParseError(f"dynamic shape in {type_text!r}", lineno)
    try:
        shape = tuple(int(d) for d in dims)
    except ValueError:
        raise ProgramParseError(f"malformed tensor type {type_text!r}", lineno) from None
    return TensorSpec(name=name, shape=shape, dtype=MLIR_ELEMENT_TYPES[elem])


def _lookup(env: dict[str, TensorSpec], operand: str, lineno: int) -> TensorSpec:
    name = operand.strip().lstrip("%")
    if name not in env:
        raise ProgramParseError(f"use of undefined value '%{name}'", lineno)
    return env[name]


def _matching_brace(text: str, lineno: int) -> int:
    depth = 0
    for i, ch in enumerate(text):
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    raise ProgramParseError("unbalanced braces", lineno)


def _int_list(text: str) -> list[int]:
    """`dense<[1, 0]> : tensor<2xi64>`, `array<i64: 1, 0>` or `[1, 0]`."""
    text = text.strip()
    if text.startswith("dense<"):
        text = text[len("dense<"):text.index(">")]
    elif text.startswith("array<"):
        text = text[text.index(":") + 1:text.rindex(">")]
    return [int(v) for v in text.strip().strip("[]").split(",") if v.strip()]


def _parse_literal(text: str):
    text = text.strip()
    if text.startswith('"'):
        raise ValueError("hex-encoded dense literals are not supported")
    text = re.sub(r"\binf\b", "Infinity", text)
    text = re.sub(r"\bnan\b", "NaN", text)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"malformed literal {text!r}") from e
