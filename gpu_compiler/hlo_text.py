"""Graph-IR front end: textual `HloModule` modules -> Program.

Only the ENTRY computation is read. Each instruction line has the form

    [ROOT] name = type opcode(operands)[, attr=value ...]

Layout suffixes (`f32[2,3]{1,0}`) and `%` sigils are accepted and ignored.
A ROOT `tuple(...)` becomes the program's ordered list of outputs.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass

from gpu_compiler.dtypes import HLO_ELEMENT_TYPES
from gpu_compiler.errors import ProgramParseError
from gpu_compiler.program import OpNode, Program, TensorSpec, normalize_literal
from gpu_compiler.text_utils import matching_paren, split_top_level, strip_comment

# HLO opcode -> program op_type. Identity for everything we handle.
_OPCODES = {
    "add", "subtract", "multiply", "divide", "maximum", "minimum", "power",
    "negate", "abs", "exponential", "log", "sqrt", "tanh",
    "convert", "reshape", "transpose", "dot", "compare", "select",
}

_ARRAY_TYPE_RE = re.compile(r"^([a-z]+[0-9]*)\[([0-9,\s]*)\](\{[0-9,\s]*\})?$")
_ENTRY_RE = re.compile(r"^ENTRY\s+%?([\w.\-]+)")
_INSTR_HEAD_RE = re.compile(r"^(ROOT\s+)?%?([\w.\-]+)\s*=\s*(.*)$")


@dataclass(frozen=True)
class XlaComputation:
    """A parsed graph-IR module; `lower()` yields its Program."""
    module_name: str
    program: Program

    def lower(self) -> Program:
        return self.program


def parse_hlo_module(text: str) -> XlaComputation:
    lines = text.splitlines()
    module_name = None
    entry_start = None
    for lineno, raw in enumerate(lines, start=1):
        line = strip_comment(raw).strip()
        if not line:
            continue
        if module_name is None:
            if not line.startswith("HloModule"):
                raise ProgramParseError("expected 'HloModule' header", lineno)
            parts = line[len("HloModule"):].strip().split(",")[0].split()
            if not parts:
                raise ProgramParseError("missing module name", lineno)
            module_name = parts[0].lstrip("%")
            continue
        if line.startswith("ENTRY"):
            entry_start = lineno
            break
        if line.endswith("{"):
            raise ProgramParseError("only the ENTRY computation is supported", lineno)

    if module_name is None:
        raise ProgramParseError("empty program text")
    if entry_start is None:
        raise ProgramParseError("missing ENTRY computation")

    header = strip_comment(lines[entry_start - 1]).strip()
    m = _ENTRY_RE.match(header)
    if m is None or not header.endswith("{"):
        raise ProgramParseError("malformed ENTRY header", entry_start)
    computation_name = m.group(1)

    body: list[tuple[int, str]] = []
    closed = False
    for lineno in range(entry_start + 1, len(lines) + 1):
        line = strip_comment(lines[lineno - 1]).strip()
        if not line:
            continue
        if line == "}":
            closed = True
            break
        body.append((lineno, line))
    if not closed:
        raise ProgramParseError("unterminated ENTRY computation", entry_start)
    if not body:
        raise ProgramParseError("ENTRY computation has no instructions", entry_start)

    return XlaComputation(module_name, _build_program(computation_name, body))


def _build_program(name: str, body: list[tuple[int, str]]) -> Program:
    env: dict[str, TensorSpec] = {}
    params: dict[int, TensorSpec] = {}
    nodes: list[OpNode] = []
    root_outputs: list[TensorSpec] | None = None
    last_outputs: list[TensorSpec] = []

    for lineno, line in body:
        m = _INSTR_HEAD_RE.match(line)
        if m is None:
            raise ProgramParseError(f"malformed instruction: {line!r}", lineno)
        is_root = m.group(1) is not None
        value_name = m.group(2)
        rest = m.group(3)
        if value_name in env:
            raise ProgramParseError(f"value '{value_name}' defined twice", lineno)

        type_text, rest = _split_type(rest, lineno)
        paren = rest.find("(")
        if paren <= 0:
            raise ProgramParseError(f"missing opcode in {line!r}", lineno)
        opcode = rest[:paren].strip()
        close = matching_paren(rest, paren, lineno)
        operand_text = rest[paren + 1:close]
        attrs = _parse_attrs(rest[close + 1:], lineno)

        if opcode == "tuple":
            operands = [_lookup(env, o, lineno) for o in _operand_names(operand_text)]
            outputs = operands
        else:
            spec = _parse_array_type(value_name, type_text, lineno)
            if opcode == "parameter":
                try:
                    index = int(operand_text.strip())
                except ValueError:
                    raise ProgramParseError(f"malformed parameter number {operand_text!r}", lineno) from None
                if index in params:
                    raise ProgramParseError(f"parameter({index}) declared twice", lineno)
                params[index] = spec
            elif opcode == "constant":
                try:
                    value = normalize_literal(_parse_literal(operand_text), spec.shape, spec.dtype)
                except ValueError as e:
                    raise ProgramParseError(str(e), lineno) from e
                nodes.append(OpNode(value_name, "constant", (), (spec,), {"value": value}))
            elif opcode in _OPCODES:
                operands = [_lookup(env, o, lineno) for o in _operand_names(operand_text)]
                nodes.append(OpNode(value_name, opcode, tuple(operands), (spec,),
                                    _node_attrs(opcode, attrs, operands, lineno)))
            else:
                raise ProgramParseError(f"unsupported opcode '{opcode}'", lineno)
            env[value_name] = spec
            outputs = [spec]

        last_outputs = outputs
        if is_root:
            if root_outputs is not None:
                raise ProgramParseError("more than one ROOT instruction", lineno)
            root_outputs = outputs

    if sorted(params) != list(range(len(params))):
        raise ProgramParseError(f"parameter numbers must be contiguous from 0, got {sorted(params)}")

    return Program(
        name=name,
        parameters=tuple(params[i] for i in range(len(params))),
        outputs=tuple(root_outputs if root_outputs is not None else last_outputs),
        nodes=tuple(nodes),
    )


def _node_attrs(opcode: str, attrs: dict[str, str], operands: list[TensorSpec], lineno: int) -> dict:
    if opcode == "compare":
        if "direction" not in attrs:
            raise ProgramParseError("compare requires direction=", lineno)
        return {"direction": attrs["direction"].upper()}
    if opcode == "transpose":
        if "dimensions" not in attrs:
            raise ProgramParseError("transpose requires dimensions=", lineno)
        return {"permutation": _int_list(attrs["dimensions"])}
    if opcode == "dot":
        lhs_rank = len(operands[0].shape)
        lhs = _int_list(attrs.get("lhs_contracting_dims", "{%d}" % (lhs_rank - 1)))
        rhs = _int_list(attrs.get("rhs_contracting_dims", "{0}"))
        if lhs != [lhs_rank - 1] or rhs != [0]:
            raise ProgramParseError("only standard dot dimension numbers are supported", lineno)
    return {}


def _split_type(text: str, lineno: int) -> tuple[str, str]:
    """Split `type opcode(...)` into the type text and the remainder."""
    text = text.strip()
    if text.startswith("("):
        close = matching_paren(text, 0, lineno)
        return text[:close + 1], text[close + 1:].strip()
    parts = text.split(None, 1)
    if len(parts) != 2:
        raise ProgramParseError(f"malformed instruction body: {text!r}", lineno)
    return parts[0], parts[1]


def _parse_array_type(name: str, type_text: str, lineno: int) -> TensorSpec:
    m = _ARRAY_TYPE_RE.match(type_text.strip())
    if m is None:
        raise ProgramParseError(f"expected array type, got {type_text!r}", lineno)
    elem, dims = m.group(1), m.group(2)
    if elem not in HLO_ELEMENT_TYPES:
        raise ProgramParseError(f"unsupported element type '{elem}'", lineno)
    shape = tuple(int(d) for d in dims.split(",") if d.strip())
    return TensorSpec(name=name, shape=shape, dtype=HLO_ELEMENT_TYPES[elem])


def _operand_names(text: str) -> list[str]:
    # Operands may carry their type: "f32[2]{0} %x"
    return [part.split()[-1].lstrip("%") for part in split_top_level(text)]


def _lookup(env: dict[str, TensorSpec], name: str, lineno: int) -> TensorSpec:
    if name not in env:
        raise ProgramParseError(f"use of undefined value '{name}'", lineno)
    return env[name]


def _parse_attrs(text: str, lineno: int) -> dict[str, str]:
    attrs = {}
    for part in split_top_level(text.strip().lstrip(",")):
        key, sep, value = part.partition("=")
        if not sep:
            raise ProgramParseError(f"malformed attribute {part!r}", lineno)
        attrs[key.strip()] = value.strip()
    return attrs


def _int_list(text: str) -> list[int]:
    return [int(v) for v in text.strip().strip("{}").split(",") if v.strip()]


def _parse_literal(text: str):
    text = text.strip().replace("{", "[").replace("}", "]")
    text = re.sub(r"\binf\b", "Infinity", text)
    text = re.sub(r"\bnan\b", "NaN", text)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"malformed literal {text!r}") from e
