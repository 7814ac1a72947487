"""Tests for the graph-IR text front end."""

import pytest

from gpu_compiler.errors import InvalidArgumentError, ProgramParseError
from gpu_compiler.hlo_text import parse_hlo_module
from tests.conftest import CONSTANT_HLO, MATMUL_HLO


class TestParseHloModule:
    def test_constant_module(self):
        computation = parse_hlo_module(CONSTANT_HLO)
        assert computation.module_name == "constant_two"
        program = computation.lower()
        assert program.input_arity == 0
        assert program.output_arity == 1
        node = program.get_node_by_name("c")
        assert node.op_type == "constant"
        assert node.attrs["value"] == 2
        assert program.outputs[0].dtype == "int32"
        assert program.outputs[0].shape == ()

    def test_tuple_root_flattens(self):
        program = parse_hlo_module(MATMUL_HLO).lower()
        assert [o.name for o in program.outputs] == ["prod", "prod_t"]
        assert [p.shape for p in program.parameters] == [(2, 3), (3, 2)]

    def test_splat_constant(self):
        program = parse_hlo_module(MATMUL_HLO).lower()
        assert program.get_node_by_name("zero").attrs["value"] == [[0.0] * 3] * 2

    def test_sigils_layouts_and_comments(self):
        text = """\
HloModule m, entry_computation_layout={(f32[2]{0})->f32[2]{0}}

// comment line
ENTRY %main.3 {
  %Arg_0.1 = f32[2]{0} parameter(0)  // input
  ROOT %negate.2 = f32[2]{0} negate(f32[2]{0} %Arg_0.1)
}
"""
        program = parse_hlo_module(text).lower()
        assert program.name == "main.3"
        assert program.nodes[0].op_type == "negate"
        assert program.nodes[0].inputs[0].name == "Arg_0.1"

    def test_entry_with_signature(self):
        text = """\
HloModule m, entry_computation_layout={(s32[])->s32[]}

ENTRY %main.4 (Arg_0.1: s32[]) -> s32[] {
  %Arg_0.1 = s32[] parameter(0)
  %constant.2 = s32[] constant(1)
  ROOT %add.3 = s32[] add(s32[] %Arg_0.1, s32[] %constant.2)
}
"""
        program = parse_hlo_module(text).lower()
        assert program.name == "main.4"
        assert program.input_arity == 1
        assert [n.op_type for n in program.nodes] == ["constant", "add"]

    def test_compare_direction(self):
        text = """\
HloModule m

ENTRY main {
  a = f32[3] parameter(0)
  b = f32[3] parameter(1)
  ROOT lt = pred[3] compare(a, b), direction=LT
}
"""
        node = parse_hlo_module(text).lower().nodes[0]
        assert node.attrs == {"direction": "LT"}
        assert node.outputs[0].dtype == "bool"

    def test_parameters_ordered_by_number(self):
        text = """\
HloModule m

ENTRY main {
  second = s32[] parameter(1)
  first = f32[] parameter(0)
  ROOT c = f32[] convert(second)
}
"""
        program = parse_hlo_module(text).lower()
        assert [p.name for p in program.parameters] == ["first", "second"]

    def test_last_instruction_is_root_by_default(self):
        text = "HloModule m\nENTRY main {\n  x = f32[] parameter(0)\n  y = f32[] abs(x)\n}\n"
        assert parse_hlo_module(text).lower().outputs[0].name == "y"


class TestParseErrors:
    def test_missing_header(self):
        with pytest.raises(ProgramParseError, match="HloModule"):
            parse_hlo_module("ENTRY main {\n}\n")

    def test_parse_error_is_invalid_argument(self):
        with pytest.raises(InvalidArgumentError):
            parse_hlo_module("")

    def test_undefined_operand_reports_line(self):
        text = "HloModule m\nENTRY main {\n  ROOT y = f32[] abs(x)\n}\n"
        with pytest.raises(ProgramParseError, match="line 3: use of undefined value 'x'"):
            parse_hlo_module(text)

    def test_unsupported_opcode(self):
        text = "HloModule m\nENTRY main {\n  x = f32[4] parameter(0)\n  ROOT y = f32[4] cosine(x)\n}\n"
        with pytest.raises(ProgramParseError, match="unsupported opcode 'cosine'"):
            parse_hlo_module(text)

    def test_non_entry_computation(self):
        text = "HloModule m\nhelper {\n}\nENTRY main {\n}\n"
        with pytest.raises(ProgramParseError, match="only the ENTRY computation"):
            parse_hlo_module(text)

    def test_gap_in_parameter_numbers(self):
        text = "HloModule m\nENTRY main {\n  x = f32[] parameter(1)\n  ROOT y = f32[] abs(x)\n}\n"
        with pytest.raises(ProgramParseError, match="contiguous"):
            parse_hlo_module(text)

    def test_unterminated_entry(self):
        with pytest.raises(ProgramParseError, match="unterminated"):
            parse_hlo_module("HloModule m\nENTRY main {\n  ROOT c = s32[] constant(2)\n")

    def test_literal_shape_mismatch(self):
        text = "HloModule m\nENTRY main {\n  ROOT c = s32[2] constant({1, 2, 3})\n}\n"
        with pytest.raises(ProgramParseError, match="does not match declared shape"):
            parse_hlo_module(text)

    def test_integer_literal_out_of_range(self):
        text = "HloModule m\nENTRY main {\n  ROOT c = s32[] constant(3000000000)\n}\n"
        with pytest.raises(ProgramParseError, match="line 3: .*out of range for int32"):
            parse_hlo_module(text)
