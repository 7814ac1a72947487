"""Tests for the structured-dialect (mhlo / stablehlo) front end."""

import pytest

from gpu_compiler.errors import ProgramParseError
from gpu_compiler.mlir_text import parse_mlir_module
from tests.conftest import ADD_MLIR, CONSTANT_MLIR, MATMUL_MLIR


def _module(*body, signature="func.func @main(%arg0: tensor<4xf32>) -> tensor<4xf32> {"):
    return "module {\n  " + signature + "\n" + "\n".join("    " + s for s in body) + "\n  }\n}\n"


class TestParseMlirModule:
    def test_constant_module(self):
        module = parse_mlir_module(CONSTANT_MLIR)
        assert module.entry_name == "main"
        program = module.lower()
        assert program.input_arity == 0
        assert program.nodes[0].op_type == "constant"
        assert program.nodes[0].attrs["value"] == 2
        assert program.outputs[0].dtype == "int32"

    def test_signature_arguments(self):
        program = parse_mlir_module(ADD_MLIR).lower()
        assert [p.name for p in program.parameters] == ["arg0", "arg1"]
        assert all(p.shape == (2, 3) for p in program.parameters)

    def test_generic_form_and_multiple_results(self):
        program = parse_mlir_module(MATMUL_MLIR).lower()
        assert [n.op_type for n in program.nodes] == ["constant", "maximum", "dot", "transpose"]
        assert program.nodes[3].attrs == {"permutation": [1, 0]}
        assert program.output_arity == 2

    def test_stablehlo_dialect(self):
        text = _module(
            "%0 = stablehlo.negate %arg0 : tensor<4xf32>",
            "return %0 : tensor<4xf32>",
        )
        assert parse_mlir_module(text).lower().nodes[0].op_type == "negate"

    def test_pretty_compare(self):
        text = _module(
            "%0 = mhlo.compare GT, %arg0, %arg0, FLOAT : (tensor<4xf32>, tensor<4xf32>) -> tensor<4xi1>",
            "return %0 : tensor<4xi1>",
            signature="func.func @main(%arg0: tensor<4xf32>) -> tensor<4xi1> {",
        )
        node = parse_mlir_module(text).lower().nodes[0]
        assert node.attrs == {"direction": "GT"}
        assert len(node.inputs) == 2
        assert node.outputs[0].dtype == "bool"

    def test_generic_compare(self):
        text = _module(
            '%0 = "mhlo.compare"(%arg0, %arg0) {comparison_direction = #mhlo<comparison_direction EQ>} '
            ": (tensor<4xf32>, tensor<4xf32>) -> tensor<4xi1>",
            "return %0 : tensor<4xi1>",
        )
        assert parse_mlir_module(text).lower().nodes[0].attrs == {"direction": "EQ"}

    def test_pretty_transpose_dims(self):
        text = _module(
            "%0 = mhlo.transpose %arg0, dims = [1, 0] : (tensor<2x3xf32>) -> tensor<3x2xf32>",
            "return %0 : tensor<3x2xf32>",
            signature="func.func @main(%arg0: tensor<2x3xf32>) -> tensor<3x2xf32> {",
        )
        node = parse_mlir_module(text).lower().nodes[0]
        assert node.attrs == {"permutation": [1, 0]}
        assert node.outputs[0].shape == (3, 2)

    def test_argument_attributes_ignored(self):
        text = _module(
            "return %arg0 : tensor<4xf32>",
            signature="func.func public @main(%arg0: tensor<4xf32> {mhlo.sharding = \"{replicated}\"}) "
                      "-> tensor<4xf32> {",
        )
        program = parse_mlir_module(text).lower()
        assert program.parameters[0].shape == (4,)
        assert program.outputs[0].name == "arg0"

    def test_other_entry(self):
        text = CONSTANT_MLIR.replace("@main", "@compute")
        assert parse_mlir_module(text, entry="compute").lower().name == "compute"


class TestParseErrors:
    def test_missing_entry(self):
        with pytest.raises(ProgramParseError, match="no func.func @main"):
            parse_mlir_module("module {\n}\n")

    def test_dynamic_dimension(self):
        text = _module(
            "return %arg0 : tensor<?xf32>",
            signature="func.func @main(%arg0: tensor<?xf32>) -> tensor<?xf32> {",
        )
        with pytest.raises(ProgramParseError, match="dynamic shape"):
            parse_mlir_module(text)

    def test_unsupported_dialect(self):
        text = _module("%0 = arith.addf %arg0, %arg0 : tensor<4xf32>", "return %0 : tensor<4xf32>")
        with pytest.raises(ProgramParseError, match="unsupported dialect 'arith'"):
            parse_mlir_module(text)

    def test_missing_return(self):
        text = _module("%0 = mhlo.abs %arg0 : tensor<4xf32>")
        with pytest.raises(ProgramParseError, match="has no return"):
            parse_mlir_module(text)

    def test_statement_after_return(self):
        text = _module("return %arg0 : tensor<4xf32>", "%0 = mhlo.abs %arg0 : tensor<4xf32>")
        with pytest.raises(ProgramParseError, match="statement after return"):
            parse_mlir_module(text)

    def test_undefined_value(self):
        text = _module("%0 = mhlo.abs %missing : tensor<4xf32>", "return %0 : tensor<4xf32>")
        with pytest.raises(ProgramParseError, match="line 3: use of undefined value '%missing'"):
            parse_mlir_module(text)

    def test_unsigned_literal_out_of_range(self):
        text = _module(
            "%0 = mhlo.constant dense<-1> : tensor<ui32>",
            "return %0 : tensor<ui32>",
            signature="func.func @main() -> tensor<ui32> {",
        )
        with pytest.raises(ProgramParseError, match="out of range for uint32"):
            parse_mlir_module(text)
