"""Tests for the Program representation, syntax dispatch and topology descriptors."""

import json
import os
import tempfile

import numpy as np
import pytest

from gpu_compiler.errors import ProgramParseError
from gpu_compiler.hlo_text import XlaComputation
from gpu_compiler.mlir_text import MlirModule
from gpu_compiler.program import (
    Lowerable,
    TensorSpec,
    detect_syntax,
    load_program,
    load_program_from_dict,
    normalize_literal,
    parse_program,
    program_to_dict,
)
from gpu_compiler.topology import (
    GPU_PLATFORM_ID,
    GPU_PLATFORM_NAME,
    TopologyDescription,
    is_same_topology,
    platform_id,
)
from tests.conftest import ADD_HLO, ADD_MLIR, CONSTANT_HLO, CONSTANT_MLIR, make_topology


class TestTensorSpec:
    def test_size(self):
        spec = TensorSpec("x", [2, 3], "float16")
        assert spec.shape == (2, 3)
        assert spec.num_elements == 6
        assert spec.size_bytes == 12

    def test_scalar(self):
        assert TensorSpec("s", (), "int32").size_bytes == 4


class TestNormalizeLiteral:
    def test_splat(self):
        assert normalize_literal(1, (2, 2), "int32") == [[1, 1], [1, 1]]

    def test_half_precision_as_float(self):
        value = normalize_literal([0.5, 1.5], (2,), "bfloat16")
        assert value == [0.5, 1.5]
        assert all(isinstance(v, float) for v in value)

    def test_bool(self):
        assert normalize_literal([True, False], (2,), "bool") == [True, False]

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            normalize_literal([1, 2, 3], (2,), "int32")


class TestProgramDict:
    def test_dict_roundtrip(self):
        program = parse_program(ADD_HLO).lower()
        again = load_program_from_dict(json.loads(json.dumps(program_to_dict(program))))
        assert again == program

    def test_fingerprint_ignores_names(self):
        program = parse_program(ADD_HLO).lower()
        d = program_to_dict(program)
        d["name"] = "renamed"
        for p in d["parameters"]:
            p["name"] = p["name"] + "_x"
        for n in d["nodes"]:
            for i in n["inputs"]:
                i["name"] = i["name"] + "_x"
        assert load_program_from_dict(d).fingerprint() == program.fingerprint()

    def test_fingerprint_sees_constants(self):
        a = parse_program(CONSTANT_HLO).lower()
        b = parse_program(CONSTANT_HLO.replace("constant(2)", "constant(3)")).lower()
        assert a.fingerprint() != b.fingerprint()


class TestSyntaxDispatch:
    def test_detect(self):
        assert detect_syntax(CONSTANT_HLO) == "hlo"
        assert detect_syntax(CONSTANT_MLIR) == "mlir"
        assert detect_syntax("// leading comment\n" + CONSTANT_MLIR) == "mlir"

    def test_unknown_syntax(self):
        with pytest.raises(ProgramParseError, match="Unrecognized program syntax"):
            detect_syntax("def main(): pass")

    def test_parse_program_types(self):
        assert isinstance(parse_program(ADD_HLO), XlaComputation)
        assert isinstance(parse_program(ADD_MLIR), MlirModule)
        assert isinstance(parse_program(ADD_MLIR), Lowerable)

    def test_load_program_files(self):
        with tempfile.TemporaryDirectory() as tmp:
            hlo_path = os.path.join(tmp, "add.hlo")
            json_path = os.path.join(tmp, "add.json")
            with open(hlo_path, "w") as f:
                f.write(ADD_HLO)
            program = load_program(hlo_path).lower()
            with open(json_path, "w") as f:
                json.dump(program_to_dict(program), f)
            assert load_program(json_path).lower() == program


class TestTopology:
    def test_platform_id_is_stable(self):
        assert platform_id(GPU_PLATFORM_NAME) == GPU_PLATFORM_ID
        assert platform_id("rocm") != GPU_PLATFORM_ID
        assert 0 <= GPU_PLATFORM_ID < 2 ** 64

    def test_equality_is_ordered(self):
        assert make_topology((0, 1)) == make_topology([0, 1])
        assert make_topology((0, 1)) != make_topology((1, 0))

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ValueError, match="Duplicate"):
            make_topology((0, 0))

    def test_dict_roundtrip(self):
        topology = make_topology((2, 3), device_name="Sim")
        assert TopologyDescription.from_dict(topology.to_dict()) == topology
        assert topology.device_count == 2

    def test_is_same_topology(self):
        assert is_same_topology(make_topology(), make_topology())
        assert not is_same_topology(make_topology(), None)

    def test_numpy_ids_coerced(self):
        topology = make_topology(np.arange(2))
        assert topology.device_ids == (0, 1)
        assert all(type(d) is int for d in topology.device_ids)
