"""Shared fixtures and program texts for compile / load / execute tests."""

import pytest

from gpu_compiler.topology import GPU_PLATFORM_ID, GPU_PLATFORM_NAME, TopologyDescription
from gpu_runtime.client import DEFAULT_DEVICE_NAME, get_gpu_client

CONSTANT_HLO = """\
HloModule constant_two

ENTRY main {
  ROOT c = s32[] constant(2)
}
"""

CONSTANT_MLIR = """\
module {
  func.func @main() -> tensor<i32> {
    %0 = mhlo.constant dense<2> : tensor<i32>
    return %0 : tensor<i32>
  }
}
"""

# ENTRY with a signature, and an indented module; neither ends in a newline.
COMPUTATION_HLO = """HloModule Computation

ENTRY Computation() -> s32[] {
  ROOT result = s32[] constant(2)
}"""

INDENTED_MLIR = """
  module {
    func.func @main() -> tensor<i32> {
      %0 = mhlo.constant dense<2> : tensor<i32>
      return %0 : tensor<i32>
    }
  }"""

ADD_HLO = """\
HloModule add_f32

ENTRY main {
  p0 = f32[2,3] parameter(0)
  p1 = f32[2,3] parameter(1)
  ROOT sum = f32[2,3] add(p0, p1)
}
"""

ADD_MLIR = """\
module {
  func.func @main(%arg0: tensor<2x3xf32>, %arg1: tensor<2x3xf32>) -> tensor<2x3xf32> {
    %0 = mhlo.add %arg0, %arg1 : tensor<2x3xf32>
    return %0 : tensor<2x3xf32>
  }
}
"""

# relu(x) @ w, then both the product and its transpose as outputs
MATMUL_HLO = """\
HloModule matmul_relu

ENTRY main {
  x = f32[2,3] parameter(0)
  w = f32[3,2] parameter(1)
  zero = f32[2,3] constant(0)
  relu = f32[2,3] maximum(x, zero)
  prod = f32[2,2] dot(relu, w), lhs_contracting_dims={1}, rhs_contracting_dims={0}
  prod_t = f32[2,2] transpose(prod), dimensions={1,0}
  ROOT out = (f32[2,2], f32[2,2]) tuple(prod, prod_t)
}
"""

MATMUL_MLIR = """\
module {
  func.func @main(%arg0: tensor<2x3xf32>, %arg1: tensor<3x2xf32>) -> (tensor<2x2xf32>, tensor<2x2xf32>) {
    %0 = mhlo.constant dense<0.0> : tensor<2x3xf32>
    %1 = mhlo.maximum %arg0, %0 : tensor<2x3xf32>
    %2 = "mhlo.dot"(%1, %arg1) : (tensor<2x3xf32>, tensor<3x2xf32>) -> tensor<2x2xf32>
    %3 = "mhlo.transpose"(%2) {permutation = dense<[1, 0]> : tensor<2xi64>} : (tensor<2x2xf32>) -> tensor<2x2xf32>
    return %2, %3 : tensor<2x2xf32>, tensor<2x2xf32>
  }
}
"""


def make_topology(device_ids=(0,), device_name=DEFAULT_DEVICE_NAME):
    return TopologyDescription(
        platform_id=GPU_PLATFORM_ID,
        platform_name=GPU_PLATFORM_NAME,
        device_name=device_name,
        device_ids=tuple(device_ids),
    )


@pytest.fixture
def client():
    """Single-device asynchronous client, closed after the test."""
    c = get_gpu_client(num_devices=1)
    yield c
    c.close()


@pytest.fixture
def multi_client():
    """Two-device client for replica tests."""
    c = get_gpu_client(num_devices=2)
    yield c
    c.close()


@pytest.fixture
def sync_client():
    """Client that runs replicas inline instead of on device streams."""
    c = get_gpu_client(asynchronous=False, num_devices=2)
    yield c
    c.close()


@pytest.fixture
def topology(client):
    return client.topology_description()
