"""numpy kernel implementations, keyed by the kernel names codegen emits.

Every kernel has the signature `kernel(inputs, params) -> np.ndarray` where
`params` always carries `out_shape` and `out_dtype`. Half-precision inputs
are computed in float32 and rounded back on output.
"""

from __future__ import annotations

from typing import Callable

import numpy as np

from gpu_compiler.codegen import kernel_name_for
from gpu_compiler.dtypes import to_numpy_dtype

KernelFn = Callable[[list[np.ndarray], dict], np.ndarray]

KERNELS: dict[str, KernelFn] = {}

_HALF_TYPES = (np.dtype(np.float16), to_numpy_dtype("bfloat16"))


def register_kernel(op_type: str):
    """Register the decorated function as the kernel for `op_type`."""
    def decorator(fn: KernelFn) -> KernelFn:
        KERNELS[kernel_name_for(op_type)] = fn
        return fn
    return decorator


def get_kernel(kernel_name: str) -> KernelFn | None:
    return KERNELS.get(kernel_name)


def _widen(x: np.ndarray) -> np.ndarray:
    return x.astype(np.float32) if x.dtype in _HALF_TYPES else x


def _finish(result, params: dict) -> np.ndarray:
    dtype = to_numpy_dtype(params["out_dtype"])
    return np.asarray(result).astype(dtype, copy=False).reshape(params["out_shape"])


def materialize_constant(value, shape, dtype: str) -> np.ndarray:
    """Turn a plan literal (nested lists / scalar) into a typed array."""
    return np.asarray(value, dtype=to_numpy_dtype(dtype)).reshape(tuple(shape))


# ---------------------------------------------------------------------------
# Elementwise
# ---------------------------------------------------------------------------

_BINARY_UFUNCS = {
    "add": np.add,
    "subtract": np.subtract,
    "multiply": np.multiply,
    "maximum": np.maximum,
    "minimum": np.minimum,
    "power": np.power,
}

_UNARY_UFUNCS = {
    "negate": np.negative,
    "abs": np.abs,
    "exponential": np.exp,
    "log": np.log,
    "sqrt": np.sqrt,
    "tanh": np.tanh,
}


def _make_binary(ufunc):
    def kernel(inputs, params):
        lhs, rhs = inputs
        return _finish(ufunc(_widen(lhs), _widen(rhs)), params)
    return kernel


def _make_unary(ufunc):
    def kernel(inputs, params):
        return _finish(ufunc(_widen(inputs[0])), params)
    return kernel


for _op, _ufunc in _BINARY_UFUNCS.items():
    register_kernel(_op)(_make_binary(_ufunc))
for _op, _ufunc in _UNARY_UFUNCS.items():
    register_kernel(_op)(_make_unary(_ufunc))


def _integer_divide(lhs: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    # Truncates toward zero; x / 0 yields -1 (all ones for unsigned types).
    zero = rhs == 0
    safe = np.where(zero, np.ones_like(rhs), rhs)
    quotient = np.floor_divide(lhs, safe)
    remainder = lhs - quotient * safe
    if np.issubdtype(lhs.dtype, np.signedinteger):
        quotient = quotient + ((remainder != 0) & ((lhs < 0) != (safe < 0)))
    quotient = np.asarray(quotient, dtype=lhs.dtype)
    quotient[zero] = np.array(-1).astype(lhs.dtype)
    return quotient


@register_kernel("divide")
def divide_kernel(inputs, params):
    lhs, rhs = inputs
    if np.issubdtype(lhs.dtype, np.integer):
        return _finish(_integer_divide(lhs, rhs), params)
    return _finish(np.divide(_widen(lhs), _widen(rhs)), params)


_COMPARATORS = {
    "EQ": np.equal,
    "NE": np.not_equal,
    "LT": np.less,
    "LE": np.less_equal,
    "GT": np.greater,
    "GE": np.greater_equal,
}


@register_kernel("compare")
def compare_kernel(inputs, params):
    lhs, rhs = inputs
    return _finish(_COMPARATORS[params["direction"]](_widen(lhs), _widen(rhs)), params)


@register_kernel("select")
def select_kernel(inputs, params):
    pred, on_true, on_false = inputs
    return _finish(np.where(pred, on_true, on_false), params)


# ---------------------------------------------------------------------------
# Data movement
# ---------------------------------------------------------------------------

@register_kernel("convert")
def convert_kernel(inputs, params):
    return _finish(inputs[0], params)


@register_kernel("reshape")
def reshape_kernel(inputs, params):
    return _finish(inputs[0], params)


@register_kernel("transpose")
def transpose_kernel(inputs, params):
    return _finish(np.transpose(inputs[0], params["permutation"]), params)


# ---------------------------------------------------------------------------
# Linear algebra
# ---------------------------------------------------------------------------

@register_kernel("dot")
def dot_kernel(inputs, params):
    lhs, rhs = inputs
    accumulate = params.get("accumulate_dtype")
    if accumulate is not None:
        lhs, rhs = lhs.astype(accumulate), rhs.astype(accumulate)
    else:
        lhs, rhs = _widen(lhs), _widen(rhs)
    return _finish(np.dot(lhs, rhs), params)
