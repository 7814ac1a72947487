"""Element types shared by the front ends, code generation and the runtime."""

from __future__ import annotations

import ml_dtypes
import numpy as np

# Canonical dtype name -> numpy dtype. bfloat16 comes from ml_dtypes since
# numpy has no native bf16.
DTYPE_MAP: dict[str, np.dtype] = {
    "bool": np.dtype(np.bool_),
    "int8": np.dtype(np.int8),
    "int16": np.dtype(np.int16),
    "int32": np.dtype(np.int32),
    "int64": np.dtype(np.int64),
    "uint8": np.dtype(np.uint8),
    "uint16": np.dtype(np.uint16),
    "uint32": np.dtype(np.uint32),
    "uint64": np.dtype(np.uint64),
    "float16": np.dtype(np.float16),
    "bfloat16": np.dtype(ml_dtypes.bfloat16),
    "float32": np.dtype(np.float32),
    "float64": np.dtype(np.float64),
}

# Graph-IR element type names (s32[], f32[2,3], pred[])
HLO_ELEMENT_TYPES = {
    "pred": "bool",
    "s8": "int8",
    "s16": "int16",
    "s32": "int32",
    "s64": "int64",
    "u8": "uint8",
    "u16": "uint16",
    "u32": "uint32",
    "u64": "uint64",
    "f16": "float16",
    "bf16": "bfloat16",
    "f32": "float32",
    "f64": "float64",
}

# Structured-IR element type names (tensor<i32>, tensor<2x3xf32>)
MLIR_ELEMENT_TYPES = {
    "i1": "bool",
    "i8": "int8",
    "i16": "int16",
    "i32": "int32",
    "i64": "int64",
    "ui8": "uint8",
    "ui16": "uint16",
    "ui32": "uint32",
    "ui64": "uint64",
    "f16": "float16",
    "bf16": "bfloat16",
    "f32": "float32",
    "f64": "float64",
}


def to_numpy_dtype(name: str) -> np.dtype:
    try:
        return DTYPE_MAP[name]
    except KeyError:
        raise ValueError(f"Unknown dtype '{name}'. Supported: {sorted(DTYPE_MAP)}") from None


def from_numpy_dtype(dtype: np.dtype) -> str:
    """Reverse lookup: numpy dtype -> canonical name."""
    dtype = np.dtype(dtype)
    for name, candidate in DTYPE_MAP.items():
        if candidate == dtype:
            return name
    raise ValueError(f"Unsupported numpy dtype {dtype}")


def elem_size(name: str) -> int:
    return to_numpy_dtype(name).itemsize


def is_floating(name: str) -> bool:
    return name in ("float16", "bfloat16", "float32", "float64")
