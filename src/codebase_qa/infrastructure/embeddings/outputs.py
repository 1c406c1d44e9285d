"""Normalization of the shapes an embedding model may hand back.

Every variant is reduced to a flat float32 vector by its own normalizer; the
dimension check happens once, afterwards, in the embedder.
"""

import array
from collections.abc import Callable
from enum import Enum
from numbers import Real
from typing import Any

import numpy as np
from numpy.typing import NDArray

from codebase_qa.core.errors import EmbeddingError


class OutputKind(str, Enum):
    TENSOR = "tensor"
    ARRAY = "array"
    NESTED = "nested"
    FLAT = "flat"


def _single_row(values: NDArray[Any]) -> NDArray[np.float32]:
    if values.ndim == 2 and values.shape[0] == 1:
        values = values[0]
    if values.ndim != 1:
        raise EmbeddingError(f"Invalid embedding: expected one vector, got shape {values.shape}")
    return np.ascontiguousarray(values, dtype=np.float32)


def _from_tensor(output: Any) -> NDArray[np.float32]:
    return _single_row(np.asarray(output.detach().cpu().numpy()))


def _from_array(output: Any) -> NDArray[np.float32]:
    return _single_row(np.asarray(output))


def _from_nested(output: Any) -> NDArray[np.float32]:
    return _single_row(np.asarray(output[0], dtype=np.float32))


def _from_flat(output: Any) -> NDArray[np.float32]:
    return np.asarray(output, dtype=np.float32)


_NORMALIZERS: dict[OutputKind, Callable[[Any], NDArray[np.float32]]] = {
    OutputKind.TENSOR: _from_tensor,
    OutputKind.ARRAY: _from_array,
    OutputKind.NESTED: _from_nested,
    OutputKind.FLAT: _from_flat,
}


def classify_output(output: Any) -> OutputKind:
    """Tags a raw model output with its representational variant."""
    if hasattr(output, "detach") and hasattr(output, "cpu"):
        return OutputKind.TENSOR
    if isinstance(output, np.ndarray):
        if not np.issubdtype(output.dtype, np.number):
            raise EmbeddingError(f"Invalid embedding: non-numeric dtype {output.dtype}")
        return OutputKind.ARRAY
    if isinstance(output, array.array) and output.typecode in "fd":
        return OutputKind.ARRAY
    if isinstance(output, (list, tuple)) and output:
        first = output[0]
        if isinstance(first, (list, tuple, np.ndarray)):
            return OutputKind.NESTED
        if all(isinstance(v, Real) and not isinstance(v, bool) for v in output):
            return OutputKind.FLAT
    raise EmbeddingError(f"Invalid embedding: unexpected output format {type(output).__name__}")


def to_vector(output: Any) -> NDArray[np.float32]:
    kind = classify_output(output)
    try:
        return _NORMALIZERS[kind](output)
    except EmbeddingError:
        raise
    except (TypeError, ValueError) as e:
        raise EmbeddingError(f"Invalid embedding: malformed {kind.value} output ({e})") from e
