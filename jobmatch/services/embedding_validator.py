"""Shape and numeric checks for embedding vectors."""

from __future__ import annotations

import math
from collections.abc import Sequence
from numbers import Real

import numpy as np

from jobmatch.config import EMBEDDING_DIMENSIONS
from jobmatch.errors import InvalidEmbedding


def validate(vector, dimensions: int = EMBEDDING_DIMENSIONS) -> list[float]:
    """Return ``vector`` as a list of floats or raise InvalidEmbedding.

    Accepts any sequence or 1-d numpy array. Booleans and strings are not
    numbers here, even though Python would happily coerce them.
    """
    if isinstance(vector, np.ndarray):
        if vector.ndim != 1:
            raise InvalidEmbedding(f"expected a 1-d vector, got shape {vector.shape}")
        if not np.issubdtype(vector.dtype, np.number) or vector.dtype == np.bool_:
            raise InvalidEmbedding(f"non-numeric dtype {vector.dtype}")
        values = vector.astype(float).tolist()
    elif isinstance(vector, Sequence) and not isinstance(vector, (str, bytes)):
        values = list(vector)
    else:
        raise InvalidEmbedding(f"expected a sequence of floats, got {type(vector).__name__}")

    if len(values) != dimensions:
        raise InvalidEmbedding(f"expected {dimensions} dimensions, got {len(values)}")

    out: list[float] = []
    for i, v in enumerate(values):
        if isinstance(v, bool) or not isinstance(v, Real):
            raise InvalidEmbedding(f"element {i} is not a number: {v!r}")
        f = float(v)
        if not math.isfinite(f):
            raise InvalidEmbedding(f"element {i} is not finite: {f}")
        out.append(f)
    return out


def is_valid(vector, dimensions: int = EMBEDDING_DIMENSIONS) -> bool:
    try:
        validate(vector, dimensions)
    except InvalidEmbedding:
        return False
    return True
