# Copyright (c) 2025 massivedatascience
# Licensed under the Apache License, Version 2.0

"""
Random-access sparse vector used for points and centroids.
"""

from typing import Dict, Iterable, Iterator, Optional, Tuple
import numpy as np

from pyspark.ml.linalg import DenseVector, SparseVector, Vector

MAX_INDEX = 2 ** 31 - 1


class MutableSparseVector(object):
    """
    Sparse vector backed by a dict of index -> value.

    Absent indices are zero. Entries keep their insertion order, which is the
    order the wire codec writes them in. The vector is mutable so that
    centroids can be accumulated in place.

    Examples
    --------
    >>> v = MutableSparseVector({0: 1.0, 3: 2.5})
    >>> v[3]
    2.5
    >>> v[1]
    0.0
    """

    __slots__ = ("_values",)

    def __init__(self, values: Optional[Dict[int, float]] = None):
        self._values = {}
        if values:
            for index, value in values.items():
                self[index] = value

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[int, float]]) -> "MutableSparseVector":
        vector = cls()
        for index, value in pairs:
            vector[index] = value
        return vector

    @classmethod
    def from_dense(cls, values: Iterable[float]) -> "MutableSparseVector":
        """Build a vector from dense values, skipping zeros."""
        return cls.from_pairs((i, float(v)) for i, v in enumerate(values) if v != 0.0)

    @classmethod
    def from_ml_vector(cls, vector: Vector) -> "MutableSparseVector":
        """Convert a ``pyspark.ml.linalg`` vector."""
        if isinstance(vector, SparseVector):
            return cls.from_pairs(
                (int(i), float(v)) for i, v in zip(vector.indices, vector.values) if v != 0.0
            )
        if isinstance(vector, DenseVector):
            return cls.from_dense(vector.toArray())
        raise TypeError(f"Unsupported vector type: {type(vector).__name__}")

    def __getitem__(self, index: int) -> float:
        return self._values.get(index, 0.0)

    def __setitem__(self, index: int, value: float):
        if not 0 <= index <= MAX_INDEX:
            raise ValueError(f"Index out of range: {index}")
        self._values[int(index)] = float(value)

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[int]:
        return iter(self._values)

    def __contains__(self, index) -> bool:
        return index in self._values

    def items(self):
        return self._values.items()

    def indices(self):
        return self._values.keys()

    def nonzero(self) -> Dict[int, float]:
        return {i: v for i, v in self._values.items() if v != 0.0}

    def copy(self) -> "MutableSparseVector":
        vector = MutableSparseVector()
        vector._values = dict(self._values)
        return vector

    def add_scaled(self, other: "MutableSparseVector", scale: float = 1.0) -> "MutableSparseVector":
        """Add ``scale * other`` in place and return self."""
        for index, value in other.items():
            self._values[index] = self._values.get(index, 0.0) + scale * value
        return self

    def scaled(self, factor: float) -> "MutableSparseVector":
        vector = MutableSparseVector()
        vector._values = {i: v * factor for i, v in self._values.items()}
        return vector

    def size(self) -> int:
        """Smallest dense size that holds every entry."""
        return max(self._values) + 1 if self._values else 0

    def to_array(self, size: Optional[int] = None) -> np.ndarray:
        array = np.zeros(self.size() if size is None else size)
        for index, value in self._values.items():
            if index < len(array):
                array[index] = value
        return array

    def __eq__(self, other) -> bool:
        if not isinstance(other, MutableSparseVector):
            return NotImplemented
        return self.nonzero() == other.nonzero()

    def __ne__(self, other) -> bool:
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    __hash__ = None

    def __getstate__(self):
        return list(self._values.items())

    def __setstate__(self, state):
        self._values = dict(state)

    def __repr__(self) -> str:
        return f"MutableSparseVector({self._values!r})"


def as_sparse_vector(value) -> MutableSparseVector:
    """Coerce points given as ml vectors, dicts or sequences."""
    if isinstance(value, MutableSparseVector):
        return value
    if isinstance(value, Vector):
        return MutableSparseVector.from_ml_vector(value)
    if isinstance(value, dict):
        return MutableSparseVector(value)
    return MutableSparseVector.from_dense(value)
