# Copyright (c) 2025 massivedatascience
# Licensed under the Apache License, Version 2.0

"""
Distance measures over sparse vectors.

Measures are plain objects with a ``distance(a, b)`` method. The built-in
ones are selected by name through the ``distanceMeasure`` param:
"euclidean", "squaredEuclidean", "manhattan", "chebyshev", "cosine".
"""

import math
from typing import Dict, Union

from .errors import DistanceMeasureFault, InvalidConfiguration
from .vectors import MutableSparseVector


class DistanceMeasure(object):
    """
    Base class for distance measures.

    Implementations must return a non-negative float and should be
    symmetric. The triangle inequality is not required, but canopy geometry
    is only sensible for measures that satisfy it.
    """

    name = None

    def distance(self, a: MutableSparseVector, b: MutableSparseVector) -> float:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


def _differences(a: MutableSparseVector, b: MutableSparseVector):
    for index, value in a.items():
        yield value - b[index]
    for index, value in b.items():
        if index not in a:
            yield value


class EuclideanDistance(DistanceMeasure):
    name = "euclidean"

    def distance(self, a, b):
        return math.sqrt(sum(d * d for d in _differences(a, b)))


class SquaredEuclideanDistance(DistanceMeasure):
    name = "squaredEuclidean"

    def distance(self, a, b):
        return sum(d * d for d in _differences(a, b))


class ManhattanDistance(DistanceMeasure):
    name = "manhattan"

    def distance(self, a, b):
        return sum(abs(d) for d in _differences(a, b))


class ChebyshevDistance(DistanceMeasure):
    name = "chebyshev"

    def distance(self, a, b):
        return max((abs(d) for d in _differences(a, b)), default=0.0)


class CosineDistance(DistanceMeasure):
    """1 - cosine similarity. Zero vectors are at distance 1 from everything
    except another zero vector."""

    name = "cosine"

    def distance(self, a, b):
        dot = sum(value * b[index] for index, value in a.items())
        norm_a = math.sqrt(sum(v * v for _, v in a.items()))
        norm_b = math.sqrt(sum(v * v for _, v in b.items()))
        if norm_a == 0.0 or norm_b == 0.0:
            return 0.0 if norm_a == norm_b else 1.0
        # Rounding can push the ratio slightly past 1.
        return max(0.0, 1.0 - dot / (norm_a * norm_b))


DISTANCE_MEASURES: Dict[str, type] = {
    cls.name: cls
    for cls in (
        EuclideanDistance,
        SquaredEuclideanDistance,
        ManhattanDistance,
        ChebyshevDistance,
        CosineDistance,
    )
}


def get_distance_measure(measure: Union[str, DistanceMeasure, None] = None):
    """
    Resolve a measure name or instance.

    ``None`` selects Euclidean distance. Any object with a callable
    ``distance`` attribute is accepted as-is.
    """
    if measure is None:
        return EuclideanDistance()
    if isinstance(measure, str):
        try:
            return DISTANCE_MEASURES[measure]()
        except KeyError:
            raise InvalidConfiguration(
                f"Unknown distance measure '{measure}'. "
                f"Options: {', '.join(sorted(DISTANCE_MEASURES))}"
            ) from None
    if callable(getattr(measure, "distance", None)):
        return measure
    raise InvalidConfiguration(f"Not a distance measure: {measure!r}")


def checked_distance(measure, a: MutableSparseVector, b: MutableSparseVector) -> float:
    """Call ``measure.distance`` and reject failures and invalid results."""
    try:
        value = float(measure.distance(a, b))
    except Exception as e:
        raise DistanceMeasureFault(f"{measure!r} failed: {e}") from e
    if math.isnan(value) or value < 0.0:
        raise DistanceMeasureFault(f"{measure!r} returned invalid distance {value}")
    return value
