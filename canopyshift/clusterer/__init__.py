# Copyright (c) 2025 massivedatascience
# Licensed under the Apache License, Version 2.0

"""
Canopy Mean-Shift Clustering
============================

This package clusters point sets with a canopy-approximated mean-shift
algorithm run as a sequence of Spark passes.

Classes:
    MeanShiftCanopy: Estimator fitting canopies on a DataFrame
    MeanShiftCanopyModel: Fitted model assigning points to canopies
    MeanShiftCanopySummary: Training summary
    MeanShiftCanopyDriver: RDD-level driver running the passes
    DriverConfig: Validated driver configuration

Example:
    >>> from canopyshift.clusterer import MeanShiftCanopy
    >>> from pyspark.ml.linalg import Vectors
    >>>
    >>> data = spark.createDataFrame([
    ...     (Vectors.dense([0.0, 0.0]),),
    ...     (Vectors.dense([1.0, 1.0]),),
    ...     (Vectors.dense([9.0, 8.0]),),
    ...     (Vectors.dense([8.0, 9.0]),)
    ... ], ["features"])
    >>>
    >>> model = MeanShiftCanopy(t1=3.0, t2=1.5, maxIter=10).fit(data)
    >>> model.transform(data).show()
"""

from .canopy import Canopy, Contribution
from .codec import PreferenceRecord, VectorRecord, decode, encode
from .distance import DistanceMeasure, EuclideanDistance, get_distance_measure
from .driver import DriverConfig, DriverState, MeanShiftCanopyDriver, MeanShiftResult, key_points
from .errors import (
    DistanceMeasureFault,
    InvalidConfiguration,
    MalformedRecord,
    MeanShiftError,
    PassFailure,
    SnapshotFailure,
)
from .meanshift import MeanShiftCanopy, MeanShiftCanopyModel, MeanShiftCanopySummary
from .vectors import MutableSparseVector

__all__ = [
    "MeanShiftCanopy",
    "MeanShiftCanopyModel",
    "MeanShiftCanopySummary",
    "MeanShiftCanopyDriver",
    "MeanShiftResult",
    "DriverConfig",
    "DriverState",
    "key_points",
    "Canopy",
    "Contribution",
    "MutableSparseVector",
    "VectorRecord",
    "PreferenceRecord",
    "encode",
    "decode",
    "DistanceMeasure",
    "EuclideanDistance",
    "get_distance_measure",
    "MeanShiftError",
    "MalformedRecord",
    "InvalidConfiguration",
    "PassFailure",
    "DistanceMeasureFault",
    "SnapshotFailure",
]
