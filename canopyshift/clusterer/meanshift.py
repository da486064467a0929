# Copyright (c) 2025 massivedatascience
# Licensed under the Apache License, Version 2.0

"""
Spark ML estimator for canopy mean-shift clustering.

This module wraps :class:`~canopyshift.clusterer.driver.MeanShiftCanopyDriver`
in the ``pyspark.ml`` Estimator/Model pattern so it can be fitted on a
DataFrame of feature vectors and used inside a Pipeline.
"""

import os
import time
from operator import itemgetter
from typing import Dict, List, Optional

import numpy as np

from pyspark import keyword_only
from pyspark.ml import Estimator, Model
from pyspark.ml.linalg import Vector
from pyspark.ml.param import Param, Params, TypeConverters
from pyspark.ml.param.shared import HasFeaturesCol, HasMaxIter, HasPredictionCol, HasTol
from pyspark.ml.util import (
    DefaultParamsReadable,
    DefaultParamsReader,
    DefaultParamsWritable,
    DefaultParamsWriter,
    MLReadable,
    MLReader,
    MLWritable,
    MLWriter,
)
from pyspark.sql import DataFrame
from pyspark.sql.functions import col, udf
from pyspark.sql.types import DoubleType, LongType, StructField, StructType

from .canopy import Canopy
from .canopy_pass import nearest_canopy
from .distance import get_distance_measure
from .driver import DriverConfig, MeanShiftCanopyDriver, MeanShiftResult, key_points
from .persistence import load_canopies, save_canopies
from .vectors import as_sparse_vector


class MeanShiftCanopyParams(HasFeaturesCol, HasPredictionCol, HasMaxIter, HasTol):
    """
    Params for MeanShiftCanopy and MeanShiftCanopyModel.

    Parameters
    ----------
    t1 : float, default=3.0
        Outer radius. Points (and, in later iterations, canopies) within t1
        of a canopy pull its centroid towards them. Must be > 0.

    t2 : float, default=1.5
        Inner radius, 0 <= t2 <= t1. A point within t2 of a canopy never
        seeds a new canopy, and canopies within t2 of each other merge.

    distanceMeasure : str, default="euclidean"
        Options: "euclidean", "squaredEuclidean", "manhattan", "chebyshev", "cosine"

    passRetries : int, default=1
        How many times a failed Spark pass is resubmitted.

    snapshotDir : str, optional
        Directory receiving the canopy set of every iteration
        (``clusters-<k>``) and the point assignments (``clusteredPoints``).

    overwriteSnapshots : bool, default=False
        Remove earlier outputs under snapshotDir before fitting.

    distanceCol : str, optional
        Column name for the distance to the assigned canopy.

    maxIter : int, default=10
        Maximum number of refinement iterations (>= 1).

    tol : float, default=0.5
        Convergence delta: largest centroid movement still treated as
        converged.
    """

    t1 = Param(
        Params._dummy(),
        "t1",
        "Outer canopy radius (must be > 0).",
        typeConverter=TypeConverters.toFloat,
    )

    t2 = Param(
        Params._dummy(),
        "t2",
        "Inner canopy radius (0 <= t2 <= t1).",
        typeConverter=TypeConverters.toFloat,
    )

    distanceMeasure = Param(
        Params._dummy(),
        "distanceMeasure",
        "Distance measure: euclidean, squaredEuclidean, manhattan, chebyshev, cosine",
        typeConverter=TypeConverters.toString,
    )

    passRetries = Param(
        Params._dummy(),
        "passRetries",
        "Number of resubmissions of a failed pass",
        typeConverter=TypeConverters.toInt,
    )

    snapshotDir = Param(
        Params._dummy(),
        "snapshotDir",
        "Directory for per-iteration canopy snapshots",
        typeConverter=TypeConverters.toString,
    )

    overwriteSnapshots = Param(
        Params._dummy(),
        "overwriteSnapshots",
        "Remove earlier outputs under snapshotDir before fitting",
        typeConverter=TypeConverters.toBoolean,
    )

    distanceCol = Param(
        Params._dummy(),
        "distanceCol",
        "Column name for distance to the assigned canopy",
        typeConverter=TypeConverters.toString,
    )

    def __init__(self, *args):
        super(MeanShiftCanopyParams, self).__init__(*args)
        self._setDefault(
            t1=3.0,
            t2=1.5,
            distanceMeasure="euclidean",
            passRetries=1,
            overwriteSnapshots=False,
            featuresCol="features",
            predictionCol="prediction",
            maxIter=10,
            tol=0.5,
        )

    def getT1(self) -> float:
        """Gets the value of t1 or its default value."""
        return self.getOrDefault(self.t1)

    def getT2(self) -> float:
        """Gets the value of t2 or its default value."""
        return self.getOrDefault(self.t2)

    def getDistanceMeasure(self) -> str:
        """Gets the value of distanceMeasure or its default value."""
        return self.getOrDefault(self.distanceMeasure)

    def getPassRetries(self) -> int:
        """Gets the value of passRetries or its default value."""
        return self.getOrDefault(self.passRetries)

    def getSnapshotDir(self) -> Optional[str]:
        """Gets the value of snapshotDir, or None."""
        return self.getOrDefault(self.snapshotDir) if self.isDefined(self.snapshotDir) else None

    def getOverwriteSnapshots(self) -> bool:
        """Gets the value of overwriteSnapshots or its default value."""
        return self.getOrDefault(self.overwriteSnapshots)

    def getDistanceCol(self) -> Optional[str]:
        """Gets the value of distanceCol, or None."""
        return self.getOrDefault(self.distanceCol) if self.isDefined(self.distanceCol) else None


class MeanShiftCanopy(Estimator, MeanShiftCanopyParams, DefaultParamsReadable, DefaultParamsWritable):
    """
    Canopy mean-shift clustering.

    Points are first grouped into canopies: a point spawns a canopy unless it
    lies within t2 of an existing one, and every point within t1 of a canopy
    contributes to its centroid. The canopies are then repeatedly shifted to
    the mean of the canopies within t1 of them and merged when they come
    within t2 of each other, until no centroid moves more than ``tol`` or
    ``maxIter`` iterations have run. The number of clusters is not fixed up
    front; it follows from t1 and t2.

    Examples
    --------
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
    >>> meanshift = MeanShiftCanopy(t1=3.0, t2=1.5, maxIter=10)
    >>> model = meanshift.fit(data)
    >>> model.transform(data).select("features", "prediction").show()

    Notes
    -----
    - Predictions are canopy ids, which are not necessarily contiguous.
      ``clusterCenters()`` is ordered like ``canopyIds()``.
    - t2 > t1 and non-positive t1 are rejected when ``fit`` is called.
    """

    @keyword_only
    def __init__(
        self,
        *,
        t1: float = 3.0,
        t2: float = 1.5,
        distanceMeasure: str = "euclidean",
        passRetries: int = 1,
        snapshotDir: Optional[str] = None,
        overwriteSnapshots: bool = False,
        distanceCol: Optional[str] = None,
        featuresCol: str = "features",
        predictionCol: str = "prediction",
        maxIter: int = 10,
        tol: float = 0.5,
    ):
        super(MeanShiftCanopy, self).__init__()
        kwargs = self._input_kwargs
        self.setParams(**kwargs)

    @keyword_only
    def setParams(
        self,
        *,
        t1: float = 3.0,
        t2: float = 1.5,
        distanceMeasure: str = "euclidean",
        passRetries: int = 1,
        snapshotDir: Optional[str] = None,
        overwriteSnapshots: bool = False,
        distanceCol: Optional[str] = None,
        featuresCol: str = "features",
        predictionCol: str = "prediction",
        maxIter: int = 10,
        tol: float = 0.5,
    ):
        """
        Set parameters for MeanShiftCanopy.
        """
        kwargs = self._input_kwargs
        return self._set(**kwargs)

    def setT1(self, value: float):
        """Sets the value of t1."""
        return self._set(t1=value)

    def setT2(self, value: float):
        """Sets the value of t2."""
        return self._set(t2=value)

    def setDistanceMeasure(self, value: str):
        """Sets the value of distanceMeasure."""
        return self._set(distanceMeasure=value)

    def setPassRetries(self, value: int):
        """Sets the value of passRetries."""
        return self._set(passRetries=value)

    def setSnapshotDir(self, value: str):
        """Sets the value of snapshotDir."""
        return self._set(snapshotDir=value)

    def setOverwriteSnapshots(self, value: bool):
        """Sets the value of overwriteSnapshots."""
        return self._set(overwriteSnapshots=value)

    def setDistanceCol(self, value: str):
        """Sets the value of distanceCol."""
        return self._set(distanceCol=value)

    def setMaxIter(self, value: int):
        """Sets the value of maxIter."""
        return self._set(maxIter=value)

    def setTol(self, value: float):
        """Sets the value of tol."""
        return self._set(tol=value)

    def setFeaturesCol(self, value: str):
        """Sets the value of featuresCol."""
        return self._set(featuresCol=value)

    def setPredictionCol(self, value: str):
        """Sets the value of predictionCol."""
        return self._set(predictionCol=value)

    def _driver_config(self) -> DriverConfig:
        return DriverConfig(
            t1=self.getT1(),
            t2=self.getT2(),
            convergence_delta=self.getTol(),
            max_iterations=self.getMaxIter(),
            distance_measure=self.getDistanceMeasure(),
            pass_retries=self.getPassRetries(),
            snapshot_dir=self.getSnapshotDir(),
            overwrite=self.getOverwriteSnapshots(),
        )

    def _fit(self, dataset: DataFrame) -> "MeanShiftCanopyModel":
        config = self._driver_config()
        started = time.time()
        features = dataset.select(self.getFeaturesCol())
        first = features.first()
        num_features = len(first[0]) if first is not None else 0

        points = key_points(features.rdd.map(itemgetter(0))).cache()
        try:
            result = MeanShiftCanopyDriver(dataset.sparkSession.sparkContext, config).run(points)
        finally:
            points.unpersist()
        if result.assignments is not None:
            result.assignments.unpersist()
        num_points = sum(result.member_counts.values())

        summary = MeanShiftCanopySummary(
            result,
            num_points,
            self.getDistanceMeasure(),
            (time.time() - started) * 1000,
        )
        model = MeanShiftCanopyModel(result.canopies, num_features, summary)
        return self._copyValues(model)


class MeanShiftCanopyModel(Model, MeanShiftCanopyParams, MLReadable, MLWritable):
    """
    Model fitted by MeanShiftCanopy.

    Attributes
    ----------
    clusterCenters : np.ndarray
        Canopy centroids, one row per canopy, ordered by canopy id.

    numClusters : int
        Number of canopies.

    numFeatures : int
        Feature dimension of the training data.

    Examples
    --------
    >>> centers = model.clusterCenters()
    >>> predictions = model.transform(test_data)
    >>> canopy = model.predict(Vectors.dense([2.0, 3.0]))
    >>> model.write().overwrite().save("path/to/model")
    >>> loaded_model = MeanShiftCanopyModel.load("path/to/model")
    """

    def __init__(
        self,
        canopies: Optional[List[Canopy]] = None,
        numFeatures: int = 0,
        summary: Optional["MeanShiftCanopySummary"] = None,
    ):
        super(MeanShiftCanopyModel, self).__init__()
        self._canopies = sorted(canopies or [], key=lambda c: c.canopy_id)
        self._numFeatures = numFeatures
        self._summary = summary

    @property
    def canopies(self) -> List[Canopy]:
        return list(self._canopies)

    def canopyIds(self) -> List[int]:
        """Canopy ids in the order of ``clusterCenters()`` rows."""
        return [canopy.canopy_id for canopy in self._canopies]

    def clusterCenters(self) -> np.ndarray:
        """
        Get the canopy centroids as a NumPy array.

        Returns
        -------
        np.ndarray
            Array of shape (numClusters, numFeatures).
        """
        if not self._canopies:
            return np.zeros((0, self._numFeatures))
        return np.array([canopy.centroid.to_array(self._numFeatures) for canopy in self._canopies])

    @property
    def numClusters(self) -> int:
        """Number of canopies."""
        return len(self._canopies)

    @property
    def numFeatures(self) -> int:
        """Feature dimension of the training data."""
        return self._numFeatures

    def _snapshot(self):
        return [(canopy.canopy_id, canopy.centroid) for canopy in self._canopies]

    def predict(self, value: Vector) -> int:
        """
        Predict the canopy id for a single point.

        Examples
        --------
        >>> from pyspark.ml.linalg import Vectors
        >>> canopy = model.predict(Vectors.dense([2.0, 3.0]))
        """
        measure = get_distance_measure(self.getDistanceMeasure())
        return nearest_canopy(as_sparse_vector(value), self._snapshot(), measure)[0]

    def computeCost(self, dataset: DataFrame) -> float:
        """
        Sum of squared distances from each point to its nearest canopy.

        Parameters
        ----------
        dataset : DataFrame
            Dataset to evaluate (must have the features column).
        """
        snapshot = self._snapshot()
        measure = get_distance_measure(self.getDistanceMeasure())

        def squared_distance(row):
            return nearest_canopy(as_sparse_vector(row[0]), snapshot, measure)[1] ** 2

        rows = dataset.select(self.getFeaturesCol()).rdd
        return float(rows.map(squared_distance).sum()) if snapshot else 0.0

    def _transform(self, dataset: DataFrame) -> DataFrame:
        snapshot = self._snapshot()
        measure = get_distance_measure(self.getDistanceMeasure())
        schema = StructType(
            [StructField("canopy", LongType()), StructField("distance", DoubleType())]
        )

        def nearest(vector):
            return nearest_canopy(as_sparse_vector(vector), snapshot, measure)

        nearest_col = "_" + self.uid + "_nearest"
        output = dataset.withColumn(nearest_col, udf(nearest, schema)(col(self.getFeaturesCol())))
        output = output.withColumn(self.getPredictionCol(), col(nearest_col + ".canopy"))
        distance_col = self.getDistanceCol()
        if distance_col:
            output = output.withColumn(distance_col, col(nearest_col + ".distance"))
        return output.drop(nearest_col)

    def hasSummary(self) -> bool:
        """
        Check if training summary is available.

        Returns
        -------
        bool
            True for a model fitted in the current session.
        """
        return self._summary is not None

    @property
    def summary(self) -> "MeanShiftCanopySummary":
        """
        Get the training summary.

        Raises
        ------
        RuntimeError
            If the model was loaded rather than fitted.
        """
        if self._summary is None:
            raise RuntimeError(f"No training summary available for {self.uid}")
        return self._summary

    def write(self) -> MLWriter:
        return MeanShiftCanopyModelWriter(self)

    @classmethod
    def read(cls) -> MLReader:
        return MeanShiftCanopyModelReader(cls)


class MeanShiftCanopyModelWriter(MLWriter):
    """Saves params as metadata and canopies in the wire format under ``data``."""

    def __init__(self, instance: MeanShiftCanopyModel):
        super(MeanShiftCanopyModelWriter, self).__init__()
        self.instance = instance

    def saveImpl(self, path: str):
        DefaultParamsWriter.saveMetadata(
            self.instance, path, self.sc, extraMetadata={"numFeatures": self.instance.numFeatures}
        )
        save_canopies(self.sc, self.instance.canopies, os.path.join(path, "data"))


class MeanShiftCanopyModelReader(MLReader):
    def __init__(self, cls):
        super(MeanShiftCanopyModelReader, self).__init__()
        self.cls = cls

    def load(self, path: str) -> MeanShiftCanopyModel:
        metadata = DefaultParamsReader.loadMetadata(path, self.sc)
        instance = self.cls()
        DefaultParamsReader.getAndSetParams(instance, metadata)
        instance._resetUid(metadata["uid"])
        canopies = load_canopies(
            self.sc, os.path.join(path, "data"), instance.getT1(), instance.getT2()
        )
        instance._canopies = canopies
        instance._numFeatures = metadata.get("numFeatures", 0)
        return instance


class MeanShiftCanopySummary(object):
    """
    Summary of a MeanShiftCanopy fit.

    Attributes
    ----------
    algorithm : str
        Always "MeanShiftCanopy".

    numClusters : int
        Number of canopies in the model.

    numPoints : int
        Number of training points.

    iterations : int
        Refinement iterations performed.

    converged : bool
        False when maxIter stopped the run first.

    clusterSizes : Dict[int, int]
        Points assigned to each canopy id.

    Examples
    --------
    >>> if model.hasSummary():
    ...     summary = model.summary
    ...     print(f"Converged in {summary.iterations} iterations")
    ...     print(summary.convergenceReport())
    """

    def __init__(self, result: MeanShiftResult, numPoints: int, distanceMeasure: str, elapsedMillis: float):
        self._result = result
        self._numPoints = numPoints
        self._distanceMeasure = distanceMeasure
        self._elapsedMillis = elapsedMillis

    @property
    def algorithm(self) -> str:
        return "MeanShiftCanopy"

    @property
    def numClusters(self) -> int:
        return len(self._result.canopies)

    @property
    def numPoints(self) -> int:
        return self._numPoints

    @property
    def iterations(self) -> int:
        return self._result.iterations

    @property
    def converged(self) -> bool:
        return self._result.converged

    @property
    def clusterSizes(self) -> Dict[int, int]:
        return dict(self._result.member_counts)

    @property
    def distanceMeasure(self) -> str:
        return self._distanceMeasure

    @property
    def elapsedMillis(self) -> int:
        return int(self._elapsedMillis)

    @property
    def avgIterationMillis(self) -> float:
        """Average time per pass, seeding included."""
        passes = self._result.pass_millis
        return sum(passes) / len(passes) if passes else 0.0

    def convergenceReport(self) -> str:
        """Get a readable account of the driver states and pass timings."""
        lines = [
            f"{self.algorithm}: {self.numClusters} canopies from {self.numPoints} points, "
            f"{'converged' if self.converged else 'stopped'} after {self.iterations} iteration(s)"
        ]
        for state, iteration in self._result.states:
            lines.append(f"  {state.name:<10} iteration {iteration}")
        for index, millis in enumerate(self._result.pass_millis):
            lines.append(f"  pass {index}: {millis:.1f}ms")
        return "\n".join(lines)
