#!/usr/bin/env python
# Copyright (c) 2025 massivedatascience
# Licensed under the Apache License, Version 2.0

"""
Canopy mean-shift on two well-separated blobs.

The number of clusters is not given: it follows from the T1/T2 radii.
"""

import logging

from pyspark.sql import SparkSession
from pyspark.ml.linalg import Vectors

from canopyshift.clusterer import MeanShiftCanopy


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    spark = (
        SparkSession.builder.appName("CanopyMeanShift")
        .config("spark.ui.enabled", "false")
        .getOrCreate()
    )
    spark.sparkContext.setLogLevel("WARN")

    data = spark.createDataFrame(
        [
            (Vectors.dense([0.0, 0.0]),),
            (Vectors.dense([1.0, 1.0]),),
            (Vectors.dense([0.5, 0.5]),),
            (Vectors.dense([9.0, 8.0]),),
            (Vectors.dense([8.0, 9.0]),),
            (Vectors.dense([8.5, 8.5]),),
            (Vectors.dense([4.5, 4.0]),),
        ],
        ["features"],
    )

    print("Input data:")
    data.show()

    meanshift = MeanShiftCanopy(
        t1=3.0,
        t2=1.5,
        tol=0.01,
        maxIter=10,
        distanceCol="distance",
    )

    print("\nFitting canopies...")
    model = meanshift.fit(data)

    print(f"\nNumber of canopies: {model.numClusters}")
    print(f"Number of features: {model.numFeatures}")
    print("\nCanopy centroids:")
    for canopy_id, center in zip(model.canopyIds(), model.clusterCenters()):
        print(f"  Canopy {canopy_id}: {center}")

    predictions = model.transform(data)
    print("\nAssignments:")
    predictions.select("features", "prediction", "distance").show()

    print(f"\nSum of squared distances to canopies: {model.computeCost(data):.4f}")

    summary = model.summary
    print(f"\nPoints per canopy: {summary.clusterSizes}")
    print(summary.convergenceReport())

    # The stray point between the blobs goes to whichever canopy is nearest
    new_point = Vectors.dense([4.0, 4.0])
    print(f"\nNew point {new_point} assigned to canopy: {model.predict(new_point)}")

    spark.stop()


if __name__ == "__main__":
    main()
