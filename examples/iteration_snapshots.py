#!/usr/bin/env python
# Copyright (c) 2025 massivedatascience
# Licensed under the Apache License, Version 2.0

"""
Running the driver directly on sequence files.

Points are written as binary vector records, clustered with a snapshot of
the canopy set after every iteration, and the last snapshot is used to
restart the refinement.
"""

import logging
import os
import random
import shutil
import tempfile

from pyspark.sql import SparkSession

from canopyshift.clusterer import DriverConfig, MeanShiftCanopyDriver, MutableSparseVector
from canopyshift.clusterer.driver import CLUSTERED_POINTS_DIR, CLUSTERS_DIR_PREFIX
from canopyshift.clusterer.persistence import load_assignments, load_canopies, load_points, save_points


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    spark = (
        SparkSession.builder.appName("CanopySnapshots")
        .config("spark.ui.enabled", "false")
        .getOrCreate()
    )
    spark.sparkContext.setLogLevel("WARN")
    sc = spark.sparkContext

    rng = random.Random(7)
    vectors = []
    for cx, cy in [(0.0, 0.0), (6.0, 0.0), (3.0, 6.0)]:
        for _ in range(50):
            vectors.append(MutableSparseVector.from_dense([rng.gauss(cx, 0.6), rng.gauss(cy, 0.6)]))

    temp_dir = tempfile.mkdtemp()
    try:
        points_path = os.path.join(temp_dir, "points")
        output = os.path.join(temp_dir, "output")
        save_points(sc.parallelize(list(enumerate(vectors)), 4), points_path)

        config = DriverConfig(
            t1=2.0,
            t2=1.0,
            convergence_delta=0.01,
            max_iterations=20,
            snapshot_dir=output,
        )
        result = MeanShiftCanopyDriver(sc, config).run(load_points(sc, points_path))
        print(f"\n{result.stop_state.name} after {result.iterations} iteration(s)")
        for canopy in result.canopies:
            print(f"  canopy {canopy.canopy_id}: {result.member_counts.get(canopy.canopy_id, 0)} points")

        assignments = load_assignments(sc, os.path.join(output, CLUSTERED_POINTS_DIR))
        print(f"Stored assignments: {assignments.count()}")

        last = os.path.join(output, f"{CLUSTERS_DIR_PREFIX}{result.iterations}")
        canopies = load_canopies(sc, last, config.t1, config.t2)
        restart = DriverConfig(t1=2.0, t2=1.0, convergence_delta=0.01, input_is_canopies=True)
        rerun = MeanShiftCanopyDriver(sc, restart).run(None, initial_canopies=canopies)
        print(f"Restart from {last}: {rerun.stop_state.name} after {rerun.iterations} iteration(s)")
    finally:
        shutil.rmtree(temp_dir)

    spark.stop()


if __name__ == "__main__":
    main()
