#!/usr/bin/env python3
# Copyright (c) 2025 massivedatascience
# Licensed under the Apache License, Version 2.0

"""
Smoke test for the canopyshift PySpark package.

Fits a canopy model on local[*], checks the assignments, the record format
and a persistence round trip. Meant to be fast enough for CI.
"""

import math
import os
import shutil
import tempfile

from pyspark.ml.linalg import Vectors, VectorUDT
from pyspark.sql import Row, SparkSession


def _mk_spark():
    return (
        SparkSession.builder
        .appName("CanopyShift-Smoke")
        .master("local[*]")
        .config("spark.ui.enabled", "false")
        .config("spark.sql.shuffle.partitions", "4")
        .config("spark.driver.memory", "1g")
        .getOrCreate()
    )


def _assert(cond, msg):
    if not cond:
        raise AssertionError(msg)


def _collect_preds(df):
    return [r.prediction for r in df.select("prediction").collect()]


def main():
    print("Starting smoke test…")
    spark = _mk_spark()

    try:
        from canopyshift.clusterer import (
            MeanShiftCanopy,
            MeanShiftCanopyModel,
            MutableSparseVector,
            PreferenceRecord,
            VectorRecord,
            decode,
            encode,
        )
        print("✓ Imported canopyshift.clusterer")

        # 1) Record format
        vector = VectorRecord(MutableSparseVector({3: 1.5, 0: -2.0}))
        preference = PreferenceRecord(42, 0.75)
        _assert(decode(encode(vector)) == vector, "Vector record round trip failed")
        _assert(decode(encode(preference)) == preference, "Preference record round trip failed")
        print("✓ Record format OK")

        # 2) Toy dataset
        df = spark.createDataFrame(
            [
                Row(features=Vectors.dense(0.0, 0.0)),
                Row(features=Vectors.dense(1.0, 1.1)),
                Row(features=Vectors.dense(8.9, 9.0)),
                Row(features=Vectors.dense(10.0, 10.1)),
            ]
        )
        _assert(isinstance(df.schema["features"].dataType, VectorUDT), "features must be VectorUDT")

        # 3) Fit and assign
        meanshift = MeanShiftCanopy().setT1(3.0).setT2(1.5).setTol(0.01).setMaxIter(10)
        model = meanshift.fit(df)
        print(f"✓ Fitted model with {model.numClusters} canopies")

        preds = _collect_preds(model.transform(df))
        _assert(len(preds) == df.count(), "Prediction count mismatch")
        _assert(set(preds) <= set(model.canopyIds()), f"Predictions are not canopy ids: {preds}")
        _assert(preds[0] == preds[1] and preds[2] == preds[3], f"Unexpected grouping: {preds}")
        cost = model.computeCost(df)
        _assert(math.isfinite(cost) and cost >= 0, f"Cost invalid: {cost}")
        print(f"✓ Assignments OK, cost={cost:.6f}")

        # 4) Repeat fit gives the same canopies
        preds2 = _collect_preds(meanshift.fit(df).transform(df))
        _assert(preds == preds2, "Repeated fit gave different predictions")
        print("✓ Determinism OK")

        # 5) Persistence round trip
        tmp = tempfile.mkdtemp(prefix="canopyshift_smoke_")
        try:
            save_path = os.path.join(tmp, "model")
            model.write().overwrite().save(save_path)
            loaded = MeanShiftCanopyModel.load(save_path)
            _assert(_collect_preds(loaded.transform(df)) == preds, "Loaded model predictions differ")
            print("✓ Persistence round trip OK")
        finally:
            shutil.rmtree(tmp)

        print(model.summary.convergenceReport())
        print("\n✅ Smoke tests passed")
        return 0

    except Exception as e:
        import traceback
        print(f"\n❌ Smoke test failed: {e}")
        traceback.print_exc()
        return 1
    finally:
        spark.stop()


if __name__ == "__main__":
    raise SystemExit(main())
