#!/usr/bin/env python
# Copyright (c) 2025 massivedatascience
# Licensed under the Apache License, Version 2.0

"""
Setup configuration for canopyshift PySpark package.
"""

from setuptools import setup, find_packages
import os

# Read version from package
with open(os.path.join("canopyshift", "__init__.py")) as f:
    for line in f:
        if line.startswith("__version__"):
            version = line.split("=")[1].strip().strip('"').strip("'")
            break

# Read long description from README
long_description = """
# Canopy Shift

Canopy mean-shift clustering for PySpark.

## Features

- **Canopy Mean-Shift**: No fixed k; clusters follow from the T1/T2 radii
- **Spark Passes**: Seeding, refinement and assignment run as map/reduce jobs
  with whole-pass resubmission on failure
- **Binary Record Format**: Sparse vectors and (user id, preference) pairs in a
  compact big-endian layout, used for snapshots and model persistence
- **Pluggable Distances**: Euclidean, squared Euclidean, Manhattan, Chebyshev,
  cosine, or any object with a `distance(a, b)` method
- **Spark ML Integration**: Estimator/Model pattern with Pipeline support

## Installation

```bash
pip install canopyshift
```

## Quick Start

```python
from pyspark.sql import SparkSession
from pyspark.ml.linalg import Vectors
from canopyshift.clusterer import MeanShiftCanopy

spark = SparkSession.builder.appName("clustering").getOrCreate()

data = spark.createDataFrame([
    (Vectors.dense([0.0, 0.0]),),
    (Vectors.dense([1.0, 1.0]),),
    (Vectors.dense([9.0, 8.0]),),
    (Vectors.dense([8.0, 9.0]),)
], ["features"])

meanshift = MeanShiftCanopy(t1=3.0, t2=1.5, tol=0.01, maxIter=10)
model = meanshift.fit(data)

predictions = model.transform(data)
predictions.select("features", "prediction").show()
print(model.summary.convergenceReport())
```
"""

setup(
    name="canopyshift",
    version=version,
    description="Canopy mean-shift clustering for PySpark",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="MassiveDataScience",
    author_email="support@massivedatascience.com",
    license="Apache License 2.0",
    packages=find_packages(exclude=["tests", "tests.*", "examples"]),
    python_requires=">=3.8",
    install_requires=[
        "pyspark>=3.4.0",
        "py4j>=0.10.9",
        "numpy>=1.20.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=3.0.0",
            "black>=22.0.0",
            "flake8>=4.0.0",
            "mypy>=0.950",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Scientific/Engineering",
        "Topic :: Software Development :: Libraries",
    ],
    keywords="pyspark clustering mean-shift canopy machine-learning",
)
