# Copyright (c) 2025 massivedatascience
# Licensed under the Apache License, Version 2.0

"""
Runs clustering passes as Spark jobs.

A pass maps every input record to zero or more key/value pairs, optionally
reduces them by key, and is committed once Spark has materialized the whole
result. A failed pass is resubmitted from the same input RDD; since passes
only depend on their input and configuration, a resubmission produces the
same output.
"""

import logging
import time
from typing import Callable, Optional

from py4j.protocol import Py4JJavaError
from pyspark import RDD, SparkContext, StorageLevel
from pyspark.errors import PythonException

from .errors import DistanceMeasureFault, InvalidConfiguration, PassFailure

logger = logging.getLogger(__name__)


class SparkPassRunner(object):
    """
    Executes map/reduce passes on a SparkContext.

    Parameters
    ----------
    sc : SparkContext
        Context the passes run on.
    pass_retries : int, default=1
        How many times a failed pass is resubmitted before the failure is
        reported.
    num_partitions : int, optional
        Partition count for reductions. Spark's default when unset.
    """

    def __init__(self, sc: SparkContext, pass_retries: int = 1, num_partitions: Optional[int] = None):
        if pass_retries < 0:
            raise InvalidConfiguration(f"pass_retries must be >= 0, got {pass_retries}")
        self.sc = sc
        self.pass_retries = pass_retries
        self.num_partitions = num_partitions

    def run_pass(
        self,
        name: str,
        records: RDD,
        map_fn: Callable,
        reduce_fn: Optional[Callable] = None,
        per_partition: bool = False,
        collect: bool = True,
        iteration: Optional[int] = None,
    ):
        """
        Run one pass over ``records``.

        ``map_fn`` is applied with ``flatMap``, or with
        ``mapPartitionsWithIndex`` when ``per_partition`` is set, in which
        case it receives the partition index and an iterator. ``reduce_fn``,
        when given, combines values by key.

        Returns the collected list of output pairs, or when ``collect`` is
        False a persisted, fully computed RDD.

        Raises
        ------
        PassFailure
            If every attempt failed.
        DistanceMeasureFault
            If a task failed because the distance measure did. Not retried.
        """
        attempts = 0
        while True:
            attempts += 1
            started = time.time()
            try:
                result = self._execute(records, map_fn, reduce_fn, per_partition, collect)
            except (Py4JJavaError, PythonException) as e:
                if "DistanceMeasureFault" in str(e):
                    raise DistanceMeasureFault(
                        f"Distance measure failed during pass '{name}'", iteration
                    ) from e
                if attempts > self.pass_retries:
                    raise PassFailure(
                        f"Pass '{name}' failed after {attempts} attempt(s)",
                        name,
                        iteration,
                        attempts,
                    ) from e
                logger.warning(
                    "Pass '%s' failed on attempt %d, resubmitting: %s",
                    name,
                    attempts,
                    e.__class__.__name__,
                )
                continue
            logger.debug("Pass '%s' committed in %.1fms", name, (time.time() - started) * 1000)
            return result

    def _execute(self, records, map_fn, reduce_fn, per_partition, collect):
        if per_partition:
            mapped = records.mapPartitionsWithIndex(map_fn)
        else:
            mapped = records.flatMap(map_fn)
        if reduce_fn is not None:
            mapped = mapped.reduceByKey(reduce_fn, self.num_partitions)
        if collect:
            return mapped.collect()
        mapped = mapped.persist(StorageLevel.MEMORY_AND_DISK)
        try:
            mapped.count()
        except Exception:
            mapped.unpersist()
            raise
        return mapped
