# Copyright (c) 2025 massivedatascience
# Licensed under the Apache License, Version 2.0

"""
Iteration driver for canopy mean-shift clustering.

The driver is a small state machine::

    SEEDING -> ITERATING(k) -> CONVERGED | EXHAUSTED -> ASSIGNING -> DONE

Passes run strictly one after another: pass ``k + 1`` is only submitted
once the canopy set of pass ``k`` has been collected.
"""

import logging
import math
import os
import time
from enum import Enum
from typing import List, Optional, Tuple

from pyspark import RDD, SparkContext

from . import canopy_pass
from .canopy import Canopy
from .distance import get_distance_measure
from .errors import InvalidConfiguration, MeanShiftError
from .persistence import clear_outputs, save_assignments, save_canopies
from .substrate import SparkPassRunner
from .vectors import as_sparse_vector

logger = logging.getLogger(__name__)

CLUSTERS_DIR_PREFIX = "clusters-"
CLUSTERED_POINTS_DIR = "clusteredPoints"


class DriverState(Enum):
    SEEDING = "seeding"
    ITERATING = "iterating"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    ASSIGNING = "assigning"
    DONE = "done"


class DriverConfig(object):
    """
    Validated clustering configuration.

    Parameters
    ----------
    t1 : float
        Fold radius, > 0.
    t2 : float
        Coverage and merge radius, in [0, t1].
    convergence_delta : float, default=0.5
        Largest centroid movement that still counts as converged. 0 demands
        identical centroids, which is allowed but rarely reached.
    max_iterations : int, default=10
        Refinement passes to run before giving up, >= 1.
    distance_measure : str or DistanceMeasure, default="euclidean"
    input_is_canopies : bool, default=False
        Start from a given canopy set instead of seeding from the points.
    pass_retries : int, default=1
        Resubmissions of a failed pass.
    run_clustering : bool, default=True
        Run the assignment pass after the iterations.
    snapshot_dir : str, optional
        Directory receiving ``clusters-<k>`` and ``clusteredPoints``.
    overwrite : bool, default=False
        Delete earlier ``clusters-*`` and ``clusteredPoints`` outputs under
        ``snapshot_dir`` before the run. Without it, existing outputs make the
        run fail with :class:`SnapshotFailure`.

    Raises
    ------
    InvalidConfiguration
        If any value is out of range.
    """

    def __init__(
        self,
        t1: float,
        t2: float,
        convergence_delta: float = 0.5,
        max_iterations: int = 10,
        distance_measure=None,
        input_is_canopies: bool = False,
        pass_retries: int = 1,
        run_clustering: bool = True,
        snapshot_dir: Optional[str] = None,
        overwrite: bool = False,
    ):
        if not t1 > 0 or math.isinf(t1):
            raise InvalidConfiguration(f"t1 must be a positive number, got {t1}")
        if not 0 <= t2 <= t1:
            raise InvalidConfiguration(f"t2 must be in [0, t1={t1}], got {t2}")
        if not convergence_delta >= 0:
            raise InvalidConfiguration(f"convergence_delta must be >= 0, got {convergence_delta}")
        if max_iterations < 1:
            raise InvalidConfiguration(f"max_iterations must be >= 1, got {max_iterations}")
        if pass_retries < 0:
            raise InvalidConfiguration(f"pass_retries must be >= 0, got {pass_retries}")
        if convergence_delta == 0:
            logger.warning("convergence_delta is 0; only identical centroids count as converged")
        self.t1 = float(t1)
        self.t2 = float(t2)
        self.convergence_delta = float(convergence_delta)
        self.max_iterations = int(max_iterations)
        self.distance_measure = get_distance_measure(distance_measure)
        self.input_is_canopies = input_is_canopies
        self.pass_retries = int(pass_retries)
        self.run_clustering = run_clustering
        self.snapshot_dir = snapshot_dir
        self.overwrite = overwrite

    def __repr__(self) -> str:
        return (
            f"DriverConfig(t1={self.t1}, t2={self.t2}, convergence_delta={self.convergence_delta}, "
            f"max_iterations={self.max_iterations}, distance_measure={self.distance_measure!r})"
        )


class MeanShiftResult(object):
    """Output of a driver run."""

    def __init__(
        self,
        canopies: List[Canopy],
        assignments: Optional[RDD],
        iterations: int,
        converged: bool,
        states: List[Tuple[DriverState, int]],
        pass_millis: List[float],
        member_counts: Optional[dict] = None,
    ):
        self.canopies = canopies
        self.assignments = assignments
        self.iterations = iterations
        self.converged = converged
        self.states = states
        self.pass_millis = pass_millis
        self.member_counts = member_counts or {}

    @property
    def final_state(self) -> DriverState:
        return self.states[-1][0]

    @property
    def stop_state(self) -> DriverState:
        """CONVERGED or EXHAUSTED."""
        return DriverState.CONVERGED if self.converged else DriverState.EXHAUSTED

    def centroids(self) -> dict:
        return {canopy.canopy_id: canopy.centroid for canopy in self.canopies}


def key_points(points: RDD) -> RDD:
    """Attach sequential point ids to an RDD of vectors."""
    return points.zipWithIndex().map(lambda vi: (vi[1], as_sparse_vector(vi[0])))


class MeanShiftCanopyDriver(object):
    """
    Runs the seeding, refinement and assignment passes.

    Examples
    --------
    >>> config = DriverConfig(t1=3.0, t2=1.5, convergence_delta=0.01, max_iterations=10)
    >>> driver = MeanShiftCanopyDriver(spark.sparkContext, config)
    >>> result = driver.run(key_points(spark.sparkContext.parallelize(vectors)))
    >>> result.stop_state, len(result.canopies)
    """

    def __init__(self, sc: SparkContext, config: DriverConfig):
        self.sc = sc
        self.config = config
        self.runner = SparkPassRunner(sc, config.pass_retries)
        self.state: Optional[DriverState] = None
        self.iteration = 0
        self._states: List[Tuple[DriverState, int]] = []

    def _enter(self, state: DriverState):
        self.state = state
        self._states.append((state, self.iteration))
        logger.info("Driver state %s (iteration %d)", state.name, self.iteration)

    def run(self, points: Optional[RDD], initial_canopies: Optional[List[Canopy]] = None) -> MeanShiftResult:
        """
        Cluster ``points``, an RDD of ``(point_id, MutableSparseVector)``.

        With ``input_is_canopies`` the refinement starts from
        ``initial_canopies`` and ``points`` may be None, in which case the
        assignment pass is skipped.

        Raises
        ------
        MeanShiftError
            Any pass-level failure, tagged with the iteration it occurred in.
        """
        config = self.config
        measure = config.distance_measure
        self.iteration = 0
        self._states = []
        pass_millis: List[float] = []
        assignments = None
        member_counts = {}
        started = time.time()

        if config.input_is_canopies and initial_canopies is None:
            raise InvalidConfiguration("input_is_canopies requires initial canopies")
        if not config.input_is_canopies and points is None:
            raise InvalidConfiguration("points are required unless the input is canopies")

        if config.snapshot_dir and config.overwrite:
            cleared = clear_outputs(
                self.sc, config.snapshot_dir, [CLUSTERS_DIR_PREFIX + "*", CLUSTERED_POINTS_DIR]
            )
            if cleared:
                logger.info("Removed %d earlier outputs under %s", cleared, config.snapshot_dir)

        try:
            if config.input_is_canopies:
                canopies = [
                    Canopy(c.canopy_id, c.centroid, config.t1, config.t2, c.mass or 1.0)
                    for c in initial_canopies
                ]
            else:
                self._enter(DriverState.SEEDING)
                seeded = canopy_pass.seed(self.runner, points, measure, config.t1, config.t2)
                pass_millis.append(seeded.elapsed_millis)
                canopies = seeded.canopies
            self._snapshot(canopies)

            converged = False
            while self.iteration < config.max_iterations:
                self.iteration += 1
                self._enter(DriverState.ITERATING)
                result = canopy_pass.refine(
                    self.runner,
                    canopies,
                    measure,
                    config.t1,
                    config.t2,
                    config.convergence_delta,
                    self.iteration,
                )
                pass_millis.append(result.elapsed_millis)
                canopies = result.canopies
                self._snapshot(canopies)
                if not result.any_changed:
                    converged = True
                    break
            self._enter(DriverState.CONVERGED if converged else DriverState.EXHAUSTED)

            if config.run_clustering and points is not None:
                self._enter(DriverState.ASSIGNING)
                assignments = canopy_pass.assign(self.runner, points, canopies, measure, self.iteration)
                member_counts = canopy_pass.count_members(self.runner, assignments, self.iteration)
                if config.snapshot_dir:
                    save_assignments(assignments, os.path.join(config.snapshot_dir, CLUSTERED_POINTS_DIR))
            self._enter(DriverState.DONE)
        except MeanShiftError as e:
            if e.iteration is None:
                e.iteration = self.iteration
            logger.error("Clustering aborted at iteration %d: %s", self.iteration, e)
            raise

        logger.info(
            "Finished after %d iteration(s), converged=%s, %d canopies in %.1fs",
            self.iteration,
            converged,
            len(canopies),
            time.time() - started,
        )
        return MeanShiftResult(
            canopies, assignments, self.iteration, converged, list(self._states), pass_millis, member_counts
        )

    def _snapshot(self, canopies: List[Canopy]):
        if self.config.snapshot_dir:
            path = os.path.join(self.config.snapshot_dir, f"{CLUSTERS_DIR_PREFIX}{self.iteration}")
            save_canopies(self.sc, canopies, path)
