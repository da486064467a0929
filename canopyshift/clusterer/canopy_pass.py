# Copyright (c) 2025 massivedatascience
# Licensed under the Apache License, Version 2.0

"""
The passes of the canopy mean-shift algorithm.

Seeding pass
    Every partition seeds canopies from its own points: a point folds into
    each local canopy within ``t1`` and spawns a new canopy unless some local
    canopy covers it (``t2``). The local canopies are then merged across
    partitions.

Refinement pass
    The previous canopy set is broadcast as a read-only snapshot. Every
    canopy, weighted by its mass, contributes its centroid to each snapshot
    canopy within ``t1``; contributions are summed by canopy id and the means
    become the new centroids. Canopies that end up within ``t2`` of each
    other are then merged.

Assignment pass
    Every point is labeled with its single nearest canopy.

Merge policy: canopies are visited in ascending id order and each one is
merged into the lowest-id surviving canopy within ``t2`` of it, if any.
"""

import logging
import time
from operator import add, itemgetter
from typing import List, NamedTuple, Optional, Sequence, Tuple

from pyspark import RDD

from .canopy import Canopy, Contribution
from .distance import checked_distance
from .persistence import canopy_records, decode_canopy
from .substrate import SparkPassRunner

logger = logging.getLogger(__name__)


class PassResult(NamedTuple):
    canopies: List[Canopy]
    any_changed: bool
    elapsed_millis: float


def nearest_canopy(point, snapshot: Sequence[Tuple[int, object]], measure) -> Tuple[Optional[int], float]:
    """Return ``(canopy_id, distance)`` of the closest snapshot centroid.

    Ties go to the canopy listed first. ``(None, inf)`` for an empty snapshot.
    """
    best_id, best_distance = None, float("inf")
    for canopy_id, centroid in snapshot:
        distance = checked_distance(measure, point, centroid)
        if distance < best_distance:
            best_id, best_distance = canopy_id, distance
    return best_id, best_distance


def merge_seeds(canopies: List[Canopy], measure) -> List[Canopy]:
    """Merge uncommitted canopies whose centroids lie within ``t2``.

    The survivor keeps its centroid and takes over the merged canopy's folded
    points.
    """
    survivors: List[Canopy] = []
    for canopy in sorted(canopies, key=lambda c: c.canopy_id):
        target = next((s for s in survivors if s.covered_by(canopy.centroid, measure)), None)
        if target is None:
            survivors.append(canopy)
        else:
            logger.debug("Merging seed %d into %d", canopy.canopy_id, target.canopy_id)
            target.absorb(canopy)
    return survivors


def merge_committed(canopies: List[Canopy], measure) -> List[Canopy]:
    """Merge committed canopies whose centroids lie within ``t2``.

    The merged centroid is the mass-weighted mean; the survivor keeps its id
    and prior centroid.
    """
    survivors: List[Canopy] = []
    for canopy in sorted(canopies, key=lambda c: c.canopy_id):
        position = next(
            (i for i, s in enumerate(survivors) if s.covered_by(canopy.centroid, measure)),
            None,
        )
        if position is None:
            survivors.append(canopy)
            continue
        target = survivors[position]
        logger.debug("Merging canopy %d into %d", canopy.canopy_id, target.canopy_id)
        mass = target.mass + canopy.mass
        centroid = (
            target.centroid.scaled(target.mass).add_scaled(canopy.centroid, canopy.mass).scaled(1.0 / mass)
            if mass > 0
            else target.centroid
        )
        merged = Canopy(target.canopy_id, centroid, target.t1, target.t2, mass, target.prior_centroid)
        merged.membership = target.membership | canopy.membership
        survivors[position] = merged
    return survivors


def any_changed(previous: Sequence[Canopy], current: Sequence[Canopy], delta: float, measure) -> bool:
    if len(previous) != len(current):
        return True
    return any(not canopy.has_converged(delta, measure) for canopy in current)


def seed(runner: SparkPassRunner, points: RDD, measure, t1: float, t2: float) -> PassResult:
    """Create the iteration-0 canopy set from ``(point_id, vector)`` pairs."""
    started = time.time()

    def seed_partition(index, records):
        local: List[Canopy] = []
        for point_id, point in records:
            covered = False
            for canopy in local:
                if canopy.covered_by(point, measure):
                    covered = True
                canopy.try_fold(point, measure, point_id)
            if not covered:
                canopy = Canopy(len(local), point.copy(), t1, t2)
                canopy.try_fold(point, measure, point_id)
                local.append(canopy)
        for canopy in local:
            yield (index, canopy.canopy_id), (canopy.centroid, canopy.contribution, canopy.membership)

    output = runner.run_pass("seed", points, seed_partition, per_partition=True, iteration=0)

    local = []
    for canopy_id, (_, (centroid, contribution, members)) in enumerate(sorted(output, key=itemgetter(0))):
        canopy = Canopy(canopy_id, centroid, t1, t2)
        canopy.add(contribution, members)
        local.append(canopy)
    canopies = [canopy.commit() for canopy in merge_seeds(local, measure)]
    logger.info("Seeded %d canopies from %d local seeds", len(canopies), len(local))
    return PassResult(canopies, True, (time.time() - started) * 1000)


def refine(
    runner: SparkPassRunner,
    canopies: List[Canopy],
    measure,
    t1: float,
    t2: float,
    delta: float,
    iteration: int,
) -> PassResult:
    """Shift every canopy to the mass-weighted mean of the canopies near it."""
    started = time.time()
    records = canopy_records(canopies)
    snapshot = [(c.canopy_id, c.centroid) for c in (decode_canopy(k, v, t1, t2) for k, v in records)]
    broadcast = runner.sc.broadcast(snapshot)

    def shift(record):
        canopy = decode_canopy(record[0], record[1], t1, t2)
        contribution = Contribution.of_point(canopy.centroid, canopy.mass)
        for other_id, other_centroid in broadcast.value:
            if checked_distance(measure, canopy.centroid, other_centroid) <= t1:
                yield other_id, contribution

    try:
        output = runner.run_pass(
            f"refine-{iteration}",
            runner.sc.parallelize(records),
            shift,
            Contribution.merge,
            iteration=iteration,
        )
    finally:
        broadcast.unpersist()

    previous = {canopy.canopy_id: canopy for canopy in canopies}
    shifted = []
    for canopy_id, contribution in sorted(output, key=itemgetter(0)):
        before = previous[canopy_id]
        canopy = Canopy(canopy_id, before.centroid, t1, t2)
        canopy.add(contribution)
        committed = canopy.commit(mass=before.mass)
        committed.membership = set(before.membership)
        shifted.append(committed)
    dropped = len(canopies) - len(shifted)
    if dropped:
        logger.info("Dropped %d canopies with no folded points", dropped)

    merged = merge_committed(shifted, measure)
    changed = any_changed(canopies, merged, delta, measure)
    logger.info(
        "Iteration %d: %d canopies (%d merged), changed=%s",
        iteration,
        len(merged),
        len(shifted) - len(merged),
        changed,
    )
    return PassResult(merged, changed, (time.time() - started) * 1000)


def assign(runner: SparkPassRunner, points: RDD, canopies: List[Canopy], measure, iteration: int) -> RDD:
    """
    Label every point with its nearest canopy.

    Returns a persisted RDD of ``(point_id, (canopy_id, distance))``.
    """
    broadcast = runner.sc.broadcast([(c.canopy_id, c.centroid) for c in canopies])

    def label(record):
        point_id, point = record
        canopy_id, distance = nearest_canopy(point, broadcast.value, measure)
        if canopy_id is not None:
            yield point_id, (canopy_id, distance)

    return runner.run_pass("assign", points, label, collect=False, iteration=iteration)


def count_members(runner: SparkPassRunner, assignments: RDD, iteration: int) -> dict:
    """Number of points assigned to each canopy id."""
    output = runner.run_pass(
        "count-members",
        assignments,
        lambda kv: [(kv[1][0], 1)],
        add,
        iteration=iteration,
    )
    return dict(output)
