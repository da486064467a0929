# Copyright (c) 2025 massivedatascience
# Licensed under the Apache License, Version 2.0

"""
Canopies and the contributions folded into them.

A canopy has a fixed reference ``centroid`` for the duration of a pass.
Points within ``t1`` of it are folded into an accumulator; points within
``t2`` are "covered" and never seed a new canopy. When the pass ends the
canopy is committed: the accumulated mean becomes the next centroid and the
old centroid is kept as ``prior_centroid`` for the convergence check.
"""

from typing import Iterable, Optional, Set

from .distance import checked_distance
from .vectors import MutableSparseVector


class Contribution(object):
    """
    Weighted sum of points folded into one canopy.

    ``merge`` is associative and commutative, so contributions emitted by
    independent tasks can be reduced in any order.
    """

    __slots__ = ("total", "count")

    def __init__(self, total: Optional[MutableSparseVector] = None, count: float = 0.0):
        self.total = total if total is not None else MutableSparseVector()
        self.count = count

    @classmethod
    def of_point(cls, point: MutableSparseVector, weight: float = 1.0) -> "Contribution":
        return cls(point.scaled(weight), weight)

    def merge(self, other: "Contribution") -> "Contribution":
        return Contribution(self.total.copy().add_scaled(other.total), self.count + other.count)

    def mean(self) -> MutableSparseVector:
        if self.count <= 0:
            raise ValueError("Mean of an empty contribution")
        return self.total.scaled(1.0 / self.count)

    def __getstate__(self):
        return (self.total, self.count)

    def __setstate__(self, state):
        self.total, self.count = state

    def __repr__(self) -> str:
        return f"Contribution(count={self.count}, total={self.total!r})"


class Canopy(object):
    """
    Candidate cluster with an outer radius ``t1`` and an inner radius ``t2``.

    Parameters
    ----------
    canopy_id : int
        Sequence id assigned by the pass that created the canopy.
    centroid : MutableSparseVector
        Reference centroid. Distances in a pass are measured against it and
        it does not move until :meth:`commit`.
    t1, t2 : float
        Fold radius and coverage radius, ``t1 >= t2 >= 0``.
    mass : float, default=0.0
        Number of raw points the canopy stands for.
    prior_centroid : MutableSparseVector, optional
        Centroid of the previous iteration; ``None`` for a fresh seed.

    Attributes
    ----------
    membership : set
        Ids of the points folded in at seeding. Merged canopies pool their
        members; a point within t1 of several canopies belongs to each.
    """

    def __init__(
        self,
        canopy_id: int,
        centroid: MutableSparseVector,
        t1: float,
        t2: float,
        mass: float = 0.0,
        prior_centroid: Optional[MutableSparseVector] = None,
    ):
        self.canopy_id = canopy_id
        self.centroid = centroid
        self.t1 = t1
        self.t2 = t2
        self.mass = mass
        self.prior_centroid = prior_centroid
        self.membership: Set = set()
        self._folded = Contribution()

    @property
    def point_count(self) -> float:
        """Weight folded in during the current pass."""
        return self._folded.count

    @property
    def contribution(self) -> Contribution:
        return self._folded

    def pending_centroid(self) -> MutableSparseVector:
        """Running mean of the points folded so far."""
        if self._folded.count == 0:
            return self.centroid.copy()
        return self._folded.mean()

    def try_fold(self, point: MutableSparseVector, measure, point_id=None, weight: float = 1.0) -> bool:
        """
        Fold ``point`` in if it lies within ``t1`` of the centroid.

        Returns True when folded. Nothing changes when it is not.
        """
        if checked_distance(measure, point, self.centroid) > self.t1:
            return False
        self.add(Contribution.of_point(point, weight), [] if point_id is None else [point_id])
        return True

    def covered_by(self, point: MutableSparseVector, measure) -> bool:
        """True if ``point`` lies within ``t2`` of the centroid."""
        return checked_distance(measure, point, self.centroid) <= self.t2

    def has_converged(self, delta: float, measure) -> bool:
        """True if the centroid moved at most ``delta`` since the prior iteration."""
        if self.prior_centroid is None:
            return False
        return checked_distance(measure, self.centroid, self.prior_centroid) <= delta

    def add(self, contribution: Contribution, members: Iterable = ()):
        self._folded = self._folded.merge(contribution)
        self.membership.update(members)

    def absorb(self, other: "Canopy"):
        """Take over the folded points and mass of a canopy merged into this one."""
        self.add(other.contribution, other.membership)
        self.mass += other.mass

    def commit(self, mass: Optional[float] = None) -> "Canopy":
        """
        Close the pass and return the next-iteration canopy.

        The new canopy's centroid is the mean of everything folded in, its
        prior centroid is this canopy's centroid and its mass defaults to the
        folded weight.
        """
        if self._folded.count == 0:
            raise ValueError(f"Canopy {self.canopy_id} has no folded points")
        committed = Canopy(
            self.canopy_id,
            self._folded.mean(),
            self.t1,
            self.t2,
            mass=self._folded.count if mass is None else mass,
            prior_centroid=self.centroid,
        )
        committed.membership = set(self.membership)
        return committed

    def __repr__(self) -> str:
        return (
            f"Canopy(id={self.canopy_id}, centroid={self.centroid!r}, "
            f"mass={self.mass}, points={self.point_count})"
        )
