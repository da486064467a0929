# Copyright (c) 2025 massivedatascience
# Licensed under the Apache License, Version 2.0

"""
Tests for canopies, contributions, merging and distance measures.
"""

import math
import unittest

from canopyshift.clusterer.canopy import Canopy, Contribution
from canopyshift.clusterer.canopy_pass import any_changed, merge_committed, merge_seeds, nearest_canopy
from canopyshift.clusterer.distance import (
    ChebyshevDistance,
    CosineDistance,
    EuclideanDistance,
    ManhattanDistance,
    SquaredEuclideanDistance,
    checked_distance,
    get_distance_measure,
)
from canopyshift.clusterer.errors import DistanceMeasureFault, InvalidConfiguration
from canopyshift.clusterer.vectors import MutableSparseVector


def vec(*values):
    return MutableSparseVector.from_dense(values)


class CanopyTest(unittest.TestCase):
    """Test cases for Canopy."""

    def setUp(self):
        self.measure = EuclideanDistance()

    def test_fold_running_mean(self):
        """Test folding follows c' = c + (p - c) / (n + 1)."""
        canopy = Canopy(0, vec(0.0, 0.0), t1=6.0, t2=3.0)
        points = [vec(0.0, 0.0), vec(3.0, 0.0), vec(1.0, 3.0)]

        expected = vec(0.0, 0.0)
        for n, point in enumerate(points):
            self.assertTrue(canopy.try_fold(point, self.measure))
            expected = expected.copy().add_scaled(point.copy().add_scaled(expected, -1.0), 1.0 / (n + 1))
            self.assertEqual(canopy.point_count, n + 1)
            pending = canopy.pending_centroid()
            self.assertAlmostEqual(pending[0], expected[0])
            self.assertAlmostEqual(pending[1], expected[1])

        self.assertAlmostEqual(canopy.pending_centroid()[0], 4.0 / 3.0)
        self.assertAlmostEqual(canopy.pending_centroid()[1], 1.0)
        # The reference centroid does not move during a pass.
        self.assertEqual(canopy.centroid, vec(0.0, 0.0))

    def test_fold_outside_t1_does_not_mutate(self):
        """Test a point beyond t1 leaves the canopy untouched."""
        canopy = Canopy(0, vec(0.0, 0.0), t1=6.0, t2=3.0)
        canopy.try_fold(vec(1.0, 0.0), self.measure, point_id="a")

        self.assertFalse(canopy.try_fold(vec(7.0, 0.0), self.measure, point_id="b"))
        self.assertEqual(canopy.point_count, 1)
        self.assertEqual(canopy.membership, {"a"})
        self.assertEqual(canopy.pending_centroid(), vec(1.0, 0.0))

    def test_fold_on_boundary(self):
        """Test t1 and t2 are inclusive."""
        canopy = Canopy(0, vec(0.0, 0.0), t1=6.0, t2=3.0)
        self.assertTrue(canopy.covered_by(vec(3.0, 0.0), self.measure))
        self.assertFalse(canopy.covered_by(vec(3.5, 0.0), self.measure))
        self.assertTrue(canopy.try_fold(vec(6.0, 0.0), self.measure))

    def test_seeding_scenario(self):
        """Test a point between two canopies folds into the near one only."""
        first = Canopy(0, vec(0.0, 0.0), t1=6.0, t2=3.0)
        second = Canopy(1, vec(10.0, 0.0), t1=6.0, t2=3.0)
        point = vec(3.0, 0.0)

        self.assertTrue(first.try_fold(point, self.measure))
        self.assertFalse(second.try_fold(point, self.measure))
        self.assertTrue(first.covered_by(point, self.measure))
        self.assertFalse(second.covered_by(point, self.measure))

    def test_has_converged(self):
        """Test convergence compares the committed and prior centroids."""
        fresh = Canopy(0, vec(1.0, 1.0), t1=3.0, t2=1.0)
        self.assertFalse(fresh.has_converged(100.0, self.measure))

        moved = Canopy(0, vec(1.0, 1.0), t1=3.0, t2=1.0, prior_centroid=vec(1.0, 1.5))
        self.assertTrue(moved.has_converged(0.5, self.measure))
        self.assertFalse(moved.has_converged(0.4, self.measure))

        still = Canopy(0, vec(1.0, 1.0), t1=3.0, t2=1.0, prior_centroid=vec(1.0, 1.0))
        self.assertTrue(still.has_converged(0.0, self.measure))

    def test_commit(self):
        """Test commit produces the next-iteration canopy."""
        canopy = Canopy(4, vec(0.0, 0.0), t1=6.0, t2=3.0)
        canopy.try_fold(vec(0.0, 0.0), self.measure, point_id=1)
        canopy.try_fold(vec(2.0, 2.0), self.measure, point_id=2)

        committed = canopy.commit()
        self.assertEqual(committed.canopy_id, 4)
        self.assertEqual(committed.centroid, vec(1.0, 1.0))
        self.assertEqual(committed.prior_centroid, vec(0.0, 0.0))
        self.assertEqual(committed.mass, 2)
        self.assertEqual(committed.point_count, 0)
        self.assertEqual(committed.membership, {1, 2})
        self.assertEqual(canopy.commit(mass=7.0).mass, 7.0)

    def test_commit_empty(self):
        """Test a canopy without folded points cannot be committed."""
        with self.assertRaises(ValueError):
            Canopy(0, vec(0.0), t1=1.0, t2=0.5).commit()

    def test_absorb(self):
        """Test absorbing combines folded points, membership and mass."""
        a = Canopy(0, vec(0.0), t1=5.0, t2=2.0)
        a.try_fold(vec(0.0), self.measure, point_id="p")
        b = Canopy(1, vec(1.0), t1=5.0, t2=2.0, mass=3.0)
        b.try_fold(vec(2.0), self.measure, point_id="q")

        a.absorb(b)
        self.assertEqual(a.point_count, 2)
        self.assertEqual(a.membership, {"p", "q"})
        self.assertEqual(a.mass, 3.0)
        self.assertEqual(a.pending_centroid(), vec(1.0))


class ContributionTest(unittest.TestCase):
    """Test cases for Contribution."""

    def test_merge_is_order_independent(self):
        """Test merging is associative and commutative."""
        a = Contribution.of_point(vec(1.0, 0.0))
        b = Contribution.of_point(vec(0.0, 2.0), weight=2.0)
        c = Contribution.of_point(vec(4.0, 4.0), weight=0.5)

        left = a.merge(b).merge(c)
        right = c.merge(a.merge(b))
        swapped = b.merge(c).merge(a)
        for result in (right, swapped):
            self.assertEqual(result.count, left.count)
            self.assertAlmostEqual(result.mean()[0], left.mean()[0])
            self.assertAlmostEqual(result.mean()[1], left.mean()[1])

        self.assertEqual(left.count, 3.5)
        self.assertAlmostEqual(left.mean()[0], 3.0 / 3.5)
        self.assertAlmostEqual(left.mean()[1], 6.0 / 3.5)

    def test_merge_does_not_mutate(self):
        """Test merging leaves its inputs unchanged."""
        a = Contribution.of_point(vec(1.0))
        b = Contribution.of_point(vec(3.0))
        a.merge(b)
        self.assertEqual(a.total, vec(1.0))
        self.assertEqual(a.count, 1.0)

    def test_empty_mean(self):
        """Test the mean of nothing is an error."""
        with self.assertRaises(ValueError):
            Contribution().mean()


class MergeTest(unittest.TestCase):
    """Test cases for the merge policy."""

    def setUp(self):
        self.measure = EuclideanDistance()

    def _seed(self, canopy_id, x):
        canopy = Canopy(canopy_id, vec(x), t1=4.0, t2=1.0)
        canopy.try_fold(vec(x), self.measure)
        return canopy

    def test_merge_seeds_lowest_id_wins(self):
        """Test a seed merges into the lowest-id canopy covering it."""
        seeds = [self._seed(2, 0.8), self._seed(0, 0.0), self._seed(1, 1.6), self._seed(3, 9.0)]

        survivors = merge_seeds(seeds, self.measure)
        self.assertEqual([c.canopy_id for c in survivors], [0, 1, 3])
        # 0.8 is within t2 of both 0.0 and 1.6 and goes to canopy 0.
        self.assertEqual(survivors[0].point_count, 2)
        self.assertEqual(survivors[1].point_count, 1)
        self.assertEqual(survivors[0].centroid, vec(0.0))

    def test_merge_committed_weighted_by_mass(self):
        """Test merged centroids are mass-weighted means."""
        a = Canopy(0, vec(0.0), t1=4.0, t2=1.0, mass=3.0, prior_centroid=vec(-1.0))
        b = Canopy(5, vec(1.0), t1=4.0, t2=1.0, mass=1.0, prior_centroid=vec(2.0))
        c = Canopy(7, vec(8.0), t1=4.0, t2=1.0, mass=2.0)

        survivors = merge_committed([c, b, a], self.measure)
        self.assertEqual([s.canopy_id for s in survivors], [0, 7])
        self.assertEqual(survivors[0].centroid, vec(0.25))
        self.assertEqual(survivors[0].mass, 4.0)
        self.assertEqual(survivors[0].prior_centroid, vec(-1.0))

    def test_any_changed(self):
        """Test change detection looks at movement and canopy count."""
        stable = [Canopy(0, vec(1.0), t1=4.0, t2=1.0, prior_centroid=vec(1.0))]
        moved = [Canopy(0, vec(2.0), t1=4.0, t2=1.0, prior_centroid=vec(1.0))]

        self.assertFalse(any_changed(stable, stable, 0.1, self.measure))
        self.assertTrue(any_changed(stable, moved, 0.1, self.measure))
        self.assertTrue(any_changed(stable + moved, stable, 0.1, self.measure))
        self.assertFalse(any_changed([], [], 0.1, self.measure))

    def test_nearest_canopy(self):
        """Test assignment picks one nearest canopy, first on ties."""
        snapshot = [(3, vec(0.0)), (1, vec(4.0)), (2, vec(10.0))]

        self.assertEqual(nearest_canopy(vec(3.0), snapshot, self.measure), (1, 1.0))
        self.assertEqual(nearest_canopy(vec(2.0), snapshot, self.measure)[0], 3)
        self.assertEqual(nearest_canopy(vec(2.0), [], self.measure), (None, float("inf")))


class DistanceMeasureTest(unittest.TestCase):
    """Test cases for distance measures."""

    def test_builtin_measures(self):
        """Test built-in measures on sparse inputs."""
        a = MutableSparseVector({0: 3.0})
        b = MutableSparseVector({1: 4.0})

        self.assertAlmostEqual(EuclideanDistance().distance(a, b), 5.0)
        self.assertAlmostEqual(SquaredEuclideanDistance().distance(a, b), 25.0)
        self.assertAlmostEqual(ManhattanDistance().distance(a, b), 7.0)
        self.assertAlmostEqual(ChebyshevDistance().distance(a, b), 4.0)
        self.assertAlmostEqual(CosineDistance().distance(a, b), 1.0)
        self.assertAlmostEqual(CosineDistance().distance(a, a.scaled(2.0)), 0.0)

    def test_symmetry_and_identity(self):
        """Test measures are symmetric and zero on equal vectors."""
        a = vec(1.0, -2.0, 0.5)
        b = vec(0.0, 3.0, 0.5)
        for name in ("euclidean", "squaredEuclidean", "manhattan", "chebyshev", "cosine"):
            measure = get_distance_measure(name)
            self.assertAlmostEqual(measure.distance(a, b), measure.distance(b, a))
            self.assertAlmostEqual(measure.distance(a, a), 0.0)
            self.assertGreaterEqual(measure.distance(a, b), 0.0)

    def test_get_distance_measure(self):
        """Test resolving measures by name or instance."""
        self.assertIsInstance(get_distance_measure(None), EuclideanDistance)
        self.assertIsInstance(get_distance_measure("manhattan"), ManhattanDistance)
        custom = ManhattanDistance()
        self.assertIs(get_distance_measure(custom), custom)
        with self.assertRaises(InvalidConfiguration):
            get_distance_measure("hamming")
        with self.assertRaises(InvalidConfiguration):
            get_distance_measure(42)

    def test_checked_distance_faults(self):
        """Test failing or invalid measures raise DistanceMeasureFault."""

        class Negative(object):
            def distance(self, a, b):
                return -1.0

        class NotANumber(object):
            def distance(self, a, b):
                return math.nan

        class Broken(object):
            def distance(self, a, b):
                raise ZeroDivisionError("boom")

        for measure in (Negative(), NotANumber(), Broken()):
            with self.assertRaises(DistanceMeasureFault):
                checked_distance(measure, vec(1.0), vec(2.0))

        canopy = Canopy(0, vec(0.0), t1=1.0, t2=0.5)
        with self.assertRaises(DistanceMeasureFault):
            canopy.try_fold(vec(0.0), Negative())
        self.assertEqual(canopy.point_count, 0)


if __name__ == "__main__":
    unittest.main()
