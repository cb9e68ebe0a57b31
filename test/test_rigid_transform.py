#!/usr/bin/env python3
"""
Unit tests for rigid transforms and point-set alignment.
"""

import os
import sys
import unittest

import numpy as np
from scipy.spatial.transform import Rotation

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from multisensor_calibration.exceptions import DegenerateConfiguration, InsufficientCorrespondences
from multisensor_calibration.rigid_transform import (
    RigidTransform,
    RigidTransformEstimator,
    alignment_rms,
    apply_axis_correction,
    kabsch_rotation,
    remove_axis_correction,
)


def make_transform(euler_deg, translation):
    return RigidTransform(Rotation.from_euler('xyz', euler_deg, degrees=True).as_matrix(),
                          translation)


class TestRigidTransform(unittest.TestCase):
    """Test the RigidTransform value type."""

    def test_identity(self):
        T = RigidTransform.identity()
        np.testing.assert_array_equal(T.matrix, np.eye(4))

    def test_rejects_reflection(self):
        with self.assertRaises(DegenerateConfiguration):
            RigidTransform(np.diag([1.0, 1.0, -1.0]), np.zeros(3))

    def test_rejects_non_orthonormal(self):
        with self.assertRaises(DegenerateConfiguration):
            RigidTransform(np.diag([2.0, 1.0, 1.0]), np.zeros(3))

    def test_rejects_bad_homogeneous_row(self):
        M = np.eye(4)
        M[3, 0] = 1.0
        with self.assertRaises(DegenerateConfiguration):
            RigidTransform.from_matrix(M)

    def test_inverse_composes_to_identity(self):
        T = make_transform([12, -40, 75], [1.0, -2.0, 0.5])
        for I in (T.then(T.inverse()), T.inverse().then(T)):
            np.testing.assert_array_almost_equal(I.rotation, np.eye(3), decimal=9)
            np.testing.assert_array_almost_equal(I.translation, np.zeros(3), decimal=9)

    def test_then_applies_in_order(self):
        a = make_transform([0, 0, 90], [1.0, 0.0, 0.0])
        b = make_transform([90, 0, 0], [0.0, 0.0, 2.0])
        p = np.array([0.3, -0.7, 1.1])

        np.testing.assert_array_almost_equal(a.then(b).apply(p), b.apply(a.apply(p)))
        self.assertFalse(a.then(b).is_close(b.then(a)))

    def test_rvec_tvec(self):
        T = make_transform([5, 10, -15], [0.1, 0.2, 3.0])
        T_back = RigidTransform.from_rvec_tvec(T.rotation_vector, T.translation)
        self.assertTrue(T.is_close(T_back, atol=1e-9))

    def test_axis_correction_roundtrip(self):
        T = make_transform([3, -8, 40], [0.5, 0.2, -0.1])
        corrected = apply_axis_correction(T)

        self.assertFalse(corrected.is_close(T))
        np.testing.assert_array_almost_equal(corrected.translation, T.translation)
        self.assertTrue(remove_axis_correction(corrected).is_close(T, atol=1e-9))


class TestRigidTransformEstimator(unittest.TestCase):
    """Test SVD point-set alignment."""

    def setUp(self):
        self.estimator = RigidTransformEstimator()
        rng = np.random.default_rng(42)
        self.source = rng.uniform(-2.0, 2.0, size=(8, 3))
        self.truth = make_transform([20, -35, 50], [0.4, -1.2, 0.75])

    def test_recovers_known_transform(self):
        target = self.truth.apply(self.source)
        T = self.estimator.estimate(self.source, target)

        np.testing.assert_array_almost_equal(T.rotation, self.truth.rotation, decimal=9)
        np.testing.assert_array_almost_equal(T.translation, self.truth.translation, decimal=9)
        self.assertAlmostEqual(np.linalg.det(T.rotation), 1.0, places=12)

    def test_recovers_from_four_points(self):
        source = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0], [0, 0, 1]], dtype=float)
        T = self.estimator.estimate(source, self.truth.apply(source))
        self.assertTrue(T.is_close(self.truth, atol=1e-9))

    def test_coplanar_points(self):
        """Planar sets leave one singular direction free; the result must stay proper."""
        source = self.source.copy()
        source[:, 2] = 0.3
        T = self.estimator.estimate(source, self.truth.apply(source))

        self.assertTrue(T.is_close(self.truth, atol=1e-9))
        self.assertAlmostEqual(np.linalg.det(T.rotation), 1.0, places=12)

    def test_reflection_is_corrected(self):
        # The naive V @ U.T for this covariance is diag(1, 1, -1)
        R = kabsch_rotation(np.diag([3.0, 2.0, -1.0]))
        np.testing.assert_array_almost_equal(R, np.eye(3), decimal=12)
        self.assertAlmostEqual(np.linalg.det(R), 1.0)

    def test_centroids_are_mapped(self):
        rng = np.random.default_rng(3)
        target = self.truth.apply(self.source) + rng.normal(scale=0.01, size=self.source.shape)
        T = self.estimator.estimate(self.source, target)

        np.testing.assert_array_almost_equal(
            T.apply(self.source.mean(axis=0)), target.mean(axis=0), decimal=9
        )
        self.assertLess(alignment_rms(self.source, target, T), 0.02)

    def test_too_few_points(self):
        with self.assertRaises(InsufficientCorrespondences):
            self.estimator.estimate(self.source[:2], self.truth.apply(self.source[:2]))

    def test_length_mismatch(self):
        with self.assertRaises(InsufficientCorrespondences):
            self.estimator.estimate(self.source, self.truth.apply(self.source[:5]))

    def test_collinear_points(self):
        line = np.outer(np.linspace(0.0, 3.0, 6), [1.0, 2.0, -0.5])
        with self.assertRaises(DegenerateConfiguration):
            self.estimator.estimate(line, self.truth.apply(line))

    def test_coincident_points(self):
        same = np.tile([1.0, 2.0, 3.0], (5, 1))
        with self.assertRaises(DegenerateConfiguration):
            self.estimator.estimate(same, self.truth.apply(same))

    def test_non_finite_points(self):
        source = self.source.copy()
        source[2, 1] = np.nan
        with self.assertRaises(DegenerateConfiguration):
            self.estimator.estimate(source, self.truth.apply(self.source))


if __name__ == '__main__':
    unittest.main()
