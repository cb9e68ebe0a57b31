#!/usr/bin/env python3
"""
Unit tests for transform utilities and calibration file I/O.
"""

import os
import shutil
import sys
import tempfile
import unittest

import cv2
import numpy as np
from scipy.spatial.transform import Rotation

# Add package to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from multisensor_calibration.exceptions import IntrinsicsUnavailable
from multisensor_calibration.utils import (
    axis_correction_matrix,
    compose_transforms,
    invert_transform,
    load_extrinsics_yaml,
    load_intrinsics,
    load_rounds,
    matrix_from_quaternion,
    matrix_to_transform,
    quaternion_from_matrix,
    save_extrinsics_yaml,
    transform_to_matrix,
)


class TestTransformUtils(unittest.TestCase):
    """Test transformation utility functions."""

    def test_quaternion_roundtrip(self):
        """Test quaternion to matrix and back."""
        R_identity = np.eye(3)
        q = quaternion_from_matrix(R_identity)
        np.testing.assert_array_almost_equal(q, [0, 0, 0, 1], decimal=6)
        np.testing.assert_array_almost_equal(matrix_from_quaternion(q), R_identity, decimal=6)

        R_random = Rotation.random(random_state=7).as_matrix()
        q = quaternion_from_matrix(R_random)
        np.testing.assert_array_almost_equal(matrix_from_quaternion(q), R_random, decimal=6)

    def test_transform_roundtrip(self):
        """Test transform to matrix and back."""
        translation = np.array([1.0, 2.0, 3.0])
        quaternion = np.array([0.0, 0.0, 0.707, 0.707])  # 90 deg around Z
        quaternion = quaternion / np.linalg.norm(quaternion)

        T = transform_to_matrix(translation, quaternion)
        t_back, q_back = matrix_to_transform(T)

        np.testing.assert_array_almost_equal(translation, t_back, decimal=6)
        # Quaternions can have opposite sign and be equivalent
        if np.dot(quaternion, q_back) < 0:
            q_back = -q_back
        np.testing.assert_array_almost_equal(quaternion, q_back, decimal=6)

    def test_invert_transform(self):
        """Test transform inversion."""
        T = np.eye(4)
        T[:3, 3] = [1.0, 2.0, 3.0]
        T[:3, :3] = Rotation.from_euler('z', 45, degrees=True).as_matrix()

        T_inv = invert_transform(T)
        T_identity = compose_transforms(T, T_inv)

        np.testing.assert_array_almost_equal(T_identity, np.eye(4), decimal=6)

    def test_compose_transforms(self):
        """Test transform composition."""
        T1 = np.eye(4)
        T1[:3, 3] = [1.0, 0.0, 0.0]

        T2 = np.eye(4)
        T2[:3, :3] = Rotation.from_euler('z', 90, degrees=True).as_matrix()

        # T2 applied first: rotate, then translate
        T_composed = compose_transforms(T1, T2)
        p = T_composed @ np.array([1.0, 0.0, 0.0, 1.0])
        np.testing.assert_array_almost_equal(p[:3], [1.0, 1.0, 0.0], decimal=6)

    def test_axis_correction_maps_x_to_optical_axis(self):
        """The corrected X axis points along the optical Z axis."""
        C = axis_correction_matrix()
        np.testing.assert_array_almost_equal(C[:3, :3] @ [1, 0, 0], [0, 0, 1], decimal=9)
        self.assertAlmostEqual(np.linalg.det(C[:3, :3]), 1.0)


class TestCalibrationFiles(unittest.TestCase):
    """Test loading and saving of calibration files."""

    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmp_dir)

    def test_load_ros_intrinsics(self):
        """Test loading the intrinsics shipped with the example config."""
        path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
                            'config', 'intrinsics', 'pointgrey.yaml')
        intrinsics = load_intrinsics(path)

        self.assertEqual(intrinsics['camera_matrix'].shape, (3, 3))
        self.assertAlmostEqual(intrinsics['camera_matrix'][0, 0], 1079.56)
        self.assertEqual(len(intrinsics['dist_coeffs']), 5)
        self.assertEqual(intrinsics['image_size'], (960, 720))

    def test_load_opencv_intrinsics(self):
        """Test loading a FileStorage file written by stereo calibration."""
        path = os.path.join(self.tmp_dir, 'mystereocalib.yml')
        K = np.array([[700.0, 0, 320], [0, 705.0, 240], [0, 0, 1]])
        D = np.array([[0.1, -0.05, 0.0, 0.0, 0.0]])

        fs = cv2.FileStorage(path, cv2.FILE_STORAGE_WRITE)
        fs.write('CM1', K)
        fs.write('D1', D)
        fs.release()

        intrinsics = load_intrinsics(path)
        np.testing.assert_array_almost_equal(intrinsics['camera_matrix'], K)
        np.testing.assert_array_almost_equal(intrinsics['dist_coeffs'], D.ravel())

    def test_missing_intrinsics(self):
        with self.assertRaises(IntrinsicsUnavailable):
            load_intrinsics(os.path.join(self.tmp_dir, 'missing.yaml'))

    def test_malformed_intrinsics(self):
        path = os.path.join(self.tmp_dir, 'bad.yaml')
        with open(path, 'w') as f:
            f.write("camera_name: broken\n")
        with self.assertRaises(IntrinsicsUnavailable):
            load_intrinsics(path)

    def test_extrinsics_yaml(self):
        """Saved extrinsics load back with method and axis flag."""
        T = np.eye(4)
        T[:3, :3] = Rotation.from_euler('xyz', [10, -20, 30], degrees=True).as_matrix()
        T[:3, 3] = [0.5, -1.25, 0.3]
        translation, quaternion = matrix_to_transform(T)

        extrinsics = {
            'pointgrey': {
                'translation': translation,
                'quaternion': quaternion,
                'parent': 'lms1',
                'child': 'pointgrey',
                'method': 'pose_from_points_robust',
                'axis_corrected': False,
            }
        }
        path = os.path.join(self.tmp_dir, 'extrinsics.yaml')
        save_extrinsics_yaml(extrinsics, path, 'lms1')

        loaded = load_extrinsics_yaml(path)
        self.assertEqual(loaded['pointgrey']['parent'], 'lms1')
        self.assertEqual(loaded['pointgrey']['method'], 'pose_from_points_robust')
        self.assertFalse(loaded['pointgrey']['axis_corrected'])
        np.testing.assert_array_almost_equal(loaded['pointgrey']['transform_matrix'], T, decimal=5)

    def test_load_rounds(self):
        path = os.path.join(self.tmp_dir, 'rounds.yaml')
        with open(path, 'w') as f:
            f.write(
                "rounds:\n"
                "  - timestamp: 1.5\n"
                "    points: {lms1: [1.0, 0.5, 0.0], lms2: [0.9, 0.4, 0.0]}\n"
                "    pixels: {pointgrey: [480.0, 360.0]}\n"
            )

        rounds = load_rounds(path)
        self.assertEqual(len(rounds), 1)
        self.assertEqual(rounds[0]['points']['lms2'], [0.9, 0.4, 0.0])
        self.assertEqual(rounds[0]['pixels']['pointgrey'], [480.0, 360.0])


if __name__ == '__main__':
    unittest.main()
