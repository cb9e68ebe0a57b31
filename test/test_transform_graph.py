#!/usr/bin/env python3
"""
Unit tests for the transform graph.
"""

import os
import shutil
import sys
import tempfile
import unittest

import numpy as np
from scipy.spatial.transform import Rotation

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from multisensor_calibration.config import EstimationMethod
from multisensor_calibration.exceptions import CalibrationError
from multisensor_calibration.rigid_transform import RigidTransform, apply_axis_correction
from multisensor_calibration.transform_graph import TransformGraph
from multisensor_calibration.utils import load_extrinsics_yaml, save_extrinsics_yaml


SVD = EstimationMethod.POINT_SET_ALIGNMENT


def make_transform(euler_deg, translation):
    return RigidTransform(Rotation.from_euler('xyz', euler_deg, degrees=True).as_matrix(),
                          translation)


class TestTransformGraph(unittest.TestCase):

    def setUp(self):
        self.lms2 = make_transform([0, 0, 25], [0.0, 0.5, 0.0])
        self.ldmrs = make_transform([2, -5, -15], [0.3, -0.4, 0.2])

        self.graph = TransformGraph('lms1')
        self.graph.set('lms2', self.lms2, SVD)
        self.graph.set('ldmrs', self.ldmrs, SVD)

    def test_reference_is_identity(self):
        self.assertTrue(self.graph.get('lms1').is_close(RigidTransform.identity()))
        self.assertIn('lms1', self.graph)
        self.assertEqual(len(self.graph), 2)

    def test_compose_with_inverse(self):
        for T in (self.lms2, self.ldmrs):
            I = TransformGraph.compose(T, TransformGraph.invert(T))
            self.assertTrue(I.is_close(RigidTransform.identity(), atol=1e-9))

    def test_compose_order(self):
        p = np.array([1.0, 2.0, 3.0])
        composed = TransformGraph.compose(self.lms2, self.ldmrs)
        np.testing.assert_array_almost_equal(composed.apply(p), self.ldmrs.apply(self.lms2.apply(p)))

    def test_relative(self):
        p_lms2 = np.array([2.0, -0.3, 0.1])
        relative = self.graph.relative('lms2', 'ldmrs')

        expected = self.ldmrs.inverse().apply(self.lms2.apply(p_lms2))
        np.testing.assert_array_almost_equal(relative.apply(p_lms2), expected)

    def test_relative_to_reference(self):
        self.assertTrue(self.graph.relative('lms2', 'lms1').is_close(self.lms2))
        self.assertTrue(self.graph.relative('lms1', 'lms2').is_close(self.lms2.inverse()))

    def test_native_undoes_axis_correction(self):
        camera = make_transform([-90, 0, -90], [0.2, 0.1, 0.3])
        self.graph.set('pointgrey', apply_axis_correction(camera), SVD, axis_corrected=True)

        self.assertFalse(self.graph.get('pointgrey').is_close(camera))
        self.assertTrue(self.graph.native('pointgrey').is_close(camera, atol=1e-9))
        self.assertTrue(self.graph.relative('lms1', 'pointgrey', native=True)
                        .is_close(camera.inverse(), atol=1e-9))

    def test_set_twice(self):
        with self.assertRaises(CalibrationError):
            self.graph.set('lms2', self.ldmrs, SVD)

    def test_set_reference(self):
        with self.assertRaises(CalibrationError):
            self.graph.set('lms1', self.lms2, SVD)

    def test_frozen(self):
        self.graph.freeze()
        with self.assertRaises(CalibrationError):
            self.graph.set('kinect', self.lms2, SVD)
        # Reads still work
        self.assertTrue(self.graph.get('lms2').is_close(self.lms2))

    def test_unknown_sensor(self):
        with self.assertRaises(KeyError):
            self.graph.get('kinect')
        with self.assertRaises(KeyError):
            self.graph.relative('kinect', 'lms2')


class TestExtrinsicsExport(unittest.TestCase):

    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmp_dir)

    def test_to_extrinsics(self):
        graph = TransformGraph('lms1')
        T = make_transform([0, 0, 30], [1.0, 0.0, 0.0])
        graph.set('lms2', T, SVD)

        extrinsics = graph.to_extrinsics()
        self.assertEqual(list(extrinsics), ['lms2'])
        self.assertEqual(extrinsics['lms2']['parent'], 'lms1')
        self.assertEqual(extrinsics['lms2']['method'], 'point_set_alignment')
        np.testing.assert_array_almost_equal(extrinsics['lms2']['transform_matrix'], T.matrix)

    def test_rebuild_from_file(self):
        graph = TransformGraph('lms1')
        camera = make_transform([-88, 1, -91], [0.2, 0.1, 0.3])
        graph.set('lms2', make_transform([0, 0, 25], [0.0, 0.5, 0.0]), SVD)
        graph.set('pointgrey', apply_axis_correction(camera), SVD, axis_corrected=True)

        path = os.path.join(self.tmp_dir, 'extrinsics.yaml')
        save_extrinsics_yaml(graph.to_extrinsics(), path, 'lms1')
        loaded = TransformGraph.from_extrinsics('lms1', load_extrinsics_yaml(path))

        self.assertTrue(loaded.frozen)
        self.assertTrue(loaded.entry('pointgrey').axis_corrected)
        self.assertTrue(loaded.native('pointgrey').is_close(camera, atol=1e-5))
        self.assertTrue(loaded.get('lms2').is_close(graph.get('lms2'), atol=1e-5))

    def test_rebuild_wrong_parent(self):
        extrinsics = {
            'lms2': {'transform_matrix': np.eye(4), 'parent': 'ldmrs'}
        }
        with self.assertRaises(CalibrationError):
            TransformGraph.from_extrinsics('lms1', extrinsics)


if __name__ == '__main__':
    unittest.main()
