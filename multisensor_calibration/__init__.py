# multisensor_calibration package
"""
Extrinsic calibration of a multi-sensor rig using a calibration ball.

This package computes the relative poses of laser scanners, depth cameras
and a camera mounted on one platform from corresponding ball centres, and
composes them into a transform graph rooted at a reference sensor.
"""

from .config import EstimationMethod, RigConfig, SensorKind
from .correspondence import (
    CorrespondenceRound, CorrespondenceStore, SequenceRoundProducer, ValidityGate
)
from .calibration_solver import CalibrationSession, load_camera_intrinsics
from .exceptions import (
    CalibrationError, DegenerateConfiguration, InsufficientCorrespondences,
    IntrinsicsUnavailable
)
from .pose_estimation import PerspectivePoseEstimator
from .projection import CameraIntrinsics, ReprojectionVerifier
from .rigid_transform import RigidTransform, RigidTransformEstimator
from .transform_graph import TransformGraph

__version__ = "0.1.0"
__all__ = [
    'CalibrationSession',
    'CameraIntrinsics',
    'CorrespondenceRound',
    'CorrespondenceStore',
    'EstimationMethod',
    'PerspectivePoseEstimator',
    'ReprojectionVerifier',
    'RigConfig',
    'RigidTransform',
    'RigidTransformEstimator',
    'SensorKind',
    'SequenceRoundProducer',
    'TransformGraph',
    'ValidityGate',
    'load_camera_intrinsics',
    'CalibrationError',
    'DegenerateConfiguration',
    'InsufficientCorrespondences',
    'IntrinsicsUnavailable',
]
