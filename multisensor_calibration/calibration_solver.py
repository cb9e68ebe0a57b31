"""
Calibration session for a multi-sensor rig.

Collects correspondence rounds of the calibration ball and computes the
transform of every sensor relative to the reference sensor.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .config import EstimationMethod, RigConfig
from .correspondence import (
    CorrespondenceRound, CorrespondenceStore, GateDecision, RoundProducer, ValidityGate
)
from .exceptions import CalibrationError, IntrinsicsUnavailable
from .pose_estimation import PerspectivePoseEstimator
from .projection import CameraIntrinsics
from .rigid_transform import (
    RigidTransform, RigidTransformEstimator, alignment_rms, apply_axis_correction
)
from .transform_graph import TransformGraph

logger = logging.getLogger(__name__)


@dataclass
class CalibrationResult:
    """Result of calibrating one sensor against the reference sensor."""
    sensor_id: str
    reference_id: str
    method: EstimationMethod
    transform: RigidTransform              # sensor frame -> reference frame
    num_rounds: int = 0
    alignment_error: Optional[float] = None     # RMS 3D residual (m)
    reprojection_error: Optional[float] = None  # pixels
    inliers: Optional[np.ndarray] = None
    axis_corrected: bool = False
    max_reprojection_error: float = float('inf')

    @property
    def high_reprojection_error(self) -> bool:
        return (self.reprojection_error is not None and
                self.reprojection_error > self.max_reprojection_error)


class CalibrationSession:
    """
    Owns the correspondence store, the validity gate and the transform graph
    of one calibration run.
    """

    def __init__(self, config: RigConfig,
                 intrinsics: Optional[Dict[str, CameraIntrinsics]] = None):
        """
        Initialize the session.

        Args:
            config: Rig configuration
            intrinsics: Camera name -> intrinsics; cameras missing here can
                only be calibrated by point-set alignment
        """
        self.config = config
        self.intrinsics: Dict[str, CameraIntrinsics] = dict(intrinsics or {})

        self.store = CorrespondenceStore()
        self.gate = ValidityGate.from_config(config)
        self.graph = TransformGraph(config.reference_sensor)

        self.rigid_estimator = RigidTransformEstimator()
        self.pose_estimator = PerspectivePoseEstimator(config.ransac)

        self.results: Dict[Tuple[str, EstimationMethod], CalibrationResult] = {}
        self.failures: Dict[Tuple[str, EstimationMethod], CalibrationError] = {}
        self._rejected = 0

    @property
    def reference(self) -> str:
        return self.config.reference_sensor

    @property
    def previous_point(self) -> np.ndarray:
        """Reference point of the last accepted round, zero before the first."""
        last = self.store.last
        if last is None:
            return np.zeros(3)
        return last.points[self.reference]

    def submit(self, candidate: CorrespondenceRound) -> GateDecision:
        """Gate a candidate round and store it when accepted."""
        decision = self.gate.evaluate(candidate, self.previous_point, self.store)
        if decision.accepted:
            self.store.append(candidate)
            logger.info("Accepted round %d (t=%.3f, moved %.3f, consistency %.4f)",
                        len(self.store), candidate.timestamp,
                        decision.displacement, decision.consistency)
        else:
            self._rejected += 1
            logger.debug("Rejected round at t=%.3f: %s (moved %.3f, consistency %.4f)",
                         candidate.timestamp, decision.reason,
                         decision.displacement, decision.consistency)
        return decision

    def acquire(self, producer: RoundProducer, num_rounds: Optional[int] = None) -> int:
        """
        Consume rounds until enough are accepted or the producer ends.

        Returns:
            Number of accepted rounds in the store
        """
        target = num_rounds if num_rounds is not None else self.config.num_rounds
        while len(self.store) < target:
            candidate = producer.next_round()
            if candidate is None:
                logger.info("Round producer ended after %d accepted rounds", len(self.store))
                break
            self.submit(candidate)
        return len(self.store)

    def calibrate(self) -> TransformGraph:
        """
        Freeze the collected rounds and run every estimator of every sensor.

        A failing estimator is recorded in ``failures`` and does not affect
        other sensors. The sensor's primary method result enters the graph.
        Calling it again returns the graph of the first call.

        Returns:
            The frozen TransformGraph
        """
        if self.graph.frozen:
            logger.debug("Session already calibrated; returning the frozen graph")
            return self.graph

        self.store.freeze()

        for sensor_id in self.config.calibrated_sensors:
            policy = self.config.sensors[sensor_id].policy
            for method in policy.methods:
                try:
                    result = self.estimate(sensor_id, method)
                except CalibrationError as e:
                    self.failures[(sensor_id, method)] = e
                    logger.error("%s -> %s (%s) failed: %s",
                                 sensor_id, self.reference, method.value, e)
                    continue
                self.results[(sensor_id, method)] = result

            primary = self.results.get((sensor_id, policy.primary_method))
            if primary is None:
                logger.warning("No %s result for %s; sensor left uncalibrated",
                               policy.primary_method.value, sensor_id)
                continue
            self.graph.set(sensor_id, primary.transform, primary.method,
                           axis_corrected=primary.axis_corrected)

        self.graph.freeze()
        return self.graph

    def estimate(self, sensor_id: str, method: EstimationMethod) -> CalibrationResult:
        """Compute one sensor's transform with one method."""
        if method is EstimationMethod.POINT_SET_ALIGNMENT:
            return self._estimate_alignment(sensor_id)
        return self._estimate_pose(sensor_id, robust=method is EstimationMethod.POSE_FROM_POINTS_ROBUST)

    def _estimate_alignment(self, sensor_id: str) -> CalibrationResult:
        source = self.store.points(sensor_id)
        target = self.store.points(self.reference)

        transform = self.rigid_estimator.estimate(source, target)
        error = alignment_rms(source, target, transform)

        axis_corrected = self.config.sensors[sensor_id].policy.axis_correction
        if axis_corrected:
            transform = apply_axis_correction(transform)

        logger.info("%s -> %s (point_set_alignment): RMS %.4f m over %d rounds",
                    sensor_id, self.reference, error, len(source))

        return CalibrationResult(
            sensor_id=sensor_id,
            reference_id=self.reference,
            method=EstimationMethod.POINT_SET_ALIGNMENT,
            transform=transform,
            num_rounds=len(source),
            alignment_error=error,
            axis_corrected=axis_corrected,
        )

    def _estimate_pose(self, sensor_id: str, robust: bool) -> CalibrationResult:
        method = (EstimationMethod.POSE_FROM_POINTS_ROBUST if robust
                  else EstimationMethod.POSE_FROM_POINTS)
        intrinsics = self.intrinsics.get(sensor_id)
        if intrinsics is None:
            raise IntrinsicsUnavailable(f"No intrinsics loaded for camera '{sensor_id}'",
                                        camera=sensor_id)

        object_points = self.store.points(self.reference)
        image_points = self.store.pixels(sensor_id)

        estimate = self.pose_estimator.solve(object_points, image_points, intrinsics, robust)

        result = CalibrationResult(
            sensor_id=sensor_id,
            reference_id=self.reference,
            method=method,
            transform=estimate.camera_to_object,
            num_rounds=len(object_points),
            reprojection_error=estimate.reprojection_error,
            inliers=estimate.inliers,
            max_reprojection_error=self.config.max_reprojection_error,
        )

        logger.info("%s -> %s (%s): reprojection error %.3f px over %d rounds",
                    sensor_id, self.reference, method.value,
                    estimate.reprojection_error, len(object_points))
        if result.high_reprojection_error:
            logger.warning("%s (%s) reprojection error %.3f px exceeds %.3f px",
                           sensor_id, method.value, estimate.reprojection_error,
                           self.config.max_reprojection_error)
        return result

    def results_for(self, sensor_id: str) -> List[CalibrationResult]:
        return [r for (s, _), r in self.results.items() if s == sensor_id]

    def get_statistics(self) -> Dict[str, Any]:
        """Get statistics about the session."""
        stats = self.store.get_statistics()
        stats['rejected_rounds'] = self._rejected
        stats['calibrated_sensors'] = [e.sensor_id for e in self.graph]
        stats['failures'] = {f"{s}/{m.value}": str(e) for (s, m), e in self.failures.items()}
        return stats


def load_camera_intrinsics(config: RigConfig, intrinsics_dir: str) -> Dict[str, CameraIntrinsics]:
    """
    Load intrinsics for every camera of the rig.

    A camera whose file is missing or unreadable is logged and left out; only
    its pose-from-points estimators will fail later.
    """
    intrinsics = {}
    for camera in config.cameras:
        intrinsics_file = config.sensors[camera].intrinsics_file
        if intrinsics_file is None:
            logger.error("No intrinsics file specified for camera %s", camera)
            continue
        try:
            intrinsics[camera] = CameraIntrinsics.from_file(
                os.path.join(intrinsics_dir, intrinsics_file)
            )
        except IntrinsicsUnavailable as e:
            logger.error("Intrinsics unavailable for %s: %s", camera, e)
    return intrinsics
