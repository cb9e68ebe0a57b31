"""
Camera pose from 3D reference points and their 2D image projections (PnP).
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from .config import RansacConfig
from .exceptions import DegenerateConfiguration, InsufficientCorrespondences
from .projection import CameraIntrinsics, ReprojectionVerifier
from .rigid_transform import RigidTransform

logger = logging.getLogger(__name__)

MIN_PNP_POINTS = 4

# Fewest points the iterative solver accepts without an initial pose
MIN_DLT_POINTS = 6


@dataclass
class PoseEstimate:
    """PnP solution with its diagnostics."""
    camera_to_object: RigidTransform
    object_to_camera: RigidTransform
    reprojection_error: float
    inliers: Optional[np.ndarray] = None

    @property
    def num_inliers(self) -> int:
        if self.inliers is None:
            return 0
        return len(self.inliers)


class PerspectivePoseEstimator:
    """
    Pose-from-points solver.

    The deterministic mode runs OpenCV's iterative (Levenberg-Marquardt)
    solver over all points. The robust mode runs a RANSAC search over
    minimal subsets and re-fits the iterative solver on the best inlier set.
    Image points are expected undistorted; no distortion is applied.
    """

    def __init__(self, ransac: Optional[RansacConfig] = None):
        self.ransac = ransac or RansacConfig()
        self.verifier = ReprojectionVerifier()

    def estimate(self, object_points: np.ndarray, image_points: np.ndarray,
                 intrinsics: CameraIntrinsics,
                 robust: bool = False) -> Tuple[RigidTransform, float]:
        """
        Estimate the camera pose.

        Args:
            object_points: (N, 3) points in the object (reference) frame
            image_points: (N, 2) undistorted pixel observations
            intrinsics: Camera intrinsics
            robust: Use the RANSAC variant

        Returns:
            Tuple of (camera_to_object transform, reprojection error)
        """
        result = self.solve(object_points, image_points, intrinsics, robust)
        return result.camera_to_object, result.reprojection_error

    def solve(self, object_points: np.ndarray, image_points: np.ndarray,
              intrinsics: CameraIntrinsics, robust: bool = False) -> PoseEstimate:
        """Like estimate(), returning the full PoseEstimate."""
        object_points = np.ascontiguousarray(object_points, dtype=np.float64).reshape(-1, 3)
        image_points = np.ascontiguousarray(image_points, dtype=np.float64).reshape(-1, 2)

        if len(object_points) != len(image_points):
            raise InsufficientCorrespondences(
                f"Got {len(object_points)} object points but {len(image_points)} image points",
                required=len(object_points), available=len(image_points)
            )
        if len(object_points) < MIN_PNP_POINTS:
            raise InsufficientCorrespondences(
                f"PnP needs at least {MIN_PNP_POINTS} correspondences, got {len(object_points)}",
                required=MIN_PNP_POINTS, available=len(object_points)
            )
        if not (np.all(np.isfinite(object_points)) and np.all(np.isfinite(image_points))):
            raise DegenerateConfiguration("PnP input contains non-finite values")

        camera_matrix = np.array(intrinsics.camera_matrix, dtype=np.float64)

        inliers = None
        if robust:
            rvec, tvec, inliers = self._solve_ransac(object_points, image_points, camera_matrix)
        else:
            rvec, tvec = self._solve_iterative(object_points, image_points, camera_matrix)

        object_to_camera = RigidTransform.from_rvec_tvec(rvec, tvec)
        reprojection_error = self.verifier.verify(
            object_points, image_points, object_to_camera, intrinsics
        )

        logger.debug("%s PnP over %d points: reprojection error %.4f px",
                     "Robust" if robust else "Iterative", len(object_points),
                     reprojection_error)

        return PoseEstimate(
            camera_to_object=object_to_camera.inverse(),
            object_to_camera=object_to_camera,
            reprojection_error=reprojection_error,
            inliers=inliers,
        )

    def _solve_iterative(self, object_points: np.ndarray, image_points: np.ndarray,
                         camera_matrix: np.ndarray,
                         rvec: Optional[np.ndarray] = None,
                         tvec: Optional[np.ndarray] = None) -> Tuple[np.ndarray, np.ndarray]:
        use_guess = rvec is not None and tvec is not None
        if not use_guess and len(object_points) < MIN_DLT_POINTS:
            # The iterative solver initializes with DLT, which needs 6 points
            rvec, tvec = self._solve_epnp(object_points, image_points, camera_matrix)
            use_guess = True
        elif not use_guess:
            rvec = np.zeros((3, 1))
            tvec = np.zeros((3, 1))

        try:
            success, rvec, tvec = cv2.solvePnP(
                object_points, image_points,
                camera_matrix, None,
                rvec=rvec.copy(), tvec=tvec.copy(),
                useExtrinsicGuess=use_guess,
                flags=cv2.SOLVEPNP_ITERATIVE
            )
        except cv2.error as e:
            raise DegenerateConfiguration(f"solvePnP failed: {e}") from e

        if not success:
            raise DegenerateConfiguration("solvePnP did not converge")
        return rvec, tvec

    def _solve_epnp(self, object_points: np.ndarray, image_points: np.ndarray,
                    camera_matrix: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Closed-form initial pose for fewer than six points."""
        try:
            success, rvec, tvec = cv2.solvePnP(
                object_points, image_points,
                camera_matrix, None,
                flags=cv2.SOLVEPNP_EPNP
            )
        except cv2.error as e:
            raise DegenerateConfiguration(f"EPnP initialization failed: {e}") from e

        if not success:
            raise DegenerateConfiguration("EPnP initialization failed")
        return rvec, tvec

    def _solve_ransac(self, object_points: np.ndarray, image_points: np.ndarray,
                      camera_matrix: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        try:
            success, rvec, tvec, inliers = cv2.solvePnPRansac(
                object_points, image_points,
                camera_matrix, None,
                iterationsCount=self.ransac.iterations,
                reprojectionError=self.ransac.reprojection_error,
                confidence=self.ransac.confidence,
                flags=cv2.SOLVEPNP_ITERATIVE
            )
        except cv2.error as e:
            raise DegenerateConfiguration(f"solvePnPRansac failed: {e}") from e

        if not success or inliers is None:
            raise DegenerateConfiguration("RANSAC found no consistent pose")

        inliers = np.sort(inliers.flatten())
        if len(inliers) < MIN_PNP_POINTS:
            raise DegenerateConfiguration(
                f"RANSAC kept only {len(inliers)} inliers, need {MIN_PNP_POINTS}"
            )

        logger.debug("RANSAC kept %d of %d points", len(inliers), len(object_points))

        # Final fit over the consensus set, seeded with the RANSAC pose
        rvec, tvec = self._solve_iterative(
            object_points[inliers], image_points[inliers], camera_matrix, rvec, tvec
        )
        return rvec, tvec, inliers
