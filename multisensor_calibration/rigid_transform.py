"""
Rigid transforms and least-squares point-set alignment.

The estimator solves the absolute orientation problem with a singular value
decomposition of the cross-covariance of two corresponding point sets.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import cv2
import numpy as np

from .exceptions import DegenerateConfiguration, InsufficientCorrespondences
from .utils import (
    axis_correction_matrix, compose_transforms, invert_transform,
    quaternion_from_matrix
)

logger = logging.getLogger(__name__)

MIN_ALIGNMENT_POINTS = 3

# Relative size of the second singular value below which the centred
# point set is treated as collinear
RANK_TOLERANCE = 1e-9

ORTHONORMAL_TOLERANCE = 1e-6


@dataclass(frozen=True, eq=False)
class RigidTransform:
    """
    Rotation plus translation.

    Applying the transform maps a point p to ``rotation @ p + translation``.
    """
    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self):
        rotation = np.array(self.rotation, dtype=np.float64).reshape(3, 3)
        translation = np.array(self.translation, dtype=np.float64).reshape(3)

        if not (np.all(np.isfinite(rotation)) and np.all(np.isfinite(translation))):
            raise DegenerateConfiguration("Transform contains non-finite values")
        if not np.allclose(rotation.T @ rotation, np.eye(3), atol=ORTHONORMAL_TOLERANCE):
            raise DegenerateConfiguration("Rotation matrix is not orthonormal")
        if np.linalg.det(rotation) < 0:
            raise DegenerateConfiguration("Rotation matrix is a reflection (det = -1)")

        object.__setattr__(self, 'rotation', rotation)
        object.__setattr__(self, 'translation', translation)

    @classmethod
    def identity(cls) -> 'RigidTransform':
        return cls()

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> 'RigidTransform':
        """Build from a 4x4 homogeneous matrix."""
        T = np.asarray(T, dtype=np.float64)
        if T.shape != (4, 4) or not np.allclose(T[3, :], [0, 0, 0, 1]):
            raise DegenerateConfiguration("Not a valid homogeneous transform matrix")
        return cls(T[:3, :3], T[:3, 3])

    @classmethod
    def from_rvec_tvec(cls, rvec: np.ndarray, tvec: np.ndarray) -> 'RigidTransform':
        """Build from an OpenCV rotation vector and translation vector."""
        R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
        return cls(R, np.asarray(tvec, dtype=np.float64).flatten())

    @property
    def matrix(self) -> np.ndarray:
        """4x4 homogeneous transformation matrix."""
        T = np.eye(4)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    @property
    def quaternion(self) -> np.ndarray:
        """Rotation as quaternion [x, y, z, w]."""
        return quaternion_from_matrix(self.rotation)

    @property
    def rotation_vector(self) -> np.ndarray:
        rvec, _ = cv2.Rodrigues(self.rotation)
        return rvec.flatten()

    def inverse(self) -> 'RigidTransform':
        return RigidTransform.from_matrix(invert_transform(self.matrix))

    def then(self, other: 'RigidTransform') -> 'RigidTransform':
        """Transform that applies ``self`` first and ``other`` second."""
        return RigidTransform.from_matrix(compose_transforms(other.matrix, self.matrix))

    def apply(self, points: np.ndarray) -> np.ndarray:
        """Transform an (N, 3) array or a single 3-vector."""
        points = np.asarray(points, dtype=np.float64)
        return points @ self.rotation.T + self.translation

    def is_close(self, other: 'RigidTransform', atol: float = 1e-6) -> bool:
        return (np.allclose(self.rotation, other.rotation, atol=atol) and
                np.allclose(self.translation, other.translation, atol=atol))


def kabsch_rotation(H: np.ndarray) -> np.ndarray:
    """
    Proper rotation maximizing trace(R @ H) for a 3x3 cross-covariance H.

    The naive ``V @ U.T`` can be a reflection; the sign of the last singular
    direction is flipped in that case so that det(R) = +1.
    """
    try:
        U, _, Vt = np.linalg.svd(H)
    except np.linalg.LinAlgError as e:
        raise DegenerateConfiguration(f"SVD of cross-covariance failed: {e}") from e

    V = Vt.T
    D = np.eye(3)
    if np.linalg.det(V @ U.T) < 0:
        D[2, 2] = -1.0
    return V @ D @ U.T


class RigidTransformEstimator:
    """
    Least-squares rigid alignment between two corresponding point sets.
    """

    def __init__(self, min_points: int = MIN_ALIGNMENT_POINTS,
                 rank_tolerance: float = RANK_TOLERANCE):
        self.min_points = max(min_points, MIN_ALIGNMENT_POINTS)
        self.rank_tolerance = rank_tolerance

    def estimate(self, source_points: np.ndarray,
                 target_points: np.ndarray) -> RigidTransform:
        """
        Compute the transform mapping source points onto target points.

        Args:
            source_points: (N, 3) points in the frame being calibrated
            target_points: (N, 3) corresponding points in the reference frame

        Returns:
            RigidTransform T with target_i ~= T.apply(source_i)

        Raises:
            InsufficientCorrespondences: fewer than 3 points or length mismatch
            DegenerateConfiguration: collinear/coincident points or bad input
        """
        source = np.asarray(source_points, dtype=np.float64).reshape(-1, 3)
        target = np.asarray(target_points, dtype=np.float64).reshape(-1, 3)

        if len(source) != len(target):
            raise InsufficientCorrespondences(
                f"Point sets differ in length: {len(source)} != {len(target)}",
                required=len(source), available=len(target)
            )
        if len(source) < self.min_points:
            raise InsufficientCorrespondences(
                f"Need at least {self.min_points} correspondences, got {len(source)}",
                required=self.min_points, available=len(source)
            )
        if not (np.all(np.isfinite(source)) and np.all(np.isfinite(target))):
            raise DegenerateConfiguration("Point sets contain non-finite values")

        source_centroid = source.mean(axis=0)
        target_centroid = target.mean(axis=0)
        source_centered = source - source_centroid
        target_centered = target - target_centroid

        # H = sum_i s_i t_i^T
        H = source_centered.T @ target_centered

        singular_values = np.linalg.svd(H, compute_uv=False)
        if singular_values[0] <= 0 or singular_values[1] <= self.rank_tolerance * singular_values[0]:
            raise DegenerateConfiguration(
                f"Rank-deficient point configuration (singular values {singular_values})"
            )

        R = kabsch_rotation(H)
        t = target_centroid - R @ source_centroid

        transform = RigidTransform(R, t)
        logger.debug("Aligned %d correspondences, RMS residual %.6f",
                     len(source), alignment_rms(source, target, transform))
        return transform


def alignment_rms(source_points: np.ndarray, target_points: np.ndarray,
                  transform: RigidTransform) -> float:
    """RMS distance between transformed source points and target points."""
    residuals = transform.apply(source_points) - np.asarray(target_points, dtype=np.float64)
    return float(np.sqrt(np.mean(np.sum(residuals ** 2, axis=1))))


def apply_axis_correction(transform: RigidTransform,
                          correction: Optional[np.ndarray] = None) -> RigidTransform:
    """Right-multiply by the fixed optical-axis correction."""
    if correction is None:
        correction = axis_correction_matrix()
    return RigidTransform.from_matrix(compose_transforms(transform.matrix, correction))


def remove_axis_correction(transform: RigidTransform,
                           correction: Optional[np.ndarray] = None) -> RigidTransform:
    """Undo apply_axis_correction."""
    if correction is None:
        correction = axis_correction_matrix()
    return RigidTransform.from_matrix(
        compose_transforms(transform.matrix, invert_transform(correction))
    )
