"""
Pinhole projection of 3D points into the camera image.

Image points handed to the calibration are already undistorted, so every
projection here runs with zero distortion.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from .rigid_transform import RigidTransform
from .transform_graph import TransformGraph
from .utils import load_intrinsics

# Diagnostic overlay canvas used when no camera image is at hand (width, height)
DEFAULT_CANVAS_SIZE = (960, 720)

OBSERVED_COLOR = (0, 255, 0)
PROJECTED_COLOR = (0, 0, 255)


@dataclass(frozen=True, eq=False)
class CameraIntrinsics:
    """Camera matrix and distortion, fixed for a calibration session."""
    camera_matrix: np.ndarray
    dist_coeffs: np.ndarray
    image_size: Optional[Tuple[int, int]] = None
    name: str = 'camera'

    def __post_init__(self):
        K = np.array(self.camera_matrix, dtype=np.float64).reshape(3, 3)
        dist = np.array(self.dist_coeffs, dtype=np.float64).ravel()
        object.__setattr__(self, 'camera_matrix', K)
        object.__setattr__(self, 'dist_coeffs', dist)

    @classmethod
    def from_file(cls, intrinsics_path: str) -> 'CameraIntrinsics':
        """Load intrinsics; raises IntrinsicsUnavailable on failure."""
        data = load_intrinsics(intrinsics_path)
        return cls(
            camera_matrix=data['camera_matrix'],
            dist_coeffs=data['dist_coeffs'],
            image_size=data['image_size'],
            name=data['camera_name'],
        )


class ReprojectionVerifier:
    """
    Checks a camera pose by projecting 3D points back into pixel space.

    Transforms passed here map object points into the camera frame.
    """

    @staticmethod
    def project(object_points: np.ndarray, transform: RigidTransform,
                intrinsics: CameraIntrinsics) -> np.ndarray:
        """Project (N, 3) object points to (N, 2) pixels."""
        object_points = np.asarray(object_points, dtype=np.float64).reshape(-1, 3)
        if len(object_points) == 0:
            return np.empty((0, 2))

        projected, _ = cv2.projectPoints(
            object_points,
            transform.rotation_vector,
            transform.translation,
            intrinsics.camera_matrix,
            np.zeros(5)
        )
        return projected.reshape(-1, 2)

    def point_errors(self, object_points: np.ndarray, image_points: np.ndarray,
                     transform: RigidTransform, intrinsics: CameraIntrinsics) -> np.ndarray:
        """Pixel distance between each projected and observed point."""
        image_points = np.asarray(image_points, dtype=np.float64).reshape(-1, 2)
        projected = self.project(object_points, transform, intrinsics)
        if projected.shape != image_points.shape:
            raise ValueError(
                f"Got {len(projected)} object points but {len(image_points)} image points"
            )
        return np.linalg.norm(projected - image_points, axis=1)

    def verify(self, object_points: np.ndarray, image_points: np.ndarray,
               transform: RigidTransform, intrinsics: CameraIntrinsics) -> float:
        """
        Aggregate reprojection error.

        Returns:
            L2 norm of the stacked pixel differences, i.e. the square root of
            the summed squared per-point distances
        """
        errors = self.point_errors(object_points, image_points, transform, intrinsics)
        return float(np.sqrt(np.sum(errors ** 2)))


def project_to_image(graph: TransformGraph, camera: str, sensor: str,
                     points: np.ndarray, intrinsics: CameraIntrinsics,
                     image_size: Optional[Tuple[int, int]] = None) -> Tuple[np.ndarray, np.ndarray]:
    """
    Project points measured by one sensor into a camera image.

    Args:
        graph: Calibrated transform graph holding both sensors
        camera: Camera sensor id
        sensor: Id of the sensor the points were measured by
        points: (N, 3) points in the sensor frame
        intrinsics: Camera intrinsics
        image_size: (width, height) used to drop points outside the image;
            defaults to the intrinsics image size

    Returns:
        Tuple of ((M, 2) pixels, boolean mask over the N input points)
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    sensor_to_camera = graph.relative(sensor, camera, native=True)
    in_camera = sensor_to_camera.apply(points)

    mask = in_camera[:, 2] > 0
    pixels = ReprojectionVerifier.project(in_camera[mask], RigidTransform.identity(), intrinsics)

    image_size = image_size or intrinsics.image_size
    if image_size is not None and len(pixels):
        width, height = image_size
        inside = ((pixels[:, 0] >= 0) & (pixels[:, 0] < width) &
                  (pixels[:, 1] >= 0) & (pixels[:, 1] < height))
        visible = np.flatnonzero(mask)
        mask[visible[~inside]] = False
        pixels = pixels[inside]

    return pixels, mask


def draw_points(image: np.ndarray, pixels: np.ndarray,
                color: Tuple[int, int, int] = PROJECTED_COLOR, radius: int = 5) -> np.ndarray:
    """Draw filled circles at pixel positions on a copy of the image."""
    canvas = image.copy()
    for u, v in np.asarray(pixels).reshape(-1, 2):
        cv2.circle(canvas, (int(round(u)), int(round(v))), radius, color, -1, cv2.LINE_8)
    return canvas


def draw_projection_overlay(projected: np.ndarray, observed: np.ndarray,
                            image: Optional[np.ndarray] = None,
                            canvas_size: Tuple[int, int] = DEFAULT_CANVAS_SIZE,
                            radius: int = 5) -> np.ndarray:
    """
    Diagnostic image with projected points in red and observed points in green.

    Draws on a black canvas when no image is given.
    """
    if image is None:
        width, height = canvas_size
        image = np.zeros((height, width, 3), dtype=np.uint8)
    canvas = draw_points(image, projected, PROJECTED_COLOR, radius)
    return draw_points(canvas, observed, OBSERVED_COLOR, radius)
