"""
Utility functions for multi-sensor extrinsic calibration.
"""

import logging
import os
from typing import Any, Dict, List, Tuple

import cv2
import numpy as np
import yaml
from scipy.spatial.transform import Rotation

from .exceptions import IntrinsicsUnavailable

logger = logging.getLogger(__name__)

# Key pairs (camera matrix, distortion) tried in OpenCV FileStorage files
OPENCV_INTRINSICS_KEYS = [
    ('camera_matrix', 'distortion_coefficients'),
    ('CM', 'D'),
    ('CM1', 'D1'),
]


def load_rig_config(config_path: str) -> Dict[str, Any]:
    """Load rig configuration from YAML file."""
    with open(config_path, 'r') as f:
        return yaml.safe_load(f) or {}


def load_intrinsics(intrinsics_path: str) -> Dict[str, Any]:
    """
    Load camera intrinsics from a calibration file.

    Two layouts are supported: the ROS/Main Street Autonomy YAML format and
    OpenCV FileStorage files as written by the stereo calibration tools
    (keys CM/D or CM1/D1).

    Returns dict with:
        - camera_matrix: 3x3 numpy array
        - dist_coeffs: distortion coefficients
        - image_size: (width, height) or None
        - camera_name: string

    Raises:
        IntrinsicsUnavailable: if the file is missing or unreadable
    """
    if not os.path.isfile(intrinsics_path):
        raise IntrinsicsUnavailable(f"Intrinsics file not found: {intrinsics_path}")

    with open(intrinsics_path, 'r') as f:
        content = f.read()

    if content.lstrip().startswith('%YAML'):
        return _load_opencv_intrinsics(intrinsics_path)

    # Handle the MSA format (starts with comments)
    lines = content.split('\n')
    yaml_lines = [l for l in lines if not l.strip().startswith('#')]
    try:
        data = yaml.safe_load('\n'.join(yaml_lines))
        camera_matrix = np.array(data['camera_matrix']['data'], dtype=np.float64).reshape(3, 3)
        dist_coeffs = np.array(data['distortion_coefficients']['data'], dtype=np.float64)
    except (yaml.YAMLError, KeyError, TypeError, ValueError) as e:
        raise IntrinsicsUnavailable(
            f"Could not parse intrinsics from {intrinsics_path}: {e}"
        ) from e

    image_size = None
    if 'image_width' in data and 'image_height' in data:
        image_size = (int(data['image_width']), int(data['image_height']))

    return {
        'camera_matrix': camera_matrix,
        'dist_coeffs': dist_coeffs,
        'image_size': image_size,
        'camera_name': data.get('camera_name', 'unknown'),
    }


def _load_opencv_intrinsics(intrinsics_path: str) -> Dict[str, Any]:
    """Read camera matrix and distortion from an OpenCV FileStorage file."""
    fs = cv2.FileStorage(intrinsics_path, cv2.FILE_STORAGE_READ)
    if not fs.isOpened():
        raise IntrinsicsUnavailable(f"Failed to open intrinsics file: {intrinsics_path}")

    try:
        for matrix_key, dist_key in OPENCV_INTRINSICS_KEYS:
            node = fs.getNode(matrix_key)
            if node.empty():
                continue
            camera_matrix = node.mat()
            dist_node = fs.getNode(dist_key)
            dist_coeffs = dist_node.mat() if not dist_node.empty() else None
            if dist_coeffs is None:
                dist_coeffs = np.zeros(5)
            return {
                'camera_matrix': np.asarray(camera_matrix, dtype=np.float64).reshape(3, 3),
                'dist_coeffs': np.asarray(dist_coeffs, dtype=np.float64).ravel(),
                'image_size': None,
                'camera_name': os.path.splitext(os.path.basename(intrinsics_path))[0],
            }
    finally:
        fs.release()

    raise IntrinsicsUnavailable(
        f"No camera matrix found in {intrinsics_path} "
        f"(tried {', '.join(k for k, _ in OPENCV_INTRINSICS_KEYS)})"
    )


def load_rounds(rounds_path: str) -> List[Dict[str, Any]]:
    """
    Load recorded correspondence rounds from YAML file.

    The file holds a top-level ``rounds`` list; each entry has a
    ``timestamp``, a ``points`` mapping (sensor -> [x, y, z]) and an
    optional ``pixels`` mapping (sensor -> [u, v]).
    """
    with open(rounds_path, 'r') as f:
        data = yaml.safe_load(f) or {}
    return list(data.get('rounds', []))


def quaternion_from_matrix(R: np.ndarray) -> np.ndarray:
    """Convert a 3x3 rotation matrix to quaternion [x, y, z, w]."""
    return Rotation.from_matrix(R).as_quat()


def matrix_from_quaternion(q: np.ndarray) -> np.ndarray:
    """Convert quaternion [x, y, z, w] to 3x3 rotation matrix."""
    q = np.asarray(q, dtype=np.float64)
    return Rotation.from_quat(q / np.linalg.norm(q)).as_matrix()


def transform_to_matrix(translation: np.ndarray, quaternion: np.ndarray) -> np.ndarray:
    """
    Create 4x4 transformation matrix from translation and quaternion.

    Args:
        translation: [x, y, z] position
        quaternion: [x, y, z, w] rotation

    Returns:
        4x4 homogeneous transformation matrix
    """
    T = np.eye(4)
    T[:3, :3] = matrix_from_quaternion(quaternion)
    T[:3, 3] = translation
    return T


def matrix_to_transform(T: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Extract translation and quaternion from 4x4 transformation matrix.

    Returns:
        Tuple of (translation [x,y,z], quaternion [x,y,z,w])
    """
    return T[:3, 3].copy(), quaternion_from_matrix(T[:3, :3])


def invert_transform(T: np.ndarray) -> np.ndarray:
    """Invert a 4x4 rigid transformation matrix."""
    R = T[:3, :3]
    t = T[:3, 3]

    T_inv = np.eye(4)
    T_inv[:3, :3] = R.T
    T_inv[:3, 3] = -R.T @ t

    return T_inv


def compose_transforms(T1: np.ndarray, T2: np.ndarray) -> np.ndarray:
    """
    Compose two transformation matrices: T1 * T2

    Args:
        T1: First transformation (applied second)
        T2: Second transformation (applied first)

    Returns:
        Composed transformation matrix
    """
    return T1 @ T2


def axis_correction_matrix(angle: float = -np.pi / 2) -> np.ndarray:
    """
    Homogeneous rotation about the Y axis.

    With the default angle this turns a camera optical frame (Z forward)
    into a frame whose X axis points along the optical axis.
    """
    T = np.eye(4)
    T[:3, :3] = Rotation.from_euler('y', angle).as_matrix()
    return T


def save_extrinsics_yaml(extrinsics: Dict[str, Dict], output_path: str,
                         reference_frame: str):
    """
    Save computed extrinsics to YAML file.

    Args:
        extrinsics: Dict mapping sensor_name -> {translation, quaternion, parent,
            child, method, axis_corrected}
        output_path: Path to save the YAML file
        reference_frame: Name of the reference sensor
    """
    lines = [
        "# Extrinsic calibration computed by multisensor_calibration",
        f"# Reference frame: {reference_frame}",
        "# Position xyz; Quaternions xyzw",
        "# [ x_m, y_m, z_m, qx, qy, qz, qw]",
    ]

    for sensor_name, data in extrinsics.items():
        t = data['translation']
        q = data['quaternion']
        parent = data.get('parent', reference_frame)
        child = data.get('child', sensor_name)

        lines.append(f"{sensor_name}:")
        lines.append(f'  parent: "{parent}"')
        lines.append(f'  child: "{child}"')
        lines.append(f'  method: "{data.get("method", "")}"')
        lines.append(f"  axis_corrected: {str(bool(data.get('axis_corrected', False))).lower()}")
        lines.append(f"  value: [{t[0]:.6f}, {t[1]:.6f}, {t[2]:.6f}, {q[0]:.6f}, {q[1]:.6f}, {q[2]:.6f}, {q[3]:.6f}]")

    with open(output_path, 'w') as f:
        f.write('\n'.join(lines) + '\n')

    logger.info("Saved extrinsics to %s", output_path)


def load_extrinsics_yaml(filepath: str) -> Dict[str, Dict]:
    """
    Load extrinsics written by save_extrinsics_yaml.

    Returns:
        Dict mapping sensor_name -> {parent, child, method, axis_corrected,
        translation, quaternion, transform_matrix}
    """
    with open(filepath, 'r') as f:
        data = yaml.safe_load(f) or {}

    extrinsics = {}
    for sensor_name, entry in data.items():
        value = entry.get('value', [])
        if len(value) != 7:
            logger.warning("Invalid extrinsics for %s in %s", sensor_name, filepath)
            continue

        translation = np.array(value[:3], dtype=np.float64)
        quaternion = np.array(value[3:], dtype=np.float64)
        extrinsics[sensor_name] = {
            'parent': entry.get('parent'),
            'child': entry.get('child', sensor_name),
            'method': entry.get('method', ''),
            'axis_corrected': bool(entry.get('axis_corrected', False)),
            'translation': translation,
            'quaternion': quaternion,
            'transform_matrix': transform_to_matrix(translation, quaternion),
        }

    return extrinsics
