#!/usr/bin/env python3
"""
Project 3D points of one sensor into a camera image using calibrated extrinsics.

Loads the extrinsics written by compute_extrinsics.py, transforms the points
into the camera frame and draws them on the (undistorted) camera image.

Usage:
    python3 project_to_image.py \
        --extrinsics /path/to/extrinsics_calibrated.yaml \
        --reference lms1 --camera pointgrey --sensor lms1 \
        --intrinsics /path/to/pointgrey.yaml \
        --points /path/to/scan.npy --image /path/to/frame.png \
        --output /path/to/fusion.png
"""

import argparse
import os
import sys

import cv2
import numpy as np

try:
    from multisensor_calibration.exceptions import CalibrationError
    from multisensor_calibration.projection import CameraIntrinsics, draw_points, project_to_image
    from multisensor_calibration.transform_graph import TransformGraph
    from multisensor_calibration.utils import load_extrinsics_yaml
except ImportError:
    sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    from multisensor_calibration.exceptions import CalibrationError
    from multisensor_calibration.projection import CameraIntrinsics, draw_points, project_to_image
    from multisensor_calibration.transform_graph import TransformGraph
    from multisensor_calibration.utils import load_extrinsics_yaml


def load_points(filepath: str) -> np.ndarray:
    """Load an (N, 3) point array from .npy or whitespace/comma separated text."""
    if filepath.endswith('.npy'):
        points = np.load(filepath)
    else:
        with open(filepath, 'r') as f:
            text = f.read().replace(',', ' ').replace(';', ' ')
        points = np.array(text.split(), dtype=np.float64)
    return points.reshape(-1, 3)


def main():
    parser = argparse.ArgumentParser(
        description='Project sensor points into a camera image'
    )

    parser.add_argument('--extrinsics', '-e', type=str, required=True,
                       help='Path to extrinsics YAML file')
    parser.add_argument('--reference', '-r', type=str, required=True,
                       help='Reference sensor name')
    parser.add_argument('--camera', type=str, required=True,
                       help='Camera sensor name')
    parser.add_argument('--sensor', type=str, required=True,
                       help='Sensor the points were measured by')
    parser.add_argument('--intrinsics', type=str, required=True,
                       help='Camera intrinsics file')
    parser.add_argument('--points', type=str, required=True,
                       help='Points file (.npy or text, x y z per point)')
    parser.add_argument('--image', type=str, required=True,
                       help='Undistorted camera image')
    parser.add_argument('--output', '-o', type=str, default='image_fusion.png',
                       help='Output image path (default: image_fusion.png)')

    args = parser.parse_args()

    for path in (args.extrinsics, args.intrinsics, args.points, args.image):
        if not os.path.exists(path):
            print(f"ERROR: File not found: {path}")
            sys.exit(1)

    image = cv2.imread(args.image)
    if image is None:
        print(f"ERROR: Failed to load image: {args.image}")
        sys.exit(1)

    try:
        graph = TransformGraph.from_extrinsics(args.reference, load_extrinsics_yaml(args.extrinsics))
        intrinsics = CameraIntrinsics.from_file(args.intrinsics)
        points = load_points(args.points)

        height, width = image.shape[:2]
        pixels, mask = project_to_image(graph, args.camera, args.sensor, points,
                                        intrinsics, image_size=(width, height))
    except (CalibrationError, KeyError) as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    fusion = draw_points(image, pixels)
    cv2.imwrite(args.output, fusion)

    print(f"Projected {int(mask.sum())}/{len(points)} points into {args.camera}")
    print(f"✓ Fusion image saved to: {args.output}")


if __name__ == '__main__':
    main()
