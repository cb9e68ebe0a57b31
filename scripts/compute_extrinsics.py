#!/usr/bin/env python3
"""
Compute extrinsic calibration from recorded calibration-ball rounds.

This script replays recorded ball-centre observations through the validity
gate and computes the pose of every sensor relative to the reference sensor.

Usage:
    python3 compute_extrinsics.py \
        --rig-config /path/to/rig.yaml \
        --rounds /path/to/rounds.yaml \
        --intrinsics-dir /path/to/intrinsics \
        --output /path/to/extrinsics_calibrated.yaml
"""

import argparse
import logging
import os
import sys

import cv2
import numpy as np

# Add package to path for standalone execution
try:
    from multisensor_calibration.calibration_solver import CalibrationSession, load_camera_intrinsics
    from multisensor_calibration.config import RigConfig
    from multisensor_calibration.correspondence import SequenceRoundProducer
    from multisensor_calibration.exceptions import ConfigurationError
    from multisensor_calibration.projection import ReprojectionVerifier, draw_projection_overlay
    from multisensor_calibration.utils import load_rounds, save_extrinsics_yaml
except ImportError:
    sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    from multisensor_calibration.calibration_solver import CalibrationSession, load_camera_intrinsics
    from multisensor_calibration.config import RigConfig
    from multisensor_calibration.correspondence import SequenceRoundProducer
    from multisensor_calibration.exceptions import ConfigurationError
    from multisensor_calibration.projection import ReprojectionVerifier, draw_projection_overlay
    from multisensor_calibration.utils import load_rounds, save_extrinsics_yaml


def save_overlay_images(session: CalibrationSession, output_dir: str):
    """Write projected-vs-observed ball centres for every camera PnP result."""
    os.makedirs(output_dir, exist_ok=True)
    verifier = ReprojectionVerifier()
    object_points = session.store.points(session.reference)

    for (sensor_id, method), result in session.results.items():
        if not method.needs_intrinsics:
            continue

        intrinsics = session.intrinsics[sensor_id]
        projected = verifier.project(object_points, result.transform.inverse(), intrinsics)
        observed = session.store.pixels(sensor_id)

        canvas_size = intrinsics.image_size or (960, 720)
        overlay = draw_projection_overlay(projected, observed, canvas_size=canvas_size)
        path = os.path.join(output_dir, f"{sensor_id}_{method.value}_projectPoints_imagePoints.jpg")
        cv2.imwrite(path, overlay)
        print(f"  Overlay saved to: {path}")


def main():
    parser = argparse.ArgumentParser(
        description='Compute extrinsic calibration from recorded ball-centre rounds'
    )

    parser.add_argument('--rig-config', type=str, required=True,
                       help='Path to rig.yaml config file')
    parser.add_argument('--rounds', type=str, required=True,
                       help='Path to recorded rounds YAML file')
    parser.add_argument('--intrinsics-dir', type=str, default='.',
                       help='Directory containing camera intrinsics files (default: .)')
    parser.add_argument('--output', '-o', type=str, default='extrinsics_calibrated.yaml',
                       help='Output file path for extrinsics (default: extrinsics_calibrated.yaml)')
    parser.add_argument('--num-rounds', type=int, default=None,
                       help='Number of rounds to accept (default: from rig config)')
    parser.add_argument('--overlay-dir', type=str, default=None,
                       help='Directory for reprojection overlay images (optional)')
    parser.add_argument('--verbose', '-v', action='store_true',
                       help='Verbose output')

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s'
    )

    # Load configurations
    print("Loading configurations...")
    try:
        config = RigConfig.from_yaml(args.rig_config)
    except ConfigurationError as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    intrinsics = load_camera_intrinsics(config, args.intrinsics_dir)
    for camera in config.cameras:
        status = "✓" if camera in intrinsics else "✗ (pose-from-points disabled)"
        print(f"  Intrinsics {camera}: {status}")

    print(f"\nReference sensor: {config.reference_sensor}")
    print(f"Calibrated sensors: {config.calibrated_sensors}")
    print()

    # Replay recorded rounds
    session = CalibrationSession(config, intrinsics)
    rounds = load_rounds(args.rounds)
    print(f"Loaded {len(rounds)} recorded rounds")

    accepted = session.acquire(SequenceRoundProducer.from_dicts(rounds), args.num_rounds)

    print("\n" + "="*60)
    print("CORRESPONDENCE SUMMARY")
    print("="*60)
    stats = session.get_statistics()
    print(f"  Accepted rounds: {accepted}")
    print(f"  Rejected rounds: {stats['rejected_rounds']}")

    # Compute calibration
    print("\n" + "="*60)
    print("COMPUTING EXTRINSIC CALIBRATION")
    print("="*60)

    graph = session.calibrate()

    for sensor_id in config.calibrated_sensors:
        for method in config.sensors[sensor_id].policy.methods:
            key = (sensor_id, method)
            if key in session.results:
                result = session.results[key]
                if result.reprojection_error is not None:
                    detail = f"reprojection error={result.reprojection_error:.3f}px"
                    if result.high_reprojection_error:
                        detail += " (HIGH)"
                else:
                    detail = f"RMS={result.alignment_error:.4f}m"
                print(f"✓ {sensor_id} -> {config.reference_sensor} [{method.value}]: "
                      f"{detail}, rounds={result.num_rounds}")
            elif key in session.failures:
                print(f"✗ {sensor_id} -> {config.reference_sensor} [{method.value}]: "
                      f"FAILED ({session.failures[key]})")

    extrinsics = graph.to_extrinsics()

    if not extrinsics:
        print("\nERROR: Calibration failed - no valid extrinsics computed")
        print("Possible causes:")
        print("  - Insufficient accepted rounds")
        print("  - Collinear ball positions")
        print("  - Missing camera intrinsics")
        sys.exit(1)

    # Print results
    print("\n" + "="*60)
    print("CALIBRATION RESULTS")
    print("="*60)

    for sensor_id, data in extrinsics.items():
        t = data['translation']
        q = data['quaternion']
        print(f"\n{sensor_id} (relative to {config.reference_sensor}, {data['method']}):")
        print(f"  Translation: [{t[0]:.6f}, {t[1]:.6f}, {t[2]:.6f}] m")
        print(f"  Quaternion:  [{q[0]:.6f}, {q[1]:.6f}, {q[2]:.6f}, {q[3]:.6f}]")
        print(f"  Distance:    {np.linalg.norm(t):.4f} m")

    # Save results
    print("\n" + "="*60)
    print("SAVING RESULTS")
    print("="*60)

    save_extrinsics_yaml(extrinsics, args.output, config.reference_sensor)

    if args.overlay_dir:
        save_overlay_images(session, args.overlay_dir)

    print("\n✓ Calibration complete!")
    print(f"  Extrinsics saved to: {args.output}")


if __name__ == '__main__':
    main()
