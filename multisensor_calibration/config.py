"""
Rig configuration and per-sensor calibration policies.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import ConfigurationError
from .utils import load_rig_config


class SensorKind(Enum):
    """Kinds of sensor that can be mounted on the rig."""
    LASER_2D = 'laser_2d'
    LASER_3D = 'laser_3d'
    DEPTH_CAMERA = 'depth_camera'
    CAMERA = 'camera'


class EstimationMethod(Enum):
    """How a sensor transform was computed."""
    POINT_SET_ALIGNMENT = 'point_set_alignment'
    POSE_FROM_POINTS = 'pose_from_points'
    POSE_FROM_POINTS_ROBUST = 'pose_from_points_robust'

    @property
    def needs_intrinsics(self) -> bool:
        return self is not EstimationMethod.POINT_SET_ALIGNMENT


@dataclass(frozen=True)
class SensorPolicy:
    """What a round must carry for a sensor kind and how it is calibrated."""
    requires_point: bool
    requires_pixel: bool
    consistency_check: bool
    methods: Tuple[EstimationMethod, ...]
    primary_method: EstimationMethod
    axis_correction: bool = False


SENSOR_POLICIES: Dict[SensorKind, SensorPolicy] = {
    SensorKind.LASER_2D: SensorPolicy(
        requires_point=True,
        requires_pixel=False,
        consistency_check=True,
        methods=(EstimationMethod.POINT_SET_ALIGNMENT,),
        primary_method=EstimationMethod.POINT_SET_ALIGNMENT,
    ),
    SensorKind.LASER_3D: SensorPolicy(
        requires_point=True,
        requires_pixel=False,
        consistency_check=True,
        methods=(EstimationMethod.POINT_SET_ALIGNMENT,),
        primary_method=EstimationMethod.POINT_SET_ALIGNMENT,
    ),
    SensorKind.DEPTH_CAMERA: SensorPolicy(
        requires_point=True,
        requires_pixel=False,
        consistency_check=False,
        methods=(EstimationMethod.POINT_SET_ALIGNMENT,),
        primary_method=EstimationMethod.POINT_SET_ALIGNMENT,
    ),
    # The camera reports a ball centre estimated from the ball radius and
    # the undistorted pixel of the ball centre
    SensorKind.CAMERA: SensorPolicy(
        requires_point=True,
        requires_pixel=True,
        consistency_check=False,
        methods=(
            EstimationMethod.POINT_SET_ALIGNMENT,
            EstimationMethod.POSE_FROM_POINTS,
            EstimationMethod.POSE_FROM_POINTS_ROBUST,
        ),
        primary_method=EstimationMethod.POSE_FROM_POINTS_ROBUST,
        axis_correction=True,
    ),
}


@dataclass
class SensorConfig:
    name: str
    kind: SensorKind
    intrinsics_file: Optional[str] = None

    @property
    def policy(self) -> SensorPolicy:
        return SENSOR_POLICIES[self.kind]


@dataclass
class RansacConfig:
    iterations: int = 1000
    reprojection_error: float = 8.0
    confidence: float = 0.99


@dataclass
class RigConfig:
    """
    Calibration settings for one sensor rig.

    The reference sensor holds the identity transform; every other sensor is
    calibrated relative to it.
    """
    reference_sensor: str
    sensors: Dict[str, SensorConfig]
    num_rounds: int = 15
    min_displacement: float = 0.10
    consistency_threshold: float = 0.15
    max_reprojection_error: float = 10.0
    ransac: RansacConfig = field(default_factory=RansacConfig)

    def __post_init__(self):
        self.validate()

    def validate(self):
        if self.reference_sensor not in self.sensors:
            raise ConfigurationError(
                f"Reference sensor '{self.reference_sensor}' is not a configured sensor"
            )
        if not self.sensors[self.reference_sensor].policy.requires_point:
            raise ConfigurationError("Reference sensor must report 3D points")
        if self.sensors[self.reference_sensor].kind is SensorKind.CAMERA:
            raise ConfigurationError("A camera cannot be the reference sensor")
        if self.num_rounds < 1:
            raise ConfigurationError("num_rounds must be positive")
        for name in ('min_displacement', 'consistency_threshold', 'max_reprojection_error'):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if self.ransac.iterations < 1 or self.ransac.reprojection_error <= 0:
            raise ConfigurationError("RANSAC iterations and threshold must be positive")
        if not 0 < self.ransac.confidence < 1:
            raise ConfigurationError("RANSAC confidence must be in (0, 1)")

    @property
    def calibrated_sensors(self) -> List[str]:
        """Non-reference sensors, in configuration order."""
        return [name for name in self.sensors if name != self.reference_sensor]

    @property
    def cameras(self) -> List[str]:
        return [name for name, s in self.sensors.items() if s.policy.requires_pixel]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RigConfig':
        """Build a config from the parsed rig YAML dictionary."""
        if not isinstance(data, dict):
            raise ConfigurationError("Rig configuration must be a mapping")

        sensors_data = data.get('sensors')
        if not sensors_data:
            raise ConfigurationError("No sensors defined in rig configuration")

        sensors = {}
        for name, sensor_data in sensors_data.items():
            sensor_data = sensor_data or {}
            kind_name = sensor_data.get('kind')
            try:
                kind = SensorKind(kind_name)
            except ValueError:
                valid = ', '.join(k.value for k in SensorKind)
                raise ConfigurationError(
                    f"Unknown kind '{kind_name}' for sensor {name} (expected one of: {valid})"
                ) from None
            sensors[name] = SensorConfig(
                name=name,
                kind=kind,
                intrinsics_file=sensor_data.get('intrinsics_file'),
            )

        if 'reference_sensor' not in data:
            raise ConfigurationError("reference_sensor is required")

        ransac_data = data.get('ransac', {}) or {}
        try:
            ransac = RansacConfig(
                iterations=int(ransac_data.get('iterations', 1000)),
                reprojection_error=float(ransac_data.get('reprojection_error', 8.0)),
                confidence=float(ransac_data.get('confidence', 0.99)),
            )
            return cls(
                reference_sensor=data['reference_sensor'],
                sensors=sensors,
                num_rounds=int(data.get('num_rounds', 15)),
                min_displacement=float(data.get('min_displacement', 0.10)),
                consistency_threshold=float(data.get('consistency_threshold', 0.15)),
                max_reprojection_error=float(data.get('max_reprojection_error', 10.0)),
                ransac=ransac,
            )
        except (TypeError, ValueError) as e:
            if isinstance(e, ConfigurationError):
                raise
            raise ConfigurationError(f"Invalid rig configuration value: {e}") from e

    @classmethod
    def from_yaml(cls, config_path: str) -> 'RigConfig':
        return cls.from_dict(load_rig_config(config_path))
