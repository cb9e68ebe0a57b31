"""
Correspondence rounds, their validity gate and the store that accumulates them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np

from .config import RigConfig
from .exceptions import CalibrationError


def is_detection(reading: Optional[np.ndarray]) -> bool:
    """False for a missing reading or the all-zero "no detection" sentinel."""
    if reading is None:
        return False
    reading = np.asarray(reading, dtype=np.float64)
    return bool(np.all(np.isfinite(reading)) and np.any(reading != 0))


@dataclass(frozen=True, eq=False)
class CorrespondenceRound:
    """One synchronized observation of the target by every sensor."""
    points: Dict[str, np.ndarray] = field(default_factory=dict)
    pixels: Dict[str, np.ndarray] = field(default_factory=dict)
    timestamp: float = 0.0

    def __post_init__(self):
        points = {}
        for name, p in self.points.items():
            arr = np.array(p, dtype=np.float64).reshape(3)
            points[name] = arr
        pixels = {}
        for name, p in self.pixels.items():
            arr = np.array(p, dtype=np.float64).reshape(2)
            pixels[name] = arr
        object.__setattr__(self, 'points', points)
        object.__setattr__(self, 'pixels', pixels)

    def point(self, sensor: str) -> Optional[np.ndarray]:
        return self.points.get(sensor)

    def pixel(self, sensor: str) -> Optional[np.ndarray]:
        return self.pixels.get(sensor)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CorrespondenceRound':
        return cls(
            points=dict(data.get('points') or {}),
            pixels=dict(data.get('pixels') or {}),
            timestamp=float(data.get('timestamp', 0.0)),
        )


class CorrespondenceStore:
    """
    Ordered accepted rounds.

    Index i of one sensor's point set corresponds to index i of every other
    sensor's set. The store only grows, and is frozen before estimation.
    """

    def __init__(self):
        self._rounds: List[CorrespondenceRound] = []
        self._frozen = False

    def __len__(self) -> int:
        return len(self._rounds)

    @property
    def rounds(self) -> Sequence[CorrespondenceRound]:
        return tuple(self._rounds)

    @property
    def last(self) -> Optional[CorrespondenceRound]:
        return self._rounds[-1] if self._rounds else None

    @property
    def frozen(self) -> bool:
        return self._frozen

    def append(self, round_: CorrespondenceRound):
        if self._frozen:
            raise CalibrationError("Correspondence store is frozen; no more rounds can be added")
        self._rounds.append(round_)

    def freeze(self):
        self._frozen = True

    def points(self, sensor: str) -> np.ndarray:
        """(N, 3) point set of one sensor."""
        if not self._rounds:
            return np.empty((0, 3))
        try:
            return np.stack([r.points[sensor] for r in self._rounds])
        except KeyError:
            raise KeyError(f"No 3D points recorded for sensor '{sensor}'") from None

    def pixels(self, sensor: str) -> np.ndarray:
        """(N, 2) pixel set of one camera."""
        if not self._rounds:
            return np.empty((0, 2))
        try:
            return np.stack([r.pixels[sensor] for r in self._rounds])
        except KeyError:
            raise KeyError(f"No pixels recorded for sensor '{sensor}'") from None

    def get_statistics(self) -> Dict[str, Any]:
        """Get statistics about collected rounds."""
        stats = {'num_rounds': len(self._rounds), 'frozen': self._frozen}
        if len(self._rounds) >= 2:
            for sensor in self._rounds[0].points:
                steps = np.linalg.norm(np.diff(self.points(sensor), axis=0), axis=1)
                stats[f"{sensor}_mean_step"] = float(np.mean(steps))
        return stats


@dataclass
class GateDecision:
    """Outcome of ValidityGate.evaluate with the values that drove it."""
    accepted: bool
    reason: str
    displacement: float = 0.0
    consistency: float = 0.0

    def __bool__(self) -> bool:
        return self.accepted


class ValidityGate:
    """
    Decides whether a candidate round is usable.

    A round is rejected when a required reading is missing, when the target
    barely moved since the last accepted round, or when the sensors disagree
    on how far it moved.
    """

    def __init__(self, reference_sensor: str,
                 point_sensors: Iterable[str],
                 pixel_sensors: Iterable[str] = (),
                 consistency_sensors: Iterable[str] = (),
                 min_displacement: float = 0.10,
                 consistency_threshold: float = 0.15):
        self.reference_sensor = reference_sensor
        self.point_sensors = list(point_sensors)
        self.pixel_sensors = list(pixel_sensors)
        self.consistency_sensors = [s for s in consistency_sensors if s != reference_sensor]
        self.min_displacement = min_displacement
        self.consistency_threshold = consistency_threshold

        if reference_sensor not in self.point_sensors:
            self.point_sensors.insert(0, reference_sensor)

    @classmethod
    def from_config(cls, config: RigConfig) -> 'ValidityGate':
        sensors = config.sensors.values()
        return cls(
            reference_sensor=config.reference_sensor,
            point_sensors=[s.name for s in sensors if s.policy.requires_point],
            pixel_sensors=[s.name for s in sensors if s.policy.requires_pixel],
            consistency_sensors=[s.name for s in sensors if s.policy.consistency_check],
            min_displacement=config.min_displacement,
            consistency_threshold=config.consistency_threshold,
        )

    def evaluate(self, candidate: CorrespondenceRound,
                 previous_point: Optional[np.ndarray] = None,
                 history: Optional[CorrespondenceStore] = None) -> GateDecision:
        """
        Evaluate a candidate round.

        Args:
            candidate: Proposed round
            previous_point: Reference sensor point of the last accepted round;
                the zero point before the first acceptance
            history: Store of accepted rounds; the cross-sensor check is
                skipped while it is empty

        Returns:
            GateDecision
        """
        for sensor in self.point_sensors:
            if not is_detection(candidate.point(sensor)):
                return GateDecision(False, f"no detection from {sensor}")
        for sensor in self.pixel_sensors:
            if not is_detection(candidate.pixel(sensor)):
                return GateDecision(False, f"no image detection from {sensor}")

        if previous_point is None:
            previous_point = np.zeros(3)

        reference = candidate.point(self.reference_sensor)
        displacement = float(np.linalg.norm(reference - np.asarray(previous_point)))
        if displacement <= self.min_displacement:
            return GateDecision(False, "target did not move enough", displacement=displacement)

        last = history.last if history is not None else None
        if last is None or not self.consistency_sensors:
            return GateDecision(True, "accepted", displacement=displacement)

        reference_step = np.linalg.norm(reference - last.points[self.reference_sensor])
        deviations = [
            (reference_step - np.linalg.norm(candidate.points[s] - last.points[s])) ** 2
            for s in self.consistency_sensors
        ]
        consistency = float(np.mean(deviations))
        if consistency > self.consistency_threshold:
            return GateDecision(False, "sensors disagree on target motion",
                                displacement=displacement, consistency=consistency)

        return GateDecision(True, "accepted", displacement=displacement, consistency=consistency)

    def accept(self, candidate: CorrespondenceRound,
               previous_point: Optional[np.ndarray] = None,
               history: Optional[CorrespondenceStore] = None) -> bool:
        return self.evaluate(candidate, previous_point, history).accepted


class RoundProducer(ABC):
    """
    Source of candidate rounds.

    next_round() returns None once the session has ended.
    """

    @abstractmethod
    def next_round(self) -> Optional[CorrespondenceRound]:
        """Next candidate round, or None at end of session."""


class SequenceRoundProducer(RoundProducer):
    """Replays a fixed sequence of rounds."""

    def __init__(self, rounds: Iterable[CorrespondenceRound]):
        self._rounds = iter(list(rounds))

    def next_round(self) -> Optional[CorrespondenceRound]:
        return next(self._rounds, None)

    @classmethod
    def from_dicts(cls, rounds_data: Iterable[Dict[str, Any]]) -> 'SequenceRoundProducer':
        return cls(CorrespondenceRound.from_dict(d) for d in rounds_data)
