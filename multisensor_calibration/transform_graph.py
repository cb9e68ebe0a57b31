"""
Per-sensor transforms relative to the reference sensor.

Every entry holds the transform of a sensor expressed in the reference
frame: it maps points measured by the sensor into reference coordinates.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterator

from .config import EstimationMethod
from .exceptions import CalibrationError
from .rigid_transform import RigidTransform, remove_axis_correction


@dataclass(frozen=True)
class GraphEntry:
    sensor_id: str
    transform: RigidTransform
    method: EstimationMethod
    axis_corrected: bool = False

    @property
    def native_transform(self) -> RigidTransform:
        """Transform in the sensor's own axis convention."""
        if self.axis_corrected:
            return remove_axis_correction(self.transform)
        return self.transform


class TransformGraph:
    """
    Star-shaped graph of sensor transforms rooted at the reference sensor.

    The reference sensor implicitly holds the identity. Each other sensor
    gets exactly one entry, written once; the graph can then be frozen and
    only read.
    """

    def __init__(self, reference_sensor: str):
        self.reference_sensor = reference_sensor
        self._entries: Dict[str, GraphEntry] = {}
        self._frozen = False

    def __contains__(self, sensor_id: str) -> bool:
        return sensor_id == self.reference_sensor or sensor_id in self._entries

    def __iter__(self) -> Iterator[GraphEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self):
        self._frozen = True

    def set(self, sensor_id: str, transform: RigidTransform,
            method: EstimationMethod, axis_corrected: bool = False) -> GraphEntry:
        if self._frozen:
            raise CalibrationError("Transform graph is frozen")
        if sensor_id == self.reference_sensor:
            raise CalibrationError(
                f"'{sensor_id}' is the reference sensor and always holds the identity"
            )
        if sensor_id in self._entries:
            raise CalibrationError(f"Transform for '{sensor_id}' is already set")

        entry = GraphEntry(sensor_id, transform, method, axis_corrected)
        self._entries[sensor_id] = entry
        return entry

    def entry(self, sensor_id: str) -> GraphEntry:
        if sensor_id not in self._entries:
            raise KeyError(f"No transform for sensor '{sensor_id}'")
        return self._entries[sensor_id]

    def get(self, sensor_id: str) -> RigidTransform:
        """Transform of the sensor expressed in the reference frame."""
        if sensor_id == self.reference_sensor:
            return RigidTransform.identity()
        return self.entry(sensor_id).transform

    def native(self, sensor_id: str) -> RigidTransform:
        """Like get(), with any axis correction undone."""
        if sensor_id == self.reference_sensor:
            return RigidTransform.identity()
        return self.entry(sensor_id).native_transform

    @staticmethod
    def invert(transform: RigidTransform) -> RigidTransform:
        return transform.inverse()

    @staticmethod
    def compose(a: RigidTransform, b: RigidTransform) -> RigidTransform:
        """Transform that applies ``a`` first, then ``b``."""
        return a.then(b)

    def relative(self, source: str, target: str, native: bool = False) -> RigidTransform:
        """
        Transform of ``source`` expressed in ``target``'s frame.

        Maps points measured by ``source`` into ``target`` coordinates:
        source -> reference -> target.
        """
        lookup = self.native if native else self.get
        return self.compose(lookup(source), self.invert(lookup(target)))

    def to_extrinsics(self) -> Dict[str, Dict[str, Any]]:
        """
        Export dictionary keyed by sensor.

        Returns:
            Dict mapping sensor_id -> {translation, quaternion, parent, child,
            transform_matrix, method, axis_corrected}
        """
        extrinsics = {}
        for entry in self._entries.values():
            extrinsics[entry.sensor_id] = {
                'translation': entry.transform.translation.copy(),
                'quaternion': entry.transform.quaternion,
                'parent': self.reference_sensor,
                'child': entry.sensor_id,
                'transform_matrix': entry.transform.matrix,
                'method': entry.method.value,
                'axis_corrected': entry.axis_corrected,
            }
        return extrinsics

    @classmethod
    def from_extrinsics(cls, reference_sensor: str,
                        extrinsics: Dict[str, Dict[str, Any]]) -> 'TransformGraph':
        """Rebuild a frozen graph from load_extrinsics_yaml output."""
        graph = cls(reference_sensor)
        for sensor_id, data in extrinsics.items():
            parent = data.get('parent')
            if parent and parent != reference_sensor:
                raise CalibrationError(
                    f"'{sensor_id}' is expressed in '{parent}', not '{reference_sensor}'"
                )
            method = data.get('method') or EstimationMethod.POINT_SET_ALIGNMENT.value
            graph.set(
                sensor_id,
                RigidTransform.from_matrix(data['transform_matrix']),
                EstimationMethod(method),
                axis_corrected=bool(data.get('axis_corrected', False)),
            )
        graph.freeze()
        return graph
