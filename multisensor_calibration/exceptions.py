"""
Exceptions raised by the calibration engine.
"""


class CalibrationError(Exception):
    """Base exception for all calibration errors."""


class InsufficientCorrespondences(CalibrationError):
    """Raised when an estimator gets fewer points than it needs."""

    def __init__(self, message: str, required: int = 0, available: int = 0):
        self.required = required
        self.available = available
        super().__init__(message)


class DegenerateConfiguration(CalibrationError):
    """Raised on rank-deficient or otherwise unusable point configurations."""


class IntrinsicsUnavailable(CalibrationError):
    """Raised when camera intrinsics cannot be loaded or are missing."""

    def __init__(self, message: str, camera: str = ""):
        self.camera = camera
        super().__init__(message)


class ConfigurationError(CalibrationError, ValueError):
    """Raised when the rig configuration is invalid."""
