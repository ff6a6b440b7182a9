"""Core infrastructure: config, types, exceptions, and logging."""

from cube_tracker.core.config import Settings, get_settings
from cube_tracker.core.exceptions import (
    CalibrationError,
    ConfigurationError,
    CubeTrackerError,
)
from cube_tracker.core.logging import get_logger, setup_logging
from cube_tracker.core.types import (
    ActuationTransition,
    ArucoDictionary,
    BoardGeometry,
    CameraIntrinsics,
    CorrespondenceSet,
    DetectionFrame,
    Pose,
    PoseResult,
    SolveFailure,
    TrackingUpdate,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Types
    "ArucoDictionary",
    "BoardGeometry",
    "SolveFailure",
    "ActuationTransition",
    "Pose",
    "PoseResult",
    "CorrespondenceSet",
    "DetectionFrame",
    "CameraIntrinsics",
    "TrackingUpdate",
    # Exceptions
    "CubeTrackerError",
    "ConfigurationError",
    "CalibrationError",
    # Logging
    "setup_logging",
    "get_logger",
]
