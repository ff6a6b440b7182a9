"""Custom exceptions for Cube Tracker.

Only setup mistakes raise. Occlusion, failed solves and bad time steps are
ordinary per-frame results and never surface as exceptions.
"""


class CubeTrackerError(Exception):
    """Base exception for all Cube Tracker errors."""

    pass


class ConfigurationError(CubeTrackerError):
    """Invalid marker model, filter or tracking configuration."""

    def __init__(self, message: str = "Invalid configuration") -> None:
        self.message = message
        super().__init__(self.message)


class CalibrationError(CubeTrackerError):
    """Camera intrinsics are missing or invalid."""

    def __init__(self, message: str = "Invalid camera intrinsics") -> None:
        self.message = message
        super().__init__(self.message)
