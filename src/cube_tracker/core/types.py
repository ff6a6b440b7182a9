"""Core data types and structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto

import numpy as np
from numpy.typing import NDArray

FloatArray = NDArray[np.float64]


class ArucoDictionary(str, Enum):
    """Predefined ArUco dictionaries the printed markers may come from."""

    DICT_4X4_50 = "DICT_4X4_50"
    DICT_4X4_100 = "DICT_4X4_100"
    DICT_4X4_250 = "DICT_4X4_250"
    DICT_4X4_1000 = "DICT_4X4_1000"
    DICT_5X5_50 = "DICT_5X5_50"
    DICT_5X5_100 = "DICT_5X5_100"
    DICT_5X5_250 = "DICT_5X5_250"
    DICT_5X5_1000 = "DICT_5X5_1000"
    DICT_6X6_50 = "DICT_6X6_50"
    DICT_6X6_100 = "DICT_6X6_100"
    DICT_6X6_250 = "DICT_6X6_250"
    DICT_6X6_1000 = "DICT_6X6_1000"
    DICT_7X7_50 = "DICT_7X7_50"
    DICT_7X7_100 = "DICT_7X7_100"
    DICT_7X7_250 = "DICT_7X7_250"
    DICT_7X7_1000 = "DICT_7X7_1000"
    DICT_ARUCO_ORIGINAL = "DICT_ARUCO_ORIGINAL"

    @property
    def size(self) -> int:
        """Number of distinct marker IDs in the dictionary."""
        if self is ArucoDictionary.DICT_ARUCO_ORIGINAL:
            return 1024
        return int(self.value.rsplit("_", 1)[1])


class BoardGeometry(str, Enum):
    """How the marker layout on the rigid body is defined."""

    SIMPLE_CUBE = "simple_cube"
    CUSTOM = "custom"


class SolveFailure(Enum):
    """Why a pose solve produced no usable pose."""

    INSUFFICIENT_CORRESPONDENCE = auto()
    DEGENERATE_GEOMETRY = auto()
    EXCESSIVE_ERROR = auto()


class ActuationTransition(Enum):
    """Edge emitted when the debounced actuation state flips."""

    CLOSED = auto()
    OPENED = auto()


@dataclass(slots=True)
class Pose:
    """Rigid transform from the object frame to the tracking frame.

    Attributes:
        position: Translation (3,) in meters
        rotation: Unit quaternion (4,) in (w, x, y, z) order
    """

    position: FloatArray
    rotation: FloatArray

    def __post_init__(self) -> None:
        self.position = np.asarray(self.position, dtype=np.float64).reshape(3)
        rotation = np.asarray(self.rotation, dtype=np.float64).reshape(4)
        norm = float(np.linalg.norm(rotation))
        if norm < 1e-12 or not np.isfinite(norm):
            rotation = np.array([1.0, 0.0, 0.0, 0.0])
        else:
            rotation = rotation / norm
        self.rotation = rotation

    @classmethod
    def identity(cls) -> Pose:
        """Pose at the origin with no rotation."""
        return cls(position=np.zeros(3), rotation=np.array([1.0, 0.0, 0.0, 0.0]))


@dataclass(slots=True)
class PoseResult:
    """Outcome of a single rigid pose solve.

    Attributes:
        pose: Solved pose (identity when the solve was not attempted)
        rms_error: RMS alignment residual (meters, or pixels for projective solves)
        marker_count: Number of markers contributing correspondences
        point_count: Number of paired points
        failure: Reason the solve is unusable, None on success
    """

    pose: Pose
    rms_error: float
    marker_count: int = 0
    point_count: int = 0
    failure: SolveFailure | None = None

    @property
    def success(self) -> bool:
        """Whether the pose can be used this frame."""
        return self.failure is None

    @classmethod
    def failed(
        cls,
        failure: SolveFailure,
        marker_count: int = 0,
        point_count: int = 0,
    ) -> PoseResult:
        """Build a failed result carrying no pose information."""
        return cls(
            pose=Pose.identity(),
            rms_error=float("inf"),
            marker_count=marker_count,
            point_count=point_count,
            failure=failure,
        )


@dataclass(slots=True)
class CorrespondenceSet:
    """Paired model-space and observed points, four per matched marker."""

    model_points: FloatArray
    observed_points: FloatArray
    marker_ids: list[int] = field(default_factory=list)

    def __len__(self) -> int:
        return int(self.model_points.shape[0])

    @property
    def marker_count(self) -> int:
        """Number of markers that contributed points."""
        return len(self.marker_ids)

    @property
    def is_empty(self) -> bool:
        """True when no detected marker matched the model."""
        return len(self) == 0

    @classmethod
    def empty(cls, dims: int = 3) -> CorrespondenceSet:
        """An empty set, meaning no pose is available this frame."""
        return cls(
            model_points=np.zeros((0, 3), dtype=np.float64),
            observed_points=np.zeros((0, dims), dtype=np.float64),
        )


@dataclass(slots=True)
class DetectionFrame:
    """Marker detections produced by the external detector for one frame.

    Attributes:
        observations: Marker ID to corners (TL, TR, BR, BL), shaped (4, 3)
            in meters or (4, 2) in pixels
        timestamp: Capture time in seconds
        index: Frame sequence number
    """

    observations: dict[int, FloatArray]
    timestamp: float
    index: int = 0

    @property
    def marker_ids(self) -> set[int]:
        """IDs detected in this frame."""
        return set(self.observations)

    @property
    def is_image_space(self) -> bool:
        """True when corners are 2D pixel coordinates."""
        return any(np.asarray(c).shape[-1] == 2 for c in self.observations.values())


@dataclass(frozen=True, slots=True)
class CameraIntrinsics:
    """Pinhole camera model supplied by the host alongside detections."""

    width: int
    height: int
    fx: float
    fy: float
    cx: float
    cy: float
    distortion: tuple[float, ...] = (0.0, 0.0, 0.0, 0.0, 0.0)

    @property
    def camera_matrix(self) -> FloatArray:
        """3x3 intrinsic matrix."""
        return np.array(
            [
                [self.fx, 0.0, self.cx],
                [0.0, self.fy, self.cy],
                [0.0, 0.0, 1.0],
            ],
            dtype=np.float64,
        )

    @property
    def distortion_coefficients(self) -> FloatArray:
        """Distortion coefficients as an OpenCV-ready array."""
        return np.asarray(self.distortion, dtype=np.float64)


@dataclass(slots=True)
class TrackingUpdate:
    """Per-frame output of a rigid body tracker.

    Attributes:
        raw: Unfiltered solver result for this frame
        pose: Filtered pose, None when nothing was updated this frame
        last_pose: Most recent filtered pose, held across failed frames
        frames_since_update: Consecutive frames without a successful solve
        stale: True once the held pose is too old to trust
        filtered_error: Smoothed RMS error of recent successful solves
    """

    raw: PoseResult
    pose: Pose | None
    last_pose: Pose | None
    frames_since_update: int
    stale: bool
    filtered_error: float | None = None

    @property
    def updated(self) -> bool:
        """Whether this frame produced a new pose."""
        return self.pose is not None
