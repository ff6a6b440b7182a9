"""Per-body tracking: correspondences, solve, filter, stale policy."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from numpy.typing import ArrayLike

from cube_tracker.core.config import FilterSettings
from cube_tracker.core.exceptions import ConfigurationError
from cube_tracker.core.logging import get_logger
from cube_tracker.core.types import CorrespondenceSet, Pose, PoseResult, SolveFailure, TrackingUpdate
from cube_tracker.vision.correspondence import build_correspondences
from cube_tracker.vision.filters import OneEuroFilter, PoseFilter
from cube_tracker.vision.marker_model import MarkerModel
from cube_tracker.vision.solver import RigidPoseSolver

logger = get_logger(__name__)


class PoseSolver(Protocol):
    """Anything that turns a correspondence set into a pose result."""

    def solve_correspondences(self, correspondences: CorrespondenceSet) -> PoseResult: ...


class RigidBodyTracker:
    """Tracks one rigid marker body across frames.

    On a failed frame the update carries ``pose=None`` and the last good
    filtered pose is held in ``last_pose``. After more than
    ``stale_after_frames`` consecutive failures the held pose is reported
    stale and the filters are reset, so reacquisition does not slew from an
    outdated pose.
    """

    def __init__(
        self,
        model: MarkerModel,
        solver: PoseSolver | None = None,
        filter_settings: FilterSettings | None = None,
        id_offset: int = 0,
        stale_after_frames: int = 15,
        name: str = "body",
    ) -> None:
        """Initialize tracker.

        Args:
            model: Marker layout of the body
            solver: Pose solver (rigid 3D solver if None)
            filter_settings: One-Euro filter settings (uses defaults if None)
            id_offset: Subtracted from detected IDs before the model lookup
            stale_after_frames: Failed frames tolerated before the held pose
                is reported stale
            name: Label used in log messages
        """
        if stale_after_frames < 0:
            raise ConfigurationError(f"stale_after_frames must be >= 0, got {stale_after_frames}")

        self.model = model
        self.solver: PoseSolver = solver or RigidPoseSolver()
        self.id_offset = id_offset
        self.stale_after_frames = stale_after_frames
        self.name = name

        filter_settings = filter_settings or FilterSettings()
        self._pose_filter = PoseFilter(filter_settings)
        self._error_filter = OneEuroFilter(
            filter_settings.error_min_cutoff,
            filter_settings.error_beta,
            filter_settings.derivative_cutoff,
        )

        self._last_pose: Pose | None = None
        self._frames_since_update = 0
        self._pending_dt = 0.0

    @property
    def last_pose(self) -> Pose | None:
        """Most recent filtered pose, None before the first success."""
        return self._last_pose

    @property
    def frames_since_update(self) -> int:
        return self._frames_since_update

    @property
    def is_stale(self) -> bool:
        """Whether the held pose has outlived the stale threshold."""
        return self._last_pose is None or self._frames_since_update > self.stale_after_frames

    @property
    def tracked_ids(self) -> frozenset[int]:
        """Detected IDs this tracker consumes (model IDs shifted by the offset)."""
        return frozenset(marker_id + self.id_offset for marker_id in self.model.marker_ids)

    def reset(self) -> None:
        """Drop all history."""
        self._pose_filter.reset()
        self._error_filter.reset()
        self._last_pose = None
        self._frames_since_update = 0
        self._pending_dt = 0.0

    def update(self, observations: Mapping[int, ArrayLike], dt: float) -> TrackingUpdate:
        """Process one frame of detections.

        Args:
            observations: Detected marker ID to corners
            dt: Seconds since the previous frame

        Returns:
            TrackingUpdate for this frame
        """
        correspondences = build_correspondences(observations, self.model, self.id_offset)
        if correspondences.is_empty:
            result = PoseResult.failed(SolveFailure.INSUFFICIENT_CORRESPONDENCE)
        else:
            result = self.solver.solve_correspondences(correspondences)

        # Time keeps accumulating across failed frames so the filters see
        # the true gap when tracking resumes.
        self._pending_dt += dt if dt > 0 else 0.0

        if not result.success:
            return self._miss(result)

        filtered = self._pose_filter.filter(result.pose, self._pending_dt, result.marker_count)
        error = self._error_filter.filter(result.rms_error, self._pending_dt)
        self._pending_dt = 0.0

        if self._frames_since_update > 0:
            logger.debug("%s: reacquired after %d frames", self.name, self._frames_since_update)

        self._last_pose = filtered
        self._frames_since_update = 0

        return TrackingUpdate(
            raw=result,
            pose=filtered,
            last_pose=filtered,
            frames_since_update=0,
            stale=False,
            filtered_error=error,
        )

    def _miss(self, result: PoseResult) -> TrackingUpdate:
        self._frames_since_update += 1

        if self._frames_since_update == self.stale_after_frames + 1 and self._last_pose is not None:
            logger.info("%s: tracking lost (%s)", self.name, result.failure.name if result.failure else "?")
            self._pose_filter.reset()
            self._error_filter.reset()
            self._pending_dt = 0.0

        return TrackingUpdate(
            raw=result,
            pose=None,
            last_pose=self._last_pose,
            frames_since_update=self._frames_since_update,
            stale=self.is_stale,
            filtered_error=self._error_filter.value,
        )
