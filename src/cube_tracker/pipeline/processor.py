"""Frame processing pipeline orchestration."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from cube_tracker.analysis.visibility import DEFAULT_FRAME_DT, VisibilityStateMachine
from cube_tracker.core.config import Settings, get_settings
from cube_tracker.core.exceptions import ConfigurationError
from cube_tracker.core.logging import get_logger
from cube_tracker.core.types import ActuationTransition, CameraIntrinsics, DetectionFrame, TrackingUpdate
from cube_tracker.pipeline.tracker import PoseSolver, RigidBodyTracker
from cube_tracker.vision.correspondence import any_visible
from cube_tracker.vision.marker_model import MarkerModel
from cube_tracker.vision.projective import ProjectivePoseSolver, marker_corners_in_camera, validate_intrinsics
from cube_tracker.vision.solver import RigidPoseSolver

logger = get_logger(__name__)

LOG_EVERY_N_FRAMES = 60


@dataclass
class ProcessedFrame:
    """Result of processing a single frame."""

    frame: DetectionFrame
    primary: TrackingUpdate
    secondary: TrackingUpdate | None
    visible: bool
    filtered_value: float
    closed: bool
    actuation: float
    transition: ActuationTransition | None


class FrameProcessor:
    """Orchestrates the per-frame tracking pipeline.

    Coordinates:
    - Primary cube tracking
    - Secondary cube tracking (IDs offset onto the same geometry)
    - Visibility-driven actuation
    """

    def __init__(
        self,
        settings: Settings | None = None,
        model: MarkerModel | None = None,
    ) -> None:
        """Initialize processor with settings.

        Args:
            settings: Application settings (uses defaults if None)
            model: Marker model (built from marker settings if None)
        """
        self.settings = settings or get_settings()
        self._model = model

        self._visibility = VisibilityStateMachine(self.settings.visibility)
        self._watched_ids = frozenset(self.settings.visibility.watched_marker_ids)

        self._primary: RigidBodyTracker | None = None
        self._secondary: RigidBodyTracker | None = None
        self._intrinsics: CameraIntrinsics | None = None
        self._last_timestamp: float | None = None
        self._frame_count = 0
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def model(self) -> MarkerModel | None:
        """Marker model in use, None before initialization."""
        return self._model

    @property
    def intrinsics(self) -> CameraIntrinsics | None:
        return self._intrinsics

    @property
    def visibility(self) -> VisibilityStateMachine:
        return self._visibility

    @property
    def frame_count(self) -> int:
        """Frames processed since the last reset."""
        return self._frame_count

    def initialize(self, intrinsics: CameraIntrinsics | None = None) -> bool:
        """Build the marker model, solvers and trackers.

        Args:
            intrinsics: Camera intrinsics, required for pixel observations

        Returns:
            False while the camera is not ready yet (image smaller than the
            configured minimum), True once initialized

        Raises:
            ConfigurationError: If the marker or tracking settings are invalid
            CalibrationError: If the intrinsics are invalid
        """
        tracking = self.settings.tracking

        if intrinsics is not None:
            min_size = tracking.min_image_size
            if intrinsics.width < min_size or intrinsics.height < min_size:
                logger.debug(
                    "Camera not ready: %dx%d image below %d px",
                    intrinsics.width,
                    intrinsics.height,
                    min_size,
                )
                return False
            validate_intrinsics(intrinsics)

        if self._model is None:
            self._model = MarkerModel.from_settings(self.settings.marker)

        if tracking.image_solver == "pnp" and intrinsics is None:
            raise ConfigurationError("Pixel PnP solving requires camera intrinsics")

        self._intrinsics = intrinsics

        self._primary = RigidBodyTracker(
            self._model,
            solver=self._build_solver(),
            filter_settings=self.settings.filter,
            stale_after_frames=tracking.stale_after_frames,
            name="primary",
        )

        self._secondary = None
        if tracking.secondary_enabled:
            self._secondary = RigidBodyTracker(
                self._model,
                solver=self._build_solver(),
                filter_settings=self.settings.filter,
                id_offset=tracking.secondary_id_offset,
                stale_after_frames=tracking.stale_after_frames,
                name="secondary",
            )
            overlap = self._primary.tracked_ids & self._secondary.tracked_ids
            if overlap:
                raise ConfigurationError(
                    f"Secondary ID offset {tracking.secondary_id_offset} overlaps primary IDs {sorted(overlap)}"
                )

        self._initialized = True
        logger.info(
            "Frame processor initialized (%s input, secondary %s)",
            "pixel" if intrinsics is not None else "metric",
            "on" if self._secondary is not None else "off",
        )
        return True

    def _build_solver(self) -> PoseSolver:
        solver_settings = self.settings.solver
        if self.settings.tracking.image_solver == "pnp" and self._intrinsics is not None:
            return ProjectivePoseSolver(self._intrinsics, solver_settings.max_reprojection_px)
        return RigidPoseSolver.from_settings(solver_settings)

    def process_frame(self, frame: DetectionFrame) -> ProcessedFrame:
        """Process one detection frame through the full pipeline.

        Args:
            frame: Marker detections with timestamp

        Returns:
            ProcessedFrame with tracking and actuation results

        Raises:
            ConfigurationError: If the processor is not initialized or
                pixel observations arrive without intrinsics
        """
        if not self._initialized or self._primary is None:
            raise ConfigurationError("Frame processor is not initialized")

        dt = self._frame_dt(frame.timestamp)
        observations = self._prepare_observations(frame)

        primary = self._primary.update(observations, dt)
        secondary = self._secondary.update(observations, dt) if self._secondary is not None else None

        visible = any_visible(self._watched_ids, frame.marker_ids)
        transition = self._visibility.update(visible, dt if dt > 0 else DEFAULT_FRAME_DT)
        if transition is not None:
            logger.info("Frame %d: actuation %s", frame.index, transition.name.lower())

        self._frame_count += 1
        if self._frame_count % LOG_EVERY_N_FRAMES == 0:
            logger.debug(
                "Frame %d: primary %s (%d markers), value %.2f",
                frame.index,
                "ok" if primary.updated else f"held {primary.frames_since_update}",
                primary.raw.marker_count,
                self._visibility.filtered_value,
            )

        return ProcessedFrame(
            frame=frame,
            primary=primary,
            secondary=secondary,
            visible=visible,
            filtered_value=self._visibility.filtered_value,
            closed=self._visibility.closed,
            actuation=self._visibility.actuation,
            transition=transition,
        )

    def _frame_dt(self, timestamp: float) -> float:
        previous = self._last_timestamp
        self._last_timestamp = timestamp
        if previous is None:
            return 0.0
        return timestamp - previous

    def _prepare_observations(self, frame: DetectionFrame) -> dict[int, NDArray[np.float64]]:
        """Bring pixel observations into the space the solvers expect."""
        if not frame.is_image_space:
            if frame.observations and self.settings.tracking.image_solver == "pnp":
                raise ConfigurationError("Metric observations given to a pixel PnP pipeline")
            return frame.observations

        if self._intrinsics is None:
            raise ConfigurationError("Pixel observations require camera intrinsics")

        if self.settings.tracking.image_solver == "pnp":
            return frame.observations

        model = self._model
        if model is None:
            raise ConfigurationError("Frame processor is not initialized")
        lifted: dict[int, NDArray[np.float64]] = {}
        for marker_id, corners in frame.observations.items():
            if np.asarray(corners).shape != (4, 2):
                continue
            camera_corners = marker_corners_in_camera(
                corners,
                self._intrinsics,
                model.marker_length,
                self.settings.solver.max_reprojection_px,
            )
            if camera_corners is None:
                logger.debug("Frame %d: could not lift marker %d", frame.index, marker_id)
                continue
            lifted[marker_id] = camera_corners
        return lifted

    # Freeze control, forwarded to the visibility state machine

    def set_frozen(self, frozen: bool) -> None:
        self._visibility.set_frozen(frozen)

    def set_frozen_target(self, value: float) -> None:
        self._visibility.set_frozen_target(value)

    def current_actuation_target(self) -> float:
        return self._visibility.current_actuation_target()

    def reset(self) -> None:
        """Reset all trackers and the visibility state."""
        if self._primary is not None:
            self._primary.reset()
        if self._secondary is not None:
            self._secondary.reset()
        self._visibility.reset()
        self._last_timestamp = None
        self._frame_count = 0
        logger.info("Session reset")

