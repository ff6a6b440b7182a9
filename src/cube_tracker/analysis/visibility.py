"""Visibility-driven actuation state machine.

This module is pure logic with NO I/O and NO OpenCV imports.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from cube_tracker.core.config import VisibilitySettings
from cube_tracker.core.exceptions import ConfigurationError
from cube_tracker.core.logging import get_logger
from cube_tracker.core.types import ActuationTransition

logger = get_logger(__name__)

OPEN = 1.0
CLOSED = 0.0
CLOSED_THRESHOLD = 0.5
DEFAULT_FRAME_DT = 1.0 / 60.0


def _clamp01(value: float) -> float:
    return min(1.0, max(0.0, value))


def _lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


@dataclass
class VisibilityState:
    """Internal state for the visibility state machine."""

    filtered_value: float = OPEN
    consecutive_visible_frames: int = 0
    consecutive_invisible_frames: int = 0
    confirmed_visible: bool | None = None
    actuation: float = OPEN
    frozen: bool = False
    frozen_target: float | None = None


@dataclass(frozen=True)
class ActuationAngles:
    """Linear map between the actuation scalar and a physical clamp angle."""

    closed_angle_deg: float = -90.0
    open_angle_deg: float = -45.0

    def to_angle(self, value: float) -> float:
        """Angle in degrees for an actuation value in [0, 1]."""
        return _lerp(self.closed_angle_deg, self.open_angle_deg, _clamp01(value))

    def to_value(self, angle_deg: float) -> float:
        """Actuation value for an angle, clamped to [0, 1]."""
        span = self.open_angle_deg - self.closed_angle_deg
        if span == 0:
            return OPEN
        return _clamp01((angle_deg - self.closed_angle_deg) / span)


class VisibilityStateMachine:
    """Debounced conversion of a per-frame visibility flag into actuation.

    The smoothed value is 1.0 when fully open and 0.0 when fully closed.
    While the watched markers are visible it is blended toward 0.0, while
    hidden toward 1.0, but only after the flag has held for
    ``confirmation_frames`` consecutive frames.

    Transitions:
        Hidden -> Visible: flag true for N frames (filtered value -> 0)
        Visible -> Hidden: flag false for N frames (filtered value -> 1)

    Freezing is an orthogonal mode: while frozen the transition logic is
    suspended and the actuation output heads for the frozen target instead.
    """

    def __init__(self, settings: VisibilitySettings | None = None) -> None:
        """Initialize state machine.

        Args:
            settings: Visibility settings (uses defaults if None)

        Raises:
            ConfigurationError: If thresholds or durations are out of range
        """
        self.settings = settings or VisibilitySettings()
        if self.settings.confirmation_frames < 1:
            raise ConfigurationError(
                f"confirmation_frames must be >= 1, got {self.settings.confirmation_frames}"
            )
        if not 0 < self.settings.smoothing <= 1:
            raise ConfigurationError(f"smoothing must be in (0, 1], got {self.settings.smoothing}")
        if self.settings.animation_duration <= 0 or self.settings.frozen_duration <= 0:
            raise ConfigurationError("Animation durations must be positive")

        self.angles = ActuationAngles(
            closed_angle_deg=self.settings.closed_angle_deg,
            open_angle_deg=self.settings.open_angle_deg,
        )
        self._state = VisibilityState()

    @property
    def filtered_value(self) -> float:
        """Debounced, smoothed visibility scalar (1.0 open, 0.0 closed)."""
        return self._state.filtered_value

    @property
    def closed(self) -> bool:
        """Derived actuation state."""
        return self._state.filtered_value < CLOSED_THRESHOLD

    @property
    def actuation(self) -> float:
        """Animated actuation output following the current target."""
        return self._state.actuation

    @property
    def actuation_angle(self) -> float:
        """Actuation output expressed as a clamp angle in degrees."""
        return self.angles.to_angle(self._state.actuation)

    @property
    def frozen(self) -> bool:
        return self._state.frozen

    @property
    def confirmed_visible(self) -> bool | None:
        """Last confirmed visibility, None before the first confirmation."""
        return self._state.confirmed_visible

    @property
    def consecutive_visible_frames(self) -> int:
        return self._state.consecutive_visible_frames

    @property
    def consecutive_invisible_frames(self) -> int:
        return self._state.consecutive_invisible_frames

    def current_actuation_target(self) -> float:
        """Value the actuation output is converging to this frame."""
        if self._state.frozen and self._state.frozen_target is not None:
            return self._state.frozen_target
        return self._state.filtered_value

    def reset(self) -> None:
        """Return to the initial open, unfrozen state."""
        self._state = VisibilityState()

    def set_frozen_target(self, value: float) -> None:
        """Supply the target to hold while frozen (clamped to [0, 1]).

        May be called just before set_frozen(True), in which case it is used
        instead of capturing the current output. A preset left unused is
        dropped at the next update.
        """
        self._state.frozen_target = _clamp01(float(value))

    def set_frozen_angle(self, angle_deg: float) -> None:
        """Supply the frozen target as a clamp angle in degrees."""
        self.set_frozen_target(self.angles.to_value(angle_deg))

    def set_frozen(self, frozen: bool) -> None:
        """Enter or leave the frozen override.

        Entering captures the current actuation output as the target unless
        one was supplied. Leaving clears the target and the debounce counters
        so normal updates restart from a clean confirmation window.
        """
        if frozen == self._state.frozen:
            return

        if frozen:
            if self._state.frozen_target is None:
                self._state.frozen_target = self._state.actuation
            self._state.frozen = True
            logger.info("Actuation frozen at target %.3f", self._state.frozen_target)
        else:
            self._state.frozen = False
            self._state.frozen_target = None
            self._state.consecutive_visible_frames = 0
            self._state.consecutive_invisible_frames = 0
            logger.info("Actuation released")

    def update(self, visible: bool, dt: float = DEFAULT_FRAME_DT) -> ActuationTransition | None:
        """Process one frame of visibility.

        Args:
            visible: Whether any watched marker is visible this frame
            dt: Seconds since the previous frame, drives the output animation

        Returns:
            ActuationTransition if the closed state flipped, None otherwise
        """
        was_closed = self.closed

        if not self._state.frozen:
            # A preset target only applies to a freeze in the same frame.
            self._state.frozen_target = None
            self._process_visibility(visible)

        self._animate(dt)

        if self.closed == was_closed:
            return None

        transition = ActuationTransition.CLOSED if self.closed else ActuationTransition.OPENED
        logger.debug("Actuation %s (filtered %.3f)", transition.name, self._state.filtered_value)
        return transition

    def _process_visibility(self, visible: bool) -> None:
        state = self._state
        threshold = self.settings.confirmation_frames

        if visible:
            state.consecutive_visible_frames += 1
            state.consecutive_invisible_frames = 0
            if state.consecutive_visible_frames >= threshold:
                state.confirmed_visible = True
                state.filtered_value = _lerp(state.filtered_value, CLOSED, self.settings.smoothing)
        else:
            state.consecutive_invisible_frames += 1
            state.consecutive_visible_frames = 0
            if state.consecutive_invisible_frames >= threshold:
                state.confirmed_visible = False
                state.filtered_value = _lerp(state.filtered_value, OPEN, self.settings.smoothing)

    def _animate(self, dt: float) -> None:
        duration = self.settings.frozen_duration if self._state.frozen else self.settings.animation_duration
        rate = min(1.0, dt / duration) if math.isfinite(dt) and dt > 0 else 0.0
        target = self.current_actuation_target()
        self._state.actuation = _lerp(self._state.actuation, target, rate)
