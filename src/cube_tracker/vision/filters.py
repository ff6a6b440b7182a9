"""One-Euro filters for pose smoothing.

A one-Euro filter is an exponential low-pass filter whose cutoff rises with
the estimated speed of the signal: slow motion is smoothed hard to remove
jitter, fast motion passes with little lag.
"""

from __future__ import annotations

import math

import numpy as np
from numpy.typing import ArrayLike, NDArray

from cube_tracker.core.config import FilterSettings
from cube_tracker.core.exceptions import ConfigurationError
from cube_tracker.core.logging import get_logger
from cube_tracker.core.types import Pose
from cube_tracker.vision import quaternion

logger = get_logger(__name__)

MIN_DT = 1e-4


def clamp_dt(dt: float) -> float:
    """Replace non-finite or too small time steps with MIN_DT."""
    if not math.isfinite(dt) or dt < MIN_DT:
        return MIN_DT
    return dt


def smoothing_factor(cutoff: float, dt: float) -> float:
    """Exponential smoothing factor for a cutoff frequency (Hz) and time step."""
    tau = 1.0 / (2.0 * math.pi * cutoff)
    return 1.0 / (1.0 + tau / dt)


class OneEuroFilter:
    """Scalar one-Euro filter.

    Attributes:
        min_cutoff: Baseline cutoff in Hz (lower = smoother, more lag)
        beta: Speed coefficient (higher = less lag during fast motion)
        d_cutoff: Cutoff in Hz for the derivative estimate
    """

    def __init__(
        self,
        min_cutoff: float = 1.0,
        beta: float = 0.0,
        d_cutoff: float = 1.0,
    ) -> None:
        if min_cutoff <= 0 or d_cutoff <= 0:
            raise ConfigurationError(
                f"Cutoff frequencies must be positive, got {min_cutoff} and {d_cutoff}"
            )
        if beta < 0:
            raise ConfigurationError(f"Beta must be non-negative, got {beta}")

        self.min_cutoff = min_cutoff
        self.beta = beta
        self.d_cutoff = d_cutoff
        self._initialized = False
        self._x_prev = 0.0
        self._dx_prev = 0.0

    @property
    def is_initialized(self) -> bool:
        """Whether the filter has seen its first sample."""
        return self._initialized

    @property
    def value(self) -> float | None:
        """Last filtered value."""
        return self._x_prev if self._initialized else None

    def reset(self) -> None:
        """Forget all history; the next sample passes through unchanged."""
        self._initialized = False
        self._x_prev = 0.0
        self._dx_prev = 0.0

    def filter(self, x: float, dt: float) -> float:
        """Filter one sample.

        Args:
            x: Raw value
            dt: Seconds since the previous sample

        Returns:
            Smoothed value
        """
        if not self._initialized:
            self._x_prev = float(x)
            self._dx_prev = 0.0
            self._initialized = True
            return self._x_prev

        dt = clamp_dt(dt)
        dx = (x - self._x_prev) / dt
        self._dx_prev += smoothing_factor(self.d_cutoff, dt) * (dx - self._dx_prev)

        cutoff = self.min_cutoff + self.beta * abs(self._dx_prev)
        self._x_prev += smoothing_factor(cutoff, dt) * (x - self._x_prev)
        return self._x_prev


class OneEuroFilterVec3(OneEuroFilter):
    """One-Euro filter over 3D vectors; speed is the derivative's magnitude."""

    def __init__(
        self,
        min_cutoff: float = 1.0,
        beta: float = 0.0,
        d_cutoff: float = 1.0,
    ) -> None:
        super().__init__(min_cutoff, beta, d_cutoff)
        self._v_prev = np.zeros(3)
        self._dv_prev = np.zeros(3)

    @property
    def value(self) -> NDArray[np.float64] | None:  # type: ignore[override]
        """Last filtered vector."""
        return self._v_prev.copy() if self._initialized else None

    def reset(self) -> None:
        """Forget all history."""
        super().reset()
        self._v_prev = np.zeros(3)
        self._dv_prev = np.zeros(3)

    def filter(self, x: ArrayLike, dt: float) -> NDArray[np.float64]:  # type: ignore[override]
        """Filter one vector sample."""
        v = np.asarray(x, dtype=np.float64).reshape(3)

        if not self._initialized:
            self._v_prev = v.copy()
            self._dv_prev = np.zeros(3)
            self._initialized = True
            return v.copy()

        dt = clamp_dt(dt)
        dv = (v - self._v_prev) / dt
        self._dv_prev = self._dv_prev + smoothing_factor(self.d_cutoff, dt) * (dv - self._dv_prev)

        cutoff = self.min_cutoff + self.beta * float(np.linalg.norm(self._dv_prev))
        self._v_prev = self._v_prev + smoothing_factor(cutoff, dt) * (v - self._v_prev)
        return self._v_prev.copy()


class OneEuroFilterQuat(OneEuroFilter):
    """One-Euro filter over unit quaternions (w, x, y, z).

    Speed is the angular velocity between the incoming rotation and the
    previous filtered rotation; the value is blended by slerp.
    """

    def __init__(
        self,
        min_cutoff: float = 1.0,
        beta: float = 0.0,
        d_cutoff: float = 1.0,
    ) -> None:
        super().__init__(min_cutoff, beta, d_cutoff)
        self._q_prev = quaternion.IDENTITY.copy()
        self._w_prev = np.zeros(3)

    @property
    def value(self) -> NDArray[np.float64] | None:  # type: ignore[override]
        """Last filtered rotation."""
        return self._q_prev.copy() if self._initialized else None

    @property
    def angular_velocity(self) -> NDArray[np.float64]:
        """Smoothed angular velocity estimate in rad/s."""
        return self._w_prev.copy()

    def reset(self) -> None:
        """Forget all history."""
        super().reset()
        self._q_prev = quaternion.IDENTITY.copy()
        self._w_prev = np.zeros(3)

    def filter(self, q: ArrayLike, dt: float) -> NDArray[np.float64]:  # type: ignore[override]
        """Filter one rotation sample."""
        q = quaternion.normalize(q)

        if not self._initialized:
            self._q_prev = q.copy()
            self._w_prev = np.zeros(3)
            self._initialized = True
            return q.copy()

        dt = clamp_dt(dt)
        delta = quaternion.multiply(q, quaternion.conjugate(self._q_prev))
        axis, angle = quaternion.to_axis_angle(delta)
        w = axis * angle / dt
        self._w_prev = self._w_prev + smoothing_factor(self.d_cutoff, dt) * (w - self._w_prev)

        cutoff = self.min_cutoff + self.beta * float(np.linalg.norm(self._w_prev))
        self._q_prev = quaternion.slerp(self._q_prev, q, smoothing_factor(cutoff, dt))
        return self._q_prev.copy()


class PoseFilter:
    """Position and rotation one-Euro filters with marker-count adaptation.

    When few markers contribute to a solve, the geometry is weaker and the
    cutoff and beta of both channels are scaled down for stronger smoothing.
    The scaling is recomputed on every call.
    """

    def __init__(self, settings: FilterSettings | None = None) -> None:
        """Initialize filter bank.

        Args:
            settings: Filter settings (uses defaults if None)
        """
        self.settings = settings or FilterSettings()
        if not 0 < self.settings.weak_geometry_scale <= 1:
            raise ConfigurationError(
                f"weak_geometry_scale must be in (0, 1], got {self.settings.weak_geometry_scale}"
            )

        self._position = OneEuroFilterVec3(
            self.settings.position_min_cutoff,
            self.settings.position_beta,
            self.settings.derivative_cutoff,
        )
        self._rotation = OneEuroFilterQuat(
            self.settings.rotation_min_cutoff,
            self.settings.rotation_beta,
            self.settings.derivative_cutoff,
        )

    @property
    def position_filter(self) -> OneEuroFilterVec3:
        return self._position

    @property
    def rotation_filter(self) -> OneEuroFilterQuat:
        return self._rotation

    @property
    def is_initialized(self) -> bool:
        return self._position.is_initialized and self._rotation.is_initialized

    def reset(self) -> None:
        """Reset both channels."""
        self._position.reset()
        self._rotation.reset()

    def parameter_scale(self, marker_count: int) -> float:
        """Cutoff and beta multiplier for a given contributing marker count."""
        if marker_count <= self.settings.weak_geometry_marker_count:
            return self.settings.weak_geometry_scale
        return 1.0

    def filter(self, pose: Pose, dt: float, marker_count: int) -> Pose:
        """Smooth a raw pose.

        Args:
            pose: Raw solver pose
            dt: Seconds since the previous filtered pose
            marker_count: Markers that contributed to this solve

        Returns:
            Filtered pose
        """
        scale = self.parameter_scale(marker_count)

        self._position.min_cutoff = self.settings.position_min_cutoff * scale
        self._position.beta = self.settings.position_beta * scale
        self._rotation.min_cutoff = self.settings.rotation_min_cutoff * scale
        self._rotation.beta = self.settings.rotation_beta * scale

        return Pose(
            position=self._position.filter(pose.position, dt),
            rotation=self._rotation.filter(pose.rotation, dt),
        )
