"""Tests for one-Euro pose filtering."""

from __future__ import annotations

import math

import numpy as np
import pytest

from cube_tracker.core.config import FilterSettings
from cube_tracker.core.exceptions import ConfigurationError
from cube_tracker.core.types import Pose
from cube_tracker.vision import quaternion
from cube_tracker.vision.filters import (
    MIN_DT,
    OneEuroFilter,
    OneEuroFilterQuat,
    OneEuroFilterVec3,
    PoseFilter,
    clamp_dt,
    smoothing_factor,
)

DT = 1.0 / 60.0


class TestSmoothingFactor:
    """Tests for the exponential smoothing factor."""

    def test_matches_formula(self) -> None:
        """alpha = 1 / (1 + tau / dt) with tau = 1 / (2 pi f)."""
        tau = 1.0 / (2.0 * math.pi * 1.0)
        assert smoothing_factor(1.0, DT) == pytest.approx(1.0 / (1.0 + tau / DT))

    def test_higher_cutoff_smooths_less(self) -> None:
        """A higher cutoff follows the input more closely."""
        assert smoothing_factor(10.0, DT) > smoothing_factor(1.0, DT)

    @pytest.mark.parametrize("dt", [0.0, -0.5, 1e-9, float("nan"), float("inf")])
    def test_bad_time_steps_are_clamped(self, dt: float) -> None:
        """Non-finite or tiny time steps become MIN_DT."""
        assert clamp_dt(dt) == MIN_DT

    def test_valid_time_step_kept(self) -> None:
        """Normal time steps pass through."""
        assert clamp_dt(DT) == DT


class TestOneEuroFilter:
    """Tests for the scalar one-Euro filter."""

    def test_first_sample_passes_through(self) -> None:
        """First call returns the input unchanged."""
        f = OneEuroFilter()
        assert f.filter(3.5, DT) == 3.5
        assert f.is_initialized

    def test_no_motion_is_idempotent(self) -> None:
        """A constant signal stays exactly constant."""
        f = OneEuroFilter(min_cutoff=1.0, beta=0.5)
        for _ in range(50):
            assert f.filter(2.0, DT) == 2.0

    def test_converges_to_step(self) -> None:
        """After a step the output settles on the new value."""
        f = OneEuroFilter(min_cutoff=1.0, beta=0.0)
        f.filter(0.0, DT)

        value = 0.0
        for _ in range(600):
            value = f.filter(1.0, DT)

        assert value == pytest.approx(1.0, abs=1e-3)

    def test_step_is_smoothed(self) -> None:
        """The first sample after a step moves only part of the way."""
        f = OneEuroFilter(min_cutoff=1.0, beta=0.0)
        f.filter(0.0, DT)
        value = f.filter(1.0, DT)

        assert 0.0 < value < 0.5

    def test_beta_reduces_lag_on_ramp(self) -> None:
        """Speed-adaptive cutoff tracks a fast ramp more closely."""
        slow = OneEuroFilter(min_cutoff=1.0, beta=0.0)
        fast = OneEuroFilter(min_cutoff=1.0, beta=1.0)

        for i in range(120):
            x = 2.0 * i * DT
            slow_value = slow.filter(x, DT)
            fast_value = fast.filter(x, DT)

        target = 2.0 * 119 * DT
        assert abs(target - fast_value) < abs(target - slow_value)

    @pytest.mark.parametrize("dt", [0.0, -1.0, float("nan")])
    def test_bad_dt_never_raises(self, dt: float) -> None:
        """Bad time steps are clamped instead of raising."""
        f = OneEuroFilter()
        f.filter(0.0, DT)
        value = f.filter(1.0, dt)

        assert math.isfinite(value)

    def test_reset_restores_passthrough(self) -> None:
        """After reset the next sample is returned unchanged."""
        f = OneEuroFilter()
        f.filter(0.0, DT)
        f.filter(1.0, DT)
        f.reset()

        assert not f.is_initialized
        assert f.value is None
        assert f.filter(7.0, DT) == 7.0

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"min_cutoff": 0.0},
            {"d_cutoff": -1.0},
            {"beta": -0.1},
        ],
    )
    def test_invalid_parameters(self, kwargs: dict) -> None:
        """Non-positive cutoffs and negative beta are rejected."""
        with pytest.raises(ConfigurationError):
            OneEuroFilter(**kwargs)


class TestOneEuroFilterVec3:
    """Tests for the vector one-Euro filter."""

    def test_first_sample_passes_through(self) -> None:
        """First call returns the input vector."""
        f = OneEuroFilterVec3()
        assert np.array_equal(f.filter([1.0, 2.0, 3.0], DT), [1.0, 2.0, 3.0])

    def test_no_motion_is_idempotent(self) -> None:
        """A constant vector stays exactly constant."""
        f = OneEuroFilterVec3(beta=0.3)
        for _ in range(30):
            value = f.filter([0.1, -0.2, 0.5], DT)
        assert np.array_equal(value, [0.1, -0.2, 0.5])

    def test_converges(self) -> None:
        """Output settles on a stationary target."""
        f = OneEuroFilterVec3()
        f.filter(np.zeros(3), DT)
        for _ in range(600):
            value = f.filter([1.0, 1.0, -1.0], DT)
        assert np.allclose(value, [1.0, 1.0, -1.0], atol=1e-3)

    def test_returned_array_is_a_copy(self) -> None:
        """Mutating the output does not corrupt filter state."""
        f = OneEuroFilterVec3()
        value = f.filter([1.0, 0.0, 0.0], DT)
        value[0] = 100.0

        assert f.value is not None
        assert f.value[0] == 1.0


class TestOneEuroFilterQuat:
    """Tests for the rotation one-Euro filter."""

    def test_first_sample_passes_through(self) -> None:
        """First call returns the normalized input."""
        f = OneEuroFilterQuat()
        q = quaternion.from_axis_angle([0.0, 1.0, 0.0], 0.4)
        assert np.allclose(f.filter(q, DT), q)

    def test_no_motion_is_idempotent(self) -> None:
        """A constant rotation stays put."""
        f = OneEuroFilterQuat(beta=0.5)
        q = quaternion.from_axis_angle([1.0, 1.0, 0.0], 1.0)
        for _ in range(30):
            value = f.filter(q, DT)
        assert quaternion.angle_between(value, q) < 1e-9

    def test_converges_to_rotation(self) -> None:
        """Output settles on a new stationary rotation."""
        f = OneEuroFilterQuat()
        f.filter(quaternion.IDENTITY, DT)
        target = quaternion.from_axis_angle([0.0, 0.0, 1.0], np.radians(60.0))
        for _ in range(600):
            value = f.filter(target, DT)

        assert quaternion.angle_between(value, target) < 1e-3
        assert np.linalg.norm(value) == pytest.approx(1.0)

    def test_step_is_smoothed(self) -> None:
        """A sudden turn is only partly followed on the next frame."""
        f = OneEuroFilterQuat()
        f.filter(quaternion.IDENTITY, DT)
        target = quaternion.from_axis_angle([0.0, 0.0, 1.0], np.radians(60.0))
        value = f.filter(target, DT)

        angle = quaternion.angle_between(value, quaternion.IDENTITY)
        assert 0.0 < angle < np.radians(30.0)

    def test_angular_velocity_follows_spin(self) -> None:
        """Spinning about Z gives an angular velocity along +Z."""
        f = OneEuroFilterQuat(d_cutoff=5.0)
        for i in range(120):
            f.filter(quaternion.from_axis_angle([0.0, 0.0, 1.0], 1.0 * i * DT), DT)

        w = f.angular_velocity
        assert w[2] > 0.5
        assert abs(w[0]) < 1e-6
        assert abs(w[1]) < 1e-6

    def test_antipodal_input_is_same_rotation(self) -> None:
        """q and -q describe the same rotation and cause no jump."""
        f = OneEuroFilterQuat()
        q = quaternion.from_axis_angle([0.0, 1.0, 0.0], 0.5)
        f.filter(q, DT)
        value = f.filter(-q, DT)

        assert quaternion.angle_between(value, q) < 1e-6


class TestPoseFilter:
    """Tests for the pose filter bank and its adaptive policy."""

    def _pose(self, x: float, angle: float = 0.0) -> Pose:
        return Pose(
            position=np.array([x, 0.0, 0.0]),
            rotation=quaternion.from_axis_angle([0.0, 0.0, 1.0], angle),
        )

    def test_parameter_scale(self, filter_settings: FilterSettings) -> None:
        """Two or fewer markers halve the cutoff and beta."""
        pose_filter = PoseFilter(filter_settings)

        assert pose_filter.parameter_scale(1) == 0.5
        assert pose_filter.parameter_scale(2) == 0.5
        assert pose_filter.parameter_scale(3) == 1.0

    def test_scale_reapplied_every_call(self, filter_settings: FilterSettings) -> None:
        """Parameters follow the marker count of each frame."""
        pose_filter = PoseFilter(filter_settings)

        pose_filter.filter(self._pose(0.0), DT, marker_count=1)
        assert pose_filter.position_filter.min_cutoff == pytest.approx(
            filter_settings.position_min_cutoff * 0.5
        )
        assert pose_filter.rotation_filter.beta == pytest.approx(filter_settings.rotation_beta * 0.5)

        pose_filter.filter(self._pose(0.0), DT, marker_count=3)
        assert pose_filter.position_filter.min_cutoff == pytest.approx(
            filter_settings.position_min_cutoff
        )
        assert pose_filter.rotation_filter.beta == pytest.approx(filter_settings.rotation_beta)

    def test_weak_geometry_smooths_more(self, filter_settings: FilterSettings) -> None:
        """The same step moves less when few markers were seen."""
        weak = PoseFilter(filter_settings)
        strong = PoseFilter(filter_settings)

        weak.filter(self._pose(0.0), DT, marker_count=1)
        strong.filter(self._pose(0.0), DT, marker_count=3)
        weak_pose = weak.filter(self._pose(0.1, 0.5), DT, marker_count=1)
        strong_pose = strong.filter(self._pose(0.1, 0.5), DT, marker_count=3)

        assert weak_pose.position[0] < strong_pose.position[0]
        assert quaternion.angle_between(weak_pose.rotation, quaternion.IDENTITY) < (
            quaternion.angle_between(strong_pose.rotation, quaternion.IDENTITY)
        )

    def test_reset(self, filter_settings: FilterSettings) -> None:
        """Reset makes the next pose pass through."""
        pose_filter = PoseFilter(filter_settings)
        pose_filter.filter(self._pose(0.0), DT, marker_count=4)
        pose_filter.reset()

        assert not pose_filter.is_initialized
        result = pose_filter.filter(self._pose(0.3, 1.0), DT, marker_count=4)
        assert result.position[0] == pytest.approx(0.3)

    def test_invalid_scale(self) -> None:
        """Scale must lie in (0, 1]."""
        with pytest.raises(ConfigurationError):
            PoseFilter(FilterSettings(weak_geometry_scale=0.0))
