"""Tests for OpenCV-backed pixel pose estimation."""

from __future__ import annotations

import numpy as np
import pytest

from cube_tracker.core.exceptions import CalibrationError
from cube_tracker.core.types import CameraIntrinsics, Pose, SolveFailure
from cube_tracker.vision import quaternion
from cube_tracker.vision.marker_model import MarkerModel, square_marker_corners
from cube_tracker.vision.projective import (
    ProjectivePoseSolver,
    marker_corners_in_camera,
    project_points,
    validate_intrinsics,
)


class TestProjectPoints:
    """Tests for point projection."""

    def test_optical_axis_hits_principal_point(self, intrinsics: CameraIntrinsics) -> None:
        """A point straight ahead projects onto (cx, cy)."""
        pixels = project_points(Pose.identity(), [[0.0, 0.0, 1.0]], intrinsics)
        assert np.allclose(pixels, [[320.0, 240.0]])

    def test_pinhole_scaling(self, intrinsics: CameraIntrinsics) -> None:
        """Offsets scale by focal length over depth."""
        pixels = project_points(Pose.identity(), [[0.1, -0.05, 0.5]], intrinsics)
        assert np.allclose(pixels, [[320.0 + 600.0 * 0.2, 240.0 - 600.0 * 0.1]])


def _facing_marker_pose(tilt_deg: float, spin_deg: float) -> Pose:
    """65 mm marker at 0.4 m, turned to face the camera, then tilted and spun."""
    rotation = quaternion.multiply(
        quaternion.multiply(
            quaternion.from_axis_angle([1.0, 0.0, 0.0], np.pi),
            quaternion.from_axis_angle([0.0, 1.0, 0.0], np.radians(tilt_deg)),
        ),
        quaternion.from_axis_angle([0.0, 0.0, 1.0], np.radians(spin_deg)),
    )
    return Pose(position=np.array([0.05, -0.02, 0.4]), rotation=rotation)


class TestMarkerCornersInCamera:
    """Tests for single-marker back-projection."""

    @pytest.mark.parametrize("spin_deg", [0.0, 90.0, 135.0])
    @pytest.mark.parametrize("tilt_deg", [0.0, 10.0, 20.0, 30.0, 45.0])
    def test_recovers_camera_frame_corners(
        self,
        intrinsics: CameraIntrinsics,
        tilt_deg: float,
        spin_deg: float,
    ) -> None:
        """Pixel corners of a known marker lift back to its 3D corners."""
        local = square_marker_corners(0.065)
        pose = _facing_marker_pose(tilt_deg, spin_deg)
        expected = quaternion.rotate(pose.rotation, local) + pose.position
        pixels = project_points(pose, local, intrinsics)

        corners = marker_corners_in_camera(pixels, intrinsics, 0.065)

        assert corners is not None
        assert corners.shape == (4, 3)
        assert np.max(np.linalg.norm(corners - expected, axis=1)) < 1e-4

    def test_upright_marker_keeps_depth(self, intrinsics: CameraIntrinsics) -> None:
        """A marker squarely facing the camera lifts to its true distance."""
        local = square_marker_corners(0.065)
        pose = _facing_marker_pose(0.0, 0.0)

        corners = marker_corners_in_camera(project_points(pose, local, intrinsics), intrinsics, 0.065)

        assert corners is not None
        assert np.allclose(corners.mean(axis=0), pose.position, atol=1e-5)
        assert np.allclose(corners[:, 2], 0.4, atol=1e-5)

    def test_non_square_corners_rejected(self, intrinsics: CameraIntrinsics) -> None:
        """Corners that no square of this size could produce are not lifted."""
        local = square_marker_corners(0.065)
        pixels = project_points(_facing_marker_pose(20.0, 0.0), local, intrinsics)
        crossed = pixels[[0, 2, 1, 3]]

        assert marker_corners_in_camera(crossed, intrinsics, 0.065) is None

    def test_residual_limit_can_be_disabled(self, intrinsics: CameraIntrinsics) -> None:
        """Without a limit the best candidate is always returned."""
        local = square_marker_corners(0.065)
        pixels = project_points(_facing_marker_pose(20.0, 0.0), local, intrinsics)
        pixels[0] += 6.0

        assert marker_corners_in_camera(pixels, intrinsics, 0.065, max_reprojection_px=None) is not None


class TestProjectivePoseSolver:
    """Tests for ProjectivePoseSolver."""

    def test_recovers_pose(
        self,
        cube_model: MarkerModel,
        intrinsics: CameraIntrinsics,
        sample_pose: Pose,
    ) -> None:
        """Exact pixel correspondences give back the cube pose."""
        model_points = np.vstack([cube_model.get_corners(i) for i in (1, 3, 4)])
        pixels = project_points(sample_pose, model_points, intrinsics)

        result = ProjectivePoseSolver(intrinsics).solve(model_points, pixels)

        assert result.success
        assert np.allclose(result.pose.position, sample_pose.position, atol=1e-4)
        assert quaternion.angle_between(result.pose.rotation, sample_pose.rotation) < 1e-3
        assert result.rms_error < 1e-3

    def test_too_few_points(self, intrinsics: CameraIntrinsics) -> None:
        """PnP needs at least four points."""
        model_points = np.zeros((3, 3))
        result = ProjectivePoseSolver(intrinsics).solve(model_points, np.zeros((3, 2)))

        assert result.failure == SolveFailure.INSUFFICIENT_CORRESPONDENCE

    def test_reprojection_limit(
        self,
        cube_model: MarkerModel,
        intrinsics: CameraIntrinsics,
        sample_pose: Pose,
        rng: np.random.Generator,
    ) -> None:
        """Large pixel noise exceeds the reprojection limit."""
        model_points = np.vstack([cube_model.get_corners(i) for i in (1, 3, 4)])
        pixels = project_points(sample_pose, model_points, intrinsics)
        pixels = pixels + rng.normal(0.0, 20.0, pixels.shape)

        result = ProjectivePoseSolver(intrinsics, max_rms_error=0.5).solve(model_points, pixels)

        assert result.failure == SolveFailure.EXCESSIVE_ERROR


class TestValidateIntrinsics:
    """Tests for intrinsics validation."""

    def test_valid(self, intrinsics: CameraIntrinsics) -> None:
        """A normal camera passes."""
        validate_intrinsics(intrinsics)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"fx": 0.0},
            {"fy": -1.0},
            {"width": 0},
            {"cx": float("nan")},
        ],
    )
    def test_invalid(self, kwargs: dict) -> None:
        """Bad focal lengths, sizes or principal points raise CalibrationError."""
        params = {"width": 640, "height": 480, "fx": 600.0, "fy": 600.0, "cx": 320.0, "cy": 240.0}
        params.update(kwargs)

        with pytest.raises(CalibrationError):
            validate_intrinsics(CameraIntrinsics(**params))

        with pytest.raises(CalibrationError):
            ProjectivePoseSolver(CameraIntrinsics(**params))
