"""Pytest fixtures for Cube Tracker tests."""

from __future__ import annotations

from collections.abc import Callable, Iterable

import numpy as np
import pytest

from cube_tracker.core.config import (
    FilterSettings,
    MarkerSettings,
    Settings,
    SolverSettings,
    TrackingSettings,
    VisibilitySettings,
)
from cube_tracker.core.types import CameraIntrinsics, Pose
from cube_tracker.vision import quaternion
from cube_tracker.vision.marker_model import MarkerModel
from cube_tracker.vision.projective import project_points

MARKER_LENGTH = 0.065
CUBE_SIZE = 0.07

Observations = dict[int, np.ndarray]


@pytest.fixture
def rng() -> np.random.Generator:
    """Seeded random generator."""
    return np.random.default_rng(42)


@pytest.fixture
def cube_model() -> MarkerModel:
    """Six-face cube with 65 mm markers, IDs 0-5."""
    return MarkerModel.simple_cube(cube_size=CUBE_SIZE, marker_length=MARKER_LENGTH)


@pytest.fixture
def sample_pose() -> Pose:
    """Cube half a meter in front of the camera, turned 30 degrees about Y."""
    return Pose(
        position=np.array([0.02, -0.01, 0.5]),
        rotation=quaternion.from_axis_angle([0.0, 1.0, 0.0], np.radians(30.0)),
    )


@pytest.fixture
def random_pose(rng: np.random.Generator) -> Callable[[], Pose]:
    """Factory for random poses with uniformly distributed rotations."""

    def _make() -> Pose:
        rotation = rng.normal(size=4)
        position = rng.uniform(-0.5, 0.5, size=3)
        return Pose(position=position, rotation=rotation)

    return _make


@pytest.fixture
def intrinsics() -> CameraIntrinsics:
    """VGA pinhole camera without distortion."""
    return CameraIntrinsics(width=640, height=480, fx=600.0, fy=600.0, cx=320.0, cy=240.0)


@pytest.fixture
def observe(cube_model: MarkerModel) -> Callable[..., Observations]:
    """Factory producing metric detections of the cube at a pose.

    Call as ``observe(pose, ids=None, offset=0)``; ``ids`` defaults to the
    markers facing a camera at the origin.
    """

    def _observe(pose: Pose, ids: Iterable[int] | None = None, offset: int = 0) -> Observations:
        marker_ids = _facing_markers(cube_model, pose) if ids is None else list(ids)
        return {
            marker_id + offset: quaternion.rotate(pose.rotation, cube_model.get_corners(marker_id))
            + pose.position
            for marker_id in marker_ids
        }

    return _observe


@pytest.fixture
def observe_pixels(
    cube_model: MarkerModel,
    intrinsics: CameraIntrinsics,
) -> Callable[..., Observations]:
    """Factory producing pixel detections of the facing cube markers."""

    def _observe(pose: Pose) -> Observations:
        return {
            marker_id: project_points(pose, cube_model.get_corners(marker_id), intrinsics)
            for marker_id in _facing_markers(cube_model, pose)
        }

    return _observe


def _facing_markers(model: MarkerModel, pose: Pose) -> list[int]:
    """Markers whose outward normal points toward a camera at the origin."""
    facing = []
    for marker_id in sorted(model.marker_ids):
        corners = quaternion.rotate(pose.rotation, model.get_corners(marker_id)) + pose.position
        normal = np.cross(corners[3] - corners[0], corners[1] - corners[0])
        center = corners.mean(axis=0)
        if float(np.dot(normal, -center)) > 0.2 * float(np.linalg.norm(normal) * np.linalg.norm(center)):
            facing.append(marker_id)
    return facing


@pytest.fixture
def marker_settings() -> MarkerSettings:
    """Create marker settings for testing."""
    return MarkerSettings()


@pytest.fixture
def solver_settings() -> SolverSettings:
    """Create solver settings for testing."""
    return SolverSettings()


@pytest.fixture
def filter_settings() -> FilterSettings:
    """Create filter settings for testing."""
    return FilterSettings()


@pytest.fixture
def visibility_settings() -> VisibilitySettings:
    """Create visibility settings for testing."""
    return VisibilitySettings()


@pytest.fixture
def settings() -> Settings:
    """Create application settings with a short stale window."""
    return Settings(
        marker=MarkerSettings(),
        solver=SolverSettings(),
        filter=FilterSettings(),
        visibility=VisibilitySettings(),
        tracking=TrackingSettings(stale_after_frames=3),
    )
