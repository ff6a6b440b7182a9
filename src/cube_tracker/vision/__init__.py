"""Geometry and signal processing: marker model, pose solvers, and filtering."""

from cube_tracker.vision.correspondence import any_visible, build_correspondences
from cube_tracker.vision.filters import OneEuroFilter, OneEuroFilterQuat, OneEuroFilterVec3, PoseFilter
from cube_tracker.vision.marker_model import MarkerModel
from cube_tracker.vision.projective import ProjectivePoseSolver, marker_corners_in_camera
from cube_tracker.vision.solver import RigidPoseSolver

__all__ = [
    "MarkerModel",
    "build_correspondences",
    "any_visible",
    "RigidPoseSolver",
    "ProjectivePoseSolver",
    "marker_corners_in_camera",
    "OneEuroFilter",
    "OneEuroFilterVec3",
    "OneEuroFilterQuat",
    "PoseFilter",
]
