"""Camera-model-aware pose estimation from pixel corners.

Two uses of OpenCV's PnP solvers:
- marker_corners_in_camera lifts one detected square marker from pixels to
  3D camera-frame corners, the input the rigid solver expects;
- ProjectivePoseSolver solves the whole rigid body directly from 2D pixel
  correspondences when no 3D lifting is wanted.
"""

from __future__ import annotations

import cv2
import numpy as np
from numpy.typing import ArrayLike, NDArray

from cube_tracker.core.exceptions import CalibrationError
from cube_tracker.core.logging import get_logger
from cube_tracker.core.types import CameraIntrinsics, CorrespondenceSet, Pose, PoseResult, SolveFailure
from cube_tracker.vision import quaternion
from cube_tracker.vision.marker_model import square_marker_corners

logger = get_logger(__name__)

MIN_PNP_POINTS = 4
MAX_LIFT_REPROJECTION_PX = 3.0


def validate_intrinsics(intrinsics: CameraIntrinsics) -> None:
    """Check that intrinsics describe a usable pinhole camera.

    Raises:
        CalibrationError: If focal lengths or image size are not positive or
            the principal point is not finite
    """
    if intrinsics.fx <= 0 or intrinsics.fy <= 0:
        raise CalibrationError(
            f"Focal lengths must be positive, got fx={intrinsics.fx}, fy={intrinsics.fy}"
        )
    if intrinsics.width <= 0 or intrinsics.height <= 0:
        raise CalibrationError(
            f"Image size must be positive, got {intrinsics.width}x{intrinsics.height}"
        )
    if not (np.isfinite(intrinsics.cx) and np.isfinite(intrinsics.cy)):
        raise CalibrationError("Principal point must be finite")


def _rvec_tvec_to_pose(rvec: NDArray[np.float64], tvec: NDArray[np.float64]) -> Pose:
    rotation_matrix, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3))
    return Pose(
        position=np.asarray(tvec, dtype=np.float64).reshape(3),
        rotation=quaternion.from_matrix(rotation_matrix),
    )


def _rms_pixel_error(projected: NDArray[np.float64], pixels: NDArray[np.float64]) -> float:
    return float(np.sqrt(np.mean(np.sum((projected - pixels) ** 2, axis=1))))


def project_points(
    pose: Pose,
    points: ArrayLike,
    intrinsics: CameraIntrinsics,
) -> NDArray[np.float64]:
    """Project object-frame points through a camera-frame pose to pixels."""
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    rvec, _ = cv2.Rodrigues(quaternion.to_matrix(pose.rotation))
    projected, _ = cv2.projectPoints(
        points,
        rvec,
        pose.position.reshape(3, 1),
        intrinsics.camera_matrix,
        intrinsics.distortion_coefficients,
    )
    return projected.reshape(-1, 2)


def marker_corners_in_camera(
    image_corners: ArrayLike,
    intrinsics: CameraIntrinsics,
    marker_length: float,
    max_reprojection_px: float | None = MAX_LIFT_REPROJECTION_PX,
) -> NDArray[np.float64] | None:
    """Recover a single square marker's corners in the camera frame.

    IPPE yields two candidate poses for a planar square; the one with the
    lower reprojection error is kept.

    Args:
        image_corners: (4, 2) pixel corners ordered TL, TR, BR, BL
        intrinsics: Camera intrinsics
        marker_length: Marker side length in meters
        max_reprojection_px: Reject the lift when the RMS reprojection error
            of the best candidate exceeds this, None to accept any

    Returns:
        (4, 3) camera-frame corners in meters, or None if PnP failed or the
        corners do not fit a square of the given size
    """
    pixels = np.asarray(image_corners, dtype=np.float64).reshape(4, 2)
    local = square_marker_corners(marker_length)

    try:
        count, rvecs, tvecs, _ = cv2.solvePnPGeneric(
            local.astype(np.float32),
            pixels.astype(np.float32),
            intrinsics.camera_matrix,
            intrinsics.distortion_coefficients,
            flags=cv2.SOLVEPNP_IPPE_SQUARE,
        )
    except cv2.error as e:
        logger.debug("Single-marker PnP raised: %s", e)
        return None

    best_pose: Pose | None = None
    best_error = np.inf
    for rvec, tvec in zip(rvecs[:count], tvecs[:count]):
        if not (np.all(np.isfinite(rvec)) and np.all(np.isfinite(tvec))):
            continue
        pose = _rvec_tvec_to_pose(rvec, tvec)
        error = _rms_pixel_error(project_points(pose, local, intrinsics), pixels)
        if error < best_error:
            best_pose, best_error = pose, error

    if best_pose is None:
        return None
    if max_reprojection_px is not None and best_error > max_reprojection_px:
        logger.debug("Single-marker lift rejected, reprojection %.2f px", best_error)
        return None

    return quaternion.rotate(best_pose.rotation, local) + best_pose.position


class ProjectivePoseSolver:
    """Rigid-body pose from 2D pixel correspondences via cv2.solvePnP.

    Same contract as RigidPoseSolver, with the observed points given in
    pixels and the RMS error reported in pixels.
    """

    def __init__(
        self,
        intrinsics: CameraIntrinsics,
        max_rms_error: float | None = None,
    ) -> None:
        validate_intrinsics(intrinsics)
        self.intrinsics = intrinsics
        self.max_rms_error = max_rms_error

    def solve_correspondences(self, correspondences: CorrespondenceSet) -> PoseResult:
        """Solve for a correspondence set and record its marker count."""
        result = self.solve(correspondences.model_points, correspondences.observed_points)
        result.marker_count = correspondences.marker_count
        return result

    def solve(self, model_points: ArrayLike, image_points: ArrayLike) -> PoseResult:
        """Estimate the camera-frame pose of the rigid body.

        Args:
            model_points: (N, 3) object-frame points
            image_points: (N, 2) matching pixel coordinates

        Returns:
            PoseResult with the pose of the object in the camera frame
        """
        model = np.asarray(model_points, dtype=np.float64).reshape(-1, 3)
        pixels = np.asarray(image_points, dtype=np.float64).reshape(-1, 2)
        n = model.shape[0]

        if n < MIN_PNP_POINTS or pixels.shape[0] != n:
            return PoseResult.failed(SolveFailure.INSUFFICIENT_CORRESPONDENCE, point_count=n)

        try:
            ok, rvec, tvec = cv2.solvePnP(
                model,
                pixels,
                self.intrinsics.camera_matrix,
                self.intrinsics.distortion_coefficients,
                flags=cv2.SOLVEPNP_ITERATIVE,
            )
        except cv2.error as e:
            logger.debug("Board PnP raised: %s", e)
            return PoseResult.failed(SolveFailure.DEGENERATE_GEOMETRY, point_count=n)

        if not ok or not (np.all(np.isfinite(rvec)) and np.all(np.isfinite(tvec))):
            return PoseResult.failed(SolveFailure.DEGENERATE_GEOMETRY, point_count=n)

        pose = _rvec_tvec_to_pose(rvec, tvec)
        projected = project_points(pose, model, self.intrinsics)
        error = _rms_pixel_error(projected, pixels)

        failure = None
        if self.max_rms_error is not None and error > self.max_rms_error:
            failure = SolveFailure.EXCESSIVE_ERROR

        return PoseResult(pose=pose, rms_error=error, point_count=n, failure=failure)
