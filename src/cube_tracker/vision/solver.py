"""Rigid absolute-orientation pose solver.

Recovers the rotation and translation that best map model points onto
observed points in the same metric frame, using Horn's quaternion method:
the optimal rotation is the dominant eigenvector of the 4x4 Davenport
matrix built from the cross-covariance of the two centred point clouds.

This module is pure logic with NO I/O.
"""

from __future__ import annotations

from typing import Literal

import numpy as np
from numpy.typing import ArrayLike, NDArray

from cube_tracker.core.config import SolverSettings
from cube_tracker.core.exceptions import ConfigurationError
from cube_tracker.core.logging import get_logger
from cube_tracker.core.types import CorrespondenceSet, Pose, PoseResult, SolveFailure
from cube_tracker.vision import quaternion

logger = get_logger(__name__)

MIN_POINTS = 3

# Second singular value of a centred cloud relative to the first below which
# the points span fewer than two independent directions.
_RANK_TOLERANCE = 1e-3
_NORM_FLOOR = 1e-12
_CONVERGENCE_TOLERANCE = 1e-6


def davenport_matrix(cross_covariance: NDArray[np.float64]) -> NDArray[np.float64]:
    """Symmetric 4x4 matrix whose dominant eigenvector is the optimal rotation.

    Args:
        cross_covariance: S = sum((m_i - mu_m)(o_i - mu_o)^T), 3x3

    Returns:
        K in (w, x, y, z) ordering
    """
    (sxx, sxy, sxz), (syx, syy, syz), (szx, szy, szz) = cross_covariance
    return np.array(
        [
            [sxx + syy + szz, syz - szy, szx - sxz, sxy - syx],
            [syz - szy, sxx - syy - szz, sxy + syx, szx + sxz],
            [szx - sxz, sxy + syx, -sxx + syy - szz, syz + szy],
            [sxy - syx, szx + sxz, syz + szy, -sxx - syy + szz],
        ]
    )


def rms_residual(
    pose: Pose,
    model_points: NDArray[np.float64],
    observed_points: NDArray[np.float64],
) -> float:
    """RMS distance between transformed model points and observations."""
    predicted = quaternion.rotate(pose.rotation, model_points) + pose.position
    squared = np.sum((predicted - observed_points) ** 2, axis=1)
    return float(np.sqrt(np.mean(squared)))


class RigidPoseSolver:
    """Closed-form rigid pose from paired 3D points.

    Attributes:
        method: "power" for fixed-count power iteration, "eigh" for a full
            symmetric eigen-decomposition
        iterations: Power iteration count
        max_rms_error: Fits worse than this are reported as failures
    """

    def __init__(
        self,
        method: Literal["power", "eigh"] = "power",
        iterations: int = 30,
        max_rms_error: float | None = None,
    ) -> None:
        if method not in ("power", "eigh"):
            raise ConfigurationError(f"Unknown eigen method: {method}")
        if iterations < 1:
            raise ConfigurationError(f"Power iterations must be positive, got {iterations}")
        if max_rms_error is not None and max_rms_error <= 0:
            raise ConfigurationError(f"max_rms_error must be positive, got {max_rms_error}")

        self.method = method
        self.iterations = iterations
        self.max_rms_error = max_rms_error

    @classmethod
    def from_settings(cls, settings: SolverSettings | None = None) -> RigidPoseSolver:
        """Create a solver from solver settings."""
        settings = settings or SolverSettings()
        return cls(
            method=settings.method,
            iterations=settings.power_iterations,
            max_rms_error=settings.max_rms_error,
        )

    def solve_correspondences(self, correspondences: CorrespondenceSet) -> PoseResult:
        """Solve for a correspondence set and record its marker count."""
        result = self.solve(correspondences.model_points, correspondences.observed_points)
        result.marker_count = correspondences.marker_count
        return result

    def solve(self, model_points: ArrayLike, observed_points: ArrayLike) -> PoseResult:
        """Find the rigid transform aligning model points to observed points.

        Args:
            model_points: (N, 3) points in the object frame
            observed_points: (N, 3) matching points in the tracking frame

        Returns:
            PoseResult; failures carry an identity pose and infinite error
        """
        model = np.asarray(model_points, dtype=np.float64).reshape(-1, 3)
        observed = np.asarray(observed_points, dtype=np.float64).reshape(-1, 3)
        n = model.shape[0]

        if n < MIN_POINTS or observed.shape[0] != n:
            return PoseResult.failed(SolveFailure.INSUFFICIENT_CORRESPONDENCE, point_count=n)

        if not (np.all(np.isfinite(model)) and np.all(np.isfinite(observed))):
            return PoseResult.failed(SolveFailure.DEGENERATE_GEOMETRY, point_count=n)

        mu_model = model.mean(axis=0)
        mu_observed = observed.mean(axis=0)
        centred_model = model - mu_model
        centred_observed = observed - mu_observed

        if _is_rank_deficient(centred_model) or _is_rank_deficient(centred_observed):
            logger.debug("Degenerate geometry: points span fewer than two directions")
            return PoseResult.failed(SolveFailure.DEGENERATE_GEOMETRY, point_count=n)

        cross_covariance = centred_model.T @ centred_observed
        k = davenport_matrix(cross_covariance)

        q = self._dominant_eigenvector(k)
        if q is None:
            return PoseResult.failed(SolveFailure.DEGENERATE_GEOMETRY, point_count=n)

        rotation = quaternion.canonicalize(q)
        translation = mu_observed - quaternion.rotate(rotation, mu_model)
        pose = Pose(position=translation, rotation=rotation)
        error = rms_residual(pose, model, observed)

        if not np.isfinite(error):
            return PoseResult.failed(SolveFailure.DEGENERATE_GEOMETRY, point_count=n)

        failure = None
        if self.max_rms_error is not None and error > self.max_rms_error:
            logger.debug("Rejecting fit: rms %.4f exceeds %.4f", error, self.max_rms_error)
            failure = SolveFailure.EXCESSIVE_ERROR

        return PoseResult(pose=pose, rms_error=error, point_count=n, failure=failure)

    def _dominant_eigenvector(self, k: NDArray[np.float64]) -> NDArray[np.float64] | None:
        """Eigenvector of K with the largest eigenvalue, or None if ill-defined."""
        if self.method == "eigh":
            return _eigh_dominant(k)

        # Shift by the Frobenius norm so every eigenvalue is non-negative and
        # the dominant one by magnitude is also the largest algebraically.
        shift = float(np.linalg.norm(k))
        if shift < _NORM_FLOOR:
            return None
        shifted = k + shift * np.eye(4)

        columns = np.linalg.norm(shifted, axis=0)
        q = shifted[:, int(np.argmax(columns))]
        q = q / columns.max()

        for _ in range(self.iterations):
            q_next = shifted @ q
            norm = float(np.linalg.norm(q_next))
            if norm < _NORM_FLOOR:
                return None
            q = q_next / norm

        rayleigh = float(q @ shifted @ q)
        residual = float(np.linalg.norm(shifted @ q - rayleigh * q))
        if residual > _CONVERGENCE_TOLERANCE * shift:
            logger.debug("Power iteration unconverged (residual %.2e), using eigh", residual)
            return _eigh_dominant(k)

        return q


def _eigh_dominant(k: NDArray[np.float64]) -> NDArray[np.float64] | None:
    _, vectors = np.linalg.eigh(k)
    q = vectors[:, -1]
    norm = float(np.linalg.norm(q))
    if norm < _NORM_FLOOR or not np.isfinite(norm):
        return None
    return q / norm


def _is_rank_deficient(centred: NDArray[np.float64]) -> bool:
    singular = np.linalg.svd(centred, compute_uv=False)
    if singular[0] < _NORM_FLOOR:
        return True
    return bool(singular[1] < _RANK_TOLERANCE * singular[0])
