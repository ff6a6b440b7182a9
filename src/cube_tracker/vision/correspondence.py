"""Pairing of detected marker corners with the marker model.

This module is pure logic with NO I/O.
"""

from __future__ import annotations

from collections.abc import Mapping

import numpy as np
from numpy.typing import ArrayLike

from cube_tracker.core.logging import get_logger
from cube_tracker.core.types import CorrespondenceSet
from cube_tracker.vision.marker_model import MarkerModel

logger = get_logger(__name__)


def build_correspondences(
    observations: Mapping[int, ArrayLike],
    model: MarkerModel,
    id_offset: int = 0,
) -> CorrespondenceSet:
    """Pair observed corners with model corners, four per matched marker.

    Detected IDs absent from the model are skipped; partial detection is
    normal. An empty result means no pose is available this frame.

    Args:
        observations: Detected marker ID to corners (TL, TR, BR, BL), each
            shaped (4, 3) or (4, 2)
        model: Rigid-body marker model
        id_offset: Subtracted from detected IDs before the model lookup

    Returns:
        CorrespondenceSet ordered by ascending detected ID
    """
    model_points: list[np.ndarray] = []
    observed_points: list[np.ndarray] = []
    marker_ids: list[int] = []
    dims: int | None = None

    for detected_id in sorted(observations):
        model_id = detected_id - id_offset
        if model_id not in model:
            continue

        corners = np.asarray(observations[detected_id], dtype=np.float64)
        if corners.ndim != 2 or corners.shape[0] != 4 or corners.shape[1] not in (2, 3):
            logger.debug("Skipping marker %d: corners shaped %s", detected_id, corners.shape)
            continue
        if dims is not None and corners.shape[1] != dims:
            logger.debug("Skipping marker %d: mixed 2D and 3D corners", detected_id)
            continue

        dims = corners.shape[1]
        model_points.append(model.get_corners(model_id))
        observed_points.append(corners)
        marker_ids.append(detected_id)

    if not marker_ids:
        return CorrespondenceSet.empty()

    return CorrespondenceSet(
        model_points=np.vstack(model_points),
        observed_points=np.vstack(observed_points),
        marker_ids=marker_ids,
    )


def any_visible(watched_ids: set[int] | frozenset[int], detected_ids: set[int]) -> bool:
    """Reduce a watched marker set to one visibility flag (any-of semantics)."""
    return not watched_ids.isdisjoint(detected_ids)
