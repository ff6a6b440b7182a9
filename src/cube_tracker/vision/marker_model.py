"""Rigid marker layout of the tracked object.

A MarkerModel is built once at startup and never mutated, so several tracked
bodies can share or own independent models.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType

import numpy as np
from numpy.typing import ArrayLike, NDArray

from cube_tracker.core.config import MarkerSettings
from cube_tracker.core.exceptions import ConfigurationError
from cube_tracker.core.logging import get_logger
from cube_tracker.core.types import ArucoDictionary, BoardGeometry

logger = get_logger(__name__)

# Face normal and in-plane (right, up) axes per cube marker, chosen so the
# corners read TL, TR, BR, BL when the face is viewed from outside.
CUBE_FACES: dict[int, tuple[tuple[float, float, float], ...]] = {
    0: ((0, 0, 1), (1, 0, 0), (0, 1, 0)),  # front (+Z)
    1: ((0, 0, -1), (-1, 0, 0), (0, 1, 0)),  # back (-Z)
    2: ((-1, 0, 0), (0, 0, 1), (0, 1, 0)),  # left (-X)
    3: ((1, 0, 0), (0, 0, -1), (0, 1, 0)),  # right (+X)
    4: ((0, 1, 0), (1, 0, 0), (0, 0, -1)),  # top (+Y)
    5: ((0, -1, 0), (1, 0, 0), (0, 0, 1)),  # bottom (-Y)
}


def square_marker_corners(marker_length: float) -> NDArray[np.float64]:
    """Corners of a square marker centred at the origin in its own plane."""
    h = marker_length * 0.5
    return np.array(
        [
            [-h, h, 0.0],
            [h, h, 0.0],
            [h, -h, 0.0],
            [-h, -h, 0.0],
        ]
    )


def cube_marker_corners(face: int, cube_size: float, marker_length: float) -> NDArray[np.float64]:
    """Object-space corners of the marker on one face of a cube.

    Args:
        face: Face index 0-5 (front, back, left, right, top, bottom)
        cube_size: Cube edge length in meters
        marker_length: Marker side length in meters

    Returns:
        (4, 3) corners ordered TL, TR, BR, BL
    """
    if face not in CUBE_FACES:
        raise ConfigurationError(f"Cube has no face for marker {face}")

    normal, right, up = (np.asarray(v, dtype=np.float64) for v in CUBE_FACES[face])
    centre = normal * cube_size * 0.5
    h = marker_length * 0.5
    return np.array(
        [
            centre - right * h + up * h,
            centre + right * h + up * h,
            centre + right * h - up * h,
            centre - right * h - up * h,
        ]
    )


class MarkerModel:
    """Immutable table of marker ID to object-space corners.

    Attributes:
        marker_length: Physical marker side length in meters
        dictionary: Dictionary the markers were printed from
    """

    def __init__(
        self,
        corners: Mapping[int, ArrayLike],
        marker_length: float,
        dictionary: ArucoDictionary = ArucoDictionary.DICT_4X4_50,
    ) -> None:
        """Validate and freeze the corner table.

        Raises:
            ConfigurationError: If the table is empty, a corner set is not
                four non-collinear 3D points, an ID does not fit the
                dictionary, or the marker length is not positive
        """
        if not marker_length > 0:
            raise ConfigurationError(f"Marker length must be positive, got {marker_length}")
        if not corners:
            raise ConfigurationError("Marker model table is empty")

        table: dict[int, NDArray[np.float64]] = {}
        for marker_id, points in corners.items():
            if not 0 <= int(marker_id) < dictionary.size:
                raise ConfigurationError(
                    f"Marker {marker_id} is outside {dictionary.value} (size {dictionary.size})"
                )
            array = np.array(points, dtype=np.float64)
            if array.shape != (4, 3) or not np.all(np.isfinite(array)):
                raise ConfigurationError(
                    f"Marker {marker_id} needs 4 finite 3D corners, got shape {array.shape}"
                )
            if _is_collinear(array):
                raise ConfigurationError(f"Corners of marker {marker_id} are collinear")
            array.setflags(write=False)
            table[int(marker_id)] = array

        self.marker_length = float(marker_length)
        self.dictionary = dictionary
        self._corners = MappingProxyType(table)

    @classmethod
    def simple_cube(
        cls,
        marker_ids: Iterable[int] = (0, 1, 2, 3, 4, 5),
        cube_size: float = 0.07,
        marker_length: float = 0.065,
        dictionary: ArucoDictionary = ArucoDictionary.DICT_4X4_50,
    ) -> MarkerModel:
        """Cube with one marker centred on each face.

        The i-th ID is placed on face i (front, back, left, right, top, bottom).
        """
        ids = list(marker_ids)
        if len(ids) > len(CUBE_FACES):
            raise ConfigurationError(f"A cube holds at most 6 markers, got {len(ids)}")
        if marker_length > cube_size:
            raise ConfigurationError(
                f"Marker length {marker_length} exceeds cube size {cube_size}"
            )
        corners = {
            marker_id: cube_marker_corners(face, cube_size, marker_length)
            for face, marker_id in enumerate(ids)
        }
        return cls(corners, marker_length, dictionary)

    @classmethod
    def from_settings(
        cls,
        settings: MarkerSettings | None = None,
        corners: Mapping[int, ArrayLike] | None = None,
    ) -> MarkerModel:
        """Build the model described by marker settings.

        Args:
            settings: Marker settings (uses defaults if None)
            corners: Corner table, required for custom board geometry

        Raises:
            ConfigurationError: If the settings do not describe a valid model
        """
        settings = settings or MarkerSettings()

        if settings.board_geometry is BoardGeometry.CUSTOM:
            if corners is None:
                raise ConfigurationError("Custom board geometry requires a corner table")
            model = cls(corners, settings.marker_length, settings.dictionary)
        else:
            model = cls.simple_cube(
                marker_ids=settings.marker_ids,
                cube_size=settings.cube_size,
                marker_length=settings.marker_length,
                dictionary=settings.dictionary,
            )

        logger.info(
            "Marker model ready: %d markers, %.1f mm, %s",
            len(model),
            model.marker_length * 1000,
            settings.board_geometry.value,
        )
        return model

    @property
    def marker_ids(self) -> frozenset[int]:
        """IDs known to the model."""
        return frozenset(self._corners)

    @property
    def corners(self) -> Mapping[int, NDArray[np.float64]]:
        """Read-only view of the corner table."""
        return self._corners

    def __contains__(self, marker_id: object) -> bool:
        return marker_id in self._corners

    def __len__(self) -> int:
        return len(self._corners)

    def get_corners(self, marker_id: int) -> NDArray[np.float64]:
        """Corners of one marker.

        Raises:
            ConfigurationError: If the ID is not part of the model
        """
        try:
            return self._corners[marker_id]
        except KeyError:
            raise ConfigurationError(f"Unknown marker ID {marker_id}") from None

    def marker_center(self, marker_id: int) -> NDArray[np.float64]:
        """Centre of one marker in object space."""
        return self.get_corners(marker_id).mean(axis=0)

    def centroid(self) -> NDArray[np.float64]:
        """Mean of all marker centres."""
        return np.mean([c.mean(axis=0) for c in self._corners.values()], axis=0)


def _is_collinear(points: NDArray[np.float64], tol: float = 1e-9) -> bool:
    centred = points - points.mean(axis=0)
    singular = np.linalg.svd(centred, compute_uv=False)
    return bool(singular[0] < tol or singular[1] < tol * max(singular[0], 1.0))
