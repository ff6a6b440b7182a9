"""Unit quaternion helpers.

Quaternions are numpy arrays in (w, x, y, z) order.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import ArrayLike, NDArray

IDENTITY = np.array([1.0, 0.0, 0.0, 0.0])

_EPS = 1e-12


def normalize(q: ArrayLike) -> NDArray[np.float64]:
    """Return q scaled to unit length (identity if q is near zero)."""
    q = np.asarray(q, dtype=np.float64)
    norm = float(np.linalg.norm(q))
    if norm < _EPS or not np.isfinite(norm):
        return IDENTITY.copy()
    return q / norm


def canonicalize(q: ArrayLike) -> NDArray[np.float64]:
    """Pick the hemisphere with a non-negative scalar part."""
    q = normalize(q)
    return -q if q[0] < 0 else q


def conjugate(q: ArrayLike) -> NDArray[np.float64]:
    """Conjugate, equal to the inverse for unit quaternions."""
    w, x, y, z = np.asarray(q, dtype=np.float64)
    return np.array([w, -x, -y, -z])


def multiply(a: ArrayLike, b: ArrayLike) -> NDArray[np.float64]:
    """Hamilton product a * b (apply b first, then a)."""
    aw, ax, ay, az = np.asarray(a, dtype=np.float64)
    bw, bx, by, bz = np.asarray(b, dtype=np.float64)
    return np.array(
        [
            aw * bw - ax * bx - ay * by - az * bz,
            aw * bx + ax * bw + ay * bz - az * by,
            aw * by - ax * bz + ay * bw + az * bx,
            aw * bz + ax * by - ay * bx + az * bw,
        ]
    )


def to_matrix(q: ArrayLike) -> NDArray[np.float64]:
    """3x3 rotation matrix of a unit quaternion."""
    w, x, y, z = normalize(q)
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
            [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
            [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
        ]
    )


def from_matrix(matrix: ArrayLike) -> NDArray[np.float64]:
    """Quaternion of a 3x3 rotation matrix (Shepperd's method)."""
    m = np.asarray(matrix, dtype=np.float64)
    trace = m[0, 0] + m[1, 1] + m[2, 2]

    if trace > 0:
        s = 2.0 * np.sqrt(trace + 1.0)
        q = [0.25 * s, (m[2, 1] - m[1, 2]) / s, (m[0, 2] - m[2, 0]) / s, (m[1, 0] - m[0, 1]) / s]
    elif m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
        s = 2.0 * np.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2])
        q = [(m[2, 1] - m[1, 2]) / s, 0.25 * s, (m[0, 1] + m[1, 0]) / s, (m[0, 2] + m[2, 0]) / s]
    elif m[1, 1] > m[2, 2]:
        s = 2.0 * np.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2])
        q = [(m[0, 2] - m[2, 0]) / s, (m[0, 1] + m[1, 0]) / s, 0.25 * s, (m[1, 2] + m[2, 1]) / s]
    else:
        s = 2.0 * np.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1])
        q = [(m[1, 0] - m[0, 1]) / s, (m[0, 2] + m[2, 0]) / s, (m[1, 2] + m[2, 1]) / s, 0.25 * s]

    return canonicalize(q)


def rotate(q: ArrayLike, points: ArrayLike) -> NDArray[np.float64]:
    """Rotate a point (3,) or a batch of points (N, 3)."""
    points = np.asarray(points, dtype=np.float64)
    return points @ to_matrix(q).T


def from_axis_angle(axis: ArrayLike, angle: float) -> NDArray[np.float64]:
    """Quaternion rotating by angle (radians) about axis."""
    axis = np.asarray(axis, dtype=np.float64)
    norm = float(np.linalg.norm(axis))
    if norm < _EPS:
        return IDENTITY.copy()
    half = 0.5 * angle
    return np.concatenate(([np.cos(half)], np.sin(half) * axis / norm))


def to_axis_angle(q: ArrayLike) -> tuple[NDArray[np.float64], float]:
    """Shortest-path axis and angle (radians, in [0, pi]) of a rotation."""
    q = canonicalize(q)
    sin_half = float(np.linalg.norm(q[1:]))
    if sin_half < _EPS:
        return np.array([1.0, 0.0, 0.0]), 0.0
    angle = 2.0 * float(np.arctan2(sin_half, q[0]))
    return q[1:] / sin_half, angle


def angle_between(a: ArrayLike, b: ArrayLike) -> float:
    """Smallest rotation angle (radians) taking a to b."""
    # atan2 keeps precision near zero where arccos does not.
    delta = multiply(conjugate(normalize(a)), normalize(b))
    return 2.0 * float(np.arctan2(np.linalg.norm(delta[1:]), abs(delta[0])))


def slerp(a: ArrayLike, b: ArrayLike, t: float) -> NDArray[np.float64]:
    """Spherical interpolation from a (t=0) to b (t=1) along the shortest arc."""
    a = normalize(a)
    b = normalize(b)
    dot = float(np.dot(a, b))
    if dot < 0.0:
        b = -b
        dot = -dot

    if dot > 0.9995:
        return normalize(a + t * (b - a))

    theta = np.arccos(dot)
    sin_theta = np.sin(theta)
    wa = np.sin((1.0 - t) * theta) / sin_theta
    wb = np.sin(t * theta) / sin_theta
    return normalize(wa * a + wb * b)
