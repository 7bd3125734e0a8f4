"""Triangulation of matched pixels from two views with a known relative pose."""

from __future__ import annotations

import numpy as np

from slamkit.epipolar import pixel2cam, triangulate_points


def _rotation(R) -> np.ndarray:
    R = np.asarray(R, dtype=float)
    if R.shape != (3, 3):
        raise ValueError(f"R must be 3x3, got shape {R.shape}")
    return R


def _translation(t) -> np.ndarray:
    t = np.asarray(t, dtype=float).reshape(-1)
    if t.shape != (3,):
        raise ValueError(f"t must have 3 elements, got {t.size}")
    return t


def triangulate(points1, points2, R, t, K) -> np.ndarray:
    """3D points, in the first camera's frame, of pixel matches ``points1 <-> points2``.

    The second camera sees a point ``X`` of the first frame at ``R @ X + t``.
    Returns an Nx3 array.
    """
    R = _rotation(R)
    t = _translation(t)
    p1 = np.asarray(points1, dtype=float).reshape(-1, 2)
    p2 = np.asarray(points2, dtype=float).reshape(-1, 2)
    n1 = pixel2cam(p1, K)
    n2 = pixel2cam(p2, K)
    P1 = np.eye(3, 4)
    P2 = np.column_stack([R, t])
    Q = triangulate_points(P1, P2, n1, n2)
    if Q.shape[1] == 0:
        return np.zeros((0, 3))
    return (Q[:3] / Q[3]).T


def reproject(point, R, t) -> np.ndarray:
    """Normalised coordinates ``(x, y, 1)`` of ``point`` seen from the second camera."""
    R = _rotation(R)
    t = _translation(t)
    p = np.asarray(point, dtype=float).reshape(-1)
    if p.shape != (3,):
        raise ValueError(f"point must have 3 elements, got {p.size}")
    q = R @ p + t
    if q[2] == 0.0:
        raise ValueError("point lies in the second camera's focal plane")
    return q / q[2]