"""Two-view epipolar geometry: fundamental and essential matrices, pose recovery."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from slamkit.lie import hat

#: Intrinsics of the TUM Freiburg2 camera used by the examples.
TUM_K = np.array([[520.9, 0.0, 325.1], [0.0, 521.0, 249.7], [0.0, 0.0, 1.0]])
#: Principal point and focal length used when estimating the essential matrix.
PRINCIPAL_POINT = (325.1, 249.7)
FOCAL_LENGTH = 521.0
#: Points farther than this (in units of the baseline) are ignored by the cheirality check.
CHEIRALITY_DISTANCE = 50.0

_W = np.array([[0.0, 1.0, 0.0], [-1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
_FLT_EPSILON = float(np.finfo(np.float32).eps)


@dataclass(frozen=True)
class RecoveredPose:
    """Relative camera motion recovered from an essential matrix."""

    rotation: np.ndarray
    translation: np.ndarray
    mask: np.ndarray
    inliers: int


def _points(points, name: str) -> np.ndarray:
    arr = np.asarray(points, dtype=float)
    if arr.ndim < 1 or arr.shape[-1] != 2:
        raise ValueError(f"{name} must be a sequence of 2D points, got shape {arr.shape}")
    return arr.reshape(-1, 2)


def _point_pair(points1, points2) -> tuple[np.ndarray, np.ndarray]:
    p1 = _points(points1, "points1")
    p2 = _points(points2, "points2")
    if p1.shape != p2.shape:
        raise ValueError(f"point sets differ in size: {len(p1)} and {len(p2)}")
    return p1, p2


def _camera_matrix(focal: float, pp) -> np.ndarray:
    cx, cy = (float(v) for v in pp)
    return np.array([[focal, 0.0, cx], [0.0, focal, cy], [0.0, 0.0, 1.0]])


def pixel2cam(p, K) -> np.ndarray:
    """Pixel coordinates to normalised camera coordinates (one point or an Nx2 array)."""
    K = np.asarray(K, dtype=float)
    if K.shape != (3, 3):
        raise ValueError(f"K must be 3x3, got shape {K.shape}")
    p = np.asarray(p, dtype=float)
    if p.ndim < 1 or p.shape[-1] != 2:
        raise ValueError(f"point must have 2 coordinates, got shape {p.shape}")
    centre = np.array([K[0, 2], K[1, 2]])
    focal = np.array([K[0, 0], K[1, 1]])
    return (p - centre) / focal


def _hartley_normalisation(points: np.ndarray) -> np.ndarray:
    centroid = points.mean(axis=0)
    mean_dist = np.linalg.norm(points - centroid, axis=1).mean()
    if mean_dist < np.finfo(float).eps:
        raise ValueError("points are degenerate: all coincide")
    scale = np.sqrt(2.0) / mean_dist
    return np.array(
        [
            [scale, 0.0, -scale * centroid[0]],
            [0.0, scale, -scale * centroid[1]],
            [0.0, 0.0, 1.0],
        ]
    )


def find_fundamental_8point(points1, points2) -> np.ndarray:
    """Fundamental matrix F with ``x2^T F x1 = 0`` by the normalised eight-point method."""
    p1, p2 = _point_pair(points1, points2)
    if len(p1) < 8:
        raise ValueError(f"the eight-point method needs at least 8 points, got {len(p1)}")

    T1 = _hartley_normalisation(p1)
    T2 = _hartley_normalisation(p2)
    h1 = np.column_stack([p1, np.ones(len(p1))]) @ T1.T
    h2 = np.column_stack([p2, np.ones(len(p2))]) @ T2.T

    A = np.einsum("ni,nj->nij", h2, h1).reshape(len(p1), 9)
    _, _, vt = np.linalg.svd(A)
    F = vt[-1].reshape(3, 3)

    u, s, vt = np.linalg.svd(F)
    s[2] = 0.0
    F = u @ np.diag(s) @ vt

    F = T2.T @ F @ T1
    if abs(F[2, 2]) > _FLT_EPSILON:
        F = F / F[2, 2]
    return F


def find_essential_mat(points1, points2, focal: float, pp) -> np.ndarray:
    """Essential matrix ``K^T F K`` for a camera with one focal length and principal point ``pp``."""
    K = _camera_matrix(float(focal), pp)
    F = find_fundamental_8point(points1, points2)
    return K.T @ F @ K


def decompose_essential_mat(E) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """The two candidate rotations and the unit translation encoded in ``E``."""
    E = np.asarray(E, dtype=float)
    if E.size != 9:
        raise ValueError(f"essential matrix must have 9 elements, got shape {E.shape}")
    E = E.reshape(3, 3)
    U, _, Vt = np.linalg.svd(E)
    if np.linalg.det(U) < 0:
        U = -U
    if np.linalg.det(Vt) < 0:
        Vt = -Vt
    R1 = U @ _W @ Vt
    R2 = U @ _W.T @ Vt
    t = U[:, 2].copy()
    return R1, R2, t


def triangulate_points(P1, P2, points1, points2) -> np.ndarray:
    """Linear triangulation; returns homogeneous points as a 4xN array."""
    P1 = np.asarray(P1, dtype=float)
    P2 = np.asarray(P2, dtype=float)
    if P1.shape != (3, 4) or P2.shape != (3, 4):
        raise ValueError("projection matrices must be 3x4")
    p1, p2 = _point_pair(points1, points2)
    if len(p1) == 0:
        return np.zeros((4, 0))

    A = np.stack(
        [
            p1[:, [0]] * P1[2] - P1[0],
            p1[:, [1]] * P1[2] - P1[1],
            p2[:, [0]] * P2[2] - P2[0],
            p2[:, [1]] * P2[2] - P2[1],
        ],
        axis=1,
    )
    _, _, vt = np.linalg.svd(A)
    return vt[:, -1, :].T


def _cheirality_mask(P0, P, p1, p2, dist: float) -> np.ndarray:
    Q = triangulate_points(P0, P, p1, p2)
    mask = Q[2] * Q[3] > 0
    with np.errstate(divide="ignore", invalid="ignore"):
        Q = Q / Q[3]
        mask &= Q[2] < dist
        Q = P @ Q
        mask &= Q[2] > 0
        mask &= Q[2] < dist
    return mask


def recover_pose(E, points1, points2, focal: float, pp=(0.0, 0.0), mask=None) -> RecoveredPose:
    """Pick the rotation and translation from ``E`` that puts most points in front of both cameras.

    ``mask``, if given, marks which correspondences may count (non-zero entries).
    """
    p1, p2 = _point_pair(points1, points2)
    if focal == 0:
        raise ValueError("focal length must be non-zero")
    cx, cy = (float(v) for v in pp)
    centre = np.array([cx, cy])
    n1 = (p1 - centre) / focal
    n2 = (p2 - centre) / focal

    R1, R2, t = decompose_essential_mat(E)
    P0 = np.eye(3, 4)
    candidates = [(R1, t), (R2, t), (R1, -t), (R2, -t)]
    masks = [
        _cheirality_mask(P0, np.column_stack([R, tt]), n1, n2, CHEIRALITY_DISTANCE)
        for R, tt in candidates
    ]

    if mask is not None:
        given = np.asarray(mask).reshape(-1)
        if given.shape != (len(p1),):
            raise ValueError(f"mask must have {len(p1)} entries, got {given.size}")
        given = given != 0
        masks = [m & given for m in masks]

    goods = [int(np.count_nonzero(m)) for m in masks]
    best = int(np.argmax(goods))
    R, tt = candidates[best]
    return RecoveredPose(
        rotation=R.copy(),
        translation=tt.copy(),
        mask=masks[best],
        inliers=goods[best],
    )


def epipolar_constraint(R, t, K, p1, p2) -> float:
    """The residual ``y2^T [t]x R y1`` for a pixel correspondence ``p1 <-> p2``."""
    R = np.asarray(R, dtype=float)
    if R.shape != (3, 3):
        raise ValueError(f"R must be 3x3, got shape {R.shape}")
    t_x = hat(t)
    y1 = np.append(pixel2cam(p1, K), 1.0)
    y2 = np.append(pixel2cam(p2, K), 1.0)
    return float(y2 @ t_x @ R @ y1)