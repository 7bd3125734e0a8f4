"""Pose from 3D-3D correspondences: closed-form ICP and pose-only Gauss-Newton refinement."""

from __future__ import annotations

import numpy as np

from slamkit.epipolar import pixel2cam
from slamkit.lie import SE3, hat

#: Raw depth units per metre in the TUM depth images.
DEPTH_SCALE = 5000.0


def _point_sets(pts1, pts2) -> tuple[np.ndarray, np.ndarray]:
    a = np.asarray(pts1, dtype=float)
    b = np.asarray(pts2, dtype=float)
    if a.ndim != 2 or a.shape[1] != 3:
        raise ValueError(f"pts1 must be an Nx3 array, got shape {a.shape}")
    if b.ndim != 2 or b.shape[1] != 3:
        raise ValueError(f"pts2 must be an Nx3 array, got shape {b.shape}")
    if len(a) != len(b):
        raise ValueError(f"point sets differ in size: {len(a)} and {len(b)}")
    if len(a) == 0:
        raise ValueError("at least one point pair is needed")
    return a, b


def pairs_from_depth(pixels1, pixels2, depth1, depth2, K) -> tuple[np.ndarray, np.ndarray]:
    """3D point pairs from matched pixels and the two depth images.

    Matches where either depth reads zero are dropped.
    """
    px1 = np.asarray(pixels1, dtype=float).reshape(-1, 2)
    px2 = np.asarray(pixels2, dtype=float).reshape(-1, 2)
    if len(px1) != len(px2):
        raise ValueError(f"pixel sets differ in size: {len(px1)} and {len(px2)}")
    depth1 = np.asarray(depth1)
    depth2 = np.asarray(depth2)
    pts1, pts2 = [], []
    for p1, p2 in zip(px1, px2):
        d1 = depth1[int(p1[1]), int(p1[0])]
        d2 = depth2[int(p2[1]), int(p2[0])]
        if d1 == 0 or d2 == 0:
            continue
        dd1 = float(d1) / DEPTH_SCALE
        dd2 = float(d2) / DEPTH_SCALE
        c1 = pixel2cam(p1, K)
        c2 = pixel2cam(p2, K)
        pts1.append((c1[0] * dd1, c1[1] * dd1, dd1))
        pts2.append((c2[0] * dd2, c2[1] * dd2, dd2))
    return np.array(pts1).reshape(-1, 3), np.array(pts2).reshape(-1, 3)


def pose_estimation_3d3d(pts1, pts2) -> tuple[np.ndarray, np.ndarray]:
    """Rotation ``R`` and translation ``t`` minimising ``|p1 - (R p2 + t)|`` by SVD."""
    a, b = _point_sets(pts1, pts2)
    c1 = a.mean(axis=0)
    c2 = b.mean(axis=0)
    q1 = a - c1
    q2 = b - c2
    W = q1.T @ q2
    U, _, Vt = np.linalg.svd(W)
    if np.linalg.det(U) * np.linalg.det(Vt) < 0:
        U = U.copy()
        U[:, 2] *= -1
    R = U @ Vt
    t = c1 - R @ c2
    return R, t


def bundle_adjustment_3d3d(pts1, pts2, iterations: int = 10) -> SE3:
    """Refine the pose ``T`` with ``p1 ≈ T p2`` by Gauss-Newton, starting from identity."""
    a, b = _point_sets(pts1, pts2)
    if iterations < 0:
        raise ValueError("iterations must be non-negative")
    pose = SE3()
    for _ in range(iterations):
        transformed = pose * b
        errors = a - transformed
        H = np.zeros((6, 6))
        g = np.zeros(6)
        for p, e in zip(transformed, errors):
            J = np.hstack([hat(p), -np.eye(3)])
            H += J.T @ J
            g -= J.T @ e
        try:
            dx = np.linalg.solve(H, g)
        except np.linalg.LinAlgError:
            break
        if not np.all(np.isfinite(dx)):
            break
        # The update is ordered (rotation, translation); the twist wants translation first.
        pose = SE3.exp(np.concatenate([dx[3:], dx[:3]])) * pose
    return pose