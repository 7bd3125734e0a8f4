"""Camera pose from 3D-2D correspondences, refined by bundle adjustment."""

from __future__ import annotations

import numpy as np

from slamkit.epipolar import pixel2cam
from slamkit.lie import SE3

#: Raw depth units per metre in the TUM depth images.
DEPTH_SCALE = 5000.0

_LM_TAU = 1e-5
_MAX_RETRIES = 10
_STEP_EPS = 1e-12


def _intrinsics(K) -> tuple[float, np.ndarray]:
    K = np.asarray(K, dtype=float)
    if K.shape != (3, 3):
        raise ValueError(f"K must be 3x3, got shape {K.shape}")
    return float(K[0, 0]), np.array([K[0, 2], K[1, 2]])


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


def points_from_depth(pixels1, pixels2, depth, K) -> tuple[np.ndarray, np.ndarray]:
    """3D points of the first view and their pixels in the second view.

    Each pixel of the first image is lifted with the depth image of that view;
    matches whose depth reads zero are dropped. Returns an Nx3 and an Nx2 array.
    """
    px1 = np.asarray(pixels1, dtype=float).reshape(-1, 2)
    px2 = np.asarray(pixels2, dtype=float).reshape(-1, 2)
    if len(px1) != len(px2):
        raise ValueError(f"pixel sets differ in size: {len(px1)} and {len(px2)}")
    depth = np.asarray(depth)
    pts_3d, pts_2d = [], []
    for p1, p2 in zip(px1, px2):
        d = depth[int(p1[1]), int(p1[0])]
        if d == 0:
            continue
        dd = float(d) / DEPTH_SCALE
        c = pixel2cam(p1, K)
        pts_3d.append((c[0] * dd, c[1] * dd, dd))
        pts_2d.append(tuple(p2))
    return np.array(pts_3d).reshape(-1, 3), np.array(pts_2d).reshape(-1, 2)


def project(point, R, t, K) -> np.ndarray:
    """Pixel coordinates of ``point`` (one point or an Nx3 array) seen through pose ``R, t``.

    As in the optimiser's camera model, the single focal length ``K[0, 0]`` is
    used for both axes.
    """
    R = _rotation(R)
    t = _translation(t)
    focal, centre = _intrinsics(K)
    p = np.asarray(point, dtype=float)
    if p.ndim < 1 or p.shape[-1] != 3:
        raise ValueError(f"points must have 3 coordinates, got shape {p.shape}")
    single = p.ndim == 1
    cam = p.reshape(-1, 3) @ R.T + t
    if np.any(cam[:, 2] == 0.0):
        raise ValueError("point lies in the camera's focal plane")
    uv = focal * cam[:, :2] / cam[:, 2:3] + centre
    return uv[0] if single else uv


def _evaluate(pose: SE3, points: np.ndarray, observed: np.ndarray, focal: float, centre: np.ndarray):
    cam = pose * points
    with np.errstate(divide="ignore", invalid="ignore"):
        uv = focal * cam[:, :2] / cam[:, 2:3] + centre
    errors = observed - uv
    return cam, errors, float(np.sum(errors * errors))


def _jacobians(pose: SE3, cam: np.ndarray, focal: float) -> tuple[np.ndarray, np.ndarray]:
    n = len(cam)
    x, y, z = cam[:, 0], cam[:, 1], cam[:, 2]
    inv_z = 1.0 / z
    D = np.zeros((n, 2, 3))
    D[:, 0, 0] = focal * inv_z
    D[:, 0, 2] = -focal * x * inv_z * inv_z
    D[:, 1, 1] = focal * inv_z
    D[:, 1, 2] = -focal * y * inv_z * inv_z

    skew = np.zeros((n, 3, 3))
    skew[:, 0, 1], skew[:, 0, 2] = -z, y
    skew[:, 1, 0], skew[:, 1, 2] = z, -x
    skew[:, 2, 0], skew[:, 2, 1] = -y, x
    # Left perturbation with the twist ordered (translation, rotation).
    dcam_dxi = np.concatenate([np.broadcast_to(np.eye(3), (n, 3, 3)), -skew], axis=2)

    Jp = -np.einsum("nij,njk->nik", D, dcam_dxi)
    Jl = -np.einsum("nij,jk->nik", D, pose.rotation.matrix())
    return Jp, Jl


def pnp_bundle_adjustment(points_3d, points_2d, K, R, t, iterations: int = 100) -> tuple[SE3, np.ndarray]:
    """Jointly refine the camera pose and the 3D points by Levenberg-Marquardt.

    Minimises the squared reprojection error of ``points_3d`` against the
    observed pixels ``points_2d``, starting from pose ``R, t``. The landmark
    blocks are eliminated by the Schur complement. Returns the refined pose and
    the refined Nx3 points.
    """
    pts = np.asarray(points_3d, dtype=float)
    obs = np.asarray(points_2d, dtype=float)
    if pts.ndim != 2 or pts.shape[1] != 3:
        raise ValueError(f"points_3d must be an Nx3 array, got shape {pts.shape}")
    if obs.ndim != 2 or obs.shape[1] != 2:
        raise ValueError(f"points_2d must be an Nx2 array, got shape {obs.shape}")
    if len(pts) != len(obs):
        raise ValueError(f"point sets differ in size: {len(pts)} and {len(obs)}")
    if len(pts) == 0:
        raise ValueError("at least one correspondence is needed")
    if iterations < 0:
        raise ValueError("iterations must be non-negative")

    focal, centre = _intrinsics(K)
    pose = SE3(_rotation(R), _translation(t))
    points = pts.copy()
    cam, errors, cost = _evaluate(pose, points, obs, focal, centre)
    if not np.isfinite(cost):
        raise ValueError("initial reprojection error is not finite")

    lam: float | None = None
    nu = 2.0
    eye3 = np.eye(3)
    for _ in range(iterations):
        Jp, Jl = _jacobians(pose, cam, focal)
        Hpp = np.einsum("nki,nkj->ij", Jp, Jp)
        Hpl = np.einsum("nki,nkj->nij", Jp, Jl)
        Hll = np.einsum("nki,nkj->nij", Jl, Jl)
        bp = -np.einsum("nki,nk->i", Jp, errors)
        bl = -np.einsum("nki,nk->ni", Jl, errors)
        if lam is None:
            lam = _LM_TAU * max(float(Hpp.diagonal().max()), float(Hll.diagonal(axis1=1, axis2=2).max()))
            lam = lam if lam > 0.0 else _LM_TAU

        accepted = False
        step_norm = 0.0
        for _ in range(_MAX_RETRIES):
            try:
                Hll_inv = np.linalg.inv(Hll + lam * eye3)
                HplHinv = np.einsum("nij,njk->nik", Hpl, Hll_inv)
                S = Hpp + lam * np.eye(6) - np.einsum("nij,nkj->ik", HplHinv, Hpl)
                rhs = bp - np.einsum("nij,nj->i", HplHinv, bl)
                dx_pose = np.linalg.solve(S, rhs)
            except np.linalg.LinAlgError:
                lam *= nu
                nu *= 2.0
                continue
            dx_points = np.einsum("nij,nj->ni", Hll_inv, bl - np.einsum("nij,i->nj", Hpl, dx_pose))

            new_pose = SE3.exp(dx_pose) * pose
            new_points = points + dx_points
            new_cam, new_errors, new_cost = _evaluate(new_pose, new_points, obs, focal, centre)

            predicted = float(dx_pose @ (lam * dx_pose + bp) + np.sum(dx_points * (lam * dx_points + bl)))
            step_norm = float(np.sqrt(dx_pose @ dx_pose + np.sum(dx_points * dx_points)))
            if np.isfinite(new_cost) and new_cost < cost and predicted > 0.0:
                rho = (cost - new_cost) / predicted
                lam *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                nu = 2.0
                pose, points, cam, errors, cost = new_pose, new_points, new_cam, new_errors, new_cost
                accepted = True
                break
            lam *= nu
            nu *= 2.0

        if not accepted or step_norm < _STEP_EPS or cost == 0.0:
            break
    return pose, points