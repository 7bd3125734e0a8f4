"""Dense monocular depth estimation along epipolar lines with Gaussian depth filters.

Each pixel of a reference frame keeps a depth mean and variance. For every new
frame with a known pose, the pixel is searched along its epipolar segment by
zero-mean normalised cross-correlation. A good match is triangulated and fused
into the pixel's depth estimate.
"""

from __future__ import annotations

import math
from pathlib import Path

import numpy as np

from slamkit.lie import SE3

BORDER = 20
WIDTH = 640
HEIGHT = 480
FX = 481.2
FY = -480.0
CX = 319.5
CY = 239.5
NCC_WINDOW_SIZE = 2
NCC_AREA = (2 * NCC_WINDOW_SIZE + 1) ** 2
#: A pixel whose depth variance drops below this has converged.
MIN_COV = 0.1
#: A pixel whose depth variance exceeds this has diverged.
MAX_COV = 10.0
#: Matches scoring below this NCC are rejected.
NCC_THRESHOLD = float(np.float32(0.85))
#: Step along the epipolar segment, in pixels.
SEARCH_STEP = 0.7
#: Longest half-segment searched, in pixels.
MAX_HALF_LENGTH = 100.0
#: Nearest depth considered during the search.
MIN_SEARCH_DEPTH = 0.1

DATASET_INDEX = "first_200_frames_traj_over_table_input_sequence.txt"

_OFFSETS = np.arange(-NCC_WINDOW_SIZE, NCC_WINDOW_SIZE + 1)
_GRID_X, _GRID_Y = np.meshgrid(_OFFSETS, _OFFSETS, indexing="ij")
_GRID_X = _GRID_X.reshape(-1).astype(float)
_GRID_Y = _GRID_Y.reshape(-1).astype(float)


def _point2(pt, name: str = "point") -> np.ndarray:
    arr = np.asarray(pt, dtype=float).reshape(-1)
    if arr.shape != (2,):
        raise ValueError(f"{name} must have 2 coordinates, got shape {np.shape(pt)}")
    return arr


def px2cam(px) -> np.ndarray:
    """Pixel coordinates to the camera ray ``(x, y, 1)`` (one point or an Nx2 array)."""
    p = np.asarray(px, dtype=float)
    if p.ndim < 1 or p.shape[-1] != 2:
        raise ValueError(f"pixel must have 2 coordinates, got shape {p.shape}")
    x = (p[..., 0] - CX) / FX
    y = (p[..., 1] - CY) / FY
    return np.stack([x, y, np.ones_like(x)], axis=-1)


def cam2px(p_cam) -> np.ndarray:
    """Camera-frame point(s) to pixel coordinates."""
    p = np.asarray(p_cam, dtype=float)
    if p.ndim < 1 or p.shape[-1] != 3:
        raise ValueError(f"camera point must have 3 coordinates, got shape {p.shape}")
    u = p[..., 0] * FX / p[..., 2] + CX
    v = p[..., 1] * FY / p[..., 2] + CY
    return np.stack([u, v], axis=-1)


def inside(pt) -> bool:
    """Whether a pixel lies far enough from the image border to be matched."""
    x, y = _point2(pt)
    return bool(x >= BORDER and y >= BORDER and x + BORDER < WIDTH and y + BORDER <= HEIGHT)


def _bilinear_many(img: np.ndarray, pts: np.ndarray) -> np.ndarray:
    xs = pts[:, 0]
    ys = pts[:, 1]
    col = xs.astype(int)
    row = ys.astype(int)
    xx = xs - np.floor(xs)
    yy = ys - np.floor(ys)
    values = (
        (1 - xx) * (1 - yy) * img[row, col]
        + xx * (1 - yy) * img[row, col + 1]
        + (1 - xx) * yy * img[row + 1, col]
        + xx * yy * img[row + 1, col + 1]
    )
    return values / 255.0


def bilinear(img, pt) -> float:
    """Bilinearly interpolated intensity of a grey image at ``pt``, scaled to ``[0, 1]``."""
    img = np.asarray(img, dtype=float)
    if img.ndim != 2:
        raise ValueError(f"image must be single-channel, got shape {img.shape}")
    return float(_bilinear_many(img, _point2(pt)[None, :])[0])


def _ncc(ref: np.ndarray, curr: np.ndarray, pt_ref: np.ndarray, pt_curr: np.ndarray) -> float:
    rows = (_GRID_Y + pt_ref[1]).astype(int)
    cols = (_GRID_X + pt_ref[0]).astype(int)
    values_ref = ref[rows, cols] / 255.0
    window = np.column_stack([pt_curr[0] + _GRID_X, pt_curr[1] + _GRID_Y])
    values_curr = _bilinear_many(curr, window)

    dr = values_ref - values_ref.sum() / NCC_AREA
    dc = values_curr - values_curr.sum() / NCC_AREA
    numerator = float(dr @ dc)
    denominator = float(dr @ dr) * float(dc @ dc)
    return numerator / math.sqrt(denominator + 1e-10)


def _grey(img, name: str) -> np.ndarray:
    arr = np.asarray(img, dtype=float)
    if arr.ndim != 2:
        raise ValueError(f"{name} must be a single-channel image, got shape {arr.shape}")
    return arr


def ncc(ref, curr, pt_ref, pt_curr) -> float:
    """Zero-mean normalised cross-correlation of the windows around ``pt_ref`` and ``pt_curr``."""
    return _ncc(_grey(ref, "ref"), _grey(curr, "curr"), _point2(pt_ref, "pt_ref"), _point2(pt_curr, "pt_curr"))


def _unit(v: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(v))
    return v / norm if norm > 0.0 else v


def _epipolar_search(ref, curr, T_c_r: SE3, pt_ref, depth_mu: float, depth_cov: float):
    f_ref = _unit(px2cam(pt_ref))
    px_mean_curr = cam2px(T_c_r * (f_ref * depth_mu))
    d_min = max(depth_mu - 3 * depth_cov, MIN_SEARCH_DEPTH)
    d_max = depth_mu + 3 * depth_cov
    px_min_curr = cam2px(T_c_r * (f_ref * d_min))
    px_max_curr = cam2px(T_c_r * (f_ref * d_max))

    epipolar_line = px_max_curr - px_min_curr
    direction = _unit(epipolar_line)
    half_length = min(0.5 * float(np.linalg.norm(epipolar_line)), MAX_HALF_LENGTH)

    best_ncc = -1.0
    best_px = None
    step = -half_length
    while step <= half_length:
        px_curr = px_mean_curr + step * direction
        step += SEARCH_STEP
        if not inside(px_curr):
            continue
        score = _ncc(ref, curr, pt_ref, px_curr)
        if score > best_ncc:
            best_ncc = score
            best_px = px_curr
    if best_ncc < NCC_THRESHOLD:
        return None
    return best_px


def epipolar_search(ref, curr, T_c_r, pt_ref, depth_mu, depth_cov):
    """Best match in ``curr`` of reference pixel ``pt_ref``, or ``None`` if none is good enough.

    ``depth_cov`` is the standard deviation of the current depth estimate; the
    segment searched spans three deviations either side of ``depth_mu``.
    """
    return _epipolar_search(
        _grey(ref, "ref"),
        _grey(curr, "curr"),
        T_c_r,
        _point2(pt_ref, "pt_ref"),
        float(depth_mu),
        float(depth_cov),
    )


def update_depth_filter(pt_ref, pt_curr, T_c_r, depth, depth_cov) -> tuple[float, float]:
    """Triangulate a match and fuse it into the depth maps at ``pt_ref``.

    ``depth`` and ``depth_cov`` are updated in place; the fused mean and
    variance are also returned.
    """
    pt_ref = _point2(pt_ref, "pt_ref")
    pt_curr = _point2(pt_curr, "pt_curr")
    T_r_c = T_c_r.inverse()
    f_ref = _unit(px2cam(pt_ref))
    f_curr = _unit(px2cam(pt_curr))

    t = T_r_c.translation
    f2 = T_r_c.rotation.matrix() @ f_curr
    b = np.array([t @ f_ref, t @ f2])
    a0 = float(f_ref @ f_ref)
    a2 = float(f_ref @ f2)
    a1 = -a2
    a3 = -float(f2 @ f2)
    det = a0 * a3 - a1 * a2
    t_norm = float(np.linalg.norm(t))
    if det == 0.0 or t_norm == 0.0:
        raise ValueError("cannot triangulate: the views have no baseline or parallel rays")
    lam_ref = (a3 * b[0] - a1 * b[1]) / det
    lam_curr = (-a2 * b[0] + a0 * b[1]) / det
    xm = lam_ref * f_ref
    xn = t + lam_curr * f2
    depth_estimation = float(np.linalg.norm((xm + xn) / 2.0))

    # Uncertainty from a one-pixel error along the epipolar line.
    p = f_ref * depth_estimation
    a = p - t
    a_norm = float(np.linalg.norm(a))
    alpha = math.acos(float(np.clip(f_ref @ t / t_norm, -1.0, 1.0)))
    beta = math.acos(float(np.clip(-(a @ t) / (a_norm * t_norm), -1.0, 1.0)))
    beta_prime = beta + math.atan(1.0 / FX)
    gamma = math.pi - alpha - beta_prime
    p_prime = t_norm * math.sin(beta_prime) / math.sin(gamma)
    d_cov2 = (p_prime - depth_estimation) ** 2

    row, col = int(pt_ref[1]), int(pt_ref[0])
    mu = float(depth[row, col])
    sigma2 = float(depth_cov[row, col])
    mu_fuse = (d_cov2 * mu + sigma2 * depth_estimation) / (sigma2 + d_cov2)
    sigma_fuse2 = (sigma2 * d_cov2) / (sigma2 + d_cov2)
    depth[row, col] = mu_fuse
    depth_cov[row, col] = sigma_fuse2
    return mu_fuse, sigma_fuse2


def update(ref, curr, T_c_r, depth, depth_cov) -> int:
    """Update every unconverged pixel of the depth maps from a new frame.

    ``depth`` and ``depth_cov`` are updated in place. Returns the number of
    pixels that found a match and were updated.
    """
    ref = _grey(ref, "ref")
    curr = _grey(curr, "curr")
    for name, arr in (("ref", ref), ("curr", curr), ("depth", depth), ("depth_cov", depth_cov)):
        if np.shape(arr) != (HEIGHT, WIDTH):
            raise ValueError(f"{name} must be {HEIGHT}x{WIDTH}, got shape {np.shape(arr)}")

    region = depth_cov[BORDER : HEIGHT - BORDER, BORDER : WIDTH - BORDER]
    active = (region >= MIN_COV) & (region <= MAX_COV)
    cols, rows = np.nonzero(active.T)
    updated = 0
    for x, y in zip(cols + BORDER, rows + BORDER):
        pt_ref = np.array([float(x), float(y)])
        match = _epipolar_search(
            ref, curr, T_c_r, pt_ref, float(depth[y, x]), math.sqrt(float(depth_cov[y, x]))
        )
        if match is None:
            continue
        update_depth_filter(pt_ref, match, T_c_r, depth, depth_cov)
        updated += 1
    return updated


def read_dataset_files(path) -> tuple[list[str], list[SE3]]:
    """Image paths and camera-to-world poses listed in a dataset directory.

    Each record is ``image tx ty tz qx qy qz qw``.
    """
    root = Path(path)
    index = root / DATASET_INDEX
    if not index.is_file():
        raise FileNotFoundError(f"dataset index not found: {index}")
    tokens = index.read_text().split()
    if len(tokens) % 8:
        raise ValueError(f"{index} ends with an incomplete record")
    files: list[str] = []
    poses: list[SE3] = []
    for start in range(0, len(tokens), 8):
        image, *numbers = tokens[start : start + 8]
        try:
            data = [float(v) for v in numbers]
        except ValueError as exc:
            raise ValueError(f"bad pose for {image} in {index}") from exc
        files.append(str(root / "images" / image))
        poses.append(SE3.from_quaternion(data[3:7], data[0:3]))
    return files, poses