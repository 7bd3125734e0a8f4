"""Join RGB-D frames with known camera poses into one coloured point cloud."""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image
from scipy.spatial import cKDTree

from slamkit.lie import SE3

POSE_FIELDS = 7
DEFAULT_FRAME_COUNT = 5
#: Depth readings at or beyond this raw value are unreliable and may be dropped.
FAR_DEPTH = 7000
DEFAULT_MEAN_K = 50
DEFAULT_STD_MUL = 1.0
DEFAULT_LEAF = 0.01

_PCD_DTYPE = np.dtype([("x", "<f4"), ("y", "<f4"), ("z", "<f4"), ("rgb", "<u4")])


@dataclass(frozen=True)
class CameraIntrinsics:
    """Pinhole intrinsics of the depth camera and the raw depth units per metre."""

    cx: float = 325.5
    cy: float = 253.5
    fx: float = 518.0
    fy: float = 519.0
    depth_scale: float = 1000.0


def read_poses(path, count: int = DEFAULT_FRAME_COUNT) -> list[SE3]:
    """The first ``count`` camera-to-world poses of a file of ``tx ty tz qx qy qz qw`` records."""
    if count < 0:
        raise ValueError("count must be non-negative")
    tokens = Path(path).read_text().split()
    needed = count * POSE_FIELDS
    if len(tokens) < needed:
        raise ValueError(f"{path} holds {len(tokens)} numbers, {needed} are needed for {count} poses")
    try:
        values = [float(tok) for tok in tokens[:needed]]
    except ValueError as exc:
        raise ValueError(f"{path} holds a value that is not a number") from exc
    poses = []
    for start in range(0, needed, POSE_FIELDS):
        data = values[start : start + POSE_FIELDS]
        poses.append(SE3.from_quaternion(data[3:7], data[0:3]))
    return poses


def rgbd_to_points(color, depth, pose: SE3, intrinsics: CameraIntrinsics | None = None, max_depth=None):
    """World points and their colours for every pixel with a valid depth.

    ``color`` is an HxWx3 RGB image and ``depth`` an HxW image of raw depth
    values. Pixels reading zero, or at least ``max_depth`` when it is given,
    are skipped. Points come in row-major pixel order. Returns an Nx3 float
    array and an Nx3 uint8 array.
    """
    intrinsics = intrinsics or CameraIntrinsics()
    color = np.asarray(color)
    depth = np.asarray(depth)
    if color.ndim != 3 or color.shape[2] < 3:
        raise ValueError(f"color must be an HxWx3 image, got shape {color.shape}")
    if depth.shape != color.shape[:2]:
        raise ValueError(f"depth shape {depth.shape} does not match color shape {color.shape[:2]}")

    d = depth.astype(float)
    valid = d != 0
    if max_depth is not None:
        valid &= d < max_depth
    v, u = np.nonzero(valid)
    z = d[v, u] / intrinsics.depth_scale
    x = (u - intrinsics.cx) * z / intrinsics.fx
    y = (v - intrinsics.cy) * z / intrinsics.fy
    camera = np.column_stack([x, y, z]).reshape(-1, 3)
    world = np.asarray(pose * camera, dtype=float).reshape(-1, 3)
    colors = color[v, u, :3].astype(np.uint8).reshape(-1, 3)
    return world, colors


def _cloud(points, colors) -> tuple[np.ndarray, np.ndarray]:
    pts = np.asarray(points, dtype=float)
    cols = np.asarray(colors)
    if pts.ndim != 2 or pts.shape[1] != 3:
        raise ValueError(f"points must be an Nx3 array, got shape {pts.shape}")
    if cols.shape != pts.shape:
        raise ValueError(f"colors must match points in shape, got {cols.shape} and {pts.shape}")
    return pts, cols.astype(np.uint8)


def statistical_outlier_removal(
    points, colors, mean_k: int = DEFAULT_MEAN_K, std_mul: float = DEFAULT_STD_MUL
):
    """Drop points whose mean distance to their ``mean_k`` nearest neighbours is unusually large.

    A point is kept when that distance is at most the mean over the cloud plus
    ``std_mul`` standard deviations.
    """
    pts, cols = _cloud(points, colors)
    if mean_k < 1:
        raise ValueError("mean_k must be at least 1")
    n = len(pts)
    if n < 2:
        return pts.copy(), cols.copy()
    k = min(mean_k, n - 1)
    distances, _ = cKDTree(pts).query(pts, k=k + 1)
    mean_distances = distances[:, 1:].mean(axis=1)

    total = float(mean_distances.sum())
    total_sq = float(mean_distances @ mean_distances)
    mean = total / n
    variance = max((total_sq - total * total / n) / (n - 1), 0.0)
    threshold = mean + std_mul * np.sqrt(variance)
    keep = mean_distances <= threshold
    return pts[keep], cols[keep]


def voxel_filter(points, colors, leaf: float = DEFAULT_LEAF):
    """Replace the points of each cubic voxel of side ``leaf`` by their centroid.

    Colours are averaged the same way. Voxels come out ordered by z, then y,
    then x index.
    """
    pts, cols = _cloud(points, colors)
    if not leaf > 0:
        raise ValueError("leaf size must be positive")
    if len(pts) == 0:
        return pts.copy(), cols.copy()
    min_b = np.floor(pts.min(axis=0) / leaf)
    ijk = (np.floor(pts / leaf) - min_b).astype(np.int64)
    dims = ijk.max(axis=0) + 1
    index = ijk[:, 0] + ijk[:, 1] * dims[0] + ijk[:, 2] * dims[0] * dims[1]
    _, inverse, counts = np.unique(index, return_inverse=True, return_counts=True)
    inverse = inverse.reshape(-1)

    point_sums = np.zeros((len(counts), 3))
    color_sums = np.zeros((len(counts), 3))
    np.add.at(point_sums, inverse, pts)
    np.add.at(color_sums, inverse, cols.astype(float))
    return point_sums / counts[:, None], (color_sums / counts[:, None]).astype(np.uint8)


def write_pcd_binary(path, points, colors) -> None:
    """Write a coloured cloud as a binary PCD file with fields ``x y z rgb``."""
    pts, cols = _cloud(points, colors)
    n = len(pts)
    if n == 0:
        raise ValueError("cannot write an empty point cloud")
    header = (
        "# .PCD v0.7 - Point Cloud Data file format\n"
        "VERSION 0.7\n"
        "FIELDS x y z rgb\n"
        "SIZE 4 4 4 4\n"
        "TYPE F F F F\n"
        "COUNT 1 1 1 1\n"
        f"WIDTH {n}\n"
        "HEIGHT 1\n"
        "VIEWPOINT 0 0 0 1 0 0 0\n"
        f"POINTS {n}\n"
        "DATA binary\n"
    )
    record = np.empty(n, dtype=_PCD_DTYPE)
    record["x"] = pts[:, 0]
    record["y"] = pts[:, 1]
    record["z"] = pts[:, 2]
    c = cols.astype(np.uint32)
    record["rgb"] = (c[:, 0] << 16) | (c[:, 1] << 8) | c[:, 2]
    with Path(path).open("wb") as out:
        out.write(header.encode("ascii"))
        out.write(record.tobytes())


def _load_frame(directory: Path, index: int) -> tuple[np.ndarray, np.ndarray]:
    with Image.open(directory / "color" / f"{index}.png") as img:
        color = np.asarray(img.convert("RGB"))
    with Image.open(directory / "depth" / f"{index}.pgm") as img:
        depth = np.asarray(img)
    return color, depth


def main(argv: list[str] | None = None) -> int:
    """Join the RGB-D frames of a directory into one point cloud file."""
    parser = argparse.ArgumentParser(
        prog="joinmap",
        description="Join RGB-D frames (pose.txt, color/N.png, depth/N.pgm) into a PCD point cloud.",
    )
    parser.add_argument("directory", nargs="?", default=".", help="directory holding the frames")
    parser.add_argument("--count", type=int, default=DEFAULT_FRAME_COUNT, help="number of frames")
    parser.add_argument("--max-depth", type=float, default=None, help="drop raw depths at or above this")
    parser.add_argument(
        "--filter",
        action="store_true",
        help="remove outliers from each frame and downsample the joined cloud",
    )
    parser.add_argument("--leaf", type=float, default=DEFAULT_LEAF, help="voxel size for --filter")
    parser.add_argument("--output", default="map.pcd", help="output file")
    args = parser.parse_args(argv)

    directory = Path(args.directory)
    pose_file = directory / "pose.txt"
    if not pose_file.is_file():
        print(f"cannot find pose file {pose_file}", file=sys.stderr)
        return 1

    try:
        poses = read_poses(pose_file, args.count)
        intrinsics = CameraIntrinsics()
        print("converting images to a point cloud...")
        all_points, all_colors = [], []
        for i, pose in enumerate(poses, start=1):
            print(f"converting image: {i}")
            color, depth = _load_frame(directory, i)
            pts, cols = rgbd_to_points(color, depth, pose, intrinsics, args.max_depth)
            if args.filter:
                pts, cols = statistical_outlier_removal(pts, cols)
            all_points.append(pts)
            all_colors.append(cols)
        points = np.concatenate(all_points) if all_points else np.zeros((0, 3))
        colors = np.concatenate(all_colors) if all_colors else np.zeros((0, 3), dtype=np.uint8)
        print(f"the point cloud has {len(points)} points.")
        if args.filter:
            points, colors = voxel_filter(points, colors, args.leaf)
            print(f"after filtering, the point cloud has {len(points)} points.")
        write_pcd_binary(args.output, points, colors)
    except (OSError, ValueError) as exc:
        print(exc, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())