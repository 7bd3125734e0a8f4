# slamkit

A small toolkit of visual SLAM building blocks, built on NumPy, SciPy and Pillow.

## Modules

- `slamkit.lie`: rotations and rigid transforms. `hat`/`vee` and `se3_hat`/`se3_vee`,
  `angle_axis_matrix`, `quaternion_from_matrix`/`quaternion_to_matrix` (coefficients
  ordered `x, y, z, w`), `euler_angles`, and the classes `SO3` and `SE3`. Both classes have
  `exp`, `log`, `matrix`, `inverse` and composition with `*`. Multiplying by a 3-vector or
  an Nx3 array transforms points. A twist for `SE3` is ordered translation first, then
  rotation.
- `slamkit.epipolar`: `pixel2cam`, the normalised eight-point `find_fundamental_8point`,
  `find_essential_mat`, `decompose_essential_mat`, linear `triangulate_points`, and
  `recover_pose`. `recover_pose` runs a cheirality check and returns a `RecoveredPose` with
  `rotation`, `translation`, `mask` and `inliers`. `epipolar_constraint` gives the residual
  of a pixel match.
- `slamkit.triangulation`: `triangulate` turns matched pixels into 3D points in the first
  camera's frame, given `R`, `t` and `K`. `reproject` gives a point's normalised
  coordinates in the second camera.
- `slamkit.icp`: `pairs_from_depth` builds 3D point pairs from matched pixels and two depth
  images. `pose_estimation_3d3d` aligns the pairs in closed form by SVD.
  `bundle_adjustment_3d3d` refines the pose by Gauss-Newton, starting from identity.
- `slamkit.pnp`: `points_from_depth` builds 3D-2D correspondences and `project` projects
  points. `pnp_bundle_adjustment` refines a camera pose together with its 3D points by
  Levenberg-Marquardt, eliminating the landmarks with the Schur complement.
- `slamkit.curve_fitting`: `generate_data` draws noisy samples of
  `y = exp(a x² + b x + c)`. `fit_curve` estimates `(a, b, c)` by Gauss-Newton,
  Levenberg-Marquardt or dogleg, chosen through `Method`.
- `slamkit.dense_depth`: dense monocular depth for a 640x480 camera with fixed intrinsics.
  It searches along epipolar lines (`epipolar_search`), scores windows by zero-mean NCC
  (`ncc`, `bilinear`) and fuses each match into a Gaussian per-pixel depth filter
  (`update_depth_filter`). `update` processes a whole frame and returns how many pixels
  were updated. `read_dataset_files` reads the image list and camera-to-world poses of a
  dataset directory.
- `slamkit.pointcloud`: `read_poses`, `rgbd_to_points` (with `CameraIntrinsics`),
  `statistical_outlier_removal`, `voxel_filter` and `write_pcd_binary`. Together they turn
  RGB-D frames into a coloured point cloud.
- `slamkit.hello`: a greeting command.

## Installation

```
pip install .
```

## Examples

```python
import numpy as np
from slamkit.lie import SO3, SE3, angle_axis_matrix

R = angle_axis_matrix(np.pi / 2, [0, 0, 1])
so3 = SO3.from_matrix(R).log()                      # approx. [0, 0, pi/2]
updated = SO3.exp([1e-4, 0, 0]) * SO3.from_matrix(R)
T = SE3(R, [1.0, 0.0, 0.0])
xi = T.log()                                        # translation part first
```

```python
from slamkit.curve_fitting import Method, generate_data, fit_curve

x, y = generate_data(1.0, 2.0, 1.0, 100, 1.0, 0)
abc = fit_curve(x, y, [0.0, 0.0, 0.0], Method.LEVENBERG_MARQUARDT, 100)
```

```python
from slamkit.epipolar import find_essential_mat, recover_pose

# points1, points2: Nx2 arrays of matched pixels, N >= 8
E = find_essential_mat(points1, points2, 521.0, (325.1, 249.7))
pose = recover_pose(E, points1, points2, 521.0, (325.1, 249.7))
print(pose.rotation, pose.translation, pose.inliers)
```

```python
import numpy as np
from slamkit.icp import pose_estimation_3d3d, bundle_adjustment_3d3d

R, t = pose_estimation_3d3d(pts1, pts2)             # pts1 ≈ R @ p2 + t
T = bundle_adjustment_3d3d(pts1, pts2, 10)
```

## Commands

Print a greeting. Add `--library` to print it through `print_hello`:

```
slamkit-hello
```

Join RGB-D frames into a point cloud. The command reads a directory (default: the
current one) that holds `pose.txt`, `color/1.png`, `color/2.png`, … and
`depth/1.pgm`, `depth/2.pgm`, …. It writes `map.pcd` as a binary PCD file:

```
slamkit-joinmap [directory] [--count N] [--max-depth D] [--filter] [--leaf L] [--output FILE]
```

The options:

- `--count` sets the number of frames (default 5).
- `--max-depth` drops raw depth readings at or above the given value.
- `--filter` removes statistical outliers from each frame and downsamples the joined cloud
  into voxels of side `--leaf` (default 0.01).

## What the package does not do

- It does not detect or match image features. Pixel correspondences must be supplied by
  the caller.
- It does not estimate homographies or solve PnP in closed form.
  `pnp_bundle_adjustment` needs an initial pose.
- It has no command for dense depth estimation. Call `slamkit.dense_depth.update` once per
  frame, with images you have loaded yourself.
- It opens no windows and draws nothing. Results are returned as arrays or written to PCD
  files.
- It builds no occupancy maps.

## Tests

```
pip install .[test]
pytest
```