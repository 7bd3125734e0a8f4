import numpy as np
import pytest

from slamkit.epipolar import TUM_K
from slamkit.lie import SE3, SO3, angle_axis_matrix
from slamkit.pnp import DEPTH_SCALE, pnp_bundle_adjustment, points_from_depth, project


def _scene():
    rng = np.random.default_rng(7)
    points = np.column_stack(
        [rng.uniform(-1.0, 1.0, 30), rng.uniform(-1.0, 1.0, 30), rng.uniform(3.0, 6.0, 30)]
    )
    R = angle_axis_matrix(0.1, [0.2, 1.0, 0.1])
    t = np.array([0.1, -0.05, 0.2])
    return points, R, t


def test_points_from_depth_lifts_principal_point():
    depth = np.zeros((480, 640), dtype=np.uint16)
    depth[249, 325] = int(DEPTH_SCALE)
    pixels1 = [[325.1, 249.7], [10.0, 10.0]]
    pixels2 = [[300.0, 200.0], [20.0, 20.0]]
    pts_3d, pts_2d = points_from_depth(pixels1, pixels2, depth, TUM_K)
    assert pts_3d.shape == (1, 3)
    np.testing.assert_allclose(pts_3d[0], [0.0, 0.0, 1.0], atol=1e-12)
    np.testing.assert_allclose(pts_2d, [[300.0, 200.0]])


def test_points_from_depth_size_mismatch():
    with pytest.raises(ValueError):
        points_from_depth([[1.0, 1.0]], [], np.ones((4, 4)), TUM_K)


def test_project_optical_axis_hits_principal_point():
    uv = project([0.0, 0.0, 1.0], np.eye(3), np.zeros(3), TUM_K)
    np.testing.assert_allclose(uv, [TUM_K[0, 2], TUM_K[1, 2]])


def test_project_uses_single_focal_length():
    uv = project([[1.0, 0.0, 1.0], [0.0, 1.0, 1.0]], np.eye(3), np.zeros(3), TUM_K)
    np.testing.assert_allclose(uv[0], [TUM_K[0, 2] + TUM_K[0, 0], TUM_K[1, 2]])
    np.testing.assert_allclose(uv[1], [TUM_K[0, 2], TUM_K[1, 2] + TUM_K[0, 0]])


def test_project_focal_plane_raises():
    with pytest.raises(ValueError):
        project([1.0, 1.0, 0.0], np.eye(3), np.zeros(3), TUM_K)


def test_bundle_adjustment_at_truth_stays():
    points, R, t = _scene()
    observed = project(points, R, t, TUM_K)
    pose, refined = pnp_bundle_adjustment(points, observed, TUM_K, R, t)
    np.testing.assert_allclose(pose.rotation.matrix(), R, atol=1e-9)
    np.testing.assert_allclose(pose.translation, t, atol=1e-9)
    np.testing.assert_allclose(refined, points, atol=1e-9)


def test_bundle_adjustment_reduces_reprojection_error():
    points, R, t = _scene()
    observed = project(points, R, t, TUM_K)
    start = SE3.exp([0.05, 0.02, -0.03, 0.02, -0.01, 0.03]) * SE3(SO3(R), t)
    initial = np.abs(project(points, start.rotation.matrix(), start.translation, TUM_K) - observed).max()
    pose, refined = pnp_bundle_adjustment(
        points, observed, TUM_K, start.rotation.matrix(), start.translation, 100
    )
    final = np.abs(project(refined, pose.rotation.matrix(), pose.translation, TUM_K) - observed).max()
    assert initial > 1.0
    assert final < 1e-3


def test_bundle_adjustment_zero_iterations_returns_start():
    points, R, t = _scene()
    observed = project(points, R, t, TUM_K) + 1.0
    pose, refined = pnp_bundle_adjustment(points, observed, TUM_K, R, t, 0)
    np.testing.assert_allclose(pose.matrix()[:3, :3], R)
    np.testing.assert_allclose(refined, points)


def test_bundle_adjustment_rejects_bad_input():
    points, R, t = _scene()
    with pytest.raises(ValueError):
        pnp_bundle_adjustment(points, np.zeros((3, 2)), TUM_K, R, t)
    with pytest.raises(ValueError):
        pnp_bundle_adjustment(np.zeros((0, 3)), np.zeros((0, 2)), TUM_K, R, t)
    with pytest.raises(ValueError):
        pnp_bundle_adjustment(points, project(points, R, t, TUM_K), TUM_K, R, t, -1)