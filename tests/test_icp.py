import numpy as np
import pytest

from slamkit.epipolar import TUM_K, pixel2cam
from slamkit.icp import bundle_adjustment_3d3d, pairs_from_depth, pose_estimation_3d3d
from slamkit.lie import angle_axis_matrix


@pytest.fixture
def clouds():
    rng = np.random.default_rng(3)
    pts2 = rng.uniform(-1.0, 1.0, size=(30, 3)) + np.array([0.0, 0.0, 3.0])
    R = angle_axis_matrix(0.3, [0.3, -0.5, 1.0])
    t = np.array([0.2, -0.1, 0.4])
    pts1 = pts2 @ R.T + t
    return pts1, pts2, R, t


def test_svd_recovers_pose(clouds):
    pts1, pts2, R, t = clouds
    R_est, t_est = pose_estimation_3d3d(pts1, pts2)
    np.testing.assert_allclose(R_est, R, atol=1e-9)
    np.testing.assert_allclose(t_est, t, atol=1e-9)


def test_svd_rotation_is_proper(clouds):
    pts1, pts2, _, _ = clouds
    rng = np.random.default_rng(11)
    noisy = pts1 + rng.normal(0, 0.01, pts1.shape)
    R_est, _ = pose_estimation_3d3d(noisy, pts2)
    np.testing.assert_allclose(R_est @ R_est.T, np.eye(3), atol=1e-9)
    assert np.linalg.det(R_est) == pytest.approx(1.0)


def test_svd_mismatched_sizes_raise(clouds):
    pts1, pts2, _, _ = clouds
    with pytest.raises(ValueError):
        pose_estimation_3d3d(pts1, pts2[:-1])


def test_svd_empty_raises():
    with pytest.raises(ValueError):
        pose_estimation_3d3d(np.zeros((0, 3)), np.zeros((0, 3)))


def test_bundle_adjustment_converges(clouds):
    pts1, pts2, R, t = clouds
    pose = bundle_adjustment_3d3d(pts1, pts2, 10)
    np.testing.assert_allclose(pose.rotation.matrix(), R, atol=1e-8)
    np.testing.assert_allclose(pose.translation, t, atol=1e-8)


def test_bundle_adjustment_zero_iterations_is_identity(clouds):
    pts1, pts2, _, _ = clouds
    pose = bundle_adjustment_3d3d(pts1, pts2, 0)
    np.testing.assert_allclose(pose.matrix(), np.eye(4))


def test_bundle_adjustment_negative_iterations_raise(clouds):
    pts1, pts2, _, _ = clouds
    with pytest.raises(ValueError):
        bundle_adjustment_3d3d(pts1, pts2, -1)


def test_pairs_from_depth_scales_and_skips_zero():
    depth1 = np.zeros((40, 40), dtype=np.uint16)
    depth2 = np.zeros((40, 40), dtype=np.uint16)
    depth1[20, 10] = 5000
    depth2[5, 30] = 10000
    depth1[1, 1] = 7000  # its partner has no depth
    pixels1 = [(10.7, 20.2), (1.5, 1.5)]
    pixels2 = [(30.1, 5.9), (2.5, 2.5)]
    pts1, pts2 = pairs_from_depth(pixels1, pixels2, depth1, depth2, TUM_K)
    assert pts1.shape == (1, 3)
    assert pts2.shape == (1, 3)
    assert pts1[0, 2] == pytest.approx(1.0)
    np.testing.assert_allclose(pts1[0, :2], pixel2cam((10.7, 20.2), TUM_K))
    np.testing.assert_allclose(pts2[0, :2] / pts2[0, 2], pixel2cam((30.1, 5.9), TUM_K))
    assert pts2[0, 2] == pytest.approx(2.0)


def test_pairs_from_depth_mismatched_raise():
    depth = np.ones((10, 10), dtype=np.uint16)
    with pytest.raises(ValueError):
        pairs_from_depth([(1, 1), (2, 2)], [(1, 1)], depth, depth, TUM_K)