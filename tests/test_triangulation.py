import numpy as np
import pytest

from slamkit.epipolar import TUM_K, pixel2cam
from slamkit.lie import angle_axis_matrix
from slamkit.triangulation import reproject, triangulate


def _project(points, R, t, K):
    cam = points @ R.T + t
    uv = cam[:, :2] / cam[:, 2:3]
    return uv * np.array([K[0, 0], K[1, 1]]) + np.array([K[0, 2], K[1, 2]])


@pytest.fixture
def scene():
    rng = np.random.default_rng(7)
    points = np.column_stack(
        [rng.uniform(-1, 1, 20), rng.uniform(-1, 1, 20), rng.uniform(3, 6, 20)]
    )
    R = angle_axis_matrix(0.1, [0.2, 1.0, 0.1])
    t = np.array([-0.5, 0.05, 0.1])
    px1 = _project(points, np.eye(3), np.zeros(3), TUM_K)
    px2 = _project(points, R, t, TUM_K)
    return points, R, t, px1, px2


def test_triangulate_recovers_points(scene):
    points, R, t, px1, px2 = scene
    result = triangulate(px1, px2, R, t, TUM_K)
    assert result.shape == points.shape
    np.testing.assert_allclose(result, points, atol=1e-8)


def test_triangulated_points_project_back_to_first_view(scene):
    _, R, t, px1, px2 = scene
    result = triangulate(px1, px2, R, t, TUM_K)
    np.testing.assert_allclose(result[:, :2] / result[:, 2:3], pixel2cam(px1, TUM_K), atol=1e-9)


def test_reproject_matches_second_view(scene):
    _, R, t, px1, px2 = scene
    result = triangulate(px1, px2, R, t, TUM_K)
    for point, pixel in zip(result, px2):
        rep = reproject(point, R, t)
        assert rep[2] == pytest.approx(1.0)
        np.testing.assert_allclose(rep[:2], pixel2cam(pixel, TUM_K), atol=1e-9)


def test_reproject_identity_pose():
    rep = reproject([2.0, 4.0, 2.0], np.eye(3), np.zeros(3))
    np.testing.assert_allclose(rep, [1.0, 2.0, 1.0])


def test_reproject_point_in_focal_plane_raises():
    with pytest.raises(ValueError):
        reproject([1.0, 1.0, 0.0], np.eye(3), np.zeros(3))


def test_triangulate_mismatched_counts_raises(scene):
    _, R, t, px1, px2 = scene
    with pytest.raises(ValueError):
        triangulate(px1, px2[:-1], R, t, TUM_K)


def test_triangulate_bad_rotation_shape_raises(scene):
    _, _, t, px1, px2 = scene
    with pytest.raises(ValueError):
        triangulate(px1, px2, np.eye(2), t, TUM_K)


def test_triangulate_empty_input():
    result = triangulate(np.zeros((0, 2)), np.zeros((0, 2)), np.eye(3), [1.0, 0.0, 0.0], TUM_K)
    assert result.shape == (0, 3)