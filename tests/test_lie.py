import math

import numpy as np
import pytest

from slamkit.lie import (
    SE3,
    SO3,
    angle_axis_matrix,
    euler_angles,
    hat,
    quaternion_from_matrix,
    quaternion_to_matrix,
    se3_hat,
    se3_vee,
    vee,
)


def _rx(a):
    return angle_axis_matrix(a, [1, 0, 0])


def _ry(a):
    return angle_axis_matrix(a, [0, 1, 0])


def _rz(a):
    return angle_axis_matrix(a, [0, 0, 1])


def test_hat_matches_cross_product():
    v = np.array([0.3, -1.2, 2.0])
    w = np.array([1.5, 0.4, -0.7])
    assert np.allclose(hat(v) @ w, np.cross(v, w))


def test_hat_vee_round_trip():
    v = np.array([0.1, 0.2, -0.3])
    assert np.allclose(vee(hat(v)), v)
    assert np.allclose(hat(v), -hat(v).T)


def test_hat_rejects_wrong_size():
    with pytest.raises(ValueError):
        hat([1.0, 2.0])


def test_se3_hat_vee_round_trip():
    xi = np.array([1.0, 0.0, 0.0, 0.0, 0.0, math.pi / 2])
    m = se3_hat(xi)
    assert np.allclose(m[:3, 3], xi[:3])
    assert np.allclose(m[3], 0.0)
    assert np.allclose(se3_vee(m), xi)


def test_angle_axis_rotates_unit_x():
    r = angle_axis_matrix(math.pi / 4, [0, 0, 1])
    rotated = r @ np.array([1.0, 0.0, 0.0])
    assert np.allclose(rotated, [math.cos(math.pi / 4), math.sin(math.pi / 4), 0.0])
    assert np.allclose(r @ r.T, np.eye(3))
    assert np.linalg.det(r) == pytest.approx(1.0)


def test_angle_axis_normalises_axis():
    assert np.allclose(angle_axis_matrix(0.7, [0, 0, 5]), _rz(0.7))


def test_angle_axis_rejects_zero_axis():
    with pytest.raises(ValueError):
        angle_axis_matrix(1.0, [0, 0, 0])


def test_quaternion_of_z_rotation():
    q = quaternion_from_matrix(_rz(math.pi / 4))
    assert np.allclose(q, [0.0, 0.0, math.sin(math.pi / 8), math.cos(math.pi / 8)])


@pytest.mark.parametrize(
    "rotation",
    [
        _rz(0.4) @ _ry(-1.1) @ _rx(2.5),
        _rx(math.pi),
        _ry(3.0),
        np.eye(3),
    ],
)
def test_quaternion_round_trip(rotation):
    q = quaternion_from_matrix(rotation)
    assert np.linalg.norm(q) == pytest.approx(1.0)
    assert np.allclose(quaternion_to_matrix(q), rotation)


def test_quaternion_to_matrix_rejects_zero():
    with pytest.raises(ValueError):
        quaternion_to_matrix([0, 0, 0, 0])


def test_euler_angles_of_z_rotation():
    angles = euler_angles(_rz(math.pi / 4), 2, 1, 0)
    assert np.allclose(angles, [math.pi / 4, 0.0, 0.0])


def test_euler_angles_reconstruct_rotation():
    r = _rz(0.8) @ _ry(-0.3) @ _rx(1.2)
    yaw, pitch, roll = euler_angles(r, 2, 1, 0)
    assert np.allclose(_rz(yaw) @ _ry(pitch) @ _rx(roll), r)
    assert 0.0 <= yaw <= math.pi


def test_euler_angles_proper_axes_reconstruct():
    r = _rz(0.5) @ _rx(1.0) @ _rz(-0.4)
    a, b, c = euler_angles(r, 2, 0, 2)
    assert np.allclose(_rz(a) @ _rx(b) @ _rz(c), r)


def test_euler_angles_rejects_repeated_axes():
    with pytest.raises(ValueError):
        euler_angles(np.eye(3), 2, 2, 0)
    with pytest.raises(ValueError):
        euler_angles(np.eye(3), 3, 1, 0)


def test_so3_constructions_agree():
    r = _rz(math.pi / 2)
    from_matrix = SO3.from_matrix(r)
    from_vector = SO3.exp([0.0, 0.0, math.pi / 2])
    assert np.allclose(from_matrix.matrix(), from_vector.matrix())
    assert np.allclose(from_matrix.log(), [0.0, 0.0, math.pi / 2])


def test_so3_exp_log_round_trip():
    omega = np.array([0.2, -0.5, 1.1])
    assert np.allclose(SO3.exp(omega).log(), omega)


def test_so3_small_angle():
    omega = np.array([1e-12, 0.0, 0.0])
    assert np.allclose(SO3.exp(omega).matrix(), np.eye(3))
    assert np.allclose(SO3.exp(omega).log(), omega, atol=1e-15)


def test_so3_inverse_and_multiplication():
    a = SO3.exp([0.3, 0.1, -0.2])
    b = SO3.exp([-0.4, 0.9, 0.05])
    assert np.allclose((a * a.inverse()).matrix(), np.eye(3))
    assert np.allclose((a * b).matrix(), a.matrix() @ b.matrix())
    v = np.array([1.0, 2.0, 3.0])
    assert np.allclose(a * v, a.matrix() @ v)


def test_so3_update_is_small_perturbation():
    r = SO3.from_matrix(_rz(math.pi / 2))
    updated = SO3.exp([1e-4, 0.0, 0.0]) * r
    assert np.allclose((updated * r.inverse()).log(), [1e-4, 0.0, 0.0])


def test_se3_log_exp_round_trip():
    r = _rz(math.pi / 2)
    t = np.array([1.0, 0.0, 0.0])
    pose = SE3(r, t)
    xi = pose.log()
    assert np.allclose(xi[3:], [0.0, 0.0, math.pi / 2])
    back = SE3.exp(xi)
    assert np.allclose(back.matrix(), pose.matrix())


def test_se3_from_quaternion_matches_matrix():
    r = _rz(math.pi / 2)
    t = [1.0, 0.0, 0.0]
    a = SE3(r, t)
    b = SE3.from_quaternion(quaternion_from_matrix(r), t)
    assert np.allclose(a.matrix(), b.matrix())


def test_se3_exp_pure_translation():
    pose = SE3.exp([0.5, -1.0, 2.0, 0.0, 0.0, 0.0])
    assert np.allclose(pose.matrix()[:3, :3], np.eye(3))
    assert np.allclose(pose.translation, [0.5, -1.0, 2.0])


def test_se3_inverse_and_point_transform():
    pose = SE3.exp([0.3, -0.2, 1.0, 0.1, 0.4, -0.6])
    assert np.allclose((pose * pose.inverse()).matrix(), np.eye(4))
    p = np.array([1.0, 3.0, 4.0])
    assert np.allclose(pose.inverse() * (pose * p), p)
    points = np.array([[1.0, 0.0, 0.0], [0.0, 2.0, -1.0]])
    expected = (pose.matrix() @ np.hstack([points, np.ones((2, 1))]).T).T[:, :3]
    assert np.allclose(pose * points, expected)


def test_se3_composition_matches_matrices():
    a = SE3.exp([1.0, 0.0, 0.0, 0.0, 0.0, 0.5])
    b = SE3.exp([0.0, 1.0, 0.5, 0.2, 0.0, 0.0])
    assert np.allclose((a * b).matrix(), a.matrix() @ b.matrix())


def test_se3_hat_of_log_is_matrix_log_generator():
    pose = SE3.exp([0.1, 0.2, 0.3, 0.0, 0.0, 0.0])
    assert np.allclose(se3_vee(se3_hat(pose.log())), pose.log())


def test_se3_rejects_bad_twist():
    with pytest.raises(ValueError):
        SE3.exp([1.0, 2.0, 3.0])