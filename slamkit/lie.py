"""Rotations, rigid transforms and their Lie algebras (SO(3), SE(3))."""

from __future__ import annotations

import math

import numpy as np

SMALL_EPS = 1e-10


def _vector(v, size: int, name: str) -> np.ndarray:
    arr = np.asarray(v, dtype=float).reshape(-1)
    if arr.shape != (size,):
        raise ValueError(f"{name} must have {size} elements, got shape {np.shape(v)}")
    return arr


def _matrix(m, rows: int, cols: int, name: str) -> np.ndarray:
    arr = np.asarray(m, dtype=float)
    if arr.shape != (rows, cols):
        raise ValueError(f"{name} must be {rows}x{cols}, got shape {arr.shape}")
    return arr


def hat(v) -> np.ndarray:
    """Skew-symmetric matrix of a 3-vector, so that ``hat(v) @ w == cross(v, w)``."""
    x, y, z = _vector(v, 3, "vector")
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def vee(m) -> np.ndarray:
    """Inverse of :func:`hat`: the 3-vector of a skew-symmetric matrix."""
    m = _matrix(m, 3, 3, "matrix")
    return np.array([m[2, 1], m[0, 2], m[1, 0]])


def se3_hat(xi) -> np.ndarray:
    """4x4 matrix of a twist ``(upsilon, omega)``: translation part first."""
    xi = _vector(xi, 6, "twist")
    out = np.zeros((4, 4))
    out[:3, :3] = hat(xi[3:])
    out[:3, 3] = xi[:3]
    return out


def se3_vee(m) -> np.ndarray:
    """Inverse of :func:`se3_hat`."""
    m = _matrix(m, 4, 4, "matrix")
    return np.concatenate([m[:3, 3], vee(m[:3, :3])])


def angle_axis_matrix(angle: float, axis) -> np.ndarray:
    """Rotation matrix for a rotation of ``angle`` radians about ``axis``."""
    axis = _vector(axis, 3, "axis")
    norm = np.linalg.norm(axis)
    if norm == 0.0:
        raise ValueError("rotation axis must be non-zero")
    axis = axis / norm
    k = hat(axis)
    return np.eye(3) + math.sin(angle) * k + (1.0 - math.cos(angle)) * (k @ k)


def quaternion_from_matrix(rotation) -> np.ndarray:
    """Quaternion coefficients ``(x, y, z, w)`` of a rotation matrix."""
    m = _matrix(rotation, 3, 3, "rotation")
    diag_sum = float(m[0, 0] + m[1, 1] + m[2, 2])
    q = np.zeros(4)
    if diag_sum > 0.0:
        t = math.sqrt(diag_sum + 1.0)
        q[3] = 0.5 * t
        t = 0.5 / t
        q[0] = (m[2, 1] - m[1, 2]) * t
        q[1] = (m[0, 2] - m[2, 0]) * t
        q[2] = (m[1, 0] - m[0, 1]) * t
    else:
        i = 0
        if m[1, 1] > m[0, 0]:
            i = 1
        if m[2, 2] > m[i, i]:
            i = 2
        j = (i + 1) % 3
        k = (j + 1) % 3
        t = math.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
        q[i] = 0.5 * t
        t = 0.5 / t
        q[3] = (m[k, j] - m[j, k]) * t
        q[j] = (m[j, i] + m[i, j]) * t
        q[k] = (m[k, i] + m[i, k]) * t
    return q


def quaternion_to_matrix(q) -> np.ndarray:
    """Rotation matrix of a quaternion given as ``(x, y, z, w)``; it is normalised first."""
    q = _vector(q, 4, "quaternion")
    norm = np.linalg.norm(q)
    if norm == 0.0:
        raise ValueError("quaternion must be non-zero")
    x, y, z, w = q / norm
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
            [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
            [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
        ]
    )


def euler_angles(rotation, a0: int, a1: int, a2: int) -> np.ndarray:
    """Euler angles about axes ``a0, a1, a2`` such that
    ``R = Rot(a0, r0) @ Rot(a1, r1) @ Rot(a2, r2)``.

    The first angle lies in ``[0, pi]`` and the others in ``[-pi, pi]``.
    """
    m = _matrix(rotation, 3, 3, "rotation")
    for a in (a0, a1, a2):
        if a not in (0, 1, 2):
            raise ValueError(f"axis index must be 0, 1 or 2, got {a}")
    if a0 == a1 or a1 == a2:
        raise ValueError("consecutive axes must differ")

    odd = 0 if (a0 + 1) % 3 == a1 else 1
    i = a0
    j = (a0 + 1 + odd) % 3
    k = (a0 + 2 - odd) % 3
    res = np.zeros(3)

    def flip_needed(angle: float) -> bool:
        return (odd and angle < 0.0) or ((not odd) and angle > 0.0)

    if a0 == a2:
        res[0] = math.atan2(m[j, i], m[k, i])
        s2 = math.hypot(m[j, i], m[k, i])
        if flip_needed(res[0]):
            res[0] += -math.pi if res[0] > 0.0 else math.pi
            res[1] = -math.atan2(s2, m[i, i])
        else:
            res[1] = math.atan2(s2, m[i, i])
        s1, c1 = math.sin(res[0]), math.cos(res[0])
        res[2] = math.atan2(c1 * m[j, k] - s1 * m[k, k], c1 * m[j, j] - s1 * m[k, j])
    else:
        res[0] = math.atan2(m[j, k], m[k, k])
        c2 = math.hypot(m[i, i], m[i, j])
        if flip_needed(res[0]):
            res[0] += -math.pi if res[0] > 0.0 else math.pi
            res[1] = math.atan2(-m[i, k], -c2)
        else:
            res[1] = math.atan2(-m[i, k], c2)
        s1, c1 = math.sin(res[0]), math.cos(res[0])
        res[2] = math.atan2(s1 * m[k, i] - c1 * m[j, i], c1 * m[j, j] - s1 * m[k, j])

    if not odd:
        res = -res
    return res


def _so3_log_and_theta(q: np.ndarray) -> tuple[np.ndarray, float]:
    vec = q[:3]
    w = q[3]
    n = float(np.linalg.norm(vec))
    if n < SMALL_EPS:
        factor = 2.0 / w - 2.0 * (n * n) / (w * w * w)
    elif abs(w) < SMALL_EPS:
        factor = math.pi / n if w > 0 else -math.pi / n
    else:
        factor = 2.0 * math.atan(n / w) / n
    return factor * vec, factor * n


class SO3:
    """A 3D rotation."""

    __slots__ = ("_matrix",)

    def __init__(self, matrix=None) -> None:
        if matrix is None:
            self._matrix = np.eye(3)
        else:
            self._matrix = _matrix(matrix, 3, 3, "rotation").copy()

    @classmethod
    def from_matrix(cls, matrix) -> "SO3":
        """Rotation from a 3x3 matrix, re-orthonormalised through its quaternion."""
        return cls(quaternion_to_matrix(quaternion_from_matrix(matrix)))

    @classmethod
    def exp(cls, omega) -> "SO3":
        """Exponential map from a rotation vector."""
        omega = _vector(omega, 3, "rotation vector")
        theta = float(np.linalg.norm(omega))
        half = 0.5 * theta
        if theta < SMALL_EPS:
            theta_sq = theta * theta
            theta_po4 = theta_sq * theta_sq
            imag = 0.5 - theta_sq / 48.0 + theta_po4 / 3840.0
            real = 1.0 - theta_sq / 8.0 + theta_po4 / 384.0
        else:
            imag = math.sin(half) / theta
            real = math.cos(half)
        q = np.concatenate([imag * omega, [real]])
        return cls(quaternion_to_matrix(q))

    def log(self) -> np.ndarray:
        """Logarithmic map: the rotation vector."""
        omega, _ = _so3_log_and_theta(self.quaternion())
        return omega

    def quaternion(self) -> np.ndarray:
        """Unit quaternion ``(x, y, z, w)``."""
        q = quaternion_from_matrix(self._matrix)
        return q / np.linalg.norm(q)

    def matrix(self) -> np.ndarray:
        """The 3x3 rotation matrix."""
        return self._matrix.copy()

    def inverse(self) -> "SO3":
        return SO3(self._matrix.T)

    def __mul__(self, other):
        if isinstance(other, SO3):
            return SO3(self._matrix @ other._matrix)
        arr = np.asarray(other, dtype=float)
        if arr.ndim in (1, 2) and arr.shape[-1] == 3:
            return arr @ self._matrix.T
        return NotImplemented

    def __str__(self) -> str:
        return " ".join(f"{x:g}" for x in self.log())

    def __repr__(self) -> str:
        return f"SO3(log=[{self}])"


class SE3:
    """A rigid-body transform: rotation followed by translation."""

    __slots__ = ("rotation", "translation")

    def __init__(self, rotation=None, translation=None) -> None:
        if rotation is None:
            rotation = SO3()
        elif not isinstance(rotation, SO3):
            rotation = SO3(rotation)
        self.rotation: SO3 = rotation
        self.translation: np.ndarray = (
            np.zeros(3) if translation is None else _vector(translation, 3, "translation").copy()
        )

    @classmethod
    def from_quaternion(cls, q, translation) -> "SE3":
        """Transform from a quaternion ``(x, y, z, w)`` and a translation."""
        return cls(SO3(quaternion_to_matrix(q)), translation)

    @classmethod
    def exp(cls, xi) -> "SE3":
        """Exponential map from a twist ``(upsilon, omega)``."""
        xi = _vector(xi, 6, "twist")
        upsilon, omega = xi[:3], xi[3:]
        so3 = SO3.exp(omega)
        big_omega = hat(omega)
        omega_sq = big_omega @ big_omega
        theta = float(np.linalg.norm(omega))
        if theta < SMALL_EPS:
            v = so3.matrix()
        else:
            theta_sq = theta * theta
            v = (
                np.eye(3)
                + (1.0 - math.cos(theta)) / theta_sq * big_omega
                + (theta - math.sin(theta)) / (theta_sq * theta) * omega_sq
            )
        return cls(so3, v @ upsilon)

    def log(self) -> np.ndarray:
        """Logarithmic map: the twist ``(upsilon, omega)``."""
        omega, theta = _so3_log_and_theta(self.rotation.quaternion())
        big_omega = hat(omega)
        if abs(theta) < SMALL_EPS:
            v_inv = np.eye(3) - 0.5 * big_omega + (1.0 / 12.0) * (big_omega @ big_omega)
        else:
            half = 0.5 * theta
            v_inv = (
                np.eye(3)
                - 0.5 * big_omega
                + (1.0 - theta / (2.0 * math.tan(half))) / (theta * theta) * (big_omega @ big_omega)
            )
        return np.concatenate([v_inv @ self.translation, omega])

    def matrix(self) -> np.ndarray:
        """The 4x4 homogeneous transform."""
        out = np.eye(4)
        out[:3, :3] = self.rotation.matrix()
        out[:3, 3] = self.translation
        return out

    def inverse(self) -> "SE3":
        inv_rot = self.rotation.inverse()
        return SE3(inv_rot, -(inv_rot.matrix() @ self.translation))

    def __mul__(self, other):
        if isinstance(other, SE3):
            return SE3(
                self.rotation * other.rotation,
                self.rotation.matrix() @ other.translation + self.translation,
            )
        arr = np.asarray(other, dtype=float)
        if arr.ndim in (1, 2) and arr.shape[-1] == 3:
            return arr @ self.rotation.matrix().T + self.translation
        return NotImplemented

    def __str__(self) -> str:
        t = " ".join(f"{x:g}" for x in self.translation)
        return f"{self.rotation}\n{t}"

    def __repr__(self) -> str:
        return f"SE3(rotation=[{self.rotation}], translation=[{' '.join(f'{x:g}' for x in self.translation)}])"