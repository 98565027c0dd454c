"""Rotations, quaternions and rigid-body transforms in three dimensions."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

_EPS = 1e-12


def _as_vector(values, size: int, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.shape != (size,):
        raise ValueError(f"{name} must have {size} components, got shape {arr.shape}")
    return arr


def _as_matrix(values, size: int, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.shape != (size, size):
        raise ValueError(f"{name} must be {size}x{size}, got shape {arr.shape}")
    return arr


def _unit_axis(axis) -> np.ndarray:
    vec = _as_vector(axis, 3, "axis")
    norm = np.linalg.norm(vec)
    if norm < _EPS:
        raise ValueError("rotation axis must not be zero")
    return vec / norm


def _skew(v: np.ndarray) -> np.ndarray:
    x, y, z = v
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def angle_axis_to_matrix(angle, axis) -> np.ndarray:
    """Rotation matrix for a rotation of ``angle`` radians about ``axis``."""
    k = _skew(_unit_axis(axis))
    return np.eye(3) + math.sin(angle) * k + (1.0 - math.cos(angle)) * (k @ k)


def euler_angles_zyx(matrix) -> np.ndarray:
    """Yaw, pitch and roll (Z-Y-X order) of a rotation matrix.

    The first angle is kept in [0, pi], as the matrix library does.
    """
    m = _as_matrix(matrix, 3, "matrix")
    yaw = math.atan2(m[1, 0], m[0, 0])
    c2 = math.hypot(m[2, 2], m[2, 1])
    if yaw < 0:
        yaw += math.pi
        pitch = math.atan2(-m[2, 0], -c2)
    else:
        pitch = math.atan2(-m[2, 0], c2)
    s1, c1 = math.sin(yaw), math.cos(yaw)
    roll = math.atan2(s1 * m[0, 2] - c1 * m[1, 2], c1 * m[1, 1] - s1 * m[0, 1])
    return np.array([yaw, pitch, roll])


def format_rotation_matrix(matrix) -> str:
    """Render a rotation matrix as ``=[a,b,c],[d,e,f],[g,h,i]`` with two decimals."""
    m = _as_matrix(matrix, 3, "matrix")
    rows = ("[" + ",".join(f"{value:.2f}" for value in row) + "]" for row in m)
    return "=" + ",".join(rows)


def format_vector(vector) -> str:
    """Render a vector as ``=[x,y,z]`` with six significant digits."""
    values = np.asarray(vector, dtype=float).ravel()
    return "=[" + ",".join(f"{value:g}" for value in values) + "]"


@dataclass(frozen=True)
class Quaternion:
    """A quaternion ``w + xi + yj + zk``; unit quaternions represent rotations."""

    w: float
    x: float
    y: float
    z: float

    @staticmethod
    def from_angle_axis(angle, axis) -> "Quaternion":
        ax, ay, az = _unit_axis(axis)
        half = 0.5 * angle
        s = math.sin(half)
        return Quaternion(math.cos(half), ax * s, ay * s, az * s)

    @staticmethod
    def from_matrix(matrix) -> "Quaternion":
        m = _as_matrix(matrix, 3, "matrix")
        diag_sum = float(m[0, 0] + m[1, 1] + m[2, 2])
        if diag_sum > 0:
            s = math.sqrt(diag_sum + 1.0)
            w = 0.5 * s
            s = 0.5 / s
            return Quaternion(
                w,
                (m[2, 1] - m[1, 2]) * s,
                (m[0, 2] - m[2, 0]) * s,
                (m[1, 0] - m[0, 1]) * s,
            )
        i = 0
        if m[1, 1] > m[0, 0]:
            i = 1
        if m[2, 2] > m[i, i]:
            i = 2
        j = (i + 1) % 3
        k = (j + 1) % 3
        s = math.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
        vec = [0.0, 0.0, 0.0]
        vec[i] = 0.5 * s
        s = 0.5 / s
        w = (m[k, j] - m[j, k]) * s
        vec[j] = (m[j, i] + m[i, j]) * s
        vec[k] = (m[k, i] + m[i, k]) * s
        return Quaternion(w, *vec)

    def coeffs(self) -> np.ndarray:
        """Coefficients in (x, y, z, w) order, real part last."""
        return np.array([self.x, self.y, self.z, self.w])

    def norm(self) -> float:
        return math.sqrt(self.w**2 + self.x**2 + self.y**2 + self.z**2)

    def normalized(self) -> "Quaternion":
        n = self.norm()
        if n < _EPS:
            raise ValueError("cannot normalize a zero quaternion")
        return Quaternion(self.w / n, self.x / n, self.y / n, self.z / n)

    def conjugate(self) -> "Quaternion":
        return Quaternion(self.w, -self.x, -self.y, -self.z)

    def to_matrix(self) -> np.ndarray:
        """Rotation matrix of this quaternion, assumed to be of unit length."""
        w, x, y, z = self.w, self.x, self.y, self.z
        return np.array(
            [
                [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
                [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
                [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
            ]
        )

    def rotate(self, vector) -> np.ndarray:
        return self.to_matrix() @ _as_vector(vector, 3, "vector")

    def __mul__(self, other):
        if isinstance(other, Quaternion):
            w1, x1, y1, z1 = self.w, self.x, self.y, self.z
            w2, x2, y2, z2 = other.w, other.x, other.y, other.z
            return Quaternion(
                w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
                w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
                w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
                w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
            )
        if isinstance(other, (list, tuple, np.ndarray)):
            return self.rotate(other)
        return NotImplemented


def _rotation_matrix_of(rotation) -> np.ndarray:
    if isinstance(rotation, Quaternion):
        return rotation.to_matrix()
    return _as_matrix(rotation, 3, "rotation")


class Isometry:
    """A rigid-body transform stored as a 4x4 homogeneous matrix."""

    __slots__ = ("_m",)

    def __init__(self, matrix) -> None:
        m = _as_matrix(matrix, 4, "matrix").copy()
        m[3] = (0.0, 0.0, 0.0, 1.0)
        self._m = m

    @staticmethod
    def identity() -> "Isometry":
        return Isometry(np.eye(4))

    @staticmethod
    def from_quaternion_translation(quaternion, translation) -> "Isometry":
        return Isometry.identity().rotate(quaternion).pretranslate(translation)

    @property
    def rotation(self) -> np.ndarray:
        return self._m[:3, :3].copy()

    @property
    def translation(self) -> np.ndarray:
        return self._m[:3, 3].copy()

    def rotate(self, rotation) -> "Isometry":
        """Apply ``rotation`` on the right of the linear part."""
        m = self._m.copy()
        m[:3, :3] = m[:3, :3] @ _rotation_matrix_of(rotation)
        return Isometry(m)

    def pretranslate(self, translation) -> "Isometry":
        """Add ``translation`` on the left, i.e. in the outer frame."""
        m = self._m.copy()
        m[:3, 3] += _as_vector(translation, 3, "translation")
        return Isometry(m)

    def matrix(self) -> np.ndarray:
        return self._m.copy()

    def inverse(self) -> "Isometry":
        r_t = self._m[:3, :3].T
        m = np.eye(4)
        m[:3, :3] = r_t
        m[:3, 3] = -r_t @ self._m[:3, 3]
        return Isometry(m)

    def transform(self, points) -> np.ndarray:
        """Transform one point of shape (3,) or many of shape (N, 3)."""
        pts = np.asarray(points, dtype=float)
        if pts.shape == (3,):
            return self._m[:3, :3] @ pts + self._m[:3, 3]
        if pts.ndim == 2 and pts.shape[1] == 3:
            return pts @ self._m[:3, :3].T + self._m[:3, 3]
        raise ValueError(f"points must have shape (3,) or (N, 3), got {pts.shape}")

    def __mul__(self, other):
        if isinstance(other, Isometry):
            return Isometry(self._m @ other._m)
        if isinstance(other, (list, tuple, np.ndarray)):
            return self.transform(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"Isometry({self._m.tolist()!r})"