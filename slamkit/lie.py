"""The rotation group SO(3) and the rigid-motion group SE(3) with their Lie algebras."""

from __future__ import annotations

import math

import numpy as np

from slamkit.geometry import Quaternion

_SMALL_EPS = 1e-10


def _vector(values, size: int, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.shape != (size,):
        raise ValueError(f"{name} must have {size} components, got shape {arr.shape}")
    return arr


def _square(values, size: int, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.shape != (size, size):
        raise ValueError(f"{name} must be {size}x{size}, got shape {arr.shape}")
    return arr


class SO3:
    """A 3D rotation, kept internally as a unit quaternion."""

    __slots__ = ("_q",)

    def __init__(self, matrix) -> None:
        self._q = Quaternion.from_matrix(_square(matrix, 3, "matrix")).normalized()

    @classmethod
    def _from_unit_quaternion(cls, quaternion: Quaternion) -> "SO3":
        obj = cls.__new__(cls)
        obj._q = quaternion
        return obj

    @staticmethod
    def from_quaternion(quaternion) -> "SO3":
        return SO3._from_unit_quaternion(quaternion.normalized())

    @staticmethod
    def exp(omega) -> "SO3":
        """Rotation for the rotation vector ``omega``."""
        w = _vector(omega, 3, "omega")
        theta = float(np.linalg.norm(w))
        half = 0.5 * theta
        if theta < _SMALL_EPS:
            theta_sq = theta * theta
            imag_factor = 0.5 - theta_sq / 48.0
            real_factor = 1.0 - theta_sq / 8.0
        else:
            imag_factor = math.sin(half) / theta
            real_factor = math.cos(half)
        return SO3._from_unit_quaternion(
            Quaternion(real_factor, *(imag_factor * w)).normalized()
        )

    @staticmethod
    def hat(omega) -> np.ndarray:
        x, y, z = _vector(omega, 3, "omega")
        return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])

    @staticmethod
    def vee(matrix) -> np.ndarray:
        m = _square(matrix, 3, "matrix")
        return np.array([m[2, 1], m[0, 2], m[1, 0]])

    @property
    def quaternion(self) -> Quaternion:
        return self._q

    def matrix(self) -> np.ndarray:
        return self._q.to_matrix()

    def log(self) -> np.ndarray:
        """Rotation vector of this rotation."""
        q = self._q
        vec = np.array([q.x, q.y, q.z])
        n = float(np.linalg.norm(vec))
        w = q.w
        if n < _SMALL_EPS:
            if abs(w) < _SMALL_EPS:
                raise ValueError("quaternion is not of unit length")
            two_atan_nbyw_by_n = 2.0 / w - 2.0 * n * n / (w**3)
        elif abs(w) < _SMALL_EPS:
            two_atan_nbyw_by_n = math.pi / n if w > 0 else -math.pi / n
        else:
            two_atan_nbyw_by_n = 2.0 * math.atan(n / w) / n
        return two_atan_nbyw_by_n * vec

    def inverse(self) -> "SO3":
        return SO3._from_unit_quaternion(self._q.conjugate())

    def __mul__(self, other):
        if isinstance(other, SO3):
            return SO3._from_unit_quaternion((self._q * other._q).normalized())
        if isinstance(other, (list, tuple, np.ndarray)):
            return self._q.rotate(other)
        return NotImplemented

    def __str__(self) -> str:
        return " ".join(f"{value:g}" for value in self.log())

    def __repr__(self) -> str:
        return f"SO3(log={self.log().tolist()!r})"


class SE3:
    """A rigid-body motion: a rotation followed by a translation."""

    __slots__ = ("_so3", "_t")

    def __init__(self, rotation, translation) -> None:
        if isinstance(rotation, SO3):
            so3 = rotation
        elif isinstance(rotation, Quaternion):
            so3 = SO3.from_quaternion(rotation)
        else:
            so3 = SO3(rotation)
        self._so3 = so3
        self._t = _vector(translation, 3, "translation").copy()

    @property
    def so3(self) -> SO3:
        return self._so3

    @property
    def rotation_matrix(self) -> np.ndarray:
        return self._so3.matrix()

    @property
    def translation(self) -> np.ndarray:
        return self._t.copy()

    @staticmethod
    def exp(xi) -> "SE3":
        """Motion for a twist ``(upsilon, omega)``, translation part first."""
        v = _vector(xi, 6, "xi")
        upsilon, omega = v[:3], v[3:]
        so3 = SO3.exp(omega)
        theta = float(np.linalg.norm(omega))
        big_omega = SO3.hat(omega)
        omega_sq = big_omega @ big_omega
        if theta < _SMALL_EPS:
            v_mat = np.eye(3) + 0.5 * big_omega + omega_sq / 6.0
        else:
            theta_sq = theta * theta
            v_mat = (
                np.eye(3)
                + (1.0 - math.cos(theta)) / theta_sq * big_omega
                + (theta - math.sin(theta)) / (theta_sq * theta) * omega_sq
            )
        return SE3(so3, v_mat @ upsilon)

    @staticmethod
    def hat(xi) -> np.ndarray:
        v = _vector(xi, 6, "xi")
        m = np.zeros((4, 4))
        m[:3, :3] = SO3.hat(v[3:])
        m[:3, 3] = v[:3]
        return m

    @staticmethod
    def vee(matrix) -> np.ndarray:
        m = _square(matrix, 4, "matrix")
        return np.concatenate([m[:3, 3], SO3.vee(m[:3, :3])])

    def log(self) -> np.ndarray:
        omega = self._so3.log()
        theta = float(np.linalg.norm(omega))
        big_omega = SO3.hat(omega)
        omega_sq = big_omega @ big_omega
        if theta < _SMALL_EPS:
            v_inv = np.eye(3) - 0.5 * big_omega + omega_sq / 12.0
        else:
            half = 0.5 * theta
            v_inv = (
                np.eye(3)
                - 0.5 * big_omega
                + (1.0 - theta * math.cos(half) / (2.0 * math.sin(half)))
                / (theta * theta)
                * omega_sq
            )
        return np.concatenate([v_inv @ self._t, omega])

    def matrix(self) -> np.ndarray:
        m = np.eye(4)
        m[:3, :3] = self._so3.matrix()
        m[:3, 3] = self._t
        return m

    def inverse(self) -> "SE3":
        inv = self._so3.inverse()
        return SE3(inv, -(inv * self._t))

    def __mul__(self, other):
        if isinstance(other, SE3):
            return SE3(self._so3 * other._so3, self._so3 * other._t + self._t)
        if isinstance(other, (list, tuple, np.ndarray)):
            return self._so3 * np.asarray(other, dtype=float) + self._t
        return NotImplemented

    def __str__(self) -> str:
        return f"{self._so3}\n" + " ".join(f"{value:g}" for value in self._t)

    def __repr__(self) -> str:
        return f"SE3(log={self.log().tolist()!r})"