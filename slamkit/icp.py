"""Rigid alignment of matched 3D point sets (3D-3D pose estimation)."""

from __future__ import annotations

import numpy as np

from slamkit.lie import SE3

_STEP_TOLERANCE = 1e-12


def _point_set(values, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError(f"{name} must have shape (N, 3), got {arr.shape}")
    return arr


def _pair(points1, points2) -> tuple[np.ndarray, np.ndarray]:
    p1 = _point_set(points1, "points1")
    p2 = _point_set(points2, "points2")
    if p1.shape != p2.shape:
        raise ValueError(
            f"point sets differ in size: {len(p1)} and {len(p2)} points"
        )
    if len(p1) == 0:
        raise ValueError("point sets must not be empty")
    return p1, p2


def _batch_skew(v: np.ndarray) -> np.ndarray:
    x, y, z = v[:, 0], v[:, 1], v[:, 2]
    s = np.zeros((len(v), 3, 3))
    s[:, 0, 1] = -z
    s[:, 0, 2] = y
    s[:, 1, 0] = z
    s[:, 1, 2] = -x
    s[:, 2, 0] = -y
    s[:, 2, 1] = x
    return s


def estimate_pose_svd(points1, points2) -> tuple[np.ndarray, np.ndarray]:
    """Rotation R and translation t with ``points1 ~ R @ points2 + t``, in closed form."""
    p1, p2 = _pair(points1, points2)
    c1 = p1.mean(axis=0)
    c2 = p2.mean(axis=0)
    q1 = p1 - c1
    q2 = p2 - c2
    w = q1.T @ q2
    u, _, vt = np.linalg.svd(w)
    v = vt.T
    if np.linalg.det(u) * np.linalg.det(v) < 0:
        u[:, 2] *= -1.0
    rotation = u @ v.T
    translation = c1 - rotation @ c2
    return rotation, translation


def refine_pose(
    points1, points2, rotation=None, translation=None, iterations=10
) -> tuple[np.ndarray, np.ndarray]:
    """Gauss-Newton refinement of the pose that maps points2 onto points1.

    Starts from the identity when no initial pose is given.
    """
    p1, p2 = _pair(points1, points2)
    r0 = np.eye(3) if rotation is None else np.asarray(rotation, dtype=float)
    t0 = np.zeros(3) if translation is None else np.asarray(translation, dtype=float).ravel()
    pose = SE3(r0, t0)
    for _ in range(iterations):
        r = pose.rotation_matrix
        t = pose.translation
        mapped = p2 @ r.T + t
        error = p1 - mapped
        jac = np.zeros((len(p1), 3, 6))
        jac[:, :, :3] = -np.eye(3)
        jac[:, :, 3:] = _batch_skew(mapped)
        h = np.einsum("nki,nkj->ij", jac, jac)
        b = -np.einsum("nki,nk->i", jac, error)
        step, *_ = np.linalg.lstsq(h, b, rcond=None)
        pose = SE3.exp(step) * pose
        if float(np.linalg.norm(step)) < _STEP_TOLERANCE:
            break
    return pose.rotation_matrix, pose.translation