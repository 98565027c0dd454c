"""Two-view geometry: fundamental, essential and homography matrices, pose and triangulation."""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass

import numpy as np

from slamkit.lie import SO3

DEFAULT_CAMERA_MATRIX = np.array(
    [[520.9, 0.0, 325.1], [0.0, 521.0, 249.7], [0.0, 0.0, 1.0]]
)

_CHEIRALITY_DISTANCE = 50.0
_EPS = 1e-12
_RANSAC_CONFIDENCE = 0.995
_RANSAC_MAX_ITERS = 2000


@dataclass(eq=False)
class PoseEstimate:
    """Relative camera motion recovered from two views."""

    rotation: np.ndarray
    translation: np.ndarray
    inliers: int
    mask: np.ndarray
    fundamental: np.ndarray | None = None
    essential: np.ndarray | None = None
    homography: np.ndarray | None = None


def _points(values, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError(f"{name} must have shape (N, 2), got {arr.shape}")
    return arr


def _pair(points1, points2) -> tuple[np.ndarray, np.ndarray]:
    p1 = _points(points1, "points1")
    p2 = _points(points2, "points2")
    if p1.shape != p2.shape:
        raise ValueError(
            f"point sets differ in size: {len(p1)} and {len(p2)} points"
        )
    return p1, p2


def _camera_matrix(camera_matrix) -> np.ndarray:
    if camera_matrix is None:
        return DEFAULT_CAMERA_MATRIX.copy()
    k = np.asarray(camera_matrix, dtype=float)
    if k.shape != (3, 3):
        raise ValueError(f"camera matrix must be 3x3, got shape {k.shape}")
    return k


def _matrix3(values, name: str) -> np.ndarray:
    m = np.asarray(values, dtype=float)
    if m.size != 9:
        raise ValueError(f"{name} must have 9 elements, got {m.size}")
    return m.reshape(3, 3)


def pixel_to_camera(point, camera_matrix=None) -> np.ndarray:
    """Normalized camera coordinates of one pixel (2,) or many (N, 2)."""
    k = _camera_matrix(camera_matrix)
    p = np.asarray(point, dtype=float)
    if p.shape[-1] != 2 or p.ndim > 2:
        raise ValueError(f"point must have shape (2,) or (N, 2), got {p.shape}")
    centre = np.array([k[0, 2], k[1, 2]])
    focal = np.array([k[0, 0], k[1, 1]])
    return (p - centre) / focal


def skew(vector) -> np.ndarray:
    """Skew-symmetric matrix ``[v]x`` so that ``skew(v) @ w == cross(v, w)``."""
    return SO3.hat(vector)


def _normalizing_transform(pts: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    centroid = pts.mean(axis=0)
    mean_dist = float(np.linalg.norm(pts - centroid, axis=1).mean())
    if mean_dist < _EPS:
        raise ValueError("points are degenerate: all coincide")
    s = math.sqrt(2.0) / mean_dist
    transform = np.array(
        [[s, 0.0, -s * centroid[0]], [0.0, s, -s * centroid[1]], [0.0, 0.0, 1.0]]
    )
    return (pts - centroid) * s, transform


def find_fundamental_matrix(points1, points2) -> np.ndarray:
    """Fundamental matrix F with ``x2^T F x1 = 0`` by the normalized 8-point method."""
    p1, p2 = _pair(points1, points2)
    if len(p1) < 8:
        raise ValueError("the 8-point method needs at least 8 correspondences")
    n1, t1 = _normalizing_transform(p1)
    n2, t2 = _normalizing_transform(p2)
    x1, y1 = n1[:, 0], n1[:, 1]
    x2, y2 = n2[:, 0], n2[:, 1]
    a = np.column_stack(
        [x2 * x1, x2 * y1, x2, y2 * x1, y2 * y1, y2, x1, y1, np.ones(len(p1))]
    )
    _, _, vt = np.linalg.svd(a)
    f = vt[-1].reshape(3, 3)
    u, s, vt = np.linalg.svd(f)
    s[2] = 0.0
    f = u @ np.diag(s) @ vt
    f = t2.T @ f @ t1
    if abs(f[2, 2]) > _EPS:
        f = f / f[2, 2]
    return f


def find_essential_matrix(points1, points2, focal, principal_point) -> np.ndarray:
    """Essential matrix ``K^T F K`` for a camera of the given focal length and centre."""
    cx, cy = principal_point
    k = np.array([[focal, 0.0, cx], [0.0, focal, cy], [0.0, 0.0, 1.0]])
    f = find_fundamental_matrix(points1, points2)
    return k.T @ f @ k


def _dlt_homography(p1: np.ndarray, p2: np.ndarray) -> np.ndarray | None:
    try:
        n1, t1 = _normalizing_transform(p1)
        n2, t2 = _normalizing_transform(p2)
    except ValueError:
        return None
    rows = []
    for (x, y), (u, v) in zip(n1, n2):
        rows.append([-x, -y, -1.0, 0.0, 0.0, 0.0, u * x, u * y, u])
        rows.append([0.0, 0.0, 0.0, -x, -y, -1.0, v * x, v * y, v])
    _, _, vt = np.linalg.svd(np.array(rows))
    hn = vt[-1].reshape(3, 3)
    h = np.linalg.inv(t2) @ hn @ t1
    if not np.all(np.isfinite(h)) or abs(h[2, 2]) < _EPS:
        return None
    return h / h[2, 2]


def _transfer_errors(h: np.ndarray, p1: np.ndarray, p2: np.ndarray) -> np.ndarray:
    homogeneous = np.column_stack([p1, np.ones(len(p1))]) @ h.T
    with np.errstate(divide="ignore", invalid="ignore"):
        projected = homogeneous[:, :2] / homogeneous[:, 2:3]
        errors = np.linalg.norm(projected - p2, axis=1)
    return np.where(np.isfinite(errors), errors, np.inf)


def find_homography(points1, points2, threshold=3.0) -> np.ndarray:
    """Homography mapping points1 onto points2, robust to outliers by RANSAC."""
    p1, p2 = _pair(points1, points2)
    count = len(p1)
    if count < 4:
        raise ValueError("a homography needs at least 4 correspondences")
    rng = np.random.default_rng(0)
    best_h: np.ndarray | None = None
    best_inliers = np.zeros(count, dtype=bool)
    iterations = _RANSAC_MAX_ITERS
    done = 0
    while done < iterations:
        done += 1
        sample = rng.choice(count, size=4, replace=False)
        h = _dlt_homography(p1[sample], p2[sample])
        if h is None:
            continue
        inliers = _transfer_errors(h, p1, p2) < threshold
        if inliers.sum() > best_inliers.sum():
            best_h, best_inliers = h, inliers
            ratio = inliers.sum() / count
            if ratio >= 1.0:
                break
            denom = math.log(1.0 - ratio**4) if ratio > 0 else 0.0
            if denom < 0:
                needed = math.log(1.0 - _RANSAC_CONFIDENCE) / denom
                iterations = min(iterations, max(done, int(math.ceil(needed))))
    if best_h is None:
        raise ValueError("could not estimate a homography from degenerate points")
    if best_inliers.sum() >= 4:
        refined = _dlt_homography(p1[best_inliers], p2[best_inliers])
        if refined is not None:
            return refined
    return best_h


def decompose_essential_matrix(essential) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """The two rotations and the unit translation an essential matrix allows."""
    e = _matrix3(essential, "essential")
    u, _, vt = np.linalg.svd(e)
    if np.linalg.det(u) < 0:
        u = -u
    if np.linalg.det(vt) < 0:
        vt = -vt
    w = np.array([[0.0, 1.0, 0.0], [-1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    r1 = u @ w @ vt
    r2 = u @ w.T @ vt
    t = u[:, 2].copy()
    return r1, r2, t


def triangulate_points(projection1, projection2, points1, points2) -> np.ndarray:
    """Homogeneous 3D points (4, N) seen at points1 and points2 by two projections."""
    pa = np.asarray(projection1, dtype=float)
    pb = np.asarray(projection2, dtype=float)
    if pa.shape != (3, 4) or pb.shape != (3, 4):
        raise ValueError("projection matrices must be 3x4")
    p1, p2 = _pair(points1, points2)
    if len(p1) == 0:
        return np.zeros((4, 0))
    a = np.stack(
        [
            p1[:, 0:1] * pa[2] - pa[0],
            p1[:, 1:2] * pa[2] - pa[1],
            p2[:, 0:1] * pb[2] - pb[0],
            p2[:, 1:2] * pb[2] - pb[1],
        ],
        axis=1,
    )
    _, _, vt = np.linalg.svd(a)
    return vt[:, -1, :].T


def _cheirality_mask(p0, p, n1, n2) -> np.ndarray:
    q = triangulate_points(p0, p, n1, n2)
    with np.errstate(divide="ignore", invalid="ignore"):
        mask = q[2] * q[3] > 0
        q = q / q[3]
        mask &= q[2] < _CHEIRALITY_DISTANCE
        q = p @ q
        mask &= q[2] > 0
        mask &= q[2] < _CHEIRALITY_DISTANCE
    return mask


def recover_pose(
    essential, points1, points2, focal=1.0, principal_point=(0.0, 0.0), mask=None
) -> PoseEstimate:
    """Pick the rotation and translation from an essential matrix by cheirality."""
    p1, p2 = _pair(points1, points2)
    cx, cy = principal_point
    centre = np.array([cx, cy], dtype=float)
    n1 = (p1 - centre) / focal
    n2 = (p2 - centre) / focal

    r1, r2, t = decompose_essential_matrix(essential)
    p0 = np.eye(3, 4)
    candidates = [(r1, t), (r2, t), (r1, -t), (r2, -t)]
    masks = [
        _cheirality_mask(p0, np.hstack([r, tr[:, None]]), n1, n2)
        for r, tr in candidates
    ]
    if mask is not None:
        given = np.asarray(mask).ravel() != 0
        if given.shape != (len(p1),):
            raise ValueError(
                f"mask must have {len(p1)} entries, got {given.size}"
            )
        masks = [given & m for m in masks]
    counts = [int(m.sum()) for m in masks]
    best = int(np.argmax(counts))
    rotation, translation = candidates[best]
    return PoseEstimate(
        rotation=rotation.copy(),
        translation=translation.copy(),
        inliers=counts[best],
        mask=masks[best],
    )


def estimate_pose_2d2d(points1, points2, camera_matrix=None) -> PoseEstimate:
    """Camera motion between two views from matched pixel coordinates."""
    k = _camera_matrix(camera_matrix)
    p1, p2 = _pair(points1, points2)
    fundamental = find_fundamental_matrix(p1, p2)
    focal = float(k[1, 1])
    principal_point = (float(k[0, 2]), float(k[1, 2]))
    essential = find_essential_matrix(p1, p2, focal, principal_point)
    homography = find_homography(p1, p2, 3.0)
    pose = recover_pose(essential, p1, p2, focal, principal_point)
    return dataclasses.replace(
        pose, fundamental=fundamental, essential=essential, homography=homography
    )


def epipolar_constraint(point1, point2, rotation, translation, camera_matrix=None) -> float:
    """Residual ``y2^T [t]x R y1`` of a pixel match; zero for a perfect match."""
    k = _camera_matrix(camera_matrix)
    y1 = np.append(pixel_to_camera(np.asarray(point1, dtype=float), k), 1.0)
    y2 = np.append(pixel_to_camera(np.asarray(point2, dtype=float), k), 1.0)
    r = _matrix3(rotation, "rotation")
    t = np.asarray(translation, dtype=float).ravel()
    return float(y2 @ skew(t) @ r @ y1)


def triangulate(points1, points2, rotation, translation, camera_matrix=None) -> np.ndarray:
    """3D points (N, 3) in the first camera frame from pixel matches and a pose."""
    k = _camera_matrix(camera_matrix)
    p1, p2 = _pair(points1, points2)
    r = _matrix3(rotation, "rotation")
    t = np.asarray(translation, dtype=float).ravel()
    if t.shape != (3,):
        raise ValueError("translation must have 3 components")
    t1 = np.eye(3, 4)
    t2 = np.hstack([r, t[:, None]])
    q = triangulate_points(t1, t2, pixel_to_camera(p1, k), pixel_to_camera(p2, k))
    return (q[:3] / q[3]).T