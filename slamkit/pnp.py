"""Camera pose from 3D-2D correspondences: PnP and bundle adjustment."""

from __future__ import annotations

import math

import numpy as np

from slamkit.epipolar import DEFAULT_CAMERA_MATRIX, find_homography, pixel_to_camera
from slamkit.lie import SE3

_EPS = 1e-12
_PLANAR_RATIO = 1e-6
_PNP_REFINE_ITERATIONS = 20


def _camera_matrix(camera_matrix) -> np.ndarray:
    if camera_matrix is None:
        return DEFAULT_CAMERA_MATRIX.copy()
    k = np.asarray(camera_matrix, dtype=float)
    if k.shape != (3, 3):
        raise ValueError(f"camera matrix must be 3x3, got shape {k.shape}")
    return k


def _points(values, dim: int, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.ndim != 2 or arr.shape[1] != dim:
        raise ValueError(f"{name} must have shape (N, {dim}), got {arr.shape}")
    return arr


def _correspondences(points_3d, points_2d) -> tuple[np.ndarray, np.ndarray]:
    p3 = _points(points_3d, 3, "points_3d")
    p2 = _points(points_2d, 2, "points_2d")
    if len(p3) != len(p2):
        raise ValueError(
            f"point sets differ in size: {len(p3)} and {len(p2)} points"
        )
    return p3, p2


def backproject(pixel, depth, camera_matrix=None) -> np.ndarray:
    """3D camera-frame point(s) of pixel(s) at the given metric depth."""
    k = _camera_matrix(camera_matrix)
    normalized = pixel_to_camera(pixel, k)
    d = np.asarray(depth, dtype=float)
    if np.any(d <= 0):
        raise ValueError("depth must be positive")
    if normalized.ndim == 1:
        if d.ndim != 0:
            raise ValueError("a single pixel takes a single depth")
        return np.array([normalized[0] * d, normalized[1] * d, float(d)])
    d = np.broadcast_to(d, (len(normalized),))
    return np.column_stack([normalized * d[:, None], d])


def project(point, camera_matrix=None) -> np.ndarray:
    """Pixel coordinates of camera-frame point(s) of shape (3,) or (N, 3)."""
    k = _camera_matrix(camera_matrix)
    p = np.asarray(point, dtype=float)
    if p.shape[-1] != 3 or p.ndim > 2:
        raise ValueError(f"point must have shape (3,) or (N, 3), got {p.shape}")
    z = p[..., 2]
    if np.any(z <= 0):
        raise ValueError("points must lie in front of the camera")
    u = k[0, 0] * p[..., 0] / z + k[0, 2]
    v = k[1, 1] * p[..., 1] / z + k[1, 2]
    return np.stack([u, v], axis=-1)


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


def _reprojection(rotation, translation, pts, observed, intrinsics):
    fx, fy, cx, cy = intrinsics
    cam = pts @ rotation.T + translation
    with np.errstate(divide="ignore", invalid="ignore"):
        u = fx * cam[:, 0] / cam[:, 2] + cx
        v = fy * cam[:, 1] / cam[:, 2] + cy
    residual = np.column_stack([u, v]) - observed
    return residual, cam


def _jacobians(cam, rotation, intrinsics):
    fx, fy, _, _ = intrinsics
    x, y, z = cam[:, 0], cam[:, 1], cam[:, 2]
    dproj = np.zeros((len(cam), 2, 3))
    dproj[:, 0, 0] = fx / z
    dproj[:, 0, 2] = -fx * x / (z * z)
    dproj[:, 1, 1] = fy / z
    dproj[:, 1, 2] = -fy * y / (z * z)
    dpose = np.zeros((len(cam), 3, 6))
    dpose[:, :, :3] = np.eye(3)
    dpose[:, :, 3:] = -_batch_skew(cam)
    jc = np.einsum("nij,njk->nik", dproj, dpose)
    jp = dproj @ rotation
    return jc, jp


def _levenberg_marquardt(points, observed, intrinsics, pose, iterations, optimize_points):
    pts = points.copy()
    residual, cam = _reprojection(
        pose.rotation_matrix, pose.translation, pts, observed, intrinsics
    )
    cost = float(np.sum(residual**2))
    mu = None
    nu = 2.0
    for _ in range(iterations):
        if not math.isfinite(cost) or cost < 1e-24:
            break
        rotation = pose.rotation_matrix
        jc, jp = _jacobians(cam, rotation, intrinsics)
        hcc = np.einsum("nki,nkj->ij", jc, jc)
        bc = -np.einsum("nki,nk->i", jc, residual)
        if optimize_points:
            hpp = np.einsum("nki,nkj->nij", jp, jp)
            hcp = np.einsum("nki,nkj->nij", jc, jp)
            bp = -np.einsum("nki,nk->ni", jp, residual)
        if mu is None:
            diag = np.diag(hcc)
            if optimize_points and len(pts):
                diag = np.concatenate([diag, np.einsum("nii->ni", hpp).ravel()])
            mu = 1e-5 * float(diag.max()) if diag.size else 1e-5
        improved = False
        step_norm = 0.0
        for _ in range(10):
            try:
                if optimize_points:
                    inv = np.linalg.inv(hpp + mu * np.eye(3))
                    hcp_inv = np.einsum("nij,njk->nik", hcp, inv)
                    schur = hcc + mu * np.eye(6) - np.einsum("nij,nkj->ik", hcp_inv, hcp)
                    rhs = bc - np.einsum("nij,nj->i", hcp_inv, bp)
                    dc = np.linalg.solve(schur, rhs)
                    dp = np.einsum(
                        "nij,nj->ni", inv, bp - np.einsum("nji,j->ni", hcp, dc)
                    )
                else:
                    dc = np.linalg.solve(hcc + mu * np.eye(6), bc)
                    dp = np.zeros_like(pts)
            except np.linalg.LinAlgError:
                mu *= nu
                nu *= 2.0
                continue
            new_pose = SE3.exp(dc) * pose
            new_pts = pts + dp
            new_residual, new_cam = _reprojection(
                new_pose.rotation_matrix, new_pose.translation, new_pts, observed, intrinsics
            )
            new_cost = float(np.sum(new_residual**2))
            if math.isfinite(new_cost) and new_cost < cost:
                pose, pts = new_pose, new_pts
                residual, cam, cost = new_residual, new_cam, new_cost
                mu /= 3.0
                nu = 2.0
                improved = True
                step_norm = float(np.sqrt(np.sum(dc**2) + np.sum(dp**2)))
                break
            mu *= nu
            nu *= 2.0
        if not improved or step_norm < _EPS:
            break
    return pose, pts


def _dlt_pose(p3: np.ndarray, normalized: np.ndarray):
    centre = p3.mean(axis=0)
    offsets = p3 - centre
    mean_dist = float(np.linalg.norm(offsets, axis=1).mean())
    scale = math.sqrt(3.0) / mean_dist
    xh = np.column_stack([offsets * scale, np.ones(len(p3))])
    zeros = np.zeros_like(xh)
    x = normalized[:, 0:1]
    y = normalized[:, 1:2]
    a = np.vstack(
        [
            np.hstack([xh, zeros, -x * xh]),
            np.hstack([zeros, xh, -y * xh]),
        ]
    )
    _, _, vt = np.linalg.svd(a)
    p = vt[-1].reshape(3, 4)
    m = p[:, :3] * scale
    t = p[:, 3] - m @ centre
    if np.linalg.det(m) < 0:
        m, t = -m, -t
    u, s, vt = np.linalg.svd(m)
    if s.min() < _EPS:
        raise ValueError("points are degenerate for pose estimation")
    rotation = u @ vt
    return rotation, t / s.mean()


def _planar_pose(p3: np.ndarray, normalized: np.ndarray, basis: np.ndarray):
    centre = p3.mean(axis=0)
    if np.linalg.det(basis) < 0:
        basis = basis.copy()
        basis[2] *= -1.0
    plane = (p3 - centre) @ basis.T
    h = find_homography(plane[:, :2], normalized, math.inf)
    h1, h2, h3 = h[:, 0], h[:, 1], h[:, 2]
    denom = float(np.linalg.norm(h1) + np.linalg.norm(h2))
    if denom < _EPS:
        raise ValueError("points are degenerate for pose estimation")
    lam = 2.0 / denom
    if h3[2] * lam < 0:
        lam = -lam
    r1 = lam * h1
    r2 = lam * h2
    rp = np.column_stack([r1, r2, np.cross(r1, r2)])
    u, _, vt = np.linalg.svd(rp)
    rp = u @ vt
    if np.linalg.det(rp) < 0:
        rp = u @ np.diag([1.0, 1.0, -1.0]) @ vt
    tp = lam * h3
    rotation = rp @ basis
    return rotation, tp - rotation @ centre


def solve_pnp(points_3d, points_2d, camera_matrix=None) -> tuple[np.ndarray, np.ndarray]:
    """Rotation and translation mapping world points into the camera that sees them.

    A linear estimate (DLT, or a homography for planar points) is refined by
    Levenberg-Marquardt on the reprojection error.
    """
    k = _camera_matrix(camera_matrix)
    p3, p2 = _correspondences(points_3d, points_2d)
    if len(p3) < 4:
        raise ValueError("PnP needs at least 4 correspondences")
    normalized = pixel_to_camera(p2, k)
    _, s, vt = np.linalg.svd(p3 - p3.mean(axis=0))
    if s[0] < _EPS or s[1] < _PLANAR_RATIO * s[0]:
        raise ValueError("points are degenerate: coincident or collinear")
    if s[2] < _PLANAR_RATIO * s[0]:
        rotation, translation = _planar_pose(p3, normalized, vt)
    else:
        if len(p3) < 6:
            raise ValueError("non-planar PnP needs at least 6 correspondences")
        rotation, translation = _dlt_pose(p3, normalized)
    intrinsics = (k[0, 0], k[1, 1], k[0, 2], k[1, 2])
    pose, _ = _levenberg_marquardt(
        p3, p2, intrinsics, SE3(rotation, translation), _PNP_REFINE_ITERATIONS, False
    )
    return pose.rotation_matrix, pose.translation


def bundle_adjustment(
    points_3d, points_2d, camera_matrix, rotation, translation, iterations=100
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Jointly refine the camera pose and the 3D points by Levenberg-Marquardt.

    The camera model has a single focal length, ``K[0, 0]``, for both axes.
    Returns the refined rotation, translation and points.
    """
    k = _camera_matrix(camera_matrix)
    p3, p2 = _correspondences(points_3d, points_2d)
    r = np.asarray(rotation, dtype=float).reshape(3, 3)
    t = np.asarray(translation, dtype=float).ravel()
    if t.shape != (3,):
        raise ValueError("translation must have 3 components")
    focal = float(k[0, 0])
    intrinsics = (focal, focal, k[0, 2], k[1, 2])
    pose, points = _levenberg_marquardt(p3, p2, intrinsics, SE3(r, t), iterations, True)
    return pose.rotation_matrix, pose.translation, points