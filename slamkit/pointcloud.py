"""Coloured point clouds built from RGB-D images and camera poses."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
from PIL import Image

from slamkit.geometry import Isometry, Quaternion

_DISTANCE_BLOCK = 1_000_000


@dataclass(frozen=True)
class CameraIntrinsics:
    """Pinhole intrinsics and the scale from raw depth units to metres."""

    cx: float = 325.5
    cy: float = 253.5
    fx: float = 518.0
    fy: float = 519.0
    depth_scale: float = 1000.0


def _empty_points() -> np.ndarray:
    return np.zeros((0, 3))


def _empty_colors() -> np.ndarray:
    return np.zeros((0, 3), dtype=np.uint8)


@dataclass(eq=False)
class PointCloud:
    """Points of shape (N, 3) with RGB colours of shape (N, 3)."""

    points: np.ndarray = field(default_factory=_empty_points)
    colors: np.ndarray = field(default_factory=_empty_colors)

    def __post_init__(self) -> None:
        self.points = np.asarray(self.points, dtype=float).reshape(-1, 3)
        self.colors = np.asarray(self.colors, dtype=np.uint8).reshape(-1, 3)
        if len(self.points) != len(self.colors):
            raise ValueError(
                f"{len(self.points)} points but {len(self.colors)} colours"
            )

    def __len__(self) -> int:
        return len(self.points)

    def concatenate(self, other: "PointCloud") -> "PointCloud":
        return _merge([self, other])


def _merge(clouds) -> PointCloud:
    clouds = list(clouds)
    if not clouds:
        return PointCloud()
    return PointCloud(
        np.concatenate([c.points for c in clouds]),
        np.concatenate([c.colors for c in clouds]),
    )


def read_poses(path, count=5) -> list[Isometry]:
    """Read ``count`` poses, each ``tx ty tz qx qy qz qw``, from a text file."""
    values = [float(token) for token in Path(path).read_text().split()]
    needed = 7 * count
    if len(values) < needed:
        raise ValueError(
            f"pose file holds {len(values)} numbers, {needed} are needed"
        )
    poses = []
    for tx, ty, tz, qx, qy, qz, qw in np.reshape(values[:needed], (count, 7)):
        q = Quaternion(qw, qx, qy, qz).normalized()
        poses.append(Isometry.from_quaternion_translation(q, (tx, ty, tz)))
    return poses


def _as_isometry(pose) -> Isometry:
    if pose is None:
        return Isometry.identity()
    if isinstance(pose, Isometry):
        return pose
    return Isometry(np.asarray(pose, dtype=float))


def depth_to_cloud(color, depth, pose=None, intrinsics=None, max_depth=None) -> PointCloud:
    """World-frame points of every pixel with a valid depth reading.

    Pixels with zero depth, or raw depth at or above ``max_depth``, are skipped.
    """
    color_arr = np.asarray(color)
    depth_arr = np.asarray(depth)
    if color_arr.ndim != 3 or color_arr.shape[2] < 3:
        raise ValueError("colour image must have shape (H, W, 3)")
    if depth_arr.ndim != 2:
        raise ValueError("depth image must have shape (H, W)")
    if color_arr.shape[:2] != depth_arr.shape:
        raise ValueError(
            f"colour image {color_arr.shape[:2]} and depth image "
            f"{depth_arr.shape} differ in size"
        )
    intr = intrinsics if intrinsics is not None else CameraIntrinsics()
    d = depth_arr.astype(float)
    mask = d != 0
    if max_depth is not None:
        mask &= d < max_depth
    v, u = np.nonzero(mask)
    z = d[v, u] / intr.depth_scale
    x = (u - intr.cx) * z / intr.fx
    y = (v - intr.cy) * z / intr.fy
    world = _as_isometry(pose).transform(np.column_stack([x, y, z]))
    return PointCloud(world, color_arr[v, u, :3].astype(np.uint8))


def statistical_outlier_removal(cloud, mean_k=50, std_mul=1.0) -> PointCloud:
    """Drop points whose mean distance to their ``mean_k`` nearest neighbours is
    larger than the mean of those distances plus ``std_mul`` standard deviations."""
    if mean_k < 1:
        raise ValueError("mean_k must be at least 1")
    n = len(cloud)
    if n < 2:
        return PointCloud(cloud.points.copy(), cloud.colors.copy())
    k = min(mean_k, n - 1)
    pts = cloud.points
    mean_dists = np.empty(n)
    block = max(1, _DISTANCE_BLOCK // n)
    for start in range(0, n, block):
        rows = pts[start : start + block]
        d2 = ((rows[:, None, :] - pts[None, :, :]) ** 2).sum(axis=-1)
        d2[np.arange(len(rows)), np.arange(start, start + len(rows))] = np.inf
        nearest = np.partition(d2, k - 1, axis=1)[:, :k]
        mean_dists[start : start + len(rows)] = np.sqrt(nearest).mean(axis=1)
    threshold = mean_dists.mean() + std_mul * mean_dists.std(ddof=1)
    keep = mean_dists <= threshold
    return PointCloud(pts[keep], cloud.colors[keep])


def voxel_filter(cloud, leaf_size=0.01) -> PointCloud:
    """Replace the points in each voxel with their centroid and mean colour."""
    leaf = np.broadcast_to(np.asarray(leaf_size, dtype=float), (3,))
    if np.any(leaf <= 0):
        raise ValueError("leaf size must be positive")
    if len(cloud) == 0:
        return PointCloud()
    pts = cloud.points
    ijk = np.floor(pts / leaf).astype(np.int64)
    min_b = ijk.min(axis=0)
    extent = ijk.max(axis=0) - min_b + 1
    multipliers = np.array([1, extent[0], extent[0] * extent[1]], dtype=np.int64)
    index = (ijk - min_b) @ multipliers
    _, inverse, counts = np.unique(index, return_inverse=True, return_counts=True)
    inverse = inverse.ravel()
    size = len(counts)
    centroids = np.column_stack(
        [np.bincount(inverse, weights=pts[:, i], minlength=size) for i in range(3)]
    ) / counts[:, None]
    colors = np.column_stack(
        [
            np.bincount(inverse, weights=cloud.colors[:, i].astype(float), minlength=size)
            for i in range(3)
        ]
    ) / counts[:, None]
    return PointCloud(centroids, np.clip(np.floor(colors), 0, 255).astype(np.uint8))


def save_pcd(path, cloud) -> None:
    """Write the cloud as a binary PCD file with fields x, y, z and packed rgb."""
    n = len(cloud)
    header = (
        "# .PCD v0.7 - Point Cloud Data file format\n"
        "VERSION 0.7\n"
        "FIELDS x y z rgb\n"
        "SIZE 4 4 4 4\n"
        "TYPE F F F F\n"
        "COUNT 1 1 1 1\n"
        f"WIDTH {n}\n"
        "HEIGHT 1\n"
        "VIEWPOINT 0 0 0 1 0 0 0\n"
        f"POINTS {n}\n"
        "DATA binary\n"
    )
    record = np.dtype([("x", "<f4"), ("y", "<f4"), ("z", "<f4"), ("rgb", "<u4")])
    data = np.zeros(n, dtype=record)
    data["x"] = cloud.points[:, 0]
    data["y"] = cloud.points[:, 1]
    data["z"] = cloud.points[:, 2]
    c = cloud.colors.astype(np.uint32)
    data["rgb"] = (c[:, 0] << 16) | (c[:, 1] << 8) | c[:, 2]
    with open(path, "wb") as fh:
        fh.write(header.encode("ascii"))
        fh.write(data.tobytes())


def _load_color(path: Path) -> np.ndarray:
    with Image.open(path) as img:
        return np.array(img.convert("RGB"))


def _load_depth(path: Path) -> np.ndarray:
    with Image.open(path) as img:
        arr = np.array(img)
    if arr.ndim == 3:
        arr = arr[..., 0]
    return arr


def join_map(directory, count=5, intrinsics=None, max_depth=None, filtered=False) -> PointCloud:
    """Merge the RGB-D frames of a directory into one world-frame point cloud.

    The directory holds ``pose.txt``, ``color/<i>.png`` and ``depth/<i>.pgm``
    for i = 1..count. With ``filtered``, each frame passes a statistical
    outlier filter and the merged cloud a 1 cm voxel filter.
    """
    root = Path(directory)
    pose_file = root / "pose.txt"
    if not pose_file.is_file():
        raise FileNotFoundError(f"pose file not found: {pose_file}")
    poses = read_poses(pose_file, count)
    clouds = []
    for i, pose in enumerate(poses, start=1):
        color = _load_color(root / "color" / f"{i}.png")
        depth = _load_depth(root / "depth" / f"{i}.pgm")
        cloud = depth_to_cloud(color, depth, pose, intrinsics, max_depth)
        if filtered:
            cloud = statistical_outlier_removal(cloud, 50, 1.0)
        clouds.append(cloud)
    merged = _merge(clouds)
    if filtered:
        merged = voxel_filter(merged, 0.01)
    return merged