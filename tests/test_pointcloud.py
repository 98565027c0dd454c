import numpy as np
import pytest
from PIL import Image

from slamkit.geometry import Isometry
from slamkit.pointcloud import (
    CameraIntrinsics,
    PointCloud,
    depth_to_cloud,
    join_map,
    read_poses,
    save_pcd,
    statistical_outlier_removal,
    voxel_filter,
)

UNIT = CameraIntrinsics(cx=1.0, cy=1.0, fx=1.0, fy=1.0, depth_scale=1000.0)


def _images():
    color = np.zeros((3, 3, 3), dtype=np.uint8)
    color[1, 1] = (10, 20, 30)
    color[0, 2] = (40, 50, 60)
    depth = np.zeros((3, 3), dtype=np.uint16)
    depth[1, 1] = 2000
    depth[0, 2] = 1000
    return color, depth


def _write_pgm(path, arr):
    h, w = arr.shape
    path.write_bytes(f"P5\n{w} {h}\n65535\n".encode() + arr.astype(">u2").tobytes())


def test_depth_to_cloud_skips_zero_depth_and_scales():
    color, depth = _images()
    cloud = depth_to_cloud(color, depth, None, UNIT)
    assert len(cloud) == 2
    np.testing.assert_allclose(sorted(cloud.points[:, 2]), [1.0, 2.0])
    centre = cloud.points[cloud.points[:, 2] == 2.0][0]
    np.testing.assert_allclose(centre, [0.0, 0.0, 2.0])


def test_depth_to_cloud_carries_colours():
    color, depth = _images()
    cloud = depth_to_cloud(color, depth, None, UNIT)
    idx = int(np.argmax(cloud.points[:, 2]))
    assert tuple(cloud.colors[idx]) == (10, 20, 30)


def test_depth_to_cloud_max_depth_drops_far_points():
    color, depth = _images()
    cloud = depth_to_cloud(color, depth, None, UNIT, max_depth=1500)
    assert len(cloud) == 1
    assert cloud.points[0, 2] == pytest.approx(1.0)


def test_depth_to_cloud_applies_pose():
    color, depth = _images()
    base = depth_to_cloud(color, depth, None, UNIT)
    pose = Isometry.identity().pretranslate([1.0, 2.0, 3.0])
    moved = depth_to_cloud(color, depth, pose, UNIT)
    np.testing.assert_allclose(moved.points - base.points, [[1.0, 2.0, 3.0]] * 2)


def test_depth_to_cloud_rejects_size_mismatch():
    color, _ = _images()
    with pytest.raises(ValueError):
        depth_to_cloud(color, np.zeros((2, 2)), None, UNIT)


def test_read_poses_quaternion_and_translation(tmp_path):
    path = tmp_path / "pose.txt"
    path.write_text("1 2 3 0 0 0 1\n0 0 0 0 0 0.7071068 0.7071068\n")
    first, second = read_poses(path, 2)
    np.testing.assert_allclose(first.transform([0.0, 0.0, 0.0]), [1.0, 2.0, 3.0])
    np.testing.assert_allclose(second.transform([1.0, 0.0, 0.0]), [0.0, 1.0, 0.0], atol=1e-6)


def test_read_poses_rejects_short_file(tmp_path):
    path = tmp_path / "pose.txt"
    path.write_text("1 2 3 0 0 0 1\n")
    with pytest.raises(ValueError):
        read_poses(path, 2)


def test_concatenate_joins_points_and_colours():
    a = PointCloud(np.zeros((2, 3)), np.zeros((2, 3), dtype=np.uint8))
    b = PointCloud(np.ones((3, 3)), np.full((3, 3), 9, dtype=np.uint8))
    joined = a.concatenate(b)
    assert len(joined) == len(a) + len(b)
    np.testing.assert_array_equal(joined.points[2:], b.points)
    np.testing.assert_array_equal(joined.colors[2:], b.colors)


def test_point_cloud_rejects_mismatched_colours():
    with pytest.raises(ValueError):
        PointCloud(np.zeros((2, 3)), np.zeros((1, 3), dtype=np.uint8))


def test_statistical_outlier_removal_drops_far_point():
    grid = np.array([[x, y, 0.0] for x in range(5) for y in range(5)], dtype=float) * 0.01
    points = np.vstack([grid, [[10.0, 10.0, 10.0]]])
    cloud = PointCloud(points, np.zeros((len(points), 3), dtype=np.uint8))
    kept = statistical_outlier_removal(cloud, 8, 1.0)
    assert len(kept) == len(grid)
    assert not np.any(np.all(kept.points == [10.0, 10.0, 10.0], axis=1))


def test_voxel_filter_merges_points_in_one_voxel():
    points = np.array([[0.001, 0.001, 0.001], [0.003, 0.003, 0.003]])
    colors = np.array([[10, 20, 30], [20, 40, 60]], dtype=np.uint8)
    out = voxel_filter(PointCloud(points, colors), 0.01)
    assert len(out) == 1
    np.testing.assert_allclose(out.points[0], points.mean(axis=0))
    np.testing.assert_array_equal(out.colors[0], colors.mean(axis=0))


def test_voxel_filter_keeps_separate_voxels():
    points = np.array([[0.0, 0.0, 0.0], [0.5, 0.0, 0.0], [0.0, 0.5, 0.0]])
    cloud = PointCloud(points, np.zeros((3, 3), dtype=np.uint8))
    out = voxel_filter(cloud, 0.01)
    assert len(out) == 3
    np.testing.assert_allclose(out.points.mean(axis=0), points.mean(axis=0), atol=1e-3)


def test_voxel_filter_rejects_bad_leaf():
    with pytest.raises(ValueError):
        voxel_filter(PointCloud(), 0.0)


def test_save_pcd_binary_round_trip(tmp_path):
    points = np.array([[0.5, -1.0, 2.0], [3.0, 4.0, 5.0]])
    colors = np.array([[255, 0, 1], [7, 8, 9]], dtype=np.uint8)
    path = tmp_path / "map.pcd"
    save_pcd(path, PointCloud(points, colors))
    raw = path.read_bytes()
    marker = b"DATA binary\n"
    head, body = raw.split(marker, 1)
    lines = head.decode("ascii").splitlines()
    assert "VERSION 0.7" in lines
    assert "FIELDS x y z rgb" in lines
    assert "POINTS 2" in lines
    record = np.dtype([("x", "<f4"), ("y", "<f4"), ("z", "<f4"), ("rgb", "<u4")])
    data = np.frombuffer(body, dtype=record)
    np.testing.assert_allclose(np.column_stack([data["x"], data["y"], data["z"]]), points)
    rgb = data["rgb"]
    decoded = np.column_stack([(rgb >> 16) & 255, (rgb >> 8) & 255, rgb & 255])
    np.testing.assert_array_equal(decoded, colors)


def test_join_map_reads_directory(tmp_path):
    (tmp_path / "color").mkdir()
    (tmp_path / "depth").mkdir()
    (tmp_path / "pose.txt").write_text("1 2 3 0 0 0 1\n")
    color, depth = _images()
    Image.fromarray(color).save(tmp_path / "color" / "1.png")
    _write_pgm(tmp_path / "depth" / "1.pgm", depth)
    cloud = join_map(tmp_path, 1, UNIT)
    assert len(cloud) == 2
    expected = depth_to_cloud(color, depth, Isometry.identity().pretranslate([1, 2, 3]), UNIT)
    np.testing.assert_allclose(cloud.points, expected.points)
    np.testing.assert_array_equal(cloud.colors, expected.colors)
    limited = join_map(tmp_path, 1, UNIT, max_depth=1500)
    assert len(limited) == 1


def test_join_map_missing_pose_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        join_map(tmp_path, 1)