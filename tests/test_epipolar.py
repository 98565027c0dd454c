import numpy as np
import pytest

from slamkit.epipolar import (
    DEFAULT_CAMERA_MATRIX,
    PoseEstimate,
    decompose_essential_matrix,
    epipolar_constraint,
    estimate_pose_2d2d,
    find_essential_matrix,
    find_fundamental_matrix,
    find_homography,
    pixel_to_camera,
    recover_pose,
    skew,
    triangulate,
    triangulate_points,
)
from slamkit.geometry import angle_axis_to_matrix

K = np.array([[500.0, 0.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]])


def _scene(count=30):
    rng = np.random.default_rng(1)
    points = rng.uniform([-1.0, -1.0, 4.0], [1.0, 1.0, 8.0], size=(count, 3))
    rotation = angle_axis_to_matrix(0.1, [0, 1, 0]) @ angle_axis_to_matrix(0.05, [1, 0, 0])
    translation = np.array([-0.5, 0.1, 0.05])
    second = points @ rotation.T + translation

    def project(pts):
        return np.column_stack(
            [K[0, 0] * pts[:, 0] / pts[:, 2] + K[0, 2], K[1, 1] * pts[:, 1] / pts[:, 2] + K[1, 2]]
        )

    return points, project(points), project(second), rotation, translation


def test_pixel_to_camera_principal_point_maps_to_origin():
    result = pixel_to_camera((325.1, 249.7), DEFAULT_CAMERA_MATRIX)
    assert np.allclose(result, [0.0, 0.0])


def test_pixel_to_camera_many_points():
    result = pixel_to_camera([[820.0, 740.0], [320.0, 240.0]], K)
    assert np.allclose(result, [[1.0, 1.0], [0.0, 0.0]])


def test_skew_matches_cross_product():
    v = np.array([1.0, -2.0, 0.5])
    w = np.array([0.3, 0.7, -1.1])
    assert np.allclose(skew(v) @ w, np.cross(v, w))
    assert np.allclose(skew(v), -skew(v).T)


def test_fundamental_matrix_satisfies_epipolar_constraint():
    _, p1, p2, _, _ = _scene()
    f = find_fundamental_matrix(p1, p2)
    h1 = np.column_stack([p1, np.ones(len(p1))])
    h2 = np.column_stack([p2, np.ones(len(p2))])
    residuals = np.einsum("ij,jk,ik->i", h2, f, h1)
    assert np.max(np.abs(residuals)) < 1e-6
    assert f[2, 2] == pytest.approx(1.0)
    s = np.linalg.svd(f, compute_uv=False)
    assert s[2] / s[0] < 1e-10


def test_fundamental_matrix_needs_eight_points():
    _, p1, p2, _, _ = _scene(7)
    with pytest.raises(ValueError):
        find_fundamental_matrix(p1, p2)


def test_mismatched_point_sets_rejected():
    _, p1, p2, _, _ = _scene()
    with pytest.raises(ValueError):
        find_fundamental_matrix(p1, p2[:-1])


def test_essential_matrix_proportional_to_t_cross_r():
    _, p1, p2, rotation, translation = _scene()
    e = find_essential_matrix(p1, p2, 500.0, (320.0, 240.0))
    expected = skew(translation) @ rotation
    e_n = e / np.linalg.norm(e)
    x_n = expected / np.linalg.norm(expected)
    assert np.allclose(e_n, x_n, atol=1e-6) or np.allclose(e_n, -x_n, atol=1e-6)


def test_decompose_essential_matrix_contains_true_rotation():
    _, _, _, rotation, translation = _scene()
    r1, r2, t = decompose_essential_matrix(skew(translation) @ rotation)
    for r in (r1, r2):
        assert np.allclose(r @ r.T, np.eye(3), atol=1e-10)
        assert np.linalg.det(r) == pytest.approx(1.0)
    assert np.allclose(r1, rotation, atol=1e-8) or np.allclose(r2, rotation, atol=1e-8)
    unit = translation / np.linalg.norm(translation)
    assert np.allclose(t, unit, atol=1e-8) or np.allclose(t, -unit, atol=1e-8)


def test_decompose_rejects_wrong_size():
    with pytest.raises(ValueError):
        decompose_essential_matrix(np.eye(2))


def test_triangulate_points_recovers_homogeneous_points():
    points, p1, p2, rotation, translation = _scene()
    n1 = pixel_to_camera(p1, K)
    n2 = pixel_to_camera(p2, K)
    q = triangulate_points(np.eye(3, 4), np.hstack([rotation, translation[:, None]]), n1, n2)
    assert q.shape == (4, len(points))
    assert np.allclose((q[:3] / q[3]).T, points, atol=1e-8)


def test_recover_pose_finds_motion():
    points, p1, p2, rotation, translation = _scene()
    e = find_essential_matrix(p1, p2, 500.0, (320.0, 240.0))
    pose = recover_pose(e, p1, p2, 500.0, (320.0, 240.0))
    assert isinstance(pose, PoseEstimate)
    assert pose.inliers == len(points)
    assert pose.mask.all()
    assert np.allclose(pose.rotation, rotation, atol=1e-6)
    assert np.allclose(pose.translation, translation / np.linalg.norm(translation), atol=1e-6)


def test_recover_pose_respects_given_mask():
    _, p1, p2, _, _ = _scene()
    e = find_essential_matrix(p1, p2, 500.0, (320.0, 240.0))
    given = np.ones(len(p1), dtype=np.uint8)
    given[:5] = 0
    pose = recover_pose(e, p1, p2, 500.0, (320.0, 240.0), given)
    assert pose.inliers == len(p1) - 5
    assert not pose.mask[:5].any()
    assert pose.mask[5:].all()


def test_recover_pose_rejects_mask_of_wrong_size():
    _, p1, p2, rotation, translation = _scene()
    with pytest.raises(ValueError):
        recover_pose(skew(translation) @ rotation, p1, p2, 500.0, (320.0, 240.0), np.ones(3))


def test_homography_recovered_despite_outliers():
    h_true = np.array([[1.1, 0.02, 5.0], [0.01, 0.95, -3.0], [1e-4, 2e-5, 1.0]])
    xs, ys = np.meshgrid(np.linspace(50, 550, 5), np.linspace(50, 400, 4))
    p1 = np.column_stack([xs.ravel(), ys.ravel()])
    h = np.column_stack([p1, np.ones(len(p1))]) @ h_true.T
    p2 = h[:, :2] / h[:, 2:3]
    p2[:3] += 50.0
    result = find_homography(p1, p2, 3.0)
    assert np.allclose(result, h_true, rtol=1e-6, atol=1e-9)


def test_homography_needs_four_points():
    with pytest.raises(ValueError):
        find_homography([[0, 0], [1, 0], [0, 1]], [[0, 0], [1, 0], [0, 1]], 3.0)


def test_estimate_pose_2d2d_end_to_end():
    _, p1, p2, rotation, translation = _scene()
    pose = estimate_pose_2d2d(p1, p2, K)
    assert np.allclose(pose.rotation, rotation, atol=1e-6)
    assert np.allclose(pose.translation, translation / np.linalg.norm(translation), atol=1e-6)
    assert pose.fundamental.shape == (3, 3)
    assert pose.homography[2, 2] == pytest.approx(1.0)
    e = pose.essential / np.linalg.norm(pose.essential)
    tr = skew(pose.translation) @ pose.rotation
    tr /= np.linalg.norm(tr)
    assert np.allclose(e, tr, atol=1e-6) or np.allclose(e, -tr, atol=1e-6)


def test_epipolar_constraint_vanishes_for_true_pose():
    _, p1, p2, rotation, translation = _scene()
    for a, b in zip(p1, p2):
        assert abs(epipolar_constraint(a, b, rotation, translation, K)) < 1e-10


def test_epipolar_constraint_nonzero_for_wrong_match():
    _, p1, p2, rotation, translation = _scene()
    value = epipolar_constraint(p1[0], p2[0] + [0.0, 40.0], rotation, translation, K)
    assert abs(value) > 1e-3


def test_triangulate_returns_scene_points():
    points, p1, p2, rotation, translation = _scene()
    result = triangulate(p1, p2, rotation, translation, K)
    assert result.shape == points.shape
    assert np.allclose(result, points, atol=1e-8)
    reprojected = result @ rotation.T + translation
    assert np.all(reprojected[:, 2] > 0)