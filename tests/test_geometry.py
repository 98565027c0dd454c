import math

import numpy as np
import pytest

from slamkit.geometry import (
    Isometry,
    Quaternion,
    angle_axis_to_matrix,
    euler_angles_zyx,
    format_rotation_matrix,
    format_vector,
)

AXES = [(0, 0, 1), (1, 0, 0), (0, 1, 0), (1, 2, 3), (-1, 0.5, 0.2)]
ANGLES = [0.0, math.pi / 4, math.pi / 2, 2.0, math.pi, -1.3]


@pytest.mark.parametrize("axis", AXES)
@pytest.mark.parametrize("angle", ANGLES)
def test_angle_axis_matrix_is_rotation(angle, axis):
    r = angle_axis_to_matrix(angle, axis)
    assert np.allclose(r.T @ r, np.eye(3))
    assert np.linalg.det(r) == pytest.approx(1.0)


@pytest.mark.parametrize("axis", AXES)
def test_angle_axis_leaves_axis_fixed(axis):
    r = angle_axis_to_matrix(0.7, axis)
    unit = np.asarray(axis, float) / np.linalg.norm(axis)
    assert np.allclose(r @ unit, unit)


@pytest.mark.parametrize("axis", AXES)
@pytest.mark.parametrize("angle", ANGLES)
def test_quaternion_matches_angle_axis(angle, axis):
    q = Quaternion.from_angle_axis(angle, axis)
    assert np.allclose(q.to_matrix(), angle_axis_to_matrix(angle, axis))


@pytest.mark.parametrize("axis", AXES)
@pytest.mark.parametrize("angle", ANGLES)
def test_quaternion_matrix_round_trip(angle, axis):
    r = angle_axis_to_matrix(angle, axis)
    q = Quaternion.from_matrix(r)
    assert q.norm() == pytest.approx(1.0)
    assert np.allclose(q.to_matrix(), r)


def test_coeffs_put_real_part_last():
    q = Quaternion(0.1, 0.2, 0.3, 0.4)
    assert np.allclose(q.coeffs(), [0.2, 0.3, 0.4, 0.1])


def test_normalized_has_unit_norm_and_same_direction():
    q = Quaternion(1.0, 2.0, 3.0, 4.0).normalized()
    assert q.norm() == pytest.approx(1.0)
    assert q.x / q.w == pytest.approx(2.0)


def test_normalize_zero_raises():
    with pytest.raises(ValueError):
        Quaternion(0.0, 0.0, 0.0, 0.0).normalized()


def test_product_matches_matrix_product():
    a = Quaternion.from_angle_axis(0.4, (1, 2, 3))
    b = Quaternion.from_angle_axis(-1.1, (0, 1, 1))
    assert np.allclose((a * b).to_matrix(), a.to_matrix() @ b.to_matrix())


def test_mul_by_vector_rotates():
    q = Quaternion.from_angle_axis(math.pi / 4, (0, 0, 1))
    v = np.array([1.0, 0.0, 0.0])
    assert np.allclose(q * v, q.to_matrix() @ v)
    assert np.allclose(q.rotate(v), q * v)
    assert np.linalg.norm(q * v) == pytest.approx(1.0)


def test_conjugate_undoes_rotation():
    q = Quaternion.from_angle_axis(1.2, (1, -1, 2))
    v = np.array([0.3, -2.0, 5.0])
    assert np.allclose(q.conjugate() * (q * v), v)


def test_zero_axis_raises():
    with pytest.raises(ValueError):
        Quaternion.from_angle_axis(1.0, (0, 0, 0))
    with pytest.raises(ValueError):
        angle_axis_to_matrix(1.0, (0, 0, 0))


def test_from_matrix_rejects_wrong_shape():
    with pytest.raises(ValueError):
        Quaternion.from_matrix(np.eye(4))


def test_isometry_rotate_and_pretranslate():
    q = Quaternion.from_angle_axis(math.pi / 4, (0, 0, 1))
    t = np.array([1.0, 3.0, 4.0])
    iso = Isometry.identity().rotate(q).pretranslate(t)
    m = iso.matrix()
    assert np.allclose(m[:3, :3], q.to_matrix())
    assert np.allclose(m[:3, 3], t)
    assert np.allclose(m[3], [0, 0, 0, 1])


def test_isometry_transform_is_r_v_plus_t():
    q = Quaternion.from_angle_axis(math.pi / 4, (0, 0, 1))
    t = np.array([1.0, 3.0, 4.0])
    iso = Isometry.from_quaternion_translation(q, t)
    v = np.array([1.0, 0.0, 0.0])
    assert np.allclose(iso * v, q.to_matrix() @ v + t)
    batch = np.array([[1.0, 0.0, 0.0], [0.0, 2.0, -1.0]])
    out = iso.transform(batch)
    assert out.shape == (2, 3)
    assert np.allclose(out[1], iso.transform(batch[1]))


def test_isometry_rotate_applies_on_right():
    a = angle_axis_to_matrix(0.3, (1, 0, 0))
    b = angle_axis_to_matrix(0.9, (0, 1, 0))
    iso = Isometry.identity().rotate(a).rotate(b)
    assert np.allclose(iso.rotation, a @ b)


def test_isometry_inverse_and_composition():
    iso = Isometry.from_quaternion_translation(
        Quaternion.from_angle_axis(0.8, (1, 1, 0)), (0.5, -2.0, 1.0)
    )
    other = Isometry.from_quaternion_translation(
        Quaternion.from_angle_axis(-0.4, (0, 1, 2)), (3.0, 0.0, 1.0)
    )
    assert np.allclose((iso * iso.inverse()).matrix(), np.eye(4))
    assert np.allclose((iso * other).matrix(), iso.matrix() @ other.matrix())


def test_isometry_transform_rejects_bad_shape():
    with pytest.raises(ValueError):
        Isometry.identity().transform([1.0, 2.0])


def test_euler_of_yaw_rotation():
    r = angle_axis_to_matrix(math.pi / 4, (0, 0, 1))
    assert np.allclose(euler_angles_zyx(r), [math.pi / 4, 0.0, 0.0])


@pytest.mark.parametrize("axis", AXES)
@pytest.mark.parametrize("angle", [0.3, 1.7, -2.2])
def test_euler_round_trip(angle, axis):
    r = angle_axis_to_matrix(angle, axis)
    yaw, pitch, roll = euler_angles_zyx(r)
    assert 0.0 <= yaw <= math.pi
    rebuilt = (
        angle_axis_to_matrix(yaw, (0, 0, 1))
        @ angle_axis_to_matrix(pitch, (0, 1, 0))
        @ angle_axis_to_matrix(roll, (1, 0, 0))
    )
    assert np.allclose(rebuilt, r)


def test_format_rotation_matrix_identity():
    assert (
        format_rotation_matrix(np.eye(3))
        == "=[1.00,0.00,0.00],[0.00,1.00,0.00],[0.00,0.00,1.00]"
    )


def test_format_vector():
    assert format_vector([1.0, 2.0, 3.0]) == "=[1,2,3]"
    assert format_vector(Quaternion(1.0, 0.0, 0.0, 0.0).coeffs()) == "=[0,0,0,1]"