"""Tests for quaternion helpers."""
import math
import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from vrm_math import (
    IDENTITY,
    decompose_matrix,
    mask_axes,
    quat_angle,
    quat_from_axis_angle,
    quat_from_to,
    quat_multiply,
    quat_normalize,
    quat_rotate,
    quat_slerp,
    swing_twist,
)


def assert_vec_close(a, b, tol=1e-6):
    for x, y in zip(a, b):
        assert abs(x - y) < tol, f"{a} != {b}"


def assert_same_rotation(a, b, tol=1e-6):
    """q and -q describe the same rotation."""
    assert not any(math.isnan(v) for v in a)
    d = abs(sum(x * y for x, y in zip(a, b)))
    assert abs(d - 1.0) < tol, f"{a} != {b}"


def test_multiply_identity():
    q = quat_from_axis_angle((1, 2, 3), 0.7)
    assert_same_rotation(quat_multiply(IDENTITY, q), q)
    assert_same_rotation(quat_multiply(q, IDENTITY), q)


def test_rotate_vector():
    """90 degrees about Z takes X onto Y."""
    q = quat_from_axis_angle((0, 0, 1), math.pi / 2)
    assert_vec_close(quat_rotate(q, (1.0, 0.0, 0.0)), (0.0, 1.0, 0.0))


def test_multiply_applies_right_operand_first():
    qx = quat_from_axis_angle((1, 0, 0), math.pi / 2)
    qz = quat_from_axis_angle((0, 0, 1), math.pi / 2)
    v = (0.0, 1.0, 0.0)

    combined = quat_rotate(quat_multiply(qz, qx), v)
    sequential = quat_rotate(qz, quat_rotate(qx, v))
    assert_vec_close(combined, sequential)


def test_slerp_endpoints_are_exact():
    a = quat_from_axis_angle((0, 1, 0), 0.3)
    b = quat_from_axis_angle((1, 0, 0), 1.2)
    assert quat_slerp(a, b, 0.0) == a
    assert quat_slerp(a, b, 1.0) == b


def test_slerp_halfway():
    b = quat_from_axis_angle((0, 1, 0), math.pi / 2)
    half = quat_slerp(IDENTITY, b, 0.5)
    assert_same_rotation(half, quat_from_axis_angle((0, 1, 0), math.pi / 4))


def test_slerp_takes_shortest_path():
    b = quat_from_axis_angle((0, 1, 0), math.pi / 2)
    negated = tuple(-v for v in b)
    half = quat_slerp(IDENTITY, negated, 0.5)
    assert quat_angle(half, IDENTITY) == pytest.approx(math.pi / 4, abs=1e-6)


def test_swing_twist_pure_twist():
    """A rotation about the twist axis is all twist and no swing."""
    q = quat_from_axis_angle((0, 1, 0), math.pi / 2)
    swing, twist = swing_twist(q, (0, 1, 0))

    assert_same_rotation(twist, q)
    assert_same_rotation(swing, IDENTITY)


def test_swing_twist_degenerate_half_turn():
    """180 degrees about a perpendicular axis has no twist, and no NaN."""
    q = quat_from_axis_angle((1, 0, 0), math.pi)
    swing, twist = swing_twist(q, (0, 1, 0))

    assert twist == IDENTITY
    assert_same_rotation(swing, q)


def test_swing_twist_recomposes():
    q = quat_from_axis_angle((0.3, 0.8, -0.2), 1.1)
    axis = (0.0, 0.0, 1.0)
    swing, twist = swing_twist(q, axis)

    assert_same_rotation(quat_multiply(swing, twist), q)
    # twist turns about the axis only, swing has no component along it
    assert abs(twist[0]) < 1e-9 and abs(twist[1]) < 1e-9
    assert abs(swing[2]) < 1e-9


def test_from_to_rotation():
    q = quat_from_to((1, 0, 0), (0, 1, 0))
    assert_vec_close(quat_rotate(q, (1.0, 0.0, 0.0)), (0.0, 1.0, 0.0))


def test_from_to_is_shortest_arc():
    """No extra twist about the travel axis: the angle is the angle between the directions."""
    q = quat_from_to((1, 0, 0), (1, 1, 0))
    assert quat_angle(q, IDENTITY) == pytest.approx(math.pi / 4, abs=1e-6)
    assert_same_rotation(q, quat_from_axis_angle((0, 0, 1), math.pi / 4))


def test_from_to_opposite():
    q = quat_from_to((0, 1, 0), (0, -1, 0))
    assert_vec_close(quat_rotate(q, (0.0, 1.0, 0.0)), (0.0, -1.0, 0.0))


def test_mask_axes_removes_frozen_rotation():
    q = quat_from_axis_angle((0, 1, 0), 0.8)
    assert_same_rotation(mask_axes(q, (False, True, False)), IDENTITY)
    assert_same_rotation(mask_axes(q, (True, False, True)), q)


def test_decompose_matrix():
    """Column-major TRS matrix splits back into its parts."""
    # rotate 90 degrees about Z, scale 2, translate (1, 2, 3)
    matrix = [
        0.0, 2.0, 0.0, 0.0,
        -2.0, 0.0, 0.0, 0.0,
        0.0, 0.0, 2.0, 0.0,
        1.0, 2.0, 3.0, 1.0,
    ]
    translation, rotation, scale = decompose_matrix(matrix)

    assert_vec_close(translation, (1.0, 2.0, 3.0))
    assert_vec_close(scale, (2.0, 2.0, 2.0))
    assert_same_rotation(rotation, quat_from_axis_angle((0, 0, 1), math.pi / 2))


def test_zero_quaternion_normalizes_to_identity():
    assert quat_normalize((0.0, 0.0, 0.0, 0.0)) == IDENTITY
    assert_vec_close(quat_rotate((0.0, 0.0, 0.0, 0.0), (1.0, 2.0, 3.0)), (1.0, 2.0, 3.0))


def test_decompose_matrix_zero_scale():
    matrix = [0.0] * 15 + [1.0]
    translation, rotation, scale = decompose_matrix(matrix)

    assert rotation == IDENTITY
    assert scale == (0.0, 0.0, 0.0)


def test_decompose_matrix_wrong_size():
    with pytest.raises(ValueError, match="16"):
        decompose_matrix([1.0] * 9)
