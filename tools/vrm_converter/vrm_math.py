"""Quaternion and vector helpers for node constraints.

Quaternions are (x, y, z, w) tuples, the component order glTF uses for node
rotations and the scalar-last order of ``scipy.spatial.transform.Rotation``.
Vectors are (x, y, z) tuples. Results are converted back to plain float
tuples so they can be written straight into the JSON chunk.
"""
import logging
from typing import Sequence, Tuple

import numpy as np
from scipy.spatial.transform import Rotation, Slerp

logger = logging.getLogger(__name__)

Vec3 = Tuple[float, float, float]
Quat = Tuple[float, float, float, float]

IDENTITY: Quat = (0.0, 0.0, 0.0, 1.0)
EPSILON = 1e-9

AXES = {
    "X": (1.0, 0.0, 0.0),
    "Y": (0.0, 1.0, 0.0),
    "Z": (0.0, 0.0, 1.0),
}


def _as_tuple(values) -> tuple:
    return tuple(float(v) for v in values)


def to_rotation(q: Sequence[float]) -> Rotation:
    return Rotation.from_quat(quat_normalize(q))


def from_rotation(rotation: Rotation) -> Quat:
    return _as_tuple(rotation.as_quat())


def length3(v: Sequence[float]) -> float:
    return float(np.linalg.norm(v))


def sub3(a: Sequence[float], b: Sequence[float]) -> Vec3:
    return _as_tuple(np.subtract(a, b))


def quat_normalize(q: Sequence[float]) -> Quat:
    """Return q scaled to unit length; a zero quaternion becomes identity."""
    q = np.asarray(q, dtype=float)
    n = np.linalg.norm(q)
    if n < EPSILON:
        logger.warning("Normalizing zero-length quaternion, using identity")
        return IDENTITY
    return _as_tuple(q / n)


def quat_inverse(q: Quat) -> Quat:
    return from_rotation(to_rotation(q).inv())


def quat_multiply(a: Quat, b: Quat) -> Quat:
    """Product a * b (apply b first, then a)."""
    return from_rotation(to_rotation(a) * to_rotation(b))


def quat_rotate(q: Quat, v: Sequence[float]) -> Vec3:
    """Rotate vector v by quaternion q."""
    return _as_tuple(to_rotation(q).apply(v))


def quat_from_axis_angle(axis: Sequence[float], angle: float) -> Quat:
    axis = np.asarray(axis, dtype=float)
    return from_rotation(Rotation.from_rotvec(axis / np.linalg.norm(axis) * angle))


def quat_angle(a: Quat, b: Quat) -> float:
    """Angle in radians of the rotation taking a to b."""
    return float((to_rotation(a).inv() * to_rotation(b)).magnitude())


def quat_slerp(a: Quat, b: Quat, t: float) -> Quat:
    """Spherical interpolation along the shortest arc.

    t <= 0 returns a unchanged and t >= 1 returns b unchanged.
    """
    if t <= 0.0:
        return a
    if t >= 1.0:
        return b
    slerp = Slerp([0.0, 1.0], Rotation.from_quat([quat_normalize(a), quat_normalize(b)]))
    return from_rotation(slerp([t])[0])


def swing_twist(q: Quat, axis: Sequence[float]) -> Tuple[Quat, Quat]:
    """Split q into (swing, twist) with q == swing * twist.

    The twist is the rotation of q around ``axis``; the swing is the
    remainder, which rotates about an axis perpendicular to ``axis``. When
    the projection of q's vector part onto the axis vanishes (q is a pure
    swing, e.g. 180 degrees about a perpendicular axis) the twist is identity.
    """
    axis = np.asarray(axis, dtype=float)
    axis = axis / np.linalg.norm(axis)
    q = np.asarray(quat_normalize(q))

    twist = np.append(np.dot(q[:3], axis) * axis, q[3])
    n = np.linalg.norm(twist)
    if n < EPSILON:
        logger.debug("Twist projection degenerate for axis %s, using identity", axis)
        twist = IDENTITY
    else:
        twist = _as_tuple(twist / n)

    swing = from_rotation(Rotation.from_quat(q) * Rotation.from_quat(twist).inv())
    return swing, twist


def twist_around(q: Quat, axis: Sequence[float]) -> Quat:
    return swing_twist(q, axis)[1]


def mask_axes(q: Quat, frozen: Sequence[bool]) -> Quat:
    """Remove the rotation around each frozen local axis (X, Y, Z order)."""
    for axis_name, is_frozen in zip("XYZ", frozen):
        if is_frozen:
            q = swing_twist(q, AXES[axis_name])[0]
    return q


def quat_from_to(a: Sequence[float], b: Sequence[float]) -> Quat:
    """Shortest rotation taking direction a onto direction b."""
    a = np.asarray(a, dtype=float) / np.linalg.norm(a)
    b = np.asarray(b, dtype=float) / np.linalg.norm(b)
    d = float(np.dot(a, b))
    if d >= 1.0 - EPSILON:
        return IDENTITY
    if d <= -1.0 + EPSILON:
        # Opposite directions: half a turn about any perpendicular axis
        perp = np.cross((1.0, 0.0, 0.0), a)
        if np.linalg.norm(perp) < 1e-6:
            perp = np.cross((0.0, 1.0, 0.0), a)
        return from_rotation(Rotation.from_rotvec(perp / np.linalg.norm(perp) * np.pi))
    rotation, _ = Rotation.align_vectors([b], [a])
    return from_rotation(rotation)


def quat_from_matrix(m: Sequence[float]) -> Quat:
    """Rotation of a column-major 3x3 block (scale already removed)."""
    return from_rotation(Rotation.from_matrix(np.asarray(m, dtype=float).reshape(3, 3).T))


def decompose_matrix(matrix: Sequence[float]) -> Tuple[Vec3, Quat, Vec3]:
    """Split a column-major 4x4 matrix into translation, rotation and scale.

    Shear is not supported; a negative determinant is folded into the X scale.
    """
    if len(matrix) != 16:
        raise ValueError(f"Expected 16 matrix values, got {len(matrix)}")
    m = np.asarray(matrix, dtype=float).reshape(4, 4).T
    translation = _as_tuple(m[:3, 3])
    basis = m[:3, :3]
    scale = np.linalg.norm(basis, axis=0)
    if np.linalg.det(basis) < 0.0:
        scale[0] = -scale[0]
    if np.any(np.abs(scale) < EPSILON):
        logger.warning("Matrix has a zero scale axis, using identity rotation")
        return translation, IDENTITY, _as_tuple(scale)
    rotation = from_rotation(Rotation.from_matrix(basis / scale))
    return translation, rotation, _as_tuple(scale)
