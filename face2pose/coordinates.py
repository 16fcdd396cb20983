"""
World frame, image-space conversions and rotation representations.

This module defines the canonical coordinate system used throughout face2pose
and provides the rotation conversions shared by pose estimation and
positioning.

World frame (shared with the renderer):
    Origin at the camera centre, +X right, +Y up, +Z toward the viewer.

Rotation conventions:
    Euler angles are (x, y, z) = (pitch, yaw, roll) in radians, applied in
    XYZ order: R = Rx(x) @ Ry(y) @ Rz(z). Quaternions are (w, x, y, z).

Coordinate conversions from detector space happen ONLY at one boundary:
normalized image coords -> NDC (normalized_to_ndc), used by face.py.
"""

import numpy as np
from typing import Tuple
from numpy.typing import NDArray


class WorldCoordinates:
    """
    Axes of the tracker's world frame.

    The capture camera sits at the origin with identity orientation, so
    camera and world axes coincide: +X right, +Y up, and the camera views
    along -Z. Faces in front of it have negative Z.

    Browser 3D renderers use the same right-handed, Y-up frame, so
    published transforms apply to a scene object without conversion.
    """

    UP_AXIS = np.array([0.0, 1.0, 0.0])
    FORWARD_AXIS = np.array([0.0, 0.0, -1.0])  # Camera looks down -Z
    RIGHT_AXIS = np.array([1.0, 0.0, 0.0])


def normalized_to_ndc(x: float, y: float) -> Tuple[float, float]:
    """
    Convert normalized image coordinates to normalized device coordinates.

    Image coordinates are in [0, 1] with Y growing downward; NDC is in
    [-1, 1] with Y growing upward.

    Args:
        x: Horizontal image coordinate, 0 = left edge, 1 = right edge
        y: Vertical image coordinate, 0 = top edge, 1 = bottom edge

    Returns:
        (ndc_x, ndc_y)
    """
    return 2.0 * x - 1.0, 1.0 - 2.0 * y


def ndc_to_normalized(ndc_x: float, ndc_y: float) -> Tuple[float, float]:
    """Inverse of normalized_to_ndc()."""
    return (ndc_x + 1.0) / 2.0, (1.0 - ndc_y) / 2.0


def euler_to_rotation_matrix(euler: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Build a rotation matrix from XYZ Euler angles.

    Args:
        euler: (x, y, z) angles in radians

    Returns:
        3x3 rotation matrix R = Rx @ Ry @ Rz
    """
    x, y, z = (float(a) for a in euler)
    cx, sx = np.cos(x), np.sin(x)
    cy, sy = np.cos(y), np.sin(y)
    cz, sz = np.cos(z), np.sin(z)

    return np.array([
        [cy * cz, -cy * sz, sy],
        [cx * sz + sx * sy * cz, cx * cz - sx * sy * sz, -sx * cy],
        [sx * sz - cx * sy * cz, sx * cz + cx * sy * sz, cx * cy],
    ], dtype=np.float64)


def rotation_matrix_to_euler(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Extract XYZ Euler angles from a rotation matrix.

    Inverse of euler_to_rotation_matrix() while |y| < pi/2. At gimbal lock
    (|y| == pi/2) the z angle is set to 0 and x absorbs the remaining
    rotation.

    Args:
        R: 3x3 rotation matrix

    Returns:
        (x, y, z) angles in radians
    """
    m13 = float(np.clip(R[0, 2], -1.0, 1.0))
    y = np.arcsin(m13)

    if abs(m13) < 0.9999999:
        x = np.arctan2(-R[1, 2], R[2, 2])
        z = np.arctan2(-R[0, 1], R[0, 0])
    else:
        x = np.arctan2(R[2, 1], R[1, 1])
        z = 0.0

    return np.array([x, y, z], dtype=np.float64)


def euler_to_quaternion(euler: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Convert XYZ Euler angles to a unit quaternion.

    Args:
        euler: (x, y, z) angles in radians

    Returns:
        Quaternion as [w, x, y, z]
    """
    half = np.asarray(euler, dtype=np.float64) / 2.0
    c1, c2, c3 = np.cos(half)
    s1, s2, s3 = np.sin(half)

    return np.array([
        c1 * c2 * c3 - s1 * s2 * s3,
        s1 * c2 * c3 + c1 * s2 * s3,
        c1 * s2 * c3 - s1 * c2 * s3,
        c1 * c2 * s3 + s1 * s2 * c3,
    ], dtype=np.float64)


def quaternion_to_rotation_matrix(quat_wxyz: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Convert a quaternion in (w, x, y, z) order to a 3x3 rotation matrix.

    The quaternion is normalized first, so slightly denormalized input from
    accumulated floating point error is tolerated.
    """
    q = np.asarray(quat_wxyz, dtype=np.float64)
    norm = np.linalg.norm(q)
    if norm < 1e-12:
        return np.eye(3)
    w, x, y, z = q / norm

    return np.array([
        [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
        [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
        [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
    ], dtype=np.float64)


def quaternion_to_euler(quat_wxyz: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert a (w, x, y, z) quaternion to XYZ Euler angles."""
    return rotation_matrix_to_euler(quaternion_to_rotation_matrix(quat_wxyz))


def compose_transform(
    position: NDArray[np.float64],
    euler: NDArray[np.float64],
    scale: NDArray[np.float64]
) -> NDArray[np.float64]:
    """
    Compose a 4x4 object-to-world matrix from translation, rotation and scale.

    Args:
        position: Translation, shape (3,)
        euler: XYZ Euler angles in radians, shape (3,)
        scale: Per-axis scale, shape (3,) (a scalar is broadcast)

    Returns:
        4x4 matrix T @ R @ S
        - Upper-left 3x3: rotation scaled column-wise
        - Upper-right 3x1: translation
        - Bottom row: [0, 0, 0, 1]
    """
    scale = np.broadcast_to(np.asarray(scale, dtype=np.float64), (3,))
    matrix = np.eye(4, dtype=np.float64)
    matrix[:3, :3] = euler_to_rotation_matrix(euler) * scale[np.newaxis, :]
    matrix[:3, 3] = position
    return matrix
