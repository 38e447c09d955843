"""
Rigid Transform Utilities

Helpers for 3D rigid poses stored as 4x4 homogeneous matrices, including the
exponential and logarithm maps of SE(3). Tangent vectors are ordered
``[v_x, v_y, v_z, w_x, w_y, w_z]``: translational block first, rotational
block last.
"""

from __future__ import annotations

from typing import Sequence, Union

import numpy as np
from scipy.spatial.transform import Rotation

PoseLike = Union[np.ndarray, Sequence[float]]

# Below this angle the Jacobians use their Taylor expansions
_SMALL_ANGLE = 1e-5


def skew(v: np.ndarray) -> np.ndarray:
    """Return the 3x3 cross-product matrix of ``v``."""
    x, y, z = float(v[0]), float(v[1]), float(v[2])
    return np.array(
        [
            [0.0, -z, y],
            [z, 0.0, -x],
            [-y, x, 0.0],
        ]
    )


def so3_exp(w: np.ndarray) -> np.ndarray:
    return Rotation.from_rotvec(np.asarray(w, dtype=float)).as_matrix()


def so3_log(R: np.ndarray) -> np.ndarray:
    return Rotation.from_matrix(np.asarray(R, dtype=float)).as_rotvec()


def _left_jacobian(w: np.ndarray) -> np.ndarray:
    theta = float(np.linalg.norm(w))
    K = skew(w)
    if theta < _SMALL_ANGLE:
        return np.eye(3) + 0.5 * K + (K @ K) / 6.0
    return (
        np.eye(3)
        + ((1.0 - np.cos(theta)) / theta**2) * K
        + ((theta - np.sin(theta)) / theta**3) * (K @ K)
    )


def _left_jacobian_inverse(w: np.ndarray) -> np.ndarray:
    theta = float(np.linalg.norm(w))
    K = skew(w)
    if theta < _SMALL_ANGLE:
        return np.eye(3) - 0.5 * K + (K @ K) / 12.0
    coef = (1.0 - (theta * np.sin(theta)) / (2.0 * (1.0 - np.cos(theta)))) / theta**2
    return np.eye(3) - 0.5 * K + coef * (K @ K)


def se3_exp(xi: np.ndarray) -> np.ndarray:
    """
    Exponential map of SE(3).

    Args:
        xi: 6-vector ``[v, w]`` (translational part first).

    Returns:
        4x4 homogeneous transform.
    """
    xi = np.asarray(xi, dtype=float).reshape(6)
    v, w = xi[:3], xi[3:]
    T = np.eye(4)
    T[:3, :3] = so3_exp(w)
    T[:3, 3] = _left_jacobian(w) @ v
    return T


def se3_log(T: np.ndarray) -> np.ndarray:
    """
    Logarithm map of SE(3).

    Args:
        T: 4x4 rigid transform.

    Returns:
        6-vector ``[v, w]`` such that ``se3_exp(v, w) == T``.
    """
    T = as_pose_matrix(T)
    w = so3_log(T[:3, :3])
    v = _left_jacobian_inverse(w) @ T[:3, 3]
    return np.concatenate([v, w])


def pose_from_xyzypr(
    x: float, y: float, z: float, yaw: float = 0.0, pitch: float = 0.0, roll: float = 0.0
) -> np.ndarray:
    """Build a 4x4 pose from a translation and yaw/pitch/roll angles (radians)."""
    T = np.eye(4)
    T[:3, :3] = Rotation.from_euler("ZYX", [yaw, pitch, roll]).as_matrix()
    T[:3, 3] = [x, y, z]
    return T


def as_pose_matrix(pose: PoseLike) -> np.ndarray:
    """
    Normalize a pose argument into a float 4x4 matrix.

    Accepts a 4x4 homogeneous matrix or a 6-vector ``(x, y, z, yaw, pitch, roll)``.

    Raises:
        ValueError: If the input has any other shape.
    """
    arr = np.asarray(pose, dtype=float)
    if arr.shape == (4, 4):
        return arr.copy()
    if arr.shape == (6,):
        return pose_from_xyzypr(*arr)
    raise ValueError(f"Pose must be a 4x4 matrix or a 6-vector, got shape {arr.shape}")


def inverse_pose(T: np.ndarray) -> np.ndarray:
    R = T[:3, :3]
    t = T[:3, 3]
    inv = np.eye(4)
    inv[:3, :3] = R.T
    inv[:3, 3] = -R.T @ t
    return inv


def relative_pose(prev: np.ndarray, new: np.ndarray) -> np.ndarray:
    """Pose of ``new`` expressed in the frame of ``prev``."""
    return inverse_pose(prev) @ new


def with_scale(T: np.ndarray, scale: float) -> np.ndarray:
    """Return the similarity transform ``x -> scale * R x + t``."""
    S = np.array(T, dtype=float, copy=True)
    S[:3, :3] *= scale
    return S


def transform_points(points: np.ndarray, transform: np.ndarray) -> np.ndarray:
    """
    Apply a 4x4 (rigid or similarity) transform to an (N, 3) array of points.

    Args:
        points: Point cloud (N x 3).
        transform: Transformation matrix (4 x 4).

    Returns:
        Transformed point cloud (N x 3).
    """
    if points.size == 0:
        return np.empty((0, 3), dtype=float)
    R = transform[:3, :3]
    t = transform[:3, 3]
    return points @ R.T + t


def rotate_vectors(vectors: np.ndarray, transform: np.ndarray) -> np.ndarray:
    """Rotate direction vectors by the rotation of ``transform``, keeping them unit length."""
    if vectors.size == 0:
        return np.empty((0, 3), dtype=float)
    out = vectors @ transform[:3, :3].T
    norms = np.linalg.norm(out, axis=1, keepdims=True)
    return out / np.where(norms > 0, norms, 1.0)


def translation_rotation_step(prev: np.ndarray, new: np.ndarray) -> tuple[float, float]:
    """
    Split the relative motion between two poses into translational and
    rotational magnitudes via the SE(3) logarithm.
    """
    d = se3_log(relative_pose(prev, new))
    return float(np.linalg.norm(d[:3])), float(np.linalg.norm(d[3:]))


def rotation_error(T_a: np.ndarray, T_b: np.ndarray) -> float:
    """Angle (radians) of the rotation separating two poses."""
    return float(np.linalg.norm(so3_log(T_a[:3, :3].T @ T_b[:3, :3])))
