# Small matrix helpers shared by cameras, trajectories and mirrors.

from __future__ import annotations

from typing import Sequence

import numpy as np

EPS = 1e-6

# RDF (x right, y down, z forward) <-> OpenGL (x right, y up, z back).
RDF_TO_GL = np.diag([1.0, -1.0, -1.0, 1.0])


def _normalize(vec: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    norm = np.linalg.norm(vec, axis=-1, keepdims=True)
    norm = np.maximum(norm, eps)
    return vec / norm


def look_at_rdf(
    eye: Sequence[float],
    target: Sequence[float],
    up: Sequence[float],
) -> np.ndarray:
    """World-to-camera matrix for a camera at ``eye`` looking at ``target``.

    The camera frame is RDF, so its y axis points opposite ``up``.
    """

    eye = np.asarray(eye, dtype=np.float64)
    forward = np.asarray(target, dtype=np.float64) - eye
    forward_norm = np.linalg.norm(forward)
    if forward_norm < EPS:
        raise ValueError("Camera target too close to position; cannot build view matrix.")
    forward /= forward_norm

    up = np.asarray(up, dtype=np.float64)
    right = np.cross(forward, up)
    right_norm = np.linalg.norm(right)
    if right_norm < EPS:
        fallback = np.array([0.0, 0.0, 1.0])
        if abs(np.dot(fallback, forward)) > 0.99:
            fallback = np.array([0.0, 1.0, 0.0])
        right = np.cross(forward, fallback)
        right_norm = np.linalg.norm(right)
    right /= max(right_norm, EPS)

    down = np.cross(forward, right)

    view = np.eye(4, dtype=np.float64)
    view[0, :3] = right
    view[1, :3] = down
    view[2, :3] = forward
    view[:3, 3] = -view[:3, :3] @ eye
    return view


def translation_matrix(offset: Sequence[float]) -> np.ndarray:
    matrix = np.eye(4, dtype=np.float64)
    matrix[:3, 3] = np.asarray(offset, dtype=np.float64)
    return matrix


def quat_xyzw_to_matrix(quat: Sequence[float]) -> np.ndarray:
    """3x3 rotation for a (possibly unnormalized) x, y, z, w quaternion."""

    q = _normalize(np.asarray(quat, dtype=np.float64))
    x, y, z, w = q
    xx, yy, zz = x * x, y * y, z * z
    xy, xz, yz = x * y, x * z, y * z
    wx, wy, wz = w * x, w * y, w * z
    return np.array(
        [
            [1 - 2 * (yy + zz), 2 * (xy - wz), 2 * (xz + wy)],
            [2 * (xy + wz), 1 - 2 * (xx + zz), 2 * (yz - wx)],
            [2 * (xz - wy), 2 * (yz + wx), 1 - 2 * (xx + yy)],
        ],
        dtype=np.float64,
    )


def plane_reflection(plane: Sequence[float]) -> np.ndarray:
    """Householder reflection through the plane ``a*x + b*y + c*z + d = 0``.

    ``(a, b, c)`` must be unit length.
    """

    a, b, c, d = (float(v) for v in plane)
    n = np.array([a, b, c], dtype=np.float64)
    matrix = np.eye(4, dtype=np.float64)
    matrix[:3, :3] -= 2.0 * np.outer(n, n)
    matrix[:3, 3] = -2.0 * d * n
    return matrix


def rdf_to_gl(camera_to_world: np.ndarray) -> np.ndarray:
    """Convert an RDF camera-to-world pose to the OpenGL camera convention."""

    return camera_to_world @ RDF_TO_GL


def transform_points(matrix: np.ndarray, points: np.ndarray) -> np.ndarray:
    points = np.asarray(points, dtype=np.float64)
    return points @ matrix[:3, :3].T + matrix[:3, 3]
