"""Two-view geometry: DLT triangulation and the epipolar constraint."""

from __future__ import annotations

import numpy as np

from stereoslam.geometry import CameraModel, Keypoint, Pose

_CHI2_1DOF_95 = 3.84


def skew_symmetric(v) -> np.ndarray:
    """Cross-product matrix ``[v]x`` so that ``[v]x @ w == cross(v, w)``."""
    x, y, z = np.asarray(v, dtype=float).reshape(3)
    return np.array(
        [
            [0.0, -z, y],
            [z, 0.0, -x],
            [-y, x, 0.0],
        ]
    )


def projection_matrix(pose_cw: Pose) -> np.ndarray:
    """3x4 matrix ``[R | t]`` of a world-to-camera pose."""
    return np.hstack([pose_cw.rotation, pose_cw.translation.reshape(3, 1)])


def triangulate_dlt(xn1, xn2, pose1: Pose, pose2: Pose) -> np.ndarray | None:
    """World point seen at normalised coordinates ``xn1`` and ``xn2``.

    The poses are camera-to-world. Returns ``None`` for a solution at infinity.
    """
    x1 = np.asarray(xn1, dtype=float).reshape(3)
    x2 = np.asarray(xn2, dtype=float).reshape(3)
    p1 = projection_matrix(pose1.inverse())
    p2 = projection_matrix(pose2.inverse())

    a = np.vstack(
        [
            x1[0] * p1[2] - p1[0],
            x1[1] * p1[2] - p1[1],
            x2[0] * p2[2] - p2[0],
            x2[1] * p2[2] - p2[1],
        ]
    )
    _, _, vt = np.linalg.svd(a)
    homogeneous = vt[-1]
    if abs(homogeneous[3]) < 1e-10:
        return None
    return homogeneous[:3] / homogeneous[3]


def check_epipolar_constraint(
    kp1: Keypoint, kp2: Keypoint, r12, t12, camera: CameraModel
) -> bool:
    """Whether ``kp2`` lies close enough to the epipolar line of ``kp1``.

    ``r12`` and ``t12`` map camera-1 coordinates into camera 2.
    """
    essential = skew_symmetric(t12) @ np.asarray(r12, dtype=float)
    k_inv = np.array(
        [
            [1.0 / camera.fx, 0.0, -camera.cx / camera.fx],
            [0.0, 1.0 / camera.fy, -camera.cy / camera.fy],
            [0.0, 0.0, 1.0],
        ]
    )
    fundamental = k_inv.T @ essential @ k_inv

    line = fundamental @ np.array([kp1.x, kp1.y, 1.0])
    p2 = np.array([kp2.x, kp2.y, 1.0])
    den = float(np.hypot(line[0], line[1]))
    if den < 1e-10:
        return False
    dist = abs(float(line @ p2)) / den
    return dist * dist < _CHI2_1DOF_95