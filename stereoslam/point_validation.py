"""Geometric checks on triangulated points and stereo parallax."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from stereoslam.geometry import CameraModel, Keypoint, Pose

DESCRIPTOR_TH_LOW = 50
"""Strict Hamming distance threshold for ORB descriptor matches."""

ORB_SCALE_FACTOR = 1.2
"""Scale step between consecutive ORB pyramid octaves."""


@dataclass
class TriangulationConfig:
    """Settings of multi-view triangulation and its validation."""

    num_neighbors: int = 10
    max_descriptor_dist: int = DESCRIPTOR_TH_LOW
    min_baseline_ratio: float = 0.01
    min_parallax_inertial: float = math.acos(0.9996)
    min_parallax_visual: float = math.acos(0.9998)
    max_reproj_error_mono: float = 5.991
    max_reproj_error_stereo: float = 7.8
    scale_ratio_factor: float = 1.5


def stereo_parallax_cos(baseline: float, depth: float) -> float:
    """Cosine of the parallax angle a stereo pair of ``baseline`` sees at ``depth``."""
    if depth == 0.0:
        ratio = math.copysign(math.inf, baseline)
    else:
        ratio = baseline / 2.0 / depth
    return math.cos(2.0 * math.atan(ratio))


def _squared_reprojection_error(p_cam: np.ndarray, keypoint: Keypoint, camera: CameraModel) -> float:
    u, v = camera.project(p_cam)
    du = u - keypoint.x
    dv = v - keypoint.y
    return du * du + dv * dv


def validate_triangulation(
    p_world,
    pose1: Pose,
    pose2: Pose,
    kp1: Keypoint,
    kp2: Keypoint,
    camera: CameraModel,
    is_stereo1: bool,
    is_stereo2: bool,
    config: TriangulationConfig | None = None,
) -> bool:
    """Whether a triangulated world point is consistent with both observations.

    The poses are camera-to-world. The point must lie in front of both
    cameras, reproject within the chi-squared bound of each view (the stereo
    bound for views with stereo depth) and keep a distance ratio consistent
    with the octaves of the two keypoints.
    """
    config = config or TriangulationConfig()
    point = np.asarray(p_world, dtype=float).reshape(3)

    p_cam1 = pose1.inverse().transform_point(point)
    p_cam2 = pose2.inverse().transform_point(point)
    if p_cam1[2] <= 0.0 or p_cam2[2] <= 0.0:
        return False

    max_err1 = config.max_reproj_error_stereo if is_stereo1 else config.max_reproj_error_mono
    if _squared_reprojection_error(p_cam1, kp1, camera) > max_err1:
        return False

    max_err2 = config.max_reproj_error_stereo if is_stereo2 else config.max_reproj_error_mono
    if _squared_reprojection_error(p_cam2, kp2, camera) > max_err2:
        return False

    dist1 = float(np.linalg.norm(point - pose1.translation))
    dist2 = float(np.linalg.norm(point - pose2.translation))
    if dist1 < 1e-6 or dist2 < 1e-6:
        return False

    ratio_dist = dist2 / dist1
    ratio_octave = ORB_SCALE_FACTOR ** kp1.octave / ORB_SCALE_FACTOR ** kp2.octave
    factor = config.scale_ratio_factor
    if ratio_dist * factor < ratio_octave or ratio_dist > ratio_octave * factor:
        return False
    return True