"""Rigid and similarity transforms, the pinhole camera and keypoints."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

_SMALL_ANGLE = 1e-10


def _vec3(value) -> np.ndarray:
    """Return ``value`` as a float vector of length three."""
    return np.asarray(value, dtype=float).reshape(3)


def _mat3(value) -> np.ndarray:
    matrix = np.asarray(value, dtype=float)
    if matrix.shape != (3, 3):
        raise ValueError(f"expected a 3x3 matrix, got shape {matrix.shape}")
    return matrix


def _skew(v: np.ndarray) -> np.ndarray:
    return np.array(
        [
            [0.0, -v[2], v[1]],
            [v[2], 0.0, -v[0]],
            [-v[1], v[0], 0.0],
        ]
    )


def rotation_from_axis_angle(axis_angle) -> np.ndarray:
    """Rotation matrix for a rotation vector (axis scaled by angle in radians).

    Vectors shorter than 1e-10 give the identity.
    """
    w = _vec3(axis_angle)
    angle = float(np.linalg.norm(w))
    if angle <= _SMALL_ANGLE:
        return np.eye(3)
    k = _skew(w / angle)
    return np.eye(3) + math.sin(angle) * k + (1.0 - math.cos(angle)) * (k @ k)


def rotation_to_axis_angle(rotation) -> np.ndarray:
    """Rotation vector (axis times angle, angle in [0, pi]) of a rotation matrix."""
    m = _mat3(rotation)
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0.0:
        s = math.sqrt(trace + 1.0) * 2.0
        q = np.array(
            [
                0.25 * s,
                (m[2, 1] - m[1, 2]) / s,
                (m[0, 2] - m[2, 0]) / s,
                (m[1, 0] - m[0, 1]) / s,
            ]
        )
    elif m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
        s = math.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2]) * 2.0
        q = np.array(
            [
                (m[2, 1] - m[1, 2]) / s,
                0.25 * s,
                (m[0, 1] + m[1, 0]) / s,
                (m[0, 2] + m[2, 0]) / s,
            ]
        )
    elif m[1, 1] > m[2, 2]:
        s = math.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2]) * 2.0
        q = np.array(
            [
                (m[0, 2] - m[2, 0]) / s,
                (m[0, 1] + m[1, 0]) / s,
                0.25 * s,
                (m[1, 2] + m[2, 1]) / s,
            ]
        )
    else:
        s = math.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1]) * 2.0
        q = np.array(
            [
                (m[1, 0] - m[0, 1]) / s,
                (m[0, 2] + m[2, 0]) / s,
                (m[1, 2] + m[2, 1]) / s,
                0.25 * s,
            ]
        )
    if q[0] < 0.0:
        q = -q
    vector = q[1:]
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return np.zeros(3)
    angle = 2.0 * math.atan2(norm, q[0])
    return vector / norm * angle


@dataclass(eq=False)
class Pose:
    """Rigid transform ``p -> rotation @ p + translation``."""

    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        self.rotation = _mat3(self.rotation)
        self.translation = _vec3(self.translation)

    @classmethod
    def identity(cls) -> "Pose":
        return cls()

    def inverse(self) -> "Pose":
        rt = self.rotation.T
        return Pose(rt, -(rt @ self.translation))

    def transform_point(self, point) -> np.ndarray:
        return self.rotation @ _vec3(point) + self.translation

    def __matmul__(self, other: "Pose") -> "Pose":
        if not isinstance(other, Pose):
            return NotImplemented
        return Pose(
            self.rotation @ other.rotation,
            self.rotation @ other.translation + self.translation,
        )


@dataclass(eq=False)
class Sim3:
    """Similarity transform ``p -> scale * rotation @ p + translation``."""

    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    scale: float = 1.0

    def __post_init__(self) -> None:
        self.rotation = _mat3(self.rotation)
        self.translation = _vec3(self.translation)
        self.scale = float(self.scale)
        if not self.scale > 0.0:
            raise ValueError(f"scale must be positive, got {self.scale}")

    @classmethod
    def identity(cls) -> "Sim3":
        return cls()

    def inverse(self) -> "Sim3":
        inv_scale = 1.0 / self.scale
        rt = self.rotation.T
        return Sim3(rt, -inv_scale * (rt @ self.translation), inv_scale)

    def transform_point(self, point) -> np.ndarray:
        return self.scale * (self.rotation @ _vec3(point)) + self.translation

    def to_pose(self) -> Pose:
        """Drop the scale, keeping rotation and translation."""
        return Pose(self.rotation.copy(), self.translation.copy())


@dataclass(frozen=True)
class CameraModel:
    """Pinhole camera with focal lengths, principal point and stereo baseline."""

    fx: float
    fy: float
    cx: float
    cy: float
    baseline: float = 0.0

    @property
    def width(self) -> float:
        return self.cx * 2.0

    @property
    def height(self) -> float:
        return self.cy * 2.0

    def project(self, point) -> np.ndarray:
        """Pixel coordinates ``(u, v)`` of a point in the camera frame."""
        x, y, z = _vec3(point)
        if z == 0.0:
            raise ValueError("cannot project a point with zero depth")
        return np.array([self.fx * x / z + self.cx, self.fy * y / z + self.cy])

    def unproject(self, u: float, v: float) -> np.ndarray:
        """Normalised camera coordinates ``(x, y, 1)`` of a pixel."""
        return np.array([(u - self.cx) / self.fx, (v - self.cy) / self.fy, 1.0])


@dataclass(frozen=True)
class Keypoint:
    """Detected image feature: pixel position and pyramid octave."""

    x: float
    y: float
    octave: int = 0