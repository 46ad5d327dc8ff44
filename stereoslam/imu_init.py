"""Gravity direction, velocity and motion checks for inertial initialisation."""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence

import numpy as np

from stereoslam.geometry import rotation_from_axis_angle

MIN_KEYFRAMES_FOR_INIT = 10
"""Keyframes needed before initialisation is attempted."""

MIN_TIME_SPAN_STEREO = 1.0
"""Seconds of data needed for stereo-inertial initialisation."""

TIME_THRESHOLD_FOR_MOTION_CHECK = 10.0
"""Seconds after which a stationary camera means the IMU cannot be initialised."""

MIN_MOTION_THRESHOLD = 0.02
"""Metres the camera must move within the motion-check window."""

_GRAVITY_INERTIAL = np.array([0.0, 0.0, -1.0])


def _unit(v) -> np.ndarray:
    vec = np.asarray(v, dtype=float).reshape(3)
    norm = float(np.linalg.norm(vec))
    if norm == 0.0:
        raise ValueError("cannot normalise a zero vector")
    return vec / norm


def rotation_between_vectors(source, target) -> np.ndarray:
    """Rotation matrix turning the direction of ``source`` into that of ``target``."""
    src = _unit(source)
    dst = _unit(target)
    cross = np.cross(src, dst)
    dot = float(src @ dst)
    cross_norm = float(np.linalg.norm(cross))

    if cross_norm < 1e-10:
        if dot > 0.0:
            return np.eye(3)
        perp = np.array([1.0, 0.0, 0.0]) if abs(src[0]) < 0.9 else np.array([0.0, 1.0, 0.0])
        axis = _unit(np.cross(src, perp))
        return rotation_from_axis_angle(axis * math.pi)

    angle = math.atan2(cross_norm, dot)
    return rotation_from_axis_angle(cross / cross_norm * angle)


def estimate_gravity_rotation(
    previous_rotations: Iterable, delta_velocities: Iterable
) -> np.ndarray | None:
    """Estimate Rwg, the rotation from the gravity frame to the world frame.

    Each pair is the world rotation of a keyframe's predecessor and the
    preintegrated velocity change ending at that keyframe. Returns ``None``
    when fewer than two pairs are given or the summed direction vanishes.
    """
    dir_g = np.zeros(3)
    count = 0
    for rotation, delta_vel in zip(previous_rotations, delta_velocities, strict=True):
        dir_g -= np.asarray(rotation, dtype=float) @ np.asarray(delta_vel, dtype=float)
        count += 1

    if count < 2:
        return None
    norm = float(np.linalg.norm(dir_g))
    if norm < 1e-6:
        return None
    return rotation_between_vectors(_GRAVITY_INERTIAL, dir_g / norm)


def estimate_velocities(
    positions: Sequence, time_deltas: Sequence[float | None]
) -> list[tuple[int, np.ndarray]]:
    """Velocities of keyframes in temporal order from position differences.

    ``time_deltas[i]`` is the preintegration time between keyframe ``i`` and
    ``i + 1`` (``None`` when there is none); intervals of 1e-6 s or less are
    skipped. Each velocity belongs to the interval's first keyframe, and the
    last keyframe repeats the last velocity found.
    """
    if len(time_deltas) != max(len(positions) - 1, 0):
        raise ValueError("time_deltas must have one entry per consecutive pair of positions")

    points = [np.asarray(p, dtype=float).reshape(3) for p in positions]
    velocities: list[tuple[int, np.ndarray]] = []
    for index, (prev, curr, dt) in enumerate(zip(points, points[1:], time_deltas)):
        if dt is not None and dt > 1e-6:
            velocities.append((index, (curr - prev) / dt))

    if velocities:
        velocities.append((len(points) - 1, velocities[-1][1].copy()))
    return velocities


def has_sufficient_motion(first_position, last_position, time_span: float) -> bool:
    """False once the motion-check window has passed with the camera nearly still."""
    if time_span < TIME_THRESHOLD_FOR_MOTION_CHECK:
        return True
    motion = float(
        np.linalg.norm(
            np.asarray(last_position, dtype=float) - np.asarray(first_position, dtype=float)
        )
    )
    return motion >= MIN_MOTION_THRESHOLD