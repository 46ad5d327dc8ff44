"""Global bundle adjustment over every keyframe pose and map point."""

from __future__ import annotations

import math
from collections.abc import Callable, Hashable, Mapping, Sequence
from dataclasses import dataclass, field

import numpy as np

from stereoslam.geometry import (
    CameraModel,
    Pose,
    rotation_from_axis_angle,
    rotation_to_axis_angle,
)

_MIN_DEPTH = 0.001
_BEHIND_CAMERA_RESIDUAL = 100.0

_LAMBDA_INITIAL = 1e-3
_LAMBDA_UP = 10.0
_LAMBDA_DOWN = 0.1
_LAMBDA_MIN = 1e-10
_LAMBDA_MAX = 1e10


@dataclass
class GlobalBAConfig:
    """Settings of the Levenberg-Marquardt solver."""

    max_iterations: int = 10
    param_tolerance: float = 1e-6
    gradient_tolerance: float = 1e-6
    huber_threshold: float = math.sqrt(5.991)


@dataclass
class GlobalBAObservation:
    """Pixel at which a keyframe observed a map point."""

    kf_id: Hashable
    mp_id: Hashable
    observed_uv: np.ndarray

    def __post_init__(self) -> None:
        self.observed_uv = np.asarray(self.observed_uv, dtype=float).reshape(2)


@dataclass
class GlobalBAProblem:
    """Snapshot of the map to optimise.

    ``kf_poses`` hold world-to-camera poses. ``kf_ids`` and ``mp_ids`` fix the
    parameter order; the keyframe ``fixed_kf_id`` anchors the solution.
    """

    kf_poses: Mapping[Hashable, Pose]
    mp_positions: Mapping[Hashable, np.ndarray]
    observations: Sequence[GlobalBAObservation]
    kf_ids: Sequence[Hashable]
    mp_ids: Sequence[Hashable]
    fixed_kf_id: Hashable


@dataclass
class GlobalBAResult:
    """Optimised camera-to-world poses and point positions."""

    optimized_poses: dict = field(default_factory=dict)
    optimized_points: dict = field(default_factory=dict)
    iterations: int = 0
    initial_error: float = 0.0
    final_error: float = 0.0


def pose_from_params(axis_angle, translation) -> Pose:
    """Pose from a rotation vector and a translation."""
    return Pose(rotation_from_axis_angle(axis_angle), translation)


def reprojection_error(pose_cw: Pose, point, observed, camera: CameraModel) -> np.ndarray:
    """Observed minus projected pixel; ``(100, 100)`` for points at or behind the camera."""
    p_cam = pose_cw.transform_point(point)
    if p_cam[2] <= _MIN_DEPTH:
        return np.full(2, _BEHIND_CAMERA_RESIDUAL)
    return np.asarray(observed, dtype=float).reshape(2) - camera.project(p_cam)


def pose_jacobian(pose_cw: Pose, point, camera: CameraModel) -> np.ndarray:
    """2x6 Jacobian of the reprojection error with respect to a left pose update
    (rotation first, then translation)."""
    x, y, z = pose_cw.transform_point(point)
    if abs(z) < 1e-6:
        return np.zeros((2, 6))
    invz = 1.0 / z
    invz2 = invz * invz
    fx, fy = camera.fx, camera.fy
    return np.array(
        [
            [
                x * y * invz2 * fx,
                -(1.0 + x * x * invz2) * fx,
                y * invz * fx,
                -invz * fx,
                0.0,
                x * invz2 * fx,
            ],
            [
                (1.0 + y * y * invz2) * fy,
                -x * y * invz2 * fy,
                -x * invz * fy,
                0.0,
                -invz * fy,
                y * invz2 * fy,
            ],
        ]
    )


def point_jacobian(pose_cw: Pose, point, camera: CameraModel) -> np.ndarray:
    """2x3 Jacobian of the reprojection error with respect to the world point."""
    x, y, z = pose_cw.transform_point(point)
    if abs(z) < 1e-6:
        return np.zeros((2, 3))
    invz = 1.0 / z
    fx, fy = camera.fx, camera.fy
    tmp = np.array(
        [
            [fx, 0.0, -fx * x * invz],
            [0.0, fy, -fy * y * invz],
        ]
    )
    return -invz * (tmp @ pose_cw.rotation)


@dataclass
class _Layout:
    """Where each keyframe and map point lives in the parameter vector."""

    kf_to_param: dict
    mp_to_param: dict
    fixed_kf_id: Hashable
    fixed_pose: Pose

    @property
    def point_offset(self) -> int:
        return len(self.kf_to_param) * 6

    @property
    def n_params(self) -> int:
        return self.point_offset + len(self.mp_to_param) * 3

    def pose(self, params: np.ndarray, kf_id) -> Pose:
        if kf_id == self.fixed_kf_id:
            return self.fixed_pose
        index = self.kf_to_param.get(kf_id)
        if index is None:
            return Pose.identity()
        base = index * 6
        return pose_from_params(params[base : base + 3], params[base + 3 : base + 6])

    def point(self, params: np.ndarray, mp_id) -> np.ndarray:
        index = self.mp_to_param.get(mp_id)
        if index is None:
            return np.zeros(3)
        base = self.point_offset + index * 3
        return params[base : base + 3].copy()


def _huber_sqrt_weight(error_norm: float, threshold: float) -> float:
    if error_norm <= threshold:
        return 1.0
    return math.sqrt(threshold / error_norm)


def _residuals(params, observations, layout: _Layout, camera, huber) -> np.ndarray:
    out = np.zeros((len(observations), 2))
    for row, obs in zip(out, observations):
        pose_cw = layout.pose(params, obs.kf_id)
        p_cam = pose_cw.transform_point(layout.point(params, obs.mp_id))
        if p_cam[2] <= _MIN_DEPTH:
            row[:] = _BEHIND_CAMERA_RESIDUAL
            continue
        error = obs.observed_uv - camera.project(p_cam)
        row[:] = error * _huber_sqrt_weight(float(np.linalg.norm(error)), huber)
    return out.reshape(-1)


def _jacobian(params, observations, layout: _Layout, camera, huber) -> np.ndarray:
    jacobian = np.zeros((len(observations) * 2, layout.n_params))
    for i, obs in enumerate(observations):
        pose_cw = layout.pose(params, obs.kf_id)
        point = layout.point(params, obs.mp_id)
        if pose_cw.transform_point(point)[2] <= _MIN_DEPTH:
            continue
        error = reprojection_error(pose_cw, point, obs.observed_uv, camera)
        weight = _huber_sqrt_weight(float(np.linalg.norm(error)), huber)
        rows = slice(i * 2, i * 2 + 2)

        kf_index = layout.kf_to_param.get(obs.kf_id)
        if kf_index is not None:
            cols = slice(kf_index * 6, kf_index * 6 + 6)
            jacobian[rows, cols] = pose_jacobian(pose_cw, point, camera) * weight

        mp_index = layout.mp_to_param.get(obs.mp_id)
        if mp_index is not None:
            base = layout.point_offset + mp_index * 3
            jacobian[rows, base : base + 3] = point_jacobian(pose_cw, point, camera) * weight
    return jacobian


def _rms(residuals: np.ndarray) -> float:
    if residuals.size == 0:
        return math.nan
    return float(np.linalg.norm(residuals)) / math.sqrt(residuals.size)


def solve_global_ba(
    problem: GlobalBAProblem,
    camera: CameraModel,
    config: GlobalBAConfig | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> GlobalBAResult | None:
    """Refine all non-fixed poses and all points by Levenberg-Marquardt.

    Returns ``None`` when there are fewer than two keyframes, no map points,
    or the fixed keyframe is not among ``kf_ids``. ``should_stop`` is polled
    before each iteration.
    """
    config = config or GlobalBAConfig()
    if should_stop is None:
        def should_stop() -> bool:
            return False

    if len(problem.kf_ids) < 2 or not problem.mp_ids:
        return None
    if problem.fixed_kf_id not in problem.kf_ids:
        return None

    kf_to_param = {
        kf_id: index
        for index, kf_id in enumerate(
            kf_id for kf_id in problem.kf_ids if kf_id != problem.fixed_kf_id
        )
    }
    mp_to_param = {mp_id: index for index, mp_id in enumerate(problem.mp_ids)}
    fixed_pose = problem.kf_poses.get(problem.fixed_kf_id) or Pose.identity()
    layout = _Layout(kf_to_param, mp_to_param, problem.fixed_kf_id, fixed_pose)

    if layout.n_params == 0:
        return None

    params = np.zeros(layout.n_params)
    for kf_id, index in kf_to_param.items():
        pose_cw = problem.kf_poses.get(kf_id)
        if pose_cw is not None:
            base = index * 6
            params[base : base + 3] = rotation_to_axis_angle(pose_cw.rotation)
            params[base + 3 : base + 6] = pose_cw.translation
    for mp_id, index in mp_to_param.items():
        position = problem.mp_positions.get(mp_id)
        if position is not None:
            base = layout.point_offset + index * 3
            params[base : base + 3] = np.asarray(position, dtype=float).reshape(3)

    observations = list(problem.observations)
    huber = config.huber_threshold

    initial_error = _rms(_residuals(params, observations, layout, camera, huber))

    current = params
    damping = _LAMBDA_INITIAL
    iterations = 0
    for iteration in range(config.max_iterations):
        if should_stop():
            break
        iterations = iteration + 1

        residuals = _residuals(current, observations, layout, camera, huber)
        jacobian = _jacobian(current, observations, layout, camera, huber)
        current_error_sq = float(residuals @ residuals)

        gradient = jacobian.T @ residuals
        jtj = jacobian.T @ jacobian
        if np.linalg.norm(gradient) < config.gradient_tolerance:
            break

        diagonal = np.diag(jtj)
        damped = jtj + np.diag(damping * np.maximum(diagonal, 1e-6))
        try:
            delta = np.linalg.solve(damped, -gradient)
        except np.linalg.LinAlgError:
            break
        if not np.all(np.isfinite(delta)):
            break

        tolerance = config.param_tolerance
        if np.linalg.norm(delta) < tolerance * (np.linalg.norm(current) + tolerance):
            break

        trial = current + delta
        trial_residuals = _residuals(trial, observations, layout, camera, huber)
        if float(trial_residuals @ trial_residuals) < current_error_sq:
            current = trial
            damping = max(damping * _LAMBDA_DOWN, _LAMBDA_MIN)
        else:
            damping = min(damping * _LAMBDA_UP, _LAMBDA_MAX)

    final_error = _rms(_residuals(current, observations, layout, camera, huber))

    optimized_poses = {problem.fixed_kf_id: fixed_pose.inverse()}
    for kf_id in kf_to_param:
        optimized_poses[kf_id] = layout.pose(current, kf_id).inverse()
    optimized_points = {mp_id: layout.point(current, mp_id) for mp_id in mp_to_param}

    return GlobalBAResult(
        optimized_poses=optimized_poses,
        optimized_points=optimized_points,
        iterations=iterations,
        initial_error=initial_error,
        final_error=final_error,
    )