"""Similarity transforms between 3D point sets by Horn's method and RANSAC."""

from __future__ import annotations

import math
import random
import sys
from dataclasses import dataclass, field, replace

import numpy as np

from stereoslam.geometry import Sim3

_SAMPLE_SIZE = 3


@dataclass
class Sim3SolverConfig:
    """Settings of the RANSAC Sim3 solver."""

    max_iterations: int = 300
    inlier_threshold: float = 0.075
    min_inliers: int = 15
    fix_scale: bool = True
    probability: float = 0.99


@dataclass
class Sim3Result:
    """Best transform found, its inlier indices and their mean squared error."""

    sim3: Sim3
    inliers: list[int] = field(default_factory=list)
    mse: float = math.inf

    @property
    def num_inliers(self) -> int:
        return len(self.inliers)


def _as_points(points) -> np.ndarray:
    return np.asarray(points, dtype=float).reshape(-1, 3)


def compute_sim3_horn(points1, points2, fix_scale: bool) -> Sim3 | None:
    """Closed-form Sim3 ``S`` with ``points2 ~= S * points1``.

    Returns ``None`` for fewer than three correspondences, mismatched sizes,
    or a degenerate configuration when the scale is estimated.
    """
    p1 = _as_points(points1)
    p2 = _as_points(points2)
    if len(p1) < 3 or len(p1) != len(p2):
        return None

    centroid1 = p1.mean(axis=0)
    centroid2 = p2.mean(axis=0)
    centered1 = p1 - centroid1
    centered2 = p2 - centroid2

    if fix_scale:
        scale = 1.0
    else:
        sum_sq1 = float(np.sum(centered1 * centered1))
        sum_sq2 = float(np.sum(centered2 * centered2))
        if sum_sq1 < 1e-10:
            return None
        scale = math.sqrt(sum_sq2 / sum_sq1)
        if scale <= 0.0:
            return None

    cross_cov = centered1.T @ centered2
    try:
        u, _, vt = np.linalg.svd(cross_cov)
    except np.linalg.LinAlgError:
        return None

    v = vt.T
    rotation = v @ u.T
    if np.linalg.det(rotation) < 0.0:
        v = v.copy()
        v[:, 2] = -v[:, 2]
        rotation = v @ u.T

    translation = centroid2 - scale * (rotation @ centroid1)
    return Sim3(rotation, translation, scale)


def find_inliers(points1, points2, sim3: Sim3, threshold: float) -> tuple[list[int], float]:
    """Indices whose transformed point lies within ``threshold`` of its match,
    and the mean squared error over them (infinity when there are none)."""
    p1 = _as_points(points1)
    p2 = _as_points(points2)
    threshold_sq = threshold * threshold

    inliers: list[int] = []
    sum_sq_error = 0.0
    for index, (a, b) in enumerate(zip(p1, p2)):
        diff = sim3.transform_point(a) - b
        error_sq = float(diff @ diff)
        if error_sq < threshold_sq:
            inliers.append(index)
            sum_sq_error += error_sq

    mse = sum_sq_error / len(inliers) if inliers else math.inf
    return inliers, mse


def adaptive_iterations(inlier_ratio: float, probability: float, sample_size: int) -> int:
    """RANSAC iterations needed to draw an all-inlier sample with ``probability``."""
    if inlier_ratio <= 0.0:
        return sys.maxsize
    if inlier_ratio >= 1.0:
        return 1

    log_denom = math.log(1.0 - inlier_ratio**sample_size)
    if abs(log_denom) < 1e-10:
        return 1
    k = math.log(1.0 - probability) / log_denom
    return max(math.ceil(k), 1)


def compute_sim3_ransac(
    points1,
    points2,
    config: Sim3SolverConfig | None = None,
    rng: random.Random | None = None,
) -> Sim3Result | None:
    """Robust Sim3 with ``points2 ~= S * points1``, refined on all inliers.

    Returns ``None`` when the inputs are too few or mismatched, or when no
    model reaches ``config.min_inliers``.
    """
    config = config or Sim3SolverConfig()
    rng = rng or random.Random()
    p1 = _as_points(points1)
    p2 = _as_points(points2)
    n = len(p1)
    if n < 3 or n != len(p2) or n < config.min_inliers:
        return None

    best: Sim3Result | None = None
    max_iter = config.max_iterations
    iteration = 0
    while iteration < max_iter:
        sample = rng.sample(range(n), _SAMPLE_SIZE)
        sim3 = compute_sim3_horn(p1[sample], p2[sample], config.fix_scale)
        if sim3 is not None:
            inliers, mse = find_inliers(p1, p2, sim3, config.inlier_threshold)
            if best is None or len(inliers) > best.num_inliers:
                best = Sim3Result(sim3, inliers, mse)
                if best.num_inliers >= config.min_inliers:
                    ratio = best.num_inliers / n
                    needed = adaptive_iterations(ratio, config.probability, _SAMPLE_SIZE)
                    max_iter = min(max_iter, iteration + needed)
        iteration += 1

    if best is None or best.num_inliers < config.min_inliers:
        return None

    refined = compute_sim3_horn(p1[best.inliers], p2[best.inliers], config.fix_scale)
    if refined is not None:
        new_inliers, new_mse = find_inliers(p1, p2, refined, config.inlier_threshold)
        if len(new_inliers) >= best.num_inliers:
            best = Sim3Result(refined, new_inliers, new_mse)

    return best


def compute_sim3_from_matches(
    current_points, loop_points, fix_scale: bool = True
) -> Sim3Result | None:
    """Sim3 from matched points of two keyframes with default RANSAC settings."""
    config = replace(Sim3SolverConfig(), fix_scale=fix_scale)
    return compute_sim3_ransac(current_points, loop_points, config)