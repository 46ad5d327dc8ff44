import math
import random

import numpy as np
import pytest

from stereoslam.geometry import Sim3, rotation_from_axis_angle
from stereoslam.sim3_solver import (
    Sim3SolverConfig,
    adaptive_iterations,
    compute_sim3_from_matches,
    compute_sim3_horn,
    compute_sim3_ransac,
    find_inliers,
)


def _line_points(offset=0):
    return [np.array([i + offset, (i + offset) * 2, (i + offset) * 3], dtype=float) for i in range(10)]


def _cloud(rng, count):
    return [np.array([rng.uniform(-10, 10) for _ in range(3)]) for _ in range(count)]


def test_horn_identity():
    points = _line_points()
    sim3 = compute_sim3_horn(points, points, True)
    assert sim3.scale == pytest.approx(1.0, abs=1e-10)
    assert np.linalg.norm(sim3.translation) == pytest.approx(0.0, abs=1e-10)


def test_horn_pure_translation():
    points1 = _line_points()
    translation = np.array([5.0, -3.0, 2.0])
    points2 = [p + translation for p in points1]
    sim3 = compute_sim3_horn(points1, points2, True)
    assert sim3.scale == pytest.approx(1.0, abs=1e-10)
    np.testing.assert_allclose(sim3.translation, translation, atol=1e-10)


def test_horn_rotation():
    points1 = _line_points(offset=1)
    rotation = rotation_from_axis_angle([0.0, 0.0, math.pi / 2])
    points2 = [rotation @ p for p in points1]
    sim3 = compute_sim3_horn(points1, points2, True)
    assert sim3.scale == pytest.approx(1.0, abs=1e-10)
    for p1, p2 in zip(points1, points2):
        np.testing.assert_allclose(sim3.transform_point(p1), p2, atol=1e-10)


def test_horn_with_scale():
    points1 = _line_points(offset=1)
    points2 = [p * 2.5 for p in points1]
    sim3 = compute_sim3_horn(points1, points2, False)
    assert sim3.scale == pytest.approx(2.5, abs=1e-10)
    for p1, p2 in zip(points1, points2):
        np.testing.assert_allclose(sim3.transform_point(p1), p2, atol=1e-10)


def test_horn_general_rotation_is_proper():
    rng = random.Random(3)
    points1 = _cloud(rng, 12)
    rotation = rotation_from_axis_angle([0.3, -0.7, 1.1])
    points2 = [rotation @ p + np.array([1.0, 0.0, -2.0]) for p in points1]
    sim3 = compute_sim3_horn(points1, points2, True)
    np.testing.assert_allclose(sim3.rotation, rotation, atol=1e-9)
    assert np.linalg.det(sim3.rotation) == pytest.approx(1.0)


def test_horn_needs_three_points():
    points = [np.zeros(3), np.ones(3)]
    assert compute_sim3_horn(points, points, True) is None


def test_horn_degenerate_scale_returns_none():
    points1 = [np.ones(3)] * 4
    points2 = _line_points()[:4]
    assert compute_sim3_horn(points1, points2, False) is None


def test_find_inliers_counts_and_mse():
    points1 = [np.zeros(3), np.array([1.0, 0.0, 0.0]), np.array([5.0, 5.0, 5.0])]
    points2 = [np.array([0.01, 0.0, 0.0]), np.array([1.0, 0.0, 0.0]), np.zeros(3)]
    inliers, mse = find_inliers(points1, points2, Sim3.identity(), 0.075)
    assert inliers == [0, 1]
    assert mse == pytest.approx(0.0001 / 2)


def test_find_inliers_none_gives_infinite_mse():
    inliers, mse = find_inliers([np.zeros(3)], [np.ones(3)], Sim3.identity(), 0.1)
    assert inliers == []
    assert math.isinf(mse)


def test_adaptive_iterations_bounds():
    assert adaptive_iterations(1.0, 0.99, 3) == 1
    assert adaptive_iterations(0.0, 0.99, 3) > 10**9
    assert adaptive_iterations(0.9, 0.99, 3) < adaptive_iterations(0.5, 0.99, 3)
    assert adaptive_iterations(0.5, 0.99, 3) >= 1


def test_ransac_with_outliers():
    rng = random.Random(42)
    translation = np.array([1.0, 2.0, 3.0])
    points1 = _cloud(rng, 50)
    points2 = [p + translation for p in points1]
    points1 += _cloud(rng, 10)
    points2 += _cloud(rng, 10)

    config = Sim3SolverConfig(fix_scale=True, min_inliers=20)
    result = compute_sim3_ransac(points1, points2, config, random.Random(7))
    assert result is not None
    assert result.num_inliers >= 45
    np.testing.assert_allclose(result.sim3.translation, translation, atol=0.1)


def test_ransac_insufficient_points():
    points = [np.array([1.0, 2.0, 3.0]), np.array([4.0, 5.0, 6.0])]
    assert compute_sim3_ransac(points, points, Sim3SolverConfig()) is None


def test_ransac_mismatched_sizes():
    rng = random.Random(1)
    assert compute_sim3_ransac(_cloud(rng, 20), _cloud(rng, 19)) is None


def test_ransac_fewer_points_than_min_inliers():
    rng = random.Random(2)
    points = _cloud(rng, 10)
    assert compute_sim3_ransac(points, points, Sim3SolverConfig(min_inliers=15)) is None


def test_ransac_random_correspondences_fail():
    rng = random.Random(5)
    result = compute_sim3_ransac(_cloud(rng, 30), _cloud(rng, 30), rng=random.Random(6))
    assert result is None


def test_from_matches_recovers_rigid_motion():
    rng = random.Random(9)
    rotation = rotation_from_axis_angle([0.0, 0.2, 0.0])
    offset = np.array([0.5, -0.5, 1.0])
    current = _cloud(rng, 30)
    loop = [rotation @ p + offset for p in current]
    result = compute_sim3_from_matches(current, loop, True)
    assert result is not None
    assert result.num_inliers == 30
    np.testing.assert_allclose(result.sim3.rotation, rotation, atol=1e-9)
    np.testing.assert_allclose(result.sim3.translation, offset, atol=1e-9)
    assert result.mse < 1e-12