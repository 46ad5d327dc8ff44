"""Descriptor matching and reprojection checks for verifying loop closures."""

from __future__ import annotations

import math
from collections.abc import Hashable, Mapping, Sequence
from dataclasses import dataclass, field

import numpy as np

from stereoslam.geometry import CameraModel, Keypoint, Pose, Sim3

DESCRIPTOR_BYTES = 32
"""Length of an ORB descriptor in bytes."""

MAX_MATCH_DISTANCE = 50
"""Hamming distance a loop match must stay below."""

RATIO_TEST = 0.7
"""Best distance must be below this fraction of the second best."""

CHI2_2DOF_95 = 5.991
"""Squared pixel error bound for a reprojection inlier at octave zero."""

ORB_SCALE_FACTOR = 1.2
"""Scale step between consecutive ORB pyramid octaves."""


@dataclass
class CorrectorConfig:
    """Settings of loop correction."""

    min_covisibility_weight: int = 15
    """Covisibility weight needed for an edge to carry the correction."""
    max_propagation_depth: int = 100
    """Deepest level of the graph the correction is propagated to."""

    def __post_init__(self) -> None:
        if self.min_covisibility_weight < 0:
            raise ValueError("min_covisibility_weight must not be negative")
        if self.max_propagation_depth < 0:
            raise ValueError("max_propagation_depth must not be negative")


@dataclass
class VerifiedLoop:
    """A loop that passed geometric verification and is ready for correction."""

    current_kf_id: Hashable
    loop_kf_id: Hashable
    sim3_current_to_loop: Sim3
    matched_map_points: list[tuple[Hashable, Hashable]] = field(default_factory=list)
    feature_matches: list[tuple[int, int]] = field(default_factory=list)


def _as_bytes_row(value) -> np.ndarray:
    row = np.zeros(DESCRIPTOR_BYTES, dtype=np.uint8)
    data = np.frombuffer(bytes(value), dtype=np.uint8) if isinstance(
        value, (bytes, bytearray, memoryview)
    ) else np.asarray(value, dtype=np.uint8).reshape(-1)
    count = min(len(data), DESCRIPTOR_BYTES)
    row[:count] = data[:count]
    return row


def hamming_distance(a, b) -> int:
    """Number of differing bits between two 32-byte descriptors."""
    return int(np.unpackbits(np.bitwise_xor(_as_bytes_row(a), _as_bytes_row(b))).sum())


def _descriptor_row(descriptors: np.ndarray, index: int) -> np.ndarray:
    if 0 <= index < len(descriptors):
        return _as_bytes_row(descriptors[index])
    return np.zeros(DESCRIPTOR_BYTES, dtype=np.uint8)


def _as_descriptor_matrix(descriptors) -> np.ndarray:
    matrix = np.asarray(descriptors, dtype=np.uint8)
    if matrix.size == 0:
        return np.zeros((0, DESCRIPTOR_BYTES), dtype=np.uint8)
    return matrix.reshape(len(matrix), -1)


def _best_match(
    query: np.ndarray, descriptors: np.ndarray, indices
) -> tuple[int, float, float]:
    best_dist = math.inf
    second_dist = math.inf
    best_index = 0
    for index in indices:
        dist = hamming_distance(query, _descriptor_row(descriptors, index))
        if dist < best_dist:
            second_dist = best_dist
            best_dist = dist
            best_index = index
        elif dist < second_dist:
            second_dist = dist
    return best_index, best_dist, second_dist


def _passes_ratio_test(best_dist: float, second_dist: float) -> bool:
    return best_dist < MAX_MATCH_DISTANCE and best_dist < RATIO_TEST * second_dist


def match_descriptors(
    descriptors1,
    descriptors2,
    feature_vector1: Mapping[Hashable, Sequence[int]] | None = None,
    feature_vector2: Mapping[Hashable, Sequence[int]] | None = None,
) -> list[tuple[int, int]]:
    """Feature pairs ``(idx1, idx2)`` passing the distance and ratio tests.

    With both feature vectors (vocabulary node -> feature indices) only
    features under the same node are compared; otherwise every pair is.
    """
    desc1 = _as_descriptor_matrix(descriptors1)
    desc2 = _as_descriptor_matrix(descriptors2)
    matches: list[tuple[int, int]] = []

    if feature_vector1 is not None and feature_vector2 is not None:
        for node_id, indices1 in feature_vector1.items():
            indices2 = feature_vector2.get(node_id)
            if indices2 is None:
                continue
            for idx1 in indices1:
                query = _descriptor_row(desc1, idx1)
                best_idx2, best, second = _best_match(query, desc2, indices2)
                if _passes_ratio_test(best, second):
                    matches.append((idx1, best_idx2))
        return matches

    all_indices2 = range(len(desc2))
    for idx1 in range(len(desc1)):
        best_idx2, best, second = _best_match(desc1[idx1], desc2, all_indices2)
        if _passes_ratio_test(best, second):
            matches.append((idx1, best_idx2))
    return matches


def count_reprojection_inliers(
    sim3: Sim3,
    points_world: Sequence,
    loop_pose: Pose,
    keypoints: Sequence[Keypoint | None],
    camera: CameraModel,
) -> int:
    """Matches whose corrected point reprojects onto the loop keypoint.

    ``points_world[i]`` is the current keyframe's world point of match ``i``
    (``None`` when it has none) and ``keypoints[i]`` the loop keyframe's
    keypoint. ``loop_pose`` is camera-to-world. The error bound grows with
    the square of the keypoint's octave scale.
    """
    if len(points_world) != len(keypoints):
        raise ValueError("points_world and keypoints must have the same length")

    world_to_loop = loop_pose.inverse()
    good = 0
    for point, keypoint in zip(points_world, keypoints):
        if point is None or keypoint is None:
            continue
        p_loop = world_to_loop.transform_point(sim3.transform_point(point))
        if p_loop[2] <= 0.0:
            continue
        u, v = camera.project(p_loop)
        du = u - keypoint.x
        dv = v - keypoint.y
        scale = ORB_SCALE_FACTOR**keypoint.octave
        if du * du + dv * dv < CHI2_2DOF_95 * scale * scale:
            good += 1
    return good