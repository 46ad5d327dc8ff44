"""Matching unassociated features between two keyframes for triangulation."""

from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np

from stereoslam.epipolar import check_epipolar_constraint
from stereoslam.geometry import CameraModel, Keypoint, Pose

GRID_CELL_SIZE = 32.0
"""Side of a grid cell in pixels."""

MAX_GRID_DIM = 64
"""Largest number of grid rows or columns."""

SEARCH_RADIUS = 100.0
"""Pixels around a keypoint searched for candidates in the other image."""

_MIN_EPIPOLE_DIST_SQ = 100.0


def _grid_dim(extent: int) -> int:
    return min(math.ceil(extent / GRID_CELL_SIZE), MAX_GRID_DIM)


class FeatureGrid:
    """Spatial hash of keypoints into fixed-size image cells."""

    def __init__(self, keypoints: Sequence[Keypoint], width: int, height: int) -> None:
        self.cols = _grid_dim(width)
        self.rows = _grid_dim(height)
        if self.cols < 1 or self.rows < 1:
            raise ValueError(f"image size must be positive, got {width}x{height}")
        self._cells: list[list[int]] = [[] for _ in range(self.cols * self.rows)]
        for index, kp in enumerate(keypoints):
            col = min(max(int(kp.x / GRID_CELL_SIZE), 0), self.cols - 1)
            row = min(max(int(kp.y / GRID_CELL_SIZE), 0), self.rows - 1)
            self._cells[row * self.cols + col].append(index)

    def candidates_in_radius(self, x: float, y: float, radius: float) -> list[int]:
        """Indices of keypoints in the cells covering the square around ``(x, y)``."""
        min_col = int(max(math.floor((x - radius) / GRID_CELL_SIZE), 0))
        max_col = min(max(math.ceil((x + radius) / GRID_CELL_SIZE), 0), self.cols - 1)
        min_row = int(max(math.floor((y - radius) / GRID_CELL_SIZE), 0))
        max_row = min(max(math.ceil((y + radius) / GRID_CELL_SIZE), 0), self.rows - 1)

        candidates: list[int] = []
        for row in range(min_row, max_row + 1):
            for col in range(min_col, max_col + 1):
                cell = row * self.cols + col
                if cell < len(self._cells):
                    candidates.extend(self._cells[cell])
        return candidates


def _hamming(a: np.ndarray, b: np.ndarray) -> int:
    return int(np.unpackbits(np.bitwise_xor(a, b)).sum())


def _has_entry(entries: Sequence, index: int) -> bool:
    return index < len(entries) and entries[index] is not None


def search_for_triangulation(
    keypoints1: Sequence[Keypoint],
    descriptors1,
    matched1: Sequence,
    stereo1: Sequence,
    keypoints2: Sequence[Keypoint],
    descriptors2,
    matched2: Sequence,
    pose1: Pose,
    pose2: Pose,
    camera: CameraModel,
    max_dist: int,
) -> list[tuple[int, int]]:
    """Pairs ``(idx1, idx2)`` of features free of map points that may be triangulated.

    ``matched1``/``matched2`` hold the map point of each feature or ``None``;
    ``stereo1`` holds the stereo point of each feature in keyframe 1 or
    ``None``. Poses are camera-to-world, descriptors are rows of bytes.
    Candidates lie near the keypoint's position, satisfy the epipolar
    constraint and, without stereo depth, stay away from the epipole; each
    feature of keyframe 2 is used at most once.
    """
    desc1 = np.asarray(descriptors1, dtype=np.uint8)
    desc2 = np.asarray(descriptors2, dtype=np.uint8)

    pose2_inv = pose2.inverse()
    c1_in_cam2 = pose2_inv.transform_point(pose1.translation)
    epipole = None
    if c1_in_cam2[2] != 0.0:
        epipole = camera.project(c1_in_cam2)

    t12 = pose2_inv.translation - pose2_inv.rotation @ pose1.translation
    r12 = pose2_inv.rotation @ pose1.rotation.T

    grid = FeatureGrid(keypoints2, int(camera.width), int(camera.height))
    taken = [False] * len(keypoints2)
    matches: list[tuple[int, int]] = []

    for idx1, kp1 in enumerate(keypoints1):
        if _has_entry(matched1, idx1) or idx1 >= len(desc1):
            continue
        d1 = desc1[idx1]
        has_stereo1 = _has_entry(stereo1, idx1)

        best_dist = max_dist
        best_idx2 = None
        for idx2 in grid.candidates_in_radius(kp1.x, kp1.y, SEARCH_RADIUS):
            if taken[idx2] or _has_entry(matched2, idx2):
                continue
            kp2 = keypoints2[idx2]

            if not has_stereo1 and epipole is not None:
                dx = epipole[0] - kp2.x
                dy = epipole[1] - kp2.y
                if dx * dx + dy * dy < _MIN_EPIPOLE_DIST_SQ:
                    continue

            if not check_epipolar_constraint(kp1, kp2, r12, t12, camera):
                continue
            if idx2 >= len(desc2):
                continue

            dist = _hamming(d1, desc2[idx2])
            if dist < best_dist and dist <= max_dist:
                best_dist = dist
                best_idx2 = idx2

        if best_idx2 is not None:
            matches.append((idx1, best_idx2))
            taken[best_idx2] = True

    return matches