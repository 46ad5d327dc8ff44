# stereoslam

Building blocks for the back end of a stereo visual-inertial SLAM system,
written on top of NumPy. Every function works on plain arrays, small
dataclasses and dictionaries, so the pieces can be used and tested alone.

## Modules

- `stereoslam.geometry`: the rigid transform `Pose` (`identity`, `inverse`,
  `transform_point`, composition with `@`), the similarity transform `Sim3`
  (`identity`, `inverse`, `transform_point`, `to_pose`), the pinhole
  `CameraModel` (`project`, `unproject`, `width`, `height`), `Keypoint`
  (pixel position and octave), and `rotation_from_axis_angle` /
  `rotation_to_axis_angle`.
- `stereoslam.imu_init`: `rotation_between_vectors`,
  `estimate_gravity_rotation` (the gravity-to-world rotation from
  preintegrated velocity changes), `estimate_velocities` (keyframe velocities
  from position differences) and `has_sufficient_motion`, together with the
  thresholds they use.
- `stereoslam.epipolar`: `skew_symmetric`, `projection_matrix`,
  `triangulate_dlt` and `check_epipolar_constraint`.
- `stereoslam.point_validation`: `TriangulationConfig`,
  `validate_triangulation` (depth, reprojection and scale-consistency checks)
  and `stereo_parallax_cos`.
- `stereoslam.feature_search`: `FeatureGrid` with `candidates_in_radius`, and
  `search_for_triangulation`, which pairs features not yet tied to map points
  using the grid, the epipolar constraint and Hamming distance.
- `stereoslam.sim3_solver`: `compute_sim3_horn` (closed-form alignment),
  `find_inliers`, `adaptive_iterations`, `compute_sim3_ransac` (accepts a
  `random.Random` for reproducible runs) and `compute_sim3_from_matches`,
  with `Sim3SolverConfig` and `Sim3Result`.
- `stereoslam.detector`: `LoopDetectorConfig`, `LoopCandidate`,
  `compute_bow_score`, `min_score_threshold`, and `ConsistencyChecker`
  (`add_and_check`, `clear`), which accepts a loop only after it has been
  seen for several keyframes in a row.
- `stereoslam.loop_matching`: `hamming_distance`, `match_descriptors` (ratio
  test, optionally restricted to shared vocabulary nodes),
  `count_reprojection_inliers`, and the `CorrectorConfig` and `VerifiedLoop`
  records.
- `stereoslam.global_ba`: `solve_global_ba`, a Levenberg-Marquardt bundle
  adjustment over keyframe poses and map points with a Huber kernel, with
  `GlobalBAConfig`, `GlobalBAObservation`, `GlobalBAProblem`,
  `GlobalBAResult`, `pose_from_params`, `reprojection_error`,
  `pose_jacobian` and `point_jacobian`. It returns `None` when there are
  fewer than two keyframes, no map points, or the fixed keyframe is missing.

## Installing

```
pip install .
```

## Example

```python
import random

import numpy as np
from stereoslam.sim3_solver import Sim3SolverConfig, compute_sim3_ransac

rng = np.random.default_rng(0)
current = rng.uniform(-10, 10, size=(60, 3))
loop = current + np.array([1.0, 2.0, 3.0])

result = compute_sim3_ransac(current, loop, Sim3SolverConfig(), random.Random(0))
if result is not None:
    print(result.num_inliers, result.sim3.translation)
```

The solvers return `None` when no transform is supported by enough inliers,
rather than raising.

## What this package does not do

It holds no map: there is no keyframe or map point store, covisibility graph
or keyframe database. It reads no datasets or images, extracts no features,
computes no vocabulary-based bag-of-words vectors, runs no tracking, local
mapping or loop closing threads, applies no loop correction to a map, and
draws nothing. It has no command-line program. Callers supply poses,
keypoints, descriptors and bag-of-words vectors and use the results as they
see fit.

## Running the tests

```
pip install ".[test]"
pytest
```