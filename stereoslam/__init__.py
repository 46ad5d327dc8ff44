"""Geometry, triangulation, loop detection and bundle adjustment for stereo SLAM."""

__version__ = "0.1.0"

__all__ = [
    "detector",
    "epipolar",
    "feature_search",
    "geometry",
    "global_ba",
    "imu_init",
    "loop_matching",
    "point_validation",
    "sim3_solver",
]