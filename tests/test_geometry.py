import math

import numpy as np
import pytest

from stereoslam.geometry import (
    CameraModel,
    Keypoint,
    Pose,
    Sim3,
    rotation_from_axis_angle,
    rotation_to_axis_angle,
)


def _pose():
    return Pose(rotation_from_axis_angle([0.1, -0.4, 0.3]), [1.0, 2.0, -0.5])


def test_zero_axis_angle_is_identity():
    assert np.allclose(rotation_from_axis_angle([0.0, 0.0, 0.0]), np.eye(3))


def test_rotation_is_orthonormal():
    r = rotation_from_axis_angle([0.3, 0.2, -1.1])
    assert np.allclose(r @ r.T, np.eye(3))
    assert math.isclose(np.linalg.det(r), 1.0, rel_tol=1e-12)


@pytest.mark.parametrize(
    "vector",
    [[0.3, 0.2, -1.1], [0.0, 0.0, 1e-4], [2.0, -1.0, 0.5], [0.0, math.pi - 1e-3, 0.0]],
)
def test_axis_angle_round_trip(vector):
    back = rotation_to_axis_angle(rotation_from_axis_angle(vector))
    assert np.allclose(back, vector, atol=1e-9)


def test_axis_angle_of_identity_is_zero():
    assert np.allclose(rotation_to_axis_angle(np.eye(3)), np.zeros(3))


def test_half_turn_has_angle_pi():
    r = rotation_from_axis_angle([0.0, 0.0, math.pi])
    back = rotation_to_axis_angle(r)
    assert math.isclose(np.linalg.norm(back), math.pi, rel_tol=1e-9)
    assert np.allclose(rotation_from_axis_angle(back), r)


def test_bad_matrix_shape_raises():
    with pytest.raises(ValueError):
        rotation_to_axis_angle(np.eye(2))


def test_pose_identity_leaves_points():
    p = np.array([0.5, -1.0, 3.0])
    assert np.allclose(Pose.identity().transform_point(p), p)


def test_pose_inverse_round_trip():
    pose = _pose()
    p = np.array([0.3, 4.0, -2.0])
    assert np.allclose(pose.inverse().transform_point(pose.transform_point(p)), p)


def test_pose_composition_matches_sequential_transform():
    a = _pose()
    b = Pose(rotation_from_axis_angle([-0.2, 0.5, 0.1]), [0.0, -1.0, 2.0])
    p = np.array([1.0, 1.0, 1.0])
    assert np.allclose((a @ b).transform_point(p), a.transform_point(b.transform_point(p)))
    composed = a @ a.inverse()
    assert np.allclose(composed.rotation, np.eye(3))
    assert np.allclose(composed.translation, np.zeros(3), atol=1e-12)


def test_pose_rejects_wrong_translation_size():
    with pytest.raises(ValueError):
        Pose(np.eye(3), [1.0, 2.0])


def test_sim3_inverse_round_trip():
    s = Sim3(rotation_from_axis_angle([0.4, 0.0, -0.2]), [1.0, -2.0, 0.5], 2.5)
    p = np.array([3.0, -1.0, 0.25])
    assert np.allclose(s.inverse().transform_point(s.transform_point(p)), p)
    assert math.isclose(s.inverse().scale * s.scale, 1.0)


def test_sim3_scale_applies():
    s = Sim3(scale=2.5)
    p = np.array([1.0, 2.0, 3.0])
    assert np.allclose(s.transform_point(p), 2.5 * p)


def test_sim3_to_pose_keeps_rotation_and_translation():
    rot = rotation_from_axis_angle([0.1, 0.2, 0.3])
    s = Sim3(rot, [4.0, 5.0, 6.0], 1.7)
    pose = s.to_pose()
    assert np.allclose(pose.rotation, rot)
    assert np.allclose(pose.translation, [4.0, 5.0, 6.0])


def test_sim3_rejects_non_positive_scale():
    with pytest.raises(ValueError):
        Sim3(scale=0.0)


def test_camera_project_unproject_round_trip():
    cam = CameraModel(fx=458.0, fy=457.0, cx=367.0, cy=248.0, baseline=0.11)
    point = np.array([0.4, -0.3, 2.0])
    u, v = cam.project(point)
    ray = cam.unproject(u, v)
    assert np.allclose(ray * point[2], point)


def test_camera_principal_point_projects_centre():
    cam = CameraModel(fx=458.0, fy=457.0, cx=367.0, cy=248.0)
    assert np.allclose(cam.project([0.0, 0.0, 5.0]), [cam.cx, cam.cy])
    assert cam.width == 2 * cam.cx
    assert cam.height == 2 * cam.cy


def test_camera_project_zero_depth_raises():
    cam = CameraModel(fx=458.0, fy=457.0, cx=367.0, cy=248.0)
    with pytest.raises(ValueError):
        cam.project([1.0, 1.0, 0.0])


def test_keypoint_default_octave():
    kp = Keypoint(10.5, 20.25)
    assert (kp.x, kp.y, kp.octave) == (10.5, 20.25, 0)