"""Shared synthetic rigs for the two-view tests."""

from __future__ import annotations

import numpy as np
import pytest

from twoview.camera_models import EquirectangularCamera, PerspectiveCamera, SetupType
from twoview.geometry_utils.projective import Pose
from twoview.keyframe import Keyframe

FX = 500.0
CX = 320.0
CY = 240.0
COLS = 640
ROWS = 480


def make_perspective(
    setup: SetupType = SetupType.MONOCULAR,
    focal_x_baseline: float = 0.0,
    distortion=None,
    name: str = "cam",
) -> PerspectiveCamera:
    """640x480 pinhole camera, fx = fy = 500, principal point at the image center."""
    return PerspectiveCamera(name=name, setup=setup, cols=COLS, rows=ROWS,
                             fx=FX, fy=FX, cx=CX, cy=CY,
                             distortion=distortion, focal_x_baseline=focal_x_baseline)


def project(camera, pose: Pose, pos_w) -> np.ndarray:
    """Pixel of a world point, asserting it is visible."""
    uv, _, valid = camera.reproject_to_image(pose.rot_cw, pose.trans_cw, np.asarray(pos_w, np.float64))
    assert valid, "Ground truth point must project into the image"
    return uv


def make_keyframe(id, camera, pose, keypts, octaves=None, x_right=None, pyramid=None) -> Keyframe:
    return Keyframe.from_keypoints(id, camera, pose, np.asarray(keypts, np.float64),
                                   octaves=octaves, x_right=x_right, pyramid=pyramid,
                                   undistorted=True)


def make_pair(points_w, pose_1: Pose, pose_2: Pose, camera_1=None, camera_2=None,
              octaves_1=None, octaves_2=None):
    """Two keyframes observing `points_w`; keypoint i of each frame sees point i."""
    camera_1 = camera_1 if camera_1 is not None else make_perspective()
    camera_2 = camera_2 if camera_2 is not None else camera_1
    pts_1 = [project(camera_1, pose_1, X) for X in points_w]
    pts_2 = [project(camera_2, pose_2, X) for X in points_w]
    kf1 = make_keyframe(1, camera_1, pose_1, pts_1, octaves=octaves_1)
    kf2 = make_keyframe(2, camera_2, pose_2, pts_2, octaves=octaves_2)
    return kf1, kf2


@pytest.fixture
def camera() -> PerspectiveCamera:
    return make_perspective()


@pytest.fixture
def stereo_camera() -> PerspectiveCamera:
    # baseline 0.1 at fx = 500
    return make_perspective(setup=SetupType.STEREO, focal_x_baseline=50.0, name="stereo")


@pytest.fixture
def equirect_camera() -> EquirectangularCamera:
    return EquirectangularCamera(name="equirect", cols=1024, rows=512)


@pytest.fixture
def pose_1() -> Pose:
    return Pose.identity()


@pytest.fixture
def pose_2() -> Pose:
    """Same orientation as pose_1, one unit to the right."""
    return Pose.from_center(np.eye(3), [1.0, 0.0, 0.0])


@pytest.fixture
def scene_points() -> np.ndarray:
    """
    Points visible from both pose_1 and pose_2. Point i lands on image row
    240 + 500 * s_i in both views, with s_i strictly increasing.
    """
    rng = np.random.default_rng(0)
    n = 40
    X = np.empty((n, 3))
    X[:, 2] = rng.uniform(4.0, 8.0, n)
    X[:, 0] = rng.uniform(-1.0, 1.0, n)
    X[:, 1] = np.linspace(-0.18, 0.18, n) * X[:, 2]
    return X
