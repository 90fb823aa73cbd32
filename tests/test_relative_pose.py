"""Tests for the OpenCV relative-pose provider on synthetic correspondences."""

from __future__ import annotations

import numpy as np
import pytest

from twoview.geometry import (
    OpenCVRelativePoseProvider,
    PlaneResult,
    Pose,
    check_correspondences,
    consensus_key,
    fit_plane,
    fit_plane_ransac,
    plane_distances,
    poses_from_relative,
)
from twoview.mapping import ACCEPTED, RelativePoseConfig, TwoViewTriangulator, triangulate_matches

from conftest import make_keyframe, make_perspective

K = np.array([[500.0, 0.0, 320.0],
              [0.0, 500.0, 240.0],
              [0.0, 0.0, 1.0]])


def _project(pose: Pose, X: np.ndarray) -> np.ndarray:
    pc = pose.transform(X)
    return pc[:, :2] / pc[:, 2:3] * 500.0 + np.array([320.0, 240.0])


@pytest.fixture
def general_scene():
    """Non-planar points, second view rotated about y and translated by a unit vector."""
    rng = np.random.default_rng(42)
    n = 100
    X = np.column_stack([rng.uniform(-1.0, 1.0, n),
                         rng.uniform(-1.0, 1.0, n),
                         rng.uniform(4.0, 8.0, n)])
    pose_2 = Pose.from_rotvec([0.0, 0.05, 0.0], [-1.0, 0.0, 0.0])
    return X, pose_2, _project(Pose.identity(), X), _project(pose_2, X)


class TestEssential:

    def test_recovers_relative_pose(self, general_scene) -> None:
        X, pose_2, pts1, pts2 = general_scene
        provider = OpenCVRelativePoseProvider(K, model="essential")

        result = provider.estimate(pts1, pts2)

        assert result.model_type == "essential"
        assert result.num_inliers >= 95
        np.testing.assert_allclose(result.R, pose_2.rot_cw, atol=1e-3)
        np.testing.assert_allclose(result.t, pose_2.trans_cw, atol=1e-3)
        assert result.residual < 0.1

    def test_recovered_poses_feed_triangulator(self, general_scene) -> None:
        X, _, pts1, pts2 = general_scene
        result = OpenCVRelativePoseProvider(K, model="essential").estimate(pts1, pts2)
        pose_1, pose_2 = poses_from_relative(result.R, result.t)

        camera = make_perspective()
        kf1 = make_keyframe(1, camera, pose_1, pts1)
        kf2 = make_keyframe(2, camera, pose_2, pts2)
        matches = np.column_stack([np.arange(len(X)), np.arange(len(X))])

        batch = triangulate_matches(TwoViewTriangulator(kf1, kf2), matches)

        assert np.count_nonzero(batch.reasons == ACCEPTED) >= 95
        np.testing.assert_allclose(batch.points, X[batch.accepted_matches[:, 0]], atol=1e-2)

    def test_auto_prefers_essential_on_general_scene(self, general_scene) -> None:
        _, _, pts1, pts2 = general_scene
        result = OpenCVRelativePoseProvider(K, model="auto").estimate(pts1, pts2)
        assert result.model_type == "essential"


class TestFundamental:

    def test_recovers_rotation(self, general_scene) -> None:
        _, pose_2, pts1, pts2 = general_scene
        result = OpenCVRelativePoseProvider(K, model="fundamental").estimate(pts1, pts2)

        assert result.model_type == "fundamental"
        np.testing.assert_allclose(result.R, pose_2.rot_cw, atol=1e-2)
        np.testing.assert_allclose(result.t, pose_2.trans_cw, atol=1e-2)


class TestHomography:

    def test_planar_scene(self) -> None:
        rng = np.random.default_rng(7)
        X = np.column_stack([rng.uniform(-1.0, 1.0, 50), rng.uniform(-1.0, 1.0, 50), np.full(50, 5.0)])
        pose_2 = Pose.from_rotvec([0.0, 0.05, 0.0], [-1.0, 0.0, 0.0])
        pts1 = _project(Pose.identity(), X)
        pts2 = _project(pose_2, X)

        result = OpenCVRelativePoseProvider(K, model="homography").estimate(pts1, pts2)

        assert result.model_type == "homography"
        assert result.num_inliers == 50
        assert result.residual < 0.1
        np.testing.assert_allclose(np.linalg.norm(result.t), 1.0)

    def test_auto_falls_back_to_homography_on_four_points(self) -> None:
        X = np.array([[-1.0, -1.0, 5.0], [1.0, -0.8, 5.0], [0.9, 1.0, 5.0], [-0.6, 0.7, 5.0]])
        pose_2 = Pose.from_rotvec([0.0, 0.05, 0.0], [-1.0, 0.0, 0.0])
        pts1 = _project(Pose.identity(), X)
        pts2 = _project(pose_2, X)

        result = OpenCVRelativePoseProvider(K, model="auto").estimate(pts1, pts2)

        assert result.model_type == "homography"
        assert result.num_inliers == 4


class TestDegenerateInput:

    def test_too_few_points(self) -> None:
        pts = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0], [10.0, 10.0]])
        with pytest.raises(ValueError):
            OpenCVRelativePoseProvider(K, model="essential").estimate(pts, pts)

    def test_auto_needs_some_model(self) -> None:
        pts = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0]])
        with pytest.raises(ValueError, match="No model could be fitted"):
            OpenCVRelativePoseProvider(K, model="auto").estimate(pts, pts + 1.0)

    def test_collinear_points(self) -> None:
        pts = np.column_stack([np.linspace(0.0, 100.0, 20), np.linspace(0.0, 50.0, 20)])
        with pytest.raises(ValueError):
            check_correspondences(pts, pts + 1.0, 5)

    def test_repeated_points(self) -> None:
        pts = np.tile([[100.0, 100.0], [200.0, 150.0]], (10, 1))
        with pytest.raises(ValueError):
            check_correspondences(pts, pts, 5)

    def test_mismatched_lengths(self) -> None:
        with pytest.raises(ValueError):
            check_correspondences(np.zeros((10, 2)), np.zeros((9, 2)), 5)

    def test_unknown_model(self) -> None:
        with pytest.raises(ValueError):
            OpenCVRelativePoseProvider(K, model="affine")

    def test_from_config(self) -> None:
        provider = OpenCVRelativePoseProvider.from_config(K, RelativePoseConfig(model="homography", prob=0.99))
        assert provider.model == "homography"
        assert provider.prob == pytest.approx(0.99)


@pytest.fixture
def noisy_plane():
    """200 points near z = 3 + 0.1x - 0.2y followed by 60 points well off it."""
    rng = np.random.default_rng(3)
    xy = rng.uniform(-2.0, 2.0, (260, 2))
    z = 3.0 + 0.1 * xy[:, 0] - 0.2 * xy[:, 1]
    z[:200] += rng.normal(0.0, 0.002, 200)
    z[200:] += rng.choice([-1.0, 1.0], 60) * rng.uniform(0.5, 2.0, 60)
    normal = np.array([0.1, -0.2, -1.0]) / np.linalg.norm([0.1, -0.2, -1.0])
    return np.column_stack([xy, z]), normal


class TestPlane:

    def test_least_squares_fit(self) -> None:
        X = np.array([[0.0, 0.0, 2.0], [1.0, 0.0, 2.0], [0.0, 1.0, 2.0], [1.0, 1.0, 2.0]])
        normal, d = fit_plane(X)

        assert abs(normal[2]) == pytest.approx(1.0)
        np.testing.assert_allclose(plane_distances(normal, d, X), 0.0, atol=1e-12)

    def test_ransac_rejects_outliers(self, noisy_plane) -> None:
        X, true_normal = noisy_plane

        result = fit_plane_ransac(X, thresh=0.01, seed=0)

        assert result.num_inliers == 200
        assert result.inlier_mask[:200].all()
        assert result.residual < 0.004
        assert abs(result.normal @ true_normal) > 0.9999
        assert plane_distances(result.normal, result.d, [[0.0, 0.0, 3.0]])[0] < 1e-3

    def test_deterministic_with_seed(self, noisy_plane) -> None:
        X, _ = noisy_plane
        a = fit_plane_ransac(X, thresh=0.01, seed=11)
        b = fit_plane_ransac(X, thresh=0.01, seed=11)
        np.testing.assert_array_equal(a.inlier_mask, b.inlier_mask)
        np.testing.assert_array_equal(a.normal, b.normal)

    def test_degenerate_points(self) -> None:
        line = np.column_stack([np.linspace(0.0, 1.0, 10)] * 3)
        with pytest.raises(ValueError, match="degenerate"):
            fit_plane_ransac(line, thresh=0.01, max_iters=50, seed=0)
        with pytest.raises(ValueError, match="degenerate"):
            fit_plane_ransac(np.ones((5, 3)), thresh=0.01, max_iters=50, seed=0)

    def test_invalid_input(self) -> None:
        with pytest.raises(ValueError):
            fit_plane_ransac(np.zeros((2, 3)), thresh=0.01)
        with pytest.raises(ValueError):
            fit_plane_ransac(np.zeros((5, 2)), thresh=0.01)
        with pytest.raises(ValueError):
            fit_plane_ransac(np.full((5, 3), np.nan), thresh=0.01)
        with pytest.raises(ValueError):
            fit_plane(np.zeros((2, 3)))

    def test_consensus_tie_goes_to_lower_residual(self) -> None:
        mask = np.array([True, True, False])
        loose = PlaneResult(normal=np.array([0.0, 0.0, 1.0]), d=0.0, inlier_mask=mask, residual=0.5)
        tight = PlaneResult(normal=np.array([0.0, 0.0, 1.0]), d=0.1, inlier_mask=mask, residual=0.1)
        assert max([loose, tight], key=consensus_key) is tight
