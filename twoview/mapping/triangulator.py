"""
twoview/mapping/triangulator.py

Triangulation of a single landmark from one keypoint in each of two
keyframes, with the geometric gates that keep degenerate or noisy
correspondences out of the map.
"""

from __future__ import annotations
from typing import Optional, Tuple
import numpy as np

from twoview.geometry_utils.reprojection import check_reprojection_error
from twoview.geometry_utils.triangulation import (
    check_depth_is_positive,
    check_scale_factors,
    cos_parallax,
    triangulate_bearings,
)
from twoview.keyframe import Keyframe

from .config import TriangulationConfig


ACCEPTED = 0
REJ_PARALLAX = 1
REJ_NON_FINITE = 2
REJ_DEPTH_1 = 3
REJ_DEPTH_2 = 4
REJ_REPROJ_1 = 5
REJ_REPROJ_2 = 6
REJ_SCALE = 7

REJECT_REASON_NAMES = {
    ACCEPTED: "accepted",
    REJ_PARALLAX: "parallax",
    REJ_NON_FINITE: "non_finite",
    REJ_DEPTH_1: "depth_1",
    REJ_DEPTH_2: "depth_2",
    REJ_REPROJ_1: "reproj_1",
    REJ_REPROJ_2: "reproj_2",
    REJ_SCALE: "scale",
}

# cos(parallax) used for a keypoint without stereo depth; never the smallest
_NO_STEREO_COS = 2.0


class TwoViewTriangulator:
    """
    Triangulates landmarks between two keyframes.

    Both keyframe poses are read once, at construction. The instance is
    valid only while those poses stay unchanged; build a new triangulator
    after a pose update. It holds references to the keyframes (and their
    cameras) without owning them and must not outlive them.

    A constructed triangulator has no mutable state, so `triangulate` may be
    called concurrently from several threads.

    Usage:
        triangulator = TwoViewTriangulator(keyfrm_1, keyfrm_2)
        pos_w = triangulator.triangulate(idx_1, idx_2)
        if pos_w is not None:
            ...
    """

    def __init__(
        self,
        keyfrm_1: Keyframe,
        keyfrm_2: Keyframe,
        rays_parallax_deg_thr: Optional[float] = None,
        config: Optional[TriangulationConfig] = None,
    ):
        if keyfrm_1 is None or keyfrm_2 is None:
            raise ValueError("TwoViewTriangulator requires two keyframes")
        if keyfrm_1.camera is None or keyfrm_2.camera is None:
            raise ValueError("Both keyframes must carry a camera model")

        self.config = config if config is not None else TriangulationConfig()
        if rays_parallax_deg_thr is None:
            rays_parallax_deg_thr = self.config.rays_parallax_deg_thr

        self.keyfrm_1 = keyfrm_1
        self.keyfrm_2 = keyfrm_2

        # camera pose of keyframe 1
        pose_1 = keyfrm_1.get_pose()
        self.pose_1 = pose_1
        self.rot_1w = pose_1.rot_cw
        self.rot_w1 = pose_1.rot_wc
        self.trans_1w = pose_1.trans_cw
        self.cam_pose_1w = pose_1.matrix
        self.cam_center_1 = pose_1.cam_center
        self.camera_1 = keyfrm_1.camera

        # camera pose of keyframe 2
        pose_2 = keyfrm_2.get_pose()
        self.pose_2 = pose_2
        self.rot_2w = pose_2.rot_cw
        self.rot_w2 = pose_2.rot_wc
        self.trans_2w = pose_2.trans_cw
        self.cam_pose_2w = pose_2.matrix
        self.cam_center_2 = pose_2.cam_center
        self.camera_2 = keyfrm_2.camera

        self.ratio_factor = self.config.ratio_factor_coeff * max(
            keyfrm_1.pyramid.scale_factor, keyfrm_2.pyramid.scale_factor
        )
        self.cos_rays_parallax_thr = float(np.cos(np.deg2rad(rays_parallax_deg_thr)))

        # stereo parallax depends only on per-keypoint depth, precompute it
        self._cos_stereo_1 = self._stereo_parallax_cos(keyfrm_1)
        self._cos_stereo_2 = self._stereo_parallax_cos(keyfrm_2)

    def _stereo_parallax_cos(self, keyfrm: Keyframe) -> np.ndarray:
        cos_stereo = np.full(keyfrm.num_keypts, _NO_STEREO_COS)
        if not self.config.use_stereo_triangulation:
            return cos_stereo
        baseline = keyfrm.camera.true_baseline
        stereo = (keyfrm.stereo_x_right >= 0) & (keyfrm.depths > 0)
        if baseline > 0 and np.any(stereo):
            cos_stereo[stereo] = np.cos(2.0 * np.arctan2(baseline / 2.0, keyfrm.depths[stereo]))
        return cos_stereo

    def triangulate(self, idx_1: int, idx_2: int) -> Optional[np.ndarray]:
        """
        Triangulate the landmark observed by keypoint `idx_1` of keyframe 1
        and keypoint `idx_2` of keyframe 2.

        Returns:
          pos_w: (3,) world position if every gate passes, else None.
        """
        pos_w, _ = self.triangulate_with_reason(idx_1, idx_2)
        return pos_w

    def triangulate_with_reason(self, idx_1: int, idx_2: int) -> Tuple[Optional[np.ndarray], int]:
        """
        Same as `triangulate`, plus the rejection reason code
        (ACCEPTED when a position is returned).
        """
        kf1 = self.keyfrm_1
        kf2 = self.keyfrm_2
        if not 0 <= idx_1 < kf1.num_keypts:
            raise IndexError(f"idx_1={idx_1} out of range for keyframe {kf1.id} ({kf1.num_keypts} keypoints)")
        if not 0 <= idx_2 < kf2.num_keypts:
            raise IndexError(f"idx_2={idx_2} out of range for keyframe {kf2.id} ({kf2.num_keypts} keypoints)")

        # rays in the world reference
        ray_w_1 = self.rot_w1 @ kf1.bearings[idx_1]
        ray_w_2 = self.rot_w2 @ kf2.bearings[idx_2]
        cos_rays_parallax = cos_parallax(ray_w_1, ray_w_2)

        cos_stereo_1 = self._cos_stereo_1[idx_1]
        cos_stereo_2 = self._cos_stereo_2[idx_2]

        # two-view triangulation when the rays have enough parallax and
        # more of it than any stereo observation
        if cos_rays_parallax < self.cos_rays_parallax_thr and cos_rays_parallax < min(cos_stereo_1, cos_stereo_2):
            pos_w = triangulate_bearings(
                kf1.bearings[idx_1], kf2.bearings[idx_2],
                self.cam_pose_1w, self.cam_pose_2w,
                rank_rtol=self.config.rank_rtol,
                min_homogeneous_w=self.config.min_homogeneous_w,
            )
        elif cos_stereo_1 < cos_stereo_2:
            pos_w = kf1.triangulate_stereo(idx_1, pose=self.pose_1)
        elif cos_stereo_2 < cos_stereo_1:
            pos_w = kf2.triangulate_stereo(idx_2, pose=self.pose_2)
        else:
            return None, REJ_PARALLAX

        if pos_w is None or not np.isfinite(pos_w).all():
            return None, REJ_NON_FINITE

        # the point must be in front of both cameras
        if not check_depth_is_positive(pos_w, self.rot_1w, self.trans_1w, self.camera_1):
            return None, REJ_DEPTH_1
        if not check_depth_is_positive(pos_w, self.rot_2w, self.trans_2w, self.camera_2):
            return None, REJ_DEPTH_2

        octave_1 = kf1.octaves[idx_1]
        octave_2 = kf2.octaves[idx_2]

        if not check_reprojection_error(
            pos_w, self.rot_1w, self.trans_1w, self.camera_1,
            kf1.undist_keypts[idx_1], kf1.stereo_x_right[idx_1],
            kf1.pyramid.level_sigma_sq[octave_1],
            self.config.chi_sq_2d, self.config.chi_sq_3d,
        ):
            return None, REJ_REPROJ_1
        if not check_reprojection_error(
            pos_w, self.rot_2w, self.trans_2w, self.camera_2,
            kf2.undist_keypts[idx_2], kf2.stereo_x_right[idx_2],
            kf2.pyramid.level_sigma_sq[octave_2],
            self.config.chi_sq_2d, self.config.chi_sq_3d,
        ):
            return None, REJ_REPROJ_2

        # the real scale ratio and the one predicted by the octaves must agree
        if not check_scale_factors(
            pos_w, self.cam_center_1, self.cam_center_2,
            kf1.pyramid.scale_factors[octave_1],
            kf2.pyramid.scale_factors[octave_2],
            self.ratio_factor,
        ):
            return None, REJ_SCALE

        return pos_w, ACCEPTED
