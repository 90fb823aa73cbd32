"""
twoview/keyframe.py

Keyframe data consumed by the two-view triangulator: a pose, a camera
model and per-keypoint measurements (undistorted pixel, octave, bearing,
optional stereo right-x and depth).
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from twoview.camera_models import CameraModel, ModelType
from twoview.geometry_utils.projective import Pose


@dataclass(frozen=True, eq=False)
class ScalePyramid:
    """Image pyramid used by the feature detector (ORB-style scale levels)."""
    scale_factor: float = 1.2
    num_levels: int = 8
    scale_factors: np.ndarray = field(init=False, repr=False)
    inv_scale_factors: np.ndarray = field(init=False, repr=False)
    level_sigma_sq: np.ndarray = field(init=False, repr=False)
    inv_level_sigma_sq: np.ndarray = field(init=False, repr=False)

    def __post_init__(self):
        if self.scale_factor < 1.0:
            raise ValueError(f"scale_factor must be >= 1, got {self.scale_factor}")
        if self.num_levels < 1:
            raise ValueError(f"num_levels must be >= 1, got {self.num_levels}")

        sf = float(self.scale_factor) ** np.arange(self.num_levels, dtype=np.float64)
        object.__setattr__(self, "scale_factors", sf)
        object.__setattr__(self, "inv_scale_factors", 1.0 / sf)
        object.__setattr__(self, "level_sigma_sq", sf * sf)
        object.__setattr__(self, "inv_level_sigma_sq", 1.0 / (sf * sf))

    @classmethod
    def from_config(cls, config) -> "ScalePyramid":
        """Build from a PyramidConfig."""
        return cls(scale_factor=config.scale_factor, num_levels=config.num_levels)


class Keyframe:
    """
    A finalized frame with known pose.

    The pose may be updated by an optimizer (`set_cam_pose`); every getter
    returns the pose object current at call time. `Pose` is immutable, so a
    consumer that grabs it once keeps a consistent snapshot.

    Per-keypoint arrays (length N):
        undist_keypts   (N,2) undistorted pixel coordinates
        octaves         (N,)  pyramid level the keypoint was detected at
        bearings        (N,3) unit rays in the camera frame
        stereo_x_right  (N,)  right-image x coordinate, negative for monocular
        depths          (N,)  depth from disparity/RGB-D, negative if unknown
    """

    def __init__(
        self,
        id: int,
        camera: CameraModel,
        pose: Pose,
        undist_keypts: np.ndarray,
        octaves: np.ndarray,
        bearings: np.ndarray,
        stereo_x_right: Optional[np.ndarray] = None,
        depths: Optional[np.ndarray] = None,
        pyramid: Optional[ScalePyramid] = None,
    ):
        if camera is None:
            raise ValueError("Keyframe requires a camera model")
        if pose is None:
            raise ValueError("Keyframe requires a pose")

        self.id = int(id)
        self.camera = camera
        self.pyramid = pyramid if pyramid is not None else ScalePyramid()

        self.undist_keypts = np.asarray(undist_keypts, dtype=np.float64).reshape(-1, 2)
        n = self.undist_keypts.shape[0]
        self.num_keypts = n

        self.octaves = np.asarray(octaves, dtype=np.int64).reshape(-1)
        self.bearings = np.asarray(bearings, dtype=np.float64).reshape(-1, 3)
        self.stereo_x_right = (np.full(n, -1.0) if stereo_x_right is None
                               else np.asarray(stereo_x_right, dtype=np.float64).reshape(-1))
        self.depths = (np.full(n, -1.0) if depths is None
                       else np.asarray(depths, dtype=np.float64).reshape(-1))

        for name in ("octaves", "bearings", "stereo_x_right", "depths"):
            if getattr(self, name).shape[0] != n:
                raise ValueError(f"{name} has {getattr(self, name).shape[0]} entries, expected {n}")
        if n and (self.octaves.min() < 0 or self.octaves.max() >= self.pyramid.num_levels):
            raise ValueError(f"octaves must lie in [0, {self.pyramid.num_levels})")

        self._mtx_pose = threading.Lock()
        self._pose = pose

    @classmethod
    def from_keypoints(
        cls,
        id: int,
        camera: CameraModel,
        pose: Pose,
        keypts: np.ndarray,
        octaves: Optional[np.ndarray] = None,
        x_right: Optional[np.ndarray] = None,
        pyramid: Optional[ScalePyramid] = None,
        undistorted: bool = False,
    ) -> "Keyframe":
        """
        Build a keyframe from raw detections.

        Args:
            keypts: (N,2) pixel coordinates (distorted unless `undistorted`)
            octaves: (N,) pyramid levels, defaults to level 0
            x_right: (N,) stereo right-image x, negative entries mean monocular
        """
        pts = np.asarray(keypts, dtype=np.float64).reshape(-1, 2)
        undist = pts.copy() if undistorted else camera.undistort_keypoints(pts)
        bearings = camera.convert_keypoints_to_bearings(undist)

        n = pts.shape[0]
        octaves = np.zeros(n, dtype=np.int64) if octaves is None else octaves

        depths = np.full(n, -1.0)
        if x_right is not None:
            x_right = np.asarray(x_right, dtype=np.float64).reshape(-1)
            disparity = undist[:, 0] - x_right
            stereo = (x_right >= 0) & (disparity > 0)
            depths[stereo] = camera.focal_x_baseline / disparity[stereo]
            x_right = np.where(stereo, x_right, -1.0)

        return cls(id, camera, pose, undist, octaves, bearings,
                   stereo_x_right=x_right, depths=depths, pyramid=pyramid)

    # =========================================================
    # Pose access
    # =========================================================

    def set_cam_pose(self, pose: Pose) -> None:
        with self._mtx_pose:
            self._pose = pose

    def get_pose(self) -> Pose:
        with self._mtx_pose:
            return self._pose

    def get_cam_pose(self) -> np.ndarray:
        return self.get_pose().matrix

    def get_cam_center(self) -> np.ndarray:
        return self.get_pose().cam_center

    # =========================================================
    # Keypoint helpers
    # =========================================================

    def is_stereo(self, idx: int) -> bool:
        return bool(self.stereo_x_right[idx] >= 0)

    def triangulate_stereo(self, idx: int, pose: Optional[Pose] = None) -> Optional[np.ndarray]:
        """
        Back-project keypoint `idx` using its measured depth, with `pose`
        (a snapshot held by the caller) or the current pose.

        Returns the world-frame point, or None when the keypoint has no depth
        or the camera cannot express depth along the optical axis.
        """
        depth = self.depths[idx]
        if not depth > 0.0 or self.camera.model_type == ModelType.EQUIRECTANGULAR:
            return None

        if pose is None:
            pose = self.get_pose()
        pos_c = self.camera.unproject(self.undist_keypts[idx], depth)
        return pose.rot_wc @ pos_c + pose.cam_center

    def __repr__(self) -> str:
        return f"Keyframe(id={self.id}, camera={self.camera.name!r}, num_keypts={self.num_keypts})"
