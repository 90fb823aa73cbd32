"""
twoview/camera_models.py

Camera models used by keyframes and the two-view triangulator.

The set of projection models is closed: perspective, fisheye and
equirectangular. Every model exposes the same small surface:

    undistort_keypoints(pts)            (N,2) distorted px -> (N,2) undistorted px
    convert_keypoints_to_bearings(pts)  (N,2) undistorted px -> (N,3) unit rays
    unproject(pt, depth)                pixel + depth -> camera-frame point
    reproject_to_image(R, t, pos_w)     world point -> (pixel, x_right, valid)

Keypoints handed to the triangulator are always undistorted, so perspective
and fisheye cameras share the pinhole reprojection and differ only in how
raw detections are undistorted.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union

import cv2
import numpy as np


class ModelType(Enum):
    PERSPECTIVE = "perspective"
    FISHEYE = "fisheye"
    EQUIRECTANGULAR = "equirectangular"


class SetupType(Enum):
    MONOCULAR = "monocular"
    STEREO = "stereo"
    RGBD = "rgbd"


@dataclass(frozen=True)
class ImageBounds:
    min_x: float
    max_x: float
    min_y: float
    max_y: float

    def contains(self, x: float, y: float) -> bool:
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y


def _normalize_rows(v: np.ndarray) -> np.ndarray:
    return v / np.linalg.norm(v, axis=1, keepdims=True)


@dataclass(frozen=True, eq=False)
class _PinholeCamera(ABC):
    """Shared pinhole math for perspective and fisheye cameras (undistorted coordinates)."""
    name: str
    setup: SetupType
    cols: int
    rows: int
    fx: float
    fy: float
    cx: float
    cy: float
    distortion: Optional[np.ndarray] = None
    focal_x_baseline: float = 0.0
    K: np.ndarray = field(init=False, repr=False)
    img_bounds: ImageBounds = field(init=False, repr=False)

    def __post_init__(self):
        if self.fx <= 0 or self.fy <= 0:
            raise ValueError(f"Invalid focal lengths fx={self.fx}, fy={self.fy}")
        if self.cols <= 0 or self.rows <= 0:
            raise ValueError(f"Invalid image size {self.cols}x{self.rows}")
        if self.setup != SetupType.MONOCULAR and self.focal_x_baseline <= 0:
            raise ValueError(f"{self.setup.value} setup requires focal_x_baseline > 0")

        K = np.array([[self.fx, 0.0, self.cx],
                      [0.0, self.fy, self.cy],
                      [0.0, 0.0, 1.0]], dtype=np.float64)
        object.__setattr__(self, "K", K)
        dist = np.zeros(0) if self.distortion is None else self.distortion
        object.__setattr__(self, "distortion", np.asarray(dist, np.float64).reshape(-1))
        object.__setattr__(self, "img_bounds", self._compute_image_bounds())

    @property
    def true_baseline(self) -> float:
        return self.focal_x_baseline / self.fx

    @abstractmethod
    def _undistort(self, pts: np.ndarray) -> np.ndarray:
        ...

    def undistort_keypoints(self, pts: np.ndarray) -> np.ndarray:
        pts = np.asarray(pts, dtype=np.float64).reshape(-1, 2)
        if pts.shape[0] == 0 or not np.any(self.distortion):
            return pts.copy()
        return self._undistort(pts)

    def _compute_image_bounds(self) -> ImageBounds:
        if not np.any(self.distortion):
            return ImageBounds(0.0, float(self.cols), 0.0, float(self.rows))

        # corners and edge midpoints of the distorted image
        w, h = float(self.cols), float(self.rows)
        border = np.array([[0.0, 0.0], [w, 0.0], [0.0, h], [w, h],
                           [w / 2, 0.0], [w / 2, h], [0.0, h / 2], [w, h / 2]])
        und = self._undistort(border)
        return ImageBounds(
            min_x=float(min(und[0, 0], und[2, 0], und[6, 0])),
            max_x=float(max(und[1, 0], und[3, 0], und[7, 0])),
            min_y=float(min(und[0, 1], und[1, 1], und[4, 1])),
            max_y=float(max(und[2, 1], und[3, 1], und[5, 1])),
        )

    def convert_keypoints_to_bearings(self, undist_pts: np.ndarray) -> np.ndarray:
        pts = np.asarray(undist_pts, dtype=np.float64).reshape(-1, 2)
        rays = np.empty((pts.shape[0], 3), dtype=np.float64)
        rays[:, 0] = (pts[:, 0] - self.cx) / self.fx
        rays[:, 1] = (pts[:, 1] - self.cy) / self.fy
        rays[:, 2] = 1.0
        return _normalize_rows(rays)

    def unproject(self, pt: np.ndarray, depth: float) -> np.ndarray:
        """Back-project an undistorted pixel with known depth (z) into the camera frame."""
        return np.array([(pt[0] - self.cx) * depth / self.fx,
                         (pt[1] - self.cy) * depth / self.fy,
                         depth], dtype=np.float64)

    def reproject_to_image(
        self,
        rot_cw: np.ndarray,
        trans_cw: np.ndarray,
        pos_w: np.ndarray,
    ) -> Tuple[np.ndarray, float, bool]:
        pos_c = rot_cw @ pos_w + trans_cw
        z = pos_c[2]
        if not z > 0.0:
            return np.full(2, np.nan), -1.0, False

        z_inv = 1.0 / z
        u = self.fx * pos_c[0] * z_inv + self.cx
        v = self.fy * pos_c[1] * z_inv + self.cy
        x_right = u - self.focal_x_baseline * z_inv

        return np.array([u, v]), float(x_right), self.img_bounds.contains(u, v)


@dataclass(frozen=True, eq=False)
class PerspectiveCamera(_PinholeCamera):
    """Pinhole camera with radial-tangential distortion (k1, k2, p1, p2, k3)."""
    model_type = ModelType.PERSPECTIVE

    def _undistort(self, pts: np.ndarray) -> np.ndarray:
        und = cv2.undistortPoints(pts.reshape(-1, 1, 2), self.K, self.distortion, P=self.K)
        return und.reshape(-1, 2).astype(np.float64)


@dataclass(frozen=True, eq=False)
class FisheyeCamera(_PinholeCamera):
    """Equidistant fisheye camera (k1, k2, k3, k4)."""
    model_type = ModelType.FISHEYE

    def __post_init__(self):
        d = np.zeros(4) if self.distortion is None else np.asarray(self.distortion, np.float64).reshape(-1)
        if d.size != 4:
            raise ValueError(f"Fisheye distortion must have 4 coefficients, got {d.size}")
        super().__post_init__()

    def _undistort(self, pts: np.ndarray) -> np.ndarray:
        und = cv2.fisheye.undistortPoints(pts.reshape(-1, 1, 2), self.K, self.distortion, P=self.K)
        return und.reshape(-1, 2).astype(np.float64)


@dataclass(frozen=True, eq=False)
class EquirectangularCamera:
    """Omnidirectional camera storing the full sphere as a longitude/latitude image."""
    name: str
    cols: int
    rows: int
    setup: SetupType = SetupType.MONOCULAR
    model_type = ModelType.EQUIRECTANGULAR

    def __post_init__(self):
        if self.cols <= 0 or self.rows <= 0:
            raise ValueError(f"Invalid image size {self.cols}x{self.rows}")
        if self.setup != SetupType.MONOCULAR:
            raise ValueError("Equirectangular cameras only support the monocular setup")

    @property
    def true_baseline(self) -> float:
        return 0.0

    @property
    def focal_x_baseline(self) -> float:
        return 0.0

    def undistort_keypoints(self, pts: np.ndarray) -> np.ndarray:
        return np.asarray(pts, dtype=np.float64).reshape(-1, 2).copy()

    def convert_keypoints_to_bearings(self, undist_pts: np.ndarray) -> np.ndarray:
        pts = np.asarray(undist_pts, dtype=np.float64).reshape(-1, 2)
        lon = (pts[:, 0] / self.cols - 0.5) * (2.0 * np.pi)
        lat = -(pts[:, 1] / self.rows - 0.5) * np.pi
        return np.stack([np.cos(lat) * np.sin(lon),
                         -np.sin(lat),
                         np.cos(lat) * np.cos(lon)], axis=1)

    def unproject(self, pt: np.ndarray, depth: float) -> np.ndarray:
        """Point at distance `depth` along the pixel's bearing."""
        return self.convert_keypoints_to_bearings(np.asarray(pt).reshape(1, 2))[0] * depth

    def reproject_to_image(
        self,
        rot_cw: np.ndarray,
        trans_cw: np.ndarray,
        pos_w: np.ndarray,
    ) -> Tuple[np.ndarray, float, bool]:
        pos_c = rot_cw @ pos_w + trans_cw
        norm = np.linalg.norm(pos_c)
        if not norm > 0.0:
            return np.full(2, np.nan), -1.0, False

        bearing = pos_c / norm
        latitude = -np.arcsin(np.clip(bearing[1], -1.0, 1.0))
        longitude = np.arctan2(bearing[0], bearing[2])

        u = self.cols * (0.5 + longitude / (2.0 * np.pi))
        v = self.rows * (0.5 - latitude / np.pi)
        return np.array([u, v]), -1.0, True


CameraModel = Union[PerspectiveCamera, FisheyeCamera, EquirectangularCamera]
