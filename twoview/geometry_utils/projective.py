from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
from scipy.spatial.transform import Rotation


def projection_matrix(K: np.ndarray, R: np.ndarray, t: np.ndarray) -> np.ndarray:
    """
    Compute the 3x4 projection matrix P = K [R | t].
    Args:
        K: (3,3) intrinsic matrix
        R: (3,3) rotation matrix
        t: (3,) or (3,1) translation vector
    Returns:
        P: (3,4) projection matrix
    """

    K = np.asarray(K, np.float64)
    R = np.asarray(R, np.float64)
    t = np.asarray(t, np.float64).reshape(3, 1)

    if K.shape != (3, 3):
        raise ValueError(f"K must be (3,3), got {K.shape}")
    if R.shape != (3, 3):
        raise ValueError(f"R must be (3,3), got {R.shape}")
    if t.shape != (3, 1):
        raise ValueError(f"t must be (3,1), got {t.shape}")

    return K @ np.hstack([R, t])  # 3x4


def pose_matrix(R: np.ndarray, t: np.ndarray) -> np.ndarray:
    """Build the 4x4 homogeneous transform [[R, t], [0, 1]]."""
    T = np.eye(4, dtype=np.float64)
    T[:3, :3] = np.asarray(R, np.float64)
    T[:3, 3] = np.asarray(t, np.float64).reshape(3)
    return T


def camera_center(R: np.ndarray, t: np.ndarray) -> np.ndarray:
    """Compute camera center in world coordinates from extrinsics R and t.
    Args:
        R: (3,3) rotation matrix
        t: (3,1) translation vector
    Returns:
        C: (3,) camera center in world coordinates"""
    # world->cam: Xc = R X + t  => C = -R^T t
    R = np.asarray(R, np.float64)
    t = np.asarray(t, np.float64).reshape(3, 1)
    return (-R.T @ t).reshape(3)


@dataclass(frozen=True, eq=False)
class Pose:
    """
    World-to-camera rigid transform: Xc = rot_cw @ Xw + trans_cw.

    All derived quantities are computed once in __post_init__ so that
    consumers on the hot path only read cached arrays.
    """
    rot_cw: np.ndarray    # (3,3)
    trans_cw: np.ndarray  # (3,)
    rot_wc: np.ndarray = field(init=False, repr=False)
    cam_center: np.ndarray = field(init=False, repr=False)
    matrix: np.ndarray = field(init=False, repr=False)

    def __post_init__(self):
        R = np.array(self.rot_cw, dtype=np.float64)
        t = np.array(self.trans_cw, dtype=np.float64).reshape(3)
        if R.shape != (3, 3):
            raise ValueError(f"rot_cw must be (3,3), got {R.shape}")
        if not (np.isfinite(R).all() and np.isfinite(t).all()):
            raise ValueError("Pose contains non-finite values.")

        T = pose_matrix(R, t)
        C = camera_center(R, t)
        for arr in (R, t, T, C):
            arr.setflags(write=False)

        # frozen dataclass: bypass __setattr__ for the cached fields
        object.__setattr__(self, "rot_cw", R)
        object.__setattr__(self, "trans_cw", t)
        object.__setattr__(self, "rot_wc", R.T)
        object.__setattr__(self, "cam_center", C)
        object.__setattr__(self, "matrix", T)

    @classmethod
    def identity(cls) -> "Pose":
        return cls(np.eye(3), np.zeros(3))

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> "Pose":
        T = np.asarray(T, np.float64)
        if T.shape != (4, 4):
            raise ValueError(f"T must be (4,4), got {T.shape}")
        return cls(T[:3, :3], T[:3, 3])

    @classmethod
    def from_rotvec(cls, rotvec, trans_cw) -> "Pose":
        return cls(Rotation.from_rotvec(np.asarray(rotvec, np.float64)).as_matrix(), trans_cw)

    @classmethod
    def from_quat(cls, qvec_wxyz, trans_cw) -> "Pose":
        """Quaternion given as (w, x, y, z)."""
        q = np.asarray(qvec_wxyz, np.float64)
        return cls(Rotation.from_quat([q[1], q[2], q[3], q[0]]).as_matrix(), trans_cw)

    @classmethod
    def from_center(cls, rot_cw: np.ndarray, center_w) -> "Pose":
        """Build a pose from its orientation and camera center in world coordinates."""
        R = np.asarray(rot_cw, np.float64)
        C = np.asarray(center_w, np.float64).reshape(3)
        return cls(R, -R @ C)

    def inverse_matrix(self) -> np.ndarray:
        """4x4 camera-to-world transform."""
        return pose_matrix(self.rot_wc, self.cam_center)

    def transform(self, pos_w: np.ndarray) -> np.ndarray:
        """World point(s) (3,) or (N,3) into this camera's frame."""
        pos_w = np.asarray(pos_w, np.float64)
        return pos_w @ self.rot_cw.T + self.trans_cw
