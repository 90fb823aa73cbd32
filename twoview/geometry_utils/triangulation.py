from typing import Optional

import numpy as np

from twoview.camera_models import ModelType
from twoview.geometry_utils.reprojection import _is_finite_xyz

# ----------------------------
# Small numeric helpers
# ----------------------------
_RANK_RTOL = 1e-10
_EPS_W = 1e-12
_EPS_DENOM = 1e-15


def cos_parallax(ray_w_1: np.ndarray, ray_w_2: np.ndarray) -> float:
    """Cosine of the angle between two world-frame rays."""
    return float(ray_w_1 @ ray_w_2 / (np.linalg.norm(ray_w_1) * np.linalg.norm(ray_w_2)))


def triangulate_midpoint(
    center_1: np.ndarray,
    ray_w_1: np.ndarray,
    center_2: np.ndarray,
    ray_w_2: np.ndarray,
) -> Optional[np.ndarray]:
    """
    Midpoint of the shortest segment between two world rays C_i + s_i * r_i.

    Returns None when the rays are parallel.
    """
    baseline = center_2 - center_1
    a = ray_w_1 @ ray_w_1
    b = ray_w_1 @ ray_w_2
    c = ray_w_2 @ ray_w_2
    d = ray_w_1 @ baseline
    e = ray_w_2 @ baseline

    denom = a * c - b * b
    if abs(denom) <= _EPS_DENOM * a * c:
        return None

    s1 = (c * d - b * e) / denom
    s2 = (b * d - a * e) / denom
    return 0.5 * ((center_1 + s1 * ray_w_1) + (center_2 + s2 * ray_w_2))


def triangulate_bearings(
    bearing_1: np.ndarray,
    bearing_2: np.ndarray,
    cam_pose_1w: np.ndarray,
    cam_pose_2w: np.ndarray,
    rank_rtol: float = _RANK_RTOL,
    min_homogeneous_w: float = _EPS_W,
) -> Optional[np.ndarray]:
    """
    Linear (DLT) triangulation from two camera-frame bearings.

    Each bearing b and 4x4 world->camera pose P gives two equations
        b_x * P[2] - b_z * P[0] = 0
        b_y * P[2] - b_z * P[1] = 0
    on the homogeneous point. The system is solved by SVD.

    If the system is rank deficient (two-dimensional null space) or the
    homogeneous scale vanishes, the point is recovered with the midpoint
    method instead.

    Returns:
      pos_w: (3,) world point, or None if no finite point exists.
    """
    A = np.empty((4, 4), dtype=np.float64)
    A[0] = bearing_1[0] * cam_pose_1w[2] - bearing_1[2] * cam_pose_1w[0]
    A[1] = bearing_1[1] * cam_pose_1w[2] - bearing_1[2] * cam_pose_1w[1]
    A[2] = bearing_2[0] * cam_pose_2w[2] - bearing_2[2] * cam_pose_2w[0]
    A[3] = bearing_2[1] * cam_pose_2w[2] - bearing_2[2] * cam_pose_2w[1]

    _, s, Vt = np.linalg.svd(A)
    X_h = Vt[-1]
    well_posed = s[2] > rank_rtol * s[0] and abs(X_h[3]) > min_homogeneous_w

    if well_posed:
        pos_w = X_h[:3] / X_h[3]
        if np.isfinite(pos_w).all():
            return pos_w

    # world rays and centers from the pose matrices
    rot_w1 = cam_pose_1w[:3, :3].T
    rot_w2 = cam_pose_2w[:3, :3].T
    center_1 = -rot_w1 @ cam_pose_1w[:3, 3]
    center_2 = -rot_w2 @ cam_pose_2w[:3, 3]
    pos_w = triangulate_midpoint(center_1, rot_w1 @ bearing_1, center_2, rot_w2 @ bearing_2)
    if pos_w is None or not np.isfinite(pos_w).all():
        return None
    return pos_w


def check_depth_is_positive(
    pos_w: np.ndarray,
    rot_cw: np.ndarray,
    trans_cw: np.ndarray,
    camera,
) -> bool:
    """
    Cheirality for one view: camera-frame z > 0.
    Equirectangular cameras see the full sphere, so the check always passes.
    """
    if camera.model_type == ModelType.EQUIRECTANGULAR:
        return True
    pos_z = rot_cw[2] @ pos_w + trans_cw[2]
    return bool(pos_z > 0.0)


def check_scale_factors(
    pos_w: np.ndarray,
    cam_center_1: np.ndarray,
    cam_center_2: np.ndarray,
    scale_factor_1: float,
    scale_factor_2: float,
    ratio_factor: float,
) -> bool:
    """
    Compare the distance ratio of the landmark to both camera centers with
    the ratio of the keypoint scale factors. Both directions must stay
    below `ratio_factor`. A zero distance is rejected.
    """
    dist_1 = np.linalg.norm(pos_w - cam_center_1)
    dist_2 = np.linalg.norm(pos_w - cam_center_2)
    if dist_1 == 0 or dist_2 == 0:
        return False

    ratio_dists = dist_2 / dist_1
    ratio_octave = scale_factor_1 / scale_factor_2
    return bool(ratio_octave / ratio_dists < ratio_factor and ratio_dists / ratio_octave < ratio_factor)


def triangulation_angles_deg(
    X: np.ndarray,
    cam_center_1: np.ndarray,
    cam_center_2: np.ndarray,
) -> np.ndarray:
    """
    Compute triangulation angle between rays from camera centers to point X.

    Returns:
      angles_deg: (N,) with NaN for non-finite points.
    """
    X = np.asarray(X, dtype=np.float64)
    C1 = np.asarray(cam_center_1, dtype=np.float64).reshape(3)
    C2 = np.asarray(cam_center_2, dtype=np.float64).reshape(3)

    ang = np.full((X.shape[0],), np.nan, dtype=np.float64)

    finite = _is_finite_xyz(X)
    if not np.any(finite):
        return ang

    Xf = X[finite]
    v1 = Xf - C1[None, :]
    v2 = Xf - C2[None, :]

    v1n = v1 / (np.linalg.norm(v1, axis=1, keepdims=True) + 1e-12)
    v2n = v2 / (np.linalg.norm(v2, axis=1, keepdims=True) + 1e-12)

    cosang = np.sum(v1n * v2n, axis=1)
    cosang = np.clip(cosang, -1.0, 1.0)
    ang_f = np.degrees(np.arccos(cosang))

    ang[np.where(finite)[0]] = ang_f
    return ang
