# twoview/geometry.py
"""
Public geometry API.

Internals live in twoview/geometry_utils/.
Import from here in the rest of the codebase to avoid deep-path imports.
"""

from twoview.geometry_utils.projective import Pose, projection_matrix, pose_matrix, camera_center
from twoview.geometry_utils.reprojection import (
    CHI_SQ_2D,
    CHI_SQ_3D,
    reprojection_error_sq,
    check_reprojection_error,
    reprojection_errors,
)
from twoview.geometry_utils.triangulation import (
    cos_parallax,
    triangulate_bearings,
    triangulate_midpoint,
    check_depth_is_positive,
    check_scale_factors,
    triangulation_angles_deg,
)
from twoview.geometry_utils.twoview import (
    RelativePoseProvider,
    OpenCVRelativePoseProvider,
    TwoViewResult,
    check_correspondences,
    consensus_key,
    poses_from_relative,
)
from twoview.geometry_utils.plane import PlaneResult, fit_plane, fit_plane_ransac, plane_distances

__all__ = [
    "Pose",
    "projection_matrix",
    "pose_matrix",
    "camera_center",
    "CHI_SQ_2D",
    "CHI_SQ_3D",
    "reprojection_error_sq",
    "check_reprojection_error",
    "reprojection_errors",
    "cos_parallax",
    "triangulate_bearings",
    "triangulate_midpoint",
    "check_depth_is_positive",
    "check_scale_factors",
    "triangulation_angles_deg",
    "RelativePoseProvider",
    "OpenCVRelativePoseProvider",
    "TwoViewResult",
    "check_correspondences",
    "poses_from_relative",
    "consensus_key",
    "PlaneResult",
    "fit_plane",
    "fit_plane_ransac",
    "plane_distances",
]
