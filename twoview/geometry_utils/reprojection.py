import numpy as np

# chi-square quantiles at p = 0.95
CHI_SQ_2D = 5.99146  # 2 DOF: (u, v)
CHI_SQ_3D = 7.81473  # 3 DOF: (u, v, x_right)


def _is_finite_xyz(X: np.ndarray) -> np.ndarray:
    """Return boolean mask of rows of X that are finite."""
    X = np.asarray(X)
    if X.ndim != 2 or X.shape[1] != 3:
        raise ValueError(f"Expected (N,3) array, got {X.shape}")
    return np.isfinite(X).all(axis=1)


def reprojection_error_sq(
    pos_w: np.ndarray,
    rot_cw: np.ndarray,
    trans_cw: np.ndarray,
    camera,
    keypt: np.ndarray,
    x_right: float = -1.0,
) -> float:
    """
    Squared pixel reprojection error of a world point against one observation.

    A negative `x_right` means a monocular observation. For a stereo
    observation the disparity residual (reprojected right-x minus observed
    right-x) is added as a third term.

    Returns:
      err_sq: float, +inf if the camera reports the reprojection as invalid.
    """
    reproj, reproj_x_right, valid = camera.reproject_to_image(rot_cw, trans_cw, pos_w)
    if not valid:
        return float("inf")

    du = reproj[0] - keypt[0]
    dv = reproj[1] - keypt[1]
    err_sq = du * du + dv * dv
    if x_right >= 0:
        dr = reproj_x_right - x_right
        err_sq += dr * dr
    return float(err_sq)


def check_reprojection_error(
    pos_w: np.ndarray,
    rot_cw: np.ndarray,
    trans_cw: np.ndarray,
    camera,
    keypt: np.ndarray,
    x_right: float,
    sigma_sq: float,
    chi_sq_2d: float = CHI_SQ_2D,
    chi_sq_3d: float = CHI_SQ_3D,
) -> bool:
    """
    Chi-square gate on the reprojection error of a single observation.

    Mono keypoints are tested against chi_sq_2d * sigma_sq, stereo keypoints
    (x_right >= 0) against chi_sq_3d * sigma_sq.
    """
    err_sq = reprojection_error_sq(pos_w, rot_cw, trans_cw, camera, keypt, x_right)
    thr = (chi_sq_3d if x_right >= 0 else chi_sq_2d) * sigma_sq
    return err_sq <= thr


def reprojection_errors(
    X: np.ndarray,
    keypts: np.ndarray,
    rot_cw: np.ndarray,
    trans_cw: np.ndarray,
    camera,
) -> np.ndarray:
    """
    Pixel reprojection error per point (monocular residual only).

    Returns:
      err: (N,) float64. Non-finite points or invalid projections yield +inf error.
    """
    X = np.asarray(X, dtype=np.float64)
    keypts = np.asarray(keypts, dtype=np.float64)

    err = np.full((X.shape[0],), np.inf, dtype=np.float64)
    finite = _is_finite_xyz(X)
    for k in np.where(finite)[0]:
        err[k] = np.sqrt(reprojection_error_sq(X[k], rot_cw, trans_cw, camera, keypts[k]))
    return err
