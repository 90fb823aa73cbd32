from attr import dataclass
import numpy as np
from typing import Optional, Tuple

from twoview.geometry_utils.twoview import consensus_key

# three non-collinear points span a plane
PLANE_MIN_SAMPLE = 3


@dataclass
class PlaneResult:
    normal: np.ndarray              # (3,) unit normal, plane is normal . X + d = 0
    d: float
    inlier_mask: np.ndarray         # (N,) bool
    residual: float = float("nan")  # median point-to-plane distance over inliers

    @property
    def num_inliers(self) -> int:
        return int(np.count_nonzero(self.inlier_mask))


def plane_distances(normal: np.ndarray, d: float, X: np.ndarray) -> np.ndarray:
    """Absolute point-to-plane distances of (N,3) points."""
    return np.abs(np.asarray(X, np.float64).reshape(-1, 3) @ normal + d)


def fit_plane(X: np.ndarray) -> Tuple[np.ndarray, float]:
    """
    Least-squares plane through (N,3) points, N >= 3.

    The normal is the right singular vector of the centered points with the
    smallest singular value.
    """
    X = np.asarray(X, np.float64).reshape(-1, 3)
    if X.shape[0] < PLANE_MIN_SAMPLE:
        raise ValueError(f"Need at least {PLANE_MIN_SAMPLE} points, got {X.shape[0]}")
    c = X.mean(axis=0)
    _, _, Vt = np.linalg.svd(X - c)
    normal = Vt[-1]
    return normal, float(-normal @ c)


def _plane_from_sample(S: np.ndarray, min_area: float) -> Optional[Tuple[np.ndarray, float]]:
    # coincident or collinear samples span no plane
    cross = np.cross(S[1] - S[0], S[2] - S[0])
    nc = np.linalg.norm(cross)
    if nc <= min_area:
        return None
    normal = cross / nc
    return normal, float(-normal @ S[0])


def _score(normal: np.ndarray, d: float, X: np.ndarray, thresh: float) -> PlaneResult:
    dist = plane_distances(normal, d, X)
    mask = dist <= thresh
    residual = float(np.median(dist[mask])) if np.any(mask) else float("inf")
    return PlaneResult(normal=normal, d=d, inlier_mask=mask, residual=residual)


def _num_iterations(inlier_ratio: float, prob: float, max_iters: int) -> int:
    """RANSAC iterations needed to draw one all-inlier sample with probability `prob`."""
    if inlier_ratio <= 0.0:
        return max_iters
    p_good = inlier_ratio ** PLANE_MIN_SAMPLE
    if p_good >= 1.0:
        return 0
    return int(min(max_iters, np.ceil(np.log(1.0 - prob) / np.log(1.0 - p_good))))


def fit_plane_ransac(
    points: np.ndarray,
    thresh: float,
    prob: float = 0.999,
    max_iters: int = 1000,
    min_area: float = 1e-9,
    seed: Optional[int] = None,
) -> PlaneResult:
    """
    Robust 3D plane fit.

    Hypotheses come from random three-point samples (degenerate samples are
    skipped), the best one under `consensus_key` is refined with a
    least-squares fit over its inliers, and the refinement is kept only if
    it does not lose consensus. The iteration count adapts to the best
    inlier ratio seen so far.

    Raises ValueError on bad input or when every sample was degenerate.
    """
    X = np.asarray(points, np.float64)
    if X.ndim != 2 or X.shape[1] != 3:
        raise ValueError(f"points must be (N,3). Got {X.shape}")
    if X.shape[0] < PLANE_MIN_SAMPLE:
        raise ValueError(f"Need at least {PLANE_MIN_SAMPLE} points, got {X.shape[0]}")
    if not np.isfinite(X).all():
        raise ValueError("points contains non-finite values.")
    if thresh <= 0:
        raise ValueError(f"thresh must be > 0, got {thresh}")
    if not 0.0 < prob < 1.0:
        raise ValueError(f"prob must be in (0, 1), got {prob}")

    rng = np.random.default_rng(seed)
    n = X.shape[0]
    best = None
    n_iters = max_iters
    it = 0
    while it < n_iters:
        it += 1
        plane = _plane_from_sample(X[rng.choice(n, PLANE_MIN_SAMPLE, replace=False)], min_area)
        if plane is None:
            continue
        cand = _score(plane[0], plane[1], X, thresh)
        if best is None or consensus_key(cand) > consensus_key(best):
            best = cand
            n_iters = _num_iterations(best.num_inliers / n, prob, max_iters)

    if best is None:
        raise ValueError("points are degenerate (no sample spans a plane)")

    if best.num_inliers >= PLANE_MIN_SAMPLE:
        normal, d = fit_plane(X[best.inlier_mask])
        refined = _score(normal, d, X, thresh)
        if consensus_key(refined) >= consensus_key(best):
            best = refined
    return best
