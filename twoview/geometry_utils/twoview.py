from attr import dataclass
import numpy as np
from typing import Optional, Protocol, Tuple
from cv2 import (findEssentialMat, findFundamentalMat, findHomography, recoverPose,
                 decomposeHomographyMat, triangulatePoints, RANSAC, FM_RANSAC)

from twoview.geometry_utils.projective import Pose, projection_matrix

# smallest sample each solver needs
MIN_SAMPLE = {
    "essential": 5,
    "fundamental": 8,
    "homography": 4,
}


@dataclass
class TwoViewResult:
    model_type: str               # "essential" | "fundamental" | "homography"
    model: np.ndarray             # (3,3) E, F or H
    R: np.ndarray                 # (3,3) rotation of view 2 w.r.t. view 1
    t: np.ndarray                 # (3,) unit-norm translation of view 2
    inlier_mask: np.ndarray       # (N,) bool
    residual: float = float("nan")  # median model error over inliers (px)

    @property
    def num_inliers(self) -> int:
        return int(np.count_nonzero(self.inlier_mask))


def consensus_key(result) -> Tuple[int, float]:
    """Sort key for competing fits: more inliers first, then lower residual."""
    return result.num_inliers, -result.residual


class RelativePoseProvider(Protocol):
    """
    Anything that turns matched pixel observations of two views into a
    verified relative pose. The triangulator only consumes the poses.
    """

    def estimate(self, pts1: np.ndarray, pts2: np.ndarray) -> TwoViewResult:
        ...


def poses_from_relative(R: np.ndarray, t: np.ndarray, scale: float = 1.0) -> Tuple[Pose, Pose]:
    """First view at the world origin, second view at (R, scale * t)."""
    t = np.asarray(t, np.float64).reshape(3)
    return Pose.identity(), Pose(R, scale * t)


def check_correspondences(
    pts1: np.ndarray,
    pts2: np.ndarray,
    min_sample: int,
    min_collinearity_ratio: float = 1e-3,
) -> None:
    """
    Reject correspondence sets a robust estimator cannot work with:
    too few points, too few distinct points, or points lying on a line.
    Raises ValueError.
    """
    if pts1.ndim != 2 or pts2.ndim != 2 or pts1.shape[1] != 2 or pts2.shape[1] != 2:
        raise ValueError(f"pts1/pts2 must be (N,2). Got {pts1.shape} and {pts2.shape}")
    if pts1.shape[0] != pts2.shape[0]:
        raise ValueError(f"pts1/pts2 must have the same length, got {pts1.shape[0]} and {pts2.shape[0]}")
    if pts1.shape[0] < min_sample:
        raise ValueError(f"Need at least {min_sample} correspondences, got {pts1.shape[0]}")

    for name, pts in (("pts1", pts1), ("pts2", pts2)):
        if not np.isfinite(pts).all():
            raise ValueError(f"{name} contains non-finite values.")
        distinct = np.unique(np.round(pts, 6), axis=0).shape[0]
        if distinct < min_sample:
            raise ValueError(f"{name} has only {distinct} distinct points (need {min_sample})")
        s = np.linalg.svd(pts - pts.mean(axis=0), compute_uv=False)
        if s[1] <= min_collinearity_ratio * s[0]:
            raise ValueError(f"{name} is degenerate (near-collinear points)")


def _count_in_front(
    R: np.ndarray,
    t: np.ndarray,
    pts1: np.ndarray,
    pts2: np.ndarray,
    K1: np.ndarray,
    K2: np.ndarray,
) -> int:
    """Number of correspondences that triangulate in front of both cameras."""
    P1 = projection_matrix(K1, np.eye(3), np.zeros(3))
    P2 = projection_matrix(K2, R, t)
    X_h = triangulatePoints(P1, P2, np.ascontiguousarray(pts1.T), np.ascontiguousarray(pts2.T))
    w = X_h[3]
    ok = np.abs(w) > 1e-12
    X = X_h[:3, ok] / w[ok]
    z1 = X[2]
    z2 = (R @ X + t.reshape(3, 1))[2]
    return int(np.count_nonzero((z1 > 0) & (z2 > 0)))


class OpenCVRelativePoseProvider:
    """
    Relative pose from OpenCV's RANSAC estimators.

    model:
      "essential"   - five-point E + recoverPose
      "fundamental" - eight-point F, converted to E with the intrinsics
      "homography"  - four-point H + decomposeHomographyMat
      "auto"        - essential vs. homography, larger consensus wins
                      (ties broken by lower median residual)
    """

    def __init__(
        self,
        K1: np.ndarray,
        K2: Optional[np.ndarray] = None,
        model: str = "auto",
        ransac_thresh_px: float = 1.0,
        prob: float = 0.999,
        min_collinearity_ratio: float = 1e-3,
    ):
        if model not in ("auto", *MIN_SAMPLE):
            raise ValueError(f"Unknown model: {model}. Use 'auto', 'essential', 'fundamental' or 'homography'")
        self.K1 = np.asarray(K1, np.float64)
        self.K2 = self.K1 if K2 is None else np.asarray(K2, np.float64)
        self.model = model
        self.ransac_thresh_px = float(ransac_thresh_px)
        self.prob = float(prob)
        self.min_collinearity_ratio = float(min_collinearity_ratio)

    @classmethod
    def from_config(cls, K1, config, K2=None) -> "OpenCVRelativePoseProvider":
        return cls(K1, K2, model=config.model, ransac_thresh_px=config.ransac_thresh_px,
                   prob=config.prob, min_collinearity_ratio=config.min_collinearity_ratio)

    def estimate(self, pts1: np.ndarray, pts2: np.ndarray) -> TwoViewResult:
        pts1 = np.asarray(pts1, dtype=np.float64)
        pts2 = np.asarray(pts2, dtype=np.float64)

        if self.model == "essential":
            return self.estimate_essential(pts1, pts2)
        if self.model == "fundamental":
            return self.estimate_fundamental(pts1, pts2)
        if self.model == "homography":
            return self.estimate_homography(pts1, pts2)

        # each model only needs its own minimal sample; keep whichever fits
        candidates = []
        errors = []
        for fit in (self.estimate_essential, self.estimate_homography):
            try:
                candidates.append(fit(pts1, pts2))
            except ValueError as e:
                errors.append(str(e))
        if not candidates:
            raise ValueError("No model could be fitted: " + "; ".join(errors))
        return max(candidates, key=consensus_key)

    # =========================================================
    # Individual models
    # =========================================================

    def estimate_essential(self, pts1: np.ndarray, pts2: np.ndarray) -> TwoViewResult:
        check_correspondences(pts1, pts2, MIN_SAMPLE["essential"], self.min_collinearity_ratio)

        # findEssentialMat takes a single K; work in normalized coordinates when K1 != K2
        n1 = self._normalize(pts1, self.K1)
        n2 = self._normalize(pts2, self.K2)
        thresh = self.ransac_thresh_px / float(np.mean([self.K1[0, 0], self.K1[1, 1], self.K2[0, 0], self.K2[1, 1]]))

        E, mask_E = findEssentialMat(n1, n2, np.eye(3), method=RANSAC, prob=self.prob, threshold=thresh)
        if E is None or E.shape[0] < 3:
            raise ValueError("findEssentialMat failed.")
        E = E[:3]  # several stacked solutions are possible, keep the best

        # recoverPose returns a mask of inliers that satisfy cheirality for the chosen (R,t)
        _, R, t, mask_pose = recoverPose(E, n1, n2, np.eye(3), mask=mask_E.copy())
        mask = (mask_pose.ravel() > 0) if mask_pose is not None else (mask_E.ravel() > 0)

        F = np.linalg.inv(self.K2).T @ E @ np.linalg.inv(self.K1)
        return TwoViewResult(
            model_type="essential",
            model=E,
            R=R,
            t=t.reshape(3),
            inlier_mask=mask,
            residual=_median_sampson_px(F, pts1, pts2, mask),
        )

    def estimate_fundamental(self, pts1: np.ndarray, pts2: np.ndarray) -> TwoViewResult:
        check_correspondences(pts1, pts2, MIN_SAMPLE["fundamental"], self.min_collinearity_ratio)

        F, mask_F = findFundamentalMat(pts1, pts2, FM_RANSAC, self.ransac_thresh_px, self.prob)
        if F is None or F.shape != (3, 3):
            raise ValueError("findFundamentalMat failed.")

        E = self.K2.T @ F @ self.K1
        n1 = self._normalize(pts1, self.K1)
        n2 = self._normalize(pts2, self.K2)
        _, R, t, mask_pose = recoverPose(E, n1, n2, np.eye(3), mask=mask_F.copy())
        mask = (mask_pose.ravel() > 0) if mask_pose is not None else (mask_F.ravel() > 0)

        return TwoViewResult(
            model_type="fundamental",
            model=F,
            R=R,
            t=t.reshape(3),
            inlier_mask=mask,
            residual=_median_sampson_px(F, pts1, pts2, mask),
        )

    def estimate_homography(self, pts1: np.ndarray, pts2: np.ndarray) -> TwoViewResult:
        check_correspondences(pts1, pts2, MIN_SAMPLE["homography"], self.min_collinearity_ratio)

        H, mask_H = findHomography(pts1, pts2, RANSAC, self.ransac_thresh_px, maxIters=2000, confidence=self.prob)
        if H is None or H.shape != (3, 3):
            raise ValueError("findHomography failed.")
        mask = mask_H.ravel() > 0

        # H maps view-1 pixels to view-2 pixels; express it in normalized coordinates
        H_n = np.linalg.inv(self.K2) @ H @ self.K1
        _, Rs, ts, _ = decomposeHomographyMat(H_n, np.eye(3))

        p1 = pts1[mask]
        p2 = pts2[mask]
        best = None
        best_front = -1
        for R, t in zip(Rs, ts):
            t = t.reshape(3)
            nt = np.linalg.norm(t)
            if nt < 1e-12:
                continue
            t = t / nt
            n_front = _count_in_front(R, t, p1, p2, self.K1, self.K2)
            if n_front > best_front:
                best, best_front = (R, t), n_front
        if best is None:
            raise ValueError("Homography decomposition has no valid translation.")

        return TwoViewResult(
            model_type="homography",
            model=H,
            R=best[0],
            t=best[1],
            inlier_mask=mask,
            residual=_median_transfer_px(H, pts1, pts2, mask),
        )

    @staticmethod
    def _normalize(pts: np.ndarray, K: np.ndarray) -> np.ndarray:
        out = np.empty_like(pts)
        out[:, 0] = (pts[:, 0] - K[0, 2]) / K[0, 0]
        out[:, 1] = (pts[:, 1] - K[1, 2]) / K[1, 1]
        return out


def _median_sampson_px(F: np.ndarray, pts1: np.ndarray, pts2: np.ndarray, mask: np.ndarray) -> float:
    if not np.any(mask):
        return float("inf")
    x1 = np.hstack([pts1[mask], np.ones((int(mask.sum()), 1))])
    x2 = np.hstack([pts2[mask], np.ones((int(mask.sum()), 1))])
    Fx1 = x1 @ F.T
    Ftx2 = x2 @ F
    num = np.sum(x2 * Fx1, axis=1) ** 2
    den = Fx1[:, 0] ** 2 + Fx1[:, 1] ** 2 + Ftx2[:, 0] ** 2 + Ftx2[:, 1] ** 2
    return float(np.median(np.sqrt(num / (den + 1e-30))))


def _median_transfer_px(H: np.ndarray, pts1: np.ndarray, pts2: np.ndarray, mask: np.ndarray) -> float:
    if not np.any(mask):
        return float("inf")
    x1 = np.hstack([pts1[mask], np.ones((int(mask.sum()), 1))])
    proj = x1 @ H.T
    proj = proj[:, :2] / proj[:, 2:3]
    return float(np.median(np.linalg.norm(proj - pts2[mask], axis=1)))
