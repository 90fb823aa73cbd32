"""
twoview/mapping/batch.py

Evaluate many candidate correspondences against one TwoViewTriangulator,
optionally spread over a thread pool.
"""

from __future__ import annotations
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple
import numpy as np

from twoview.geometry_utils.reprojection import reprojection_errors
from twoview.geometry_utils.triangulation import triangulation_angles_deg
from utils.logging_utils import logger_from_config, make_logger, timed

from .config import TwoViewConfig
from .triangulator import ACCEPTED, REJECT_REASON_NAMES, TwoViewTriangulator


@dataclass
class BatchTriangulationResult:
    """Output of triangulate_matches, ordered like the input matches."""
    points: np.ndarray            # (M,3) accepted world points
    accepted_matches: np.ndarray  # (M,2) (idx_1, idx_2) of accepted points
    reasons: np.ndarray           # (N,) int32 reason code per input match

    @property
    def keep_mask(self) -> np.ndarray:
        return self.reasons == ACCEPTED

    def reason_counts(self) -> Dict[str, int]:
        codes, counts = np.unique(self.reasons, return_counts=True)
        return {REJECT_REASON_NAMES[int(c)]: int(n) for c, n in zip(codes, counts)}


def _run_chunk(
    triangulator: TwoViewTriangulator,
    matches: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    X = np.full((matches.shape[0], 3), np.nan, dtype=np.float64)
    reasons = np.empty((matches.shape[0],), dtype=np.int32)
    for k, (idx_1, idx_2) in enumerate(matches):
        pos_w, reason = triangulator.triangulate_with_reason(int(idx_1), int(idx_2))
        reasons[k] = reason
        if pos_w is not None:
            X[k] = pos_w
    return X, reasons


def triangulate_matches(
    triangulator: TwoViewTriangulator,
    matches: Sequence[Tuple[int, int]],
    max_workers: Optional[int] = None,
    chunk_size: int = 256,
    logger: Optional[logging.Logger] = None,
) -> BatchTriangulationResult:
    """
    Triangulate every (idx_1, idx_2) candidate.

    Args:
        triangulator: TwoViewTriangulator for the keyframe pair
        matches: (N,2) keypoint index pairs
        max_workers: thread count; None, 0 or 1 evaluates inline
        chunk_size: matches per thread-pool task
        logger: Optional logger

    Returns:
        BatchTriangulationResult (same order as `matches`)
    """
    logger = logger if logger is not None else make_logger()

    matches = np.asarray(matches, dtype=np.int64).reshape(-1, 2)
    N = matches.shape[0]
    if N == 0:
        return BatchTriangulationResult(
            np.zeros((0, 3), np.float64), np.zeros((0, 2), np.int64), np.zeros((0,), np.int32)
        )
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")

    chunks = [matches[s:s + chunk_size] for s in range(0, N, chunk_size)]

    with timed(logger, f"[triangulation] {N} candidates"):
        if max_workers is None or max_workers <= 1 or len(chunks) == 1:
            parts = [_run_chunk(triangulator, c) for c in chunks]
        else:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                # map preserves submission order
                parts = list(pool.map(lambda c: _run_chunk(triangulator, c), chunks))

    X = np.concatenate([p[0] for p in parts], axis=0)
    reasons = np.concatenate([p[1] for p in parts], axis=0)
    keep = reasons == ACCEPTED

    result = BatchTriangulationResult(
        points=X[keep],
        accepted_matches=matches[keep],
        reasons=reasons,
    )

    logger.info(
        f"[triangulation] keyframes=({triangulator.keyfrm_1.id},{triangulator.keyfrm_2.id}) "
        f"candidates={N} accepted={int(keep.sum())} rejected={N - int(keep.sum())}"
    )
    logger.debug(f"[triangulation] reasons={result.reason_counts()}")
    return result


def triangulate_matches_with_config(
    triangulator: TwoViewTriangulator,
    matches: Sequence[Tuple[int, int]],
    config: TwoViewConfig,
    logger: Optional[logging.Logger] = None,
) -> BatchTriangulationResult:
    """Run triangulate_matches with `config.batch`, logging per `config.verbose`."""
    return triangulate_matches(
        triangulator, matches,
        max_workers=config.batch.max_workers,
        chunk_size=config.batch.chunk_size,
        logger=logger if logger is not None else logger_from_config(config),
    )


def batch_quality_stats(
    triangulator: TwoViewTriangulator,
    result: BatchTriangulationResult,
) -> Dict[str, float]:
    """
    Summary of accepted points: count, median parallax angle and median
    reprojection error in each view.
    """
    if result.points.shape[0] == 0:
        return {"n": 0.0, "median_angle_deg": np.nan, "median_reproj_1": np.nan, "median_reproj_2": np.nan}

    kf1 = triangulator.keyfrm_1
    kf2 = triangulator.keyfrm_2
    ang = triangulation_angles_deg(result.points, triangulator.cam_center_1, triangulator.cam_center_2)
    err1 = reprojection_errors(result.points, kf1.undist_keypts[result.accepted_matches[:, 0]],
                               triangulator.rot_1w, triangulator.trans_1w, triangulator.camera_1)
    err2 = reprojection_errors(result.points, kf2.undist_keypts[result.accepted_matches[:, 1]],
                               triangulator.rot_2w, triangulator.trans_2w, triangulator.camera_2)
    return {
        "n": float(result.points.shape[0]),
        "median_angle_deg": float(np.nanmedian(ang)),
        "median_reproj_1": float(np.median(err1)),
        "median_reproj_2": float(np.median(err2)),
    }
