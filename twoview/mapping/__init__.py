"""
twoview/mapping/__init__.py

Landmark creation between two keyframes.

Usage:
    from twoview.mapping import TwoViewTriangulator, triangulate_matches

    triangulator = TwoViewTriangulator(keyfrm_1, keyfrm_2)
    pos_w = triangulator.triangulate(idx_1, idx_2)

    # Many candidates, spread over 4 threads
    result = triangulate_matches(triangulator, matches, max_workers=4)
"""

from .config import (
    TwoViewConfig,
    PyramidConfig,
    TriangulationConfig,
    RelativePoseConfig,
    BatchConfig,
    load_config,
    save_config,
    get_default_config,
    get_stereo_config,
    get_equirectangular_config,
)

from .triangulator import (
    TwoViewTriangulator,
    ACCEPTED,
    REJ_PARALLAX,
    REJ_NON_FINITE,
    REJ_DEPTH_1,
    REJ_DEPTH_2,
    REJ_REPROJ_1,
    REJ_REPROJ_2,
    REJ_SCALE,
    REJECT_REASON_NAMES,
)

from .batch import (
    BatchTriangulationResult,
    triangulate_matches,
    triangulate_matches_with_config,
    batch_quality_stats,
)

__all__ = [
    # Config
    "TwoViewConfig",
    "PyramidConfig",
    "TriangulationConfig",
    "RelativePoseConfig",
    "BatchConfig",
    "load_config",
    "save_config",
    "get_default_config",
    "get_stereo_config",
    "get_equirectangular_config",
    # Triangulator
    "TwoViewTriangulator",
    "ACCEPTED",
    "REJ_PARALLAX",
    "REJ_NON_FINITE",
    "REJ_DEPTH_1",
    "REJ_DEPTH_2",
    "REJ_REPROJ_1",
    "REJ_REPROJ_2",
    "REJ_SCALE",
    "REJECT_REASON_NAMES",
    # Batch
    "BatchTriangulationResult",
    "triangulate_matches",
    "triangulate_matches_with_config",
    "batch_quality_stats",
]
