"""
twoview/mapping/config.py

All configuration dataclasses for two-view triangulation.
ALL default values live here - no hardcoded numbers elsewhere.
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional, Union

from data_io.parsing import load_data, save_data


@dataclass
class PyramidConfig:
    """Scale pyramid of the feature detector (ORB-style)."""
    scale_factor: float = 1.2              # Scale ratio between two pyramid levels
    num_levels: int = 8                    # Number of pyramid levels


@dataclass
class TriangulationConfig:
    """
    Gates applied by TwoViewTriangulator.

    The chi-square values are the 95% quantiles for 2 DOF (mono: u, v) and
    3 DOF (stereo: u, v, x_right). Change them only with an accuracy
    benchmark at hand.
    """
    rays_parallax_deg_thr: float = 1.0     # Min angle between the two rays
    chi_sq_2d: float = 5.99146             # Mono reprojection bound (x sigma^2)
    chi_sq_3d: float = 7.81473             # Stereo reprojection bound (x sigma^2)
    ratio_factor_coeff: float = 2.0        # ratio_factor = coeff * max(scale_factor_1, scale_factor_2)
    use_stereo_triangulation: bool = True  # Fall back to stereo depth when it has more parallax

    # Linear solver conditioning
    rank_rtol: float = 1e-10               # s[2] / s[0] below this -> midpoint fallback
    min_homogeneous_w: float = 1e-12       # |w| below this -> midpoint fallback


@dataclass
class RelativePoseConfig:
    """Parameters for the OpenCV relative-pose provider."""
    model: str = "auto"                    # "auto" | "essential" | "fundamental" | "homography"
    ransac_thresh_px: float = 1.0          # RANSAC inlier threshold
    prob: float = 0.999                    # RANSAC confidence
    min_collinearity_ratio: float = 1e-3   # s[1] / s[0] of the centered points below this -> degenerate


@dataclass
class BatchConfig:
    """Parameters for evaluating many candidate correspondences."""
    max_workers: Optional[int] = None      # None / 0 / 1 -> run inline
    chunk_size: int = 256                  # Correspondences per thread-pool task


@dataclass
class TwoViewConfig:
    """
    Master configuration.

    Usage:
        config = TwoViewConfig()
        config.triangulation.rays_parallax_deg_thr = 2.0

        config = load_config("settings.yaml")
    """
    pyramid: PyramidConfig = field(default_factory=PyramidConfig)
    triangulation: TriangulationConfig = field(default_factory=TriangulationConfig)
    relative_pose: RelativePoseConfig = field(default_factory=RelativePoseConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)

    # Logging
    verbose: bool = True

    @classmethod
    def from_dict(cls, d: dict) -> "TwoViewConfig":
        """Create config from dictionary (e.g., loaded from YAML/JSON)."""
        return cls(
            pyramid=PyramidConfig(**d.get("pyramid", {})),
            triangulation=TriangulationConfig(**d.get("triangulation", {})),
            relative_pose=RelativePoseConfig(**d.get("relative_pose", {})),
            batch=BatchConfig(**d.get("batch", {})),
            verbose=d.get("verbose", True),
        )

    def to_dict(self) -> dict:
        """Convert config to dictionary (for saving to YAML/JSON)."""
        return asdict(self)


def load_config(path: Union[str, Path]) -> TwoViewConfig:
    """Load a TwoViewConfig from a .yaml/.yml/.json file."""
    obj = load_data(path)
    if not isinstance(obj, dict):
        raise ValueError(f"Expected a mapping in {path}, got {type(obj).__name__}")
    return TwoViewConfig.from_dict(obj)


def save_config(config: TwoViewConfig, path: Union[str, Path]) -> Path:
    """Write a TwoViewConfig to .yaml/.yml/.json."""
    return save_data(path, config.to_dict())


# ============================================================
# PRESET CONFIGURATIONS
# ============================================================

def get_default_config() -> TwoViewConfig:
    """Monocular perspective setup."""
    return TwoViewConfig()


def get_stereo_config() -> TwoViewConfig:
    """Stereo / RGB-D setup: stereo depth may replace two-view triangulation."""
    return TwoViewConfig(
        triangulation=TriangulationConfig(
            use_stereo_triangulation=True,
        ),
        relative_pose=RelativePoseConfig(
            model="essential",
        ),
    )


def get_equirectangular_config() -> TwoViewConfig:
    """Omnidirectional camera: monocular only."""
    return TwoViewConfig(
        triangulation=TriangulationConfig(
            use_stereo_triangulation=False,
        ),
    )
