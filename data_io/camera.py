from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Optional, Union

import numpy as np

from twoview.camera_models import (
    CameraModel,
    EquirectangularCamera,
    FisheyeCamera,
    ModelType,
    PerspectiveCamera,
    SetupType,
)
from twoview.keyframe import ScalePyramid

from .parsing import extract_floats, load_data


# -------------------------
# Public, format-agnostic API
# -------------------------

def read_camera(path: Union[str, Path], *, cols: Optional[int] = None, rows: Optional[int] = None) -> CameraModel:
    """
    Read a camera model from .yaml/.json/.txt.

    Structured files describe any model (see camera_from_dict). A plain text
    file holds a 3x3 K followed by optional distortion coefficients and
    yields a monocular perspective camera; `cols`/`rows` are required then.
    """
    obj = load_data(path)
    if isinstance(obj, str):
        if cols is None or rows is None:
            raise ValueError("cols and rows are required when reading K from plain text")
        return _camera_from_text(obj, cols, rows, name=Path(path).stem)
    if isinstance(obj, Mapping):
        return camera_from_dict(obj)
    raise ValueError(f"Could not read a camera from {path}")


def read_pyramid(path_or_obj: Union[str, Path, Mapping[str, Any]]) -> ScalePyramid:
    """Read the feature scale pyramid ("scale_factor", "num_levels")."""
    obj = path_or_obj if isinstance(path_or_obj, Mapping) else load_data(path_or_obj)
    obj = _flatten(obj, "Feature.")
    if isinstance(obj.get("pyramid"), Mapping):
        obj = obj["pyramid"]
    return ScalePyramid(
        scale_factor=float(obj.get("scale_factor", 1.2)),
        num_levels=int(obj.get("num_levels", 8)),
    )


def camera_from_dict(d: Mapping[str, Any]) -> CameraModel:
    """
    Build a camera model from a mapping.

    Accepted forms:
      - {"camera": {...}} or the camera fields at top level
      - flat "Camera.xxx" keys, e.g. {"Camera.model": "perspective", "Camera.fx": ...}

    Fields: name, model, setup, cols, rows, fx, fy, cx, cy,
            k1, k2, p1, p2, k3 (perspective) or k1..k4 (fisheye) or "dist",
            focal_x_baseline (stereo / RGB-D).
    """
    d = _flatten(d, "Camera.")
    if isinstance(d.get("camera"), Mapping):
        d = d["camera"]

    model = _parse_enum(ModelType, d.get("model", "perspective"), "model")
    setup = _parse_enum(SetupType, d.get("setup", "monocular"), "setup")
    name = str(d.get("name", model.value))

    if "cols" not in d or "rows" not in d:
        raise ValueError("Camera requires 'cols' and 'rows'")
    cols, rows = int(d["cols"]), int(d["rows"])

    if model == ModelType.EQUIRECTANGULAR:
        return EquirectangularCamera(name=name, cols=cols, rows=rows, setup=setup)

    fx, fy, cx, cy = _intrinsics_from_obj(d)
    focal_x_baseline = float(d.get("focal_x_baseline", 0.0))

    if model == ModelType.FISHEYE:
        dist = _dist_from_obj(d, ("k1", "k2", "k3", "k4"))
        return FisheyeCamera(name=name, setup=setup, cols=cols, rows=rows,
                             fx=fx, fy=fy, cx=cx, cy=cy,
                             distortion=dist if dist is not None else np.zeros(4),
                             focal_x_baseline=focal_x_baseline)

    dist = _dist_from_obj(d, ("k1", "k2", "p1", "p2", "k3"))
    return PerspectiveCamera(name=name, setup=setup, cols=cols, rows=rows,
                             fx=fx, fy=fy, cx=cx, cy=cy,
                             distortion=dist, focal_x_baseline=focal_x_baseline)


# -------------------------
# Domain decoding helpers (private)
# -------------------------

def _flatten(d: Mapping[str, Any], prefix: str) -> dict:
    """Strip a "Camera."-style prefix from flat keys; other keys pass through."""
    out = {}
    for k, v in d.items():
        key = k[len(prefix):] if isinstance(k, str) and k.startswith(prefix) else k
        out[key] = v
    return out


def _parse_enum(enum_cls, value: Any, what: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        options = ", ".join(e.value for e in enum_cls)
        raise ValueError(f"Unknown camera {what}: {value!r}. Use one of: {options}") from None


def _intrinsics_from_obj(d: Mapping[str, Any]):
    """fx, fy, cx, cy from explicit keys or from a "K" matrix."""
    if all(k in d for k in ("fx", "fy", "cx", "cy")):
        fx = float(d["fx"])
        fy = float(d["fy"])
        cx = float(d["cx"])
        cy = float(d["cy"])
    elif "K" in d:
        K = _as_3x3(d["K"])
        _validate_K(K)
        fx, fy, cx, cy = float(K[0, 0]), float(K[1, 1]), float(K[0, 2]), float(K[1, 2])
    else:
        raise ValueError("Could not extract intrinsics (need fx/fy/cx/cy or K).")
    return fx, fy, cx, cy


def _dist_from_obj(d: Mapping[str, Any], names) -> Optional[np.ndarray]:
    """Distortion from a "dist" list or from named coefficients (missing ones are 0)."""
    if d.get("dist") is not None:
        return _as_1d(d["dist"])
    if any(n in d for n in names):
        return np.array([float(d.get(n, 0.0)) for n in names], dtype=np.float64)
    return None


def _camera_from_text(text: str, cols: int, rows: int, name: str) -> PerspectiveCamera:
    vals = extract_floats(text)
    if len(vals) < 9:
        raise ValueError(f"Expected >=9 numbers for K, got {len(vals)}")
    K = np.array(vals[:9], dtype=np.float64).reshape(3, 3)
    _validate_K(K)
    dist = np.array(vals[9:], dtype=np.float64) if len(vals) > 9 else None
    return PerspectiveCamera(name=name, setup=SetupType.MONOCULAR, cols=cols, rows=rows,
                             fx=float(K[0, 0]), fy=float(K[1, 1]), cx=float(K[0, 2]), cy=float(K[1, 2]),
                             distortion=dist)


def _as_3x3(x: Any) -> np.ndarray:
    arr = np.array(x, dtype=np.float64)
    if arr.size != 9:
        raise ValueError(f"Expected 9 values for 3x3, got {arr.size}")
    return arr.reshape(3, 3)


def _as_1d(x: Any) -> np.ndarray:
    arr = np.array(x, dtype=np.float64).reshape(-1)
    return arr


def _validate_K(K: np.ndarray) -> None:
    if K.shape != (3, 3):
        raise ValueError(f"K must be 3x3, got {K.shape}")

    if not np.isfinite(K).all():
        raise ValueError("K contains non-finite values.")

    if abs(K[2, 2] - 1.0) > 1e-6:
        raise ValueError(f"Expected K[2,2] ~ 1, got {K[2,2]}")

    fx, fy = K[0, 0], K[1, 1]
    if fx <= 0 or fy <= 0:
        raise ValueError(f"Invalid focal lengths fx={fx}, fy={fy}")
