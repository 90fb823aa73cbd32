from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, List, Union

import numpy as np
import yaml


def extract_floats(text: str) -> List[float]:
    """
    Extract floats/ints/scientific-notation numbers from arbitrary text.
    """
    pattern = r"[-+]?(?:\d*\.\d+|\d+\.?)(?:[eE][-+]?\d+)?"
    return [float(x) for x in re.findall(pattern, text)]


class SettingsLoader(yaml.SafeLoader):
    """
    SafeLoader that also reads OpenCV FileStorage files, the usual format of
    SLAM settings (a "%YAML:1.0" header and "!!opencv-matrix" nodes).
    """


def _construct_opencv_matrix(loader: SettingsLoader, node: yaml.Node) -> np.ndarray:
    m = loader.construct_mapping(node, deep=True)
    data = np.asarray(m["data"], dtype=np.float64)
    return data.reshape(int(m["rows"]), int(m["cols"]))


SettingsLoader.add_constructor("tag:yaml.org,2002:opencv-matrix", _construct_opencv_matrix)


def parse_yaml(text: str) -> Any:
    # PyYAML only accepts "%YAML 1.x"; OpenCV writes "%YAML:1.0"
    stripped = text.lstrip()
    if stripped.startswith("%YAML:"):
        text = stripped.partition("\n")[2]
    return yaml.load(text, Loader=SettingsLoader)


def load_data(path: Union[str, Path]) -> Any:
    """
    Load a file into a Python object based on file extension.

    - .json -> parsed dict/list
    - .yaml/.yml -> parsed dict/list, OpenCV matrices become numpy arrays
    - otherwise -> raw text (str)

    The contents are not interpreted here.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    suf = path.suffix.lower()
    text = path.read_text(encoding="utf-8", errors="ignore")

    if suf == ".json":
        return json.loads(text)

    if suf in (".yaml", ".yml"):
        return parse_yaml(text)

    return text


def save_data(path: Union[str, Path], obj: Any) -> Path:
    """Write a dict/list as .json or .yaml/.yml, creating parent directories."""
    path = Path(path)
    suf = path.suffix.lower()
    if suf not in (".json", ".yaml", ".yml"):
        raise ValueError(f"Unsupported file type: {path.suffix!r}. Use .json, .yaml or .yml")

    path.parent.mkdir(parents=True, exist_ok=True)
    if suf == ".json":
        path.write_text(json.dumps(obj, indent=2), encoding="utf-8")
    else:
        path.write_text(yaml.safe_dump(obj, sort_keys=False), encoding="utf-8")
    return path
