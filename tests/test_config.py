"""Tests for configuration loading and the camera/pyramid readers."""

from __future__ import annotations

import json

import numpy as np
import pytest
import yaml

from data_io.camera import camera_from_dict, read_camera, read_pyramid
from data_io.parsing import extract_floats, load_data, save_data
from twoview.camera_models import EquirectangularCamera, FisheyeCamera, PerspectiveCamera, SetupType
from twoview.keyframe import ScalePyramid
from twoview.mapping import (
    TriangulationConfig,
    TwoViewConfig,
    get_default_config,
    get_equirectangular_config,
    get_stereo_config,
    load_config,
    save_config,
)


class TestTwoViewConfig:

    def test_defaults(self) -> None:
        config = get_default_config()
        assert config.triangulation.rays_parallax_deg_thr == 1.0
        assert config.triangulation.chi_sq_2d == pytest.approx(5.99146)
        assert config.triangulation.chi_sq_3d == pytest.approx(7.81473)
        assert config.pyramid.scale_factor == pytest.approx(1.2)
        assert config.batch.max_workers is None

    def test_dict_round_trip(self) -> None:
        config = TwoViewConfig()
        config.triangulation.rays_parallax_deg_thr = 2.0
        config.batch.chunk_size = 64

        restored = TwoViewConfig.from_dict(config.to_dict())

        assert restored == config

    def test_partial_dict(self) -> None:
        config = TwoViewConfig.from_dict({"triangulation": {"use_stereo_triangulation": False}})
        assert not config.triangulation.use_stereo_triangulation
        assert config.triangulation.rays_parallax_deg_thr == 1.0

    def test_unknown_key(self) -> None:
        with pytest.raises(TypeError):
            TwoViewConfig.from_dict({"triangulation": {"no_such_option": 1}})

    def test_load_yaml(self, tmp_path) -> None:
        path = tmp_path / "settings.yaml"
        path.write_text(yaml.safe_dump({"pyramid": {"scale_factor": 1.5, "num_levels": 4},
                                        "verbose": False}))

        config = load_config(path)

        assert config.pyramid.scale_factor == pytest.approx(1.5)
        assert config.pyramid.num_levels == 4
        assert not config.verbose
        assert ScalePyramid.from_config(config.pyramid).scale_factors.shape == (4,)

    @pytest.mark.parametrize("suffix", [".yaml", ".json"])
    def test_save_and_load(self, tmp_path, suffix) -> None:
        config = get_stereo_config()
        config.batch.max_workers = 4

        path = save_config(config, tmp_path / "out" / f"settings{suffix}")

        assert load_config(path) == config

    def test_load_json(self, tmp_path) -> None:
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"relative_pose": {"model": "homography"}}))
        assert load_config(path).relative_pose.model == "homography"

    def test_load_errors(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError):
            load_config(path)

    def test_presets(self) -> None:
        assert get_stereo_config().triangulation.use_stereo_triangulation
        assert get_stereo_config().relative_pose.model == "essential"
        assert not get_equirectangular_config().triangulation.use_stereo_triangulation
        assert TriangulationConfig().ratio_factor_coeff == pytest.approx(2.0)


class TestCameraFromDict:

    def test_flat_keys(self) -> None:
        cam = camera_from_dict({
            "Camera.name": "left",
            "Camera.setup": "stereo",
            "Camera.model": "perspective",
            "Camera.cols": 640, "Camera.rows": 480,
            "Camera.fx": 500.0, "Camera.fy": 500.0, "Camera.cx": 320.0, "Camera.cy": 240.0,
            "Camera.k1": 0.0, "Camera.k2": 0.0, "Camera.p1": 0.0, "Camera.p2": 0.0,
            "Camera.focal_x_baseline": 50.0,
        })

        assert isinstance(cam, PerspectiveCamera)
        assert cam.name == "left"
        assert cam.setup == SetupType.STEREO
        assert cam.true_baseline == pytest.approx(0.1)
        assert cam.distortion.shape == (5,)

    def test_nested_with_K(self) -> None:
        cam = camera_from_dict({"camera": {
            "model": "Fisheye", "cols": 640, "rows": 480,
            "K": [[400.0, 0.0, 320.0], [0.0, 400.0, 240.0], [0.0, 0.0, 1.0]],
            "dist": [0.01, 0.0, 0.0, 0.0],
        }})

        assert isinstance(cam, FisheyeCamera)
        assert cam.fx == pytest.approx(400.0)

    def test_equirectangular(self) -> None:
        cam = camera_from_dict({"model": "equirectangular", "cols": 1920, "rows": 960})
        assert isinstance(cam, EquirectangularCamera)

    def test_errors(self) -> None:
        with pytest.raises(ValueError, match="Unknown camera model"):
            camera_from_dict({"model": "orthographic", "cols": 640, "rows": 480})
        with pytest.raises(ValueError):
            camera_from_dict({"model": "perspective", "fx": 500.0})
        with pytest.raises(ValueError):
            camera_from_dict({"model": "perspective", "cols": 640, "rows": 480})


class TestReaders:

    def test_read_camera_yaml(self, tmp_path) -> None:
        path = tmp_path / "camera.yaml"
        path.write_text(yaml.safe_dump({"Camera.model": "perspective", "Camera.cols": 640,
                                        "Camera.rows": 480, "Camera.fx": 500.0, "Camera.fy": 500.0,
                                        "Camera.cx": 320.0, "Camera.cy": 240.0}))
        cam = read_camera(path)
        np.testing.assert_allclose(cam.K, [[500.0, 0.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]])

    def test_read_camera_text(self, tmp_path) -> None:
        path = tmp_path / "K.txt"
        path.write_text("500 0 320\n0 500 240\n0 0 1\n-0.1 0.01 0 0 0\n")

        with pytest.raises(ValueError):
            read_camera(path)
        cam = read_camera(path, cols=640, rows=480)

        assert cam.name == "K"
        np.testing.assert_allclose(cam.distortion, [-0.1, 0.01, 0.0, 0.0, 0.0])

    def test_read_pyramid(self, tmp_path) -> None:
        assert read_pyramid({"Feature.scale_factor": 1.3, "Feature.num_levels": 6}).num_levels == 6
        assert read_pyramid({"pyramid": {"scale_factor": 1.1}}).scale_factor == pytest.approx(1.1)

        path = tmp_path / "feature.json"
        path.write_text(json.dumps({"scale_factor": 1.25, "num_levels": 5}))
        assert read_pyramid(path).level_sigma_sq[1] == pytest.approx(1.25 ** 2)


OPENCV_SETTINGS = """%YAML:1.0
---
Camera.name: "EuRoC left"
Camera.setup: "stereo"
Camera.model: "perspective"
Camera.cols: 752
Camera.rows: 480
Camera.fx: 458.654
Camera.fy: 457.296
Camera.cx: 367.215
Camera.cy: 248.375
Camera.k1: -0.28340811
Camera.k2: 0.07395907
Camera.p1: 0.00019359
Camera.p2: 1.76187114e-05
Camera.focal_x_baseline: 50.2
Feature.scale_factor: 1.2
Feature.num_levels: 8
T_cam: !!opencv-matrix
   rows: 2
   cols: 2
   dt: d
   data: [ 1., 0., 0., 1. ]
"""


class TestParsing:

    def test_opencv_file_storage(self, tmp_path) -> None:
        path = tmp_path / "EuRoC.yaml"
        path.write_text(OPENCV_SETTINGS)

        obj = load_data(path)
        np.testing.assert_array_equal(obj["T_cam"], np.eye(2))

        cam = read_camera(path)
        assert isinstance(cam, PerspectiveCamera)
        assert cam.setup == SetupType.STEREO
        assert cam.cols == 752
        assert cam.distortion[0] == pytest.approx(-0.28340811)
        assert read_pyramid(path).num_levels == 8

    def test_extract_floats(self) -> None:
        assert extract_floats("fx=500. fy=4.5e2, -3") == [500.0, 450.0, -3.0]

    def test_save_data_rejects_unknown_suffix(self, tmp_path) -> None:
        with pytest.raises(ValueError):
            save_data(tmp_path / "settings.ini", {"a": 1})
