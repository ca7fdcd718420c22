import logging
import math
from pathlib import Path

import pytest

from facedetect.config import AppConfig, DetectorConfig, RecognizerConfig, config_from_mapping, load_config
from facedetect.errors import ConfigurationError

DEFAULT_YAML = Path(__file__).resolve().parents[1] / "config" / "default.yaml"


def test_defaults():
    cfg = load_config()
    assert cfg.detector.scale_factor == 1.1
    assert cfg.detector.min_neighbors == 3
    assert cfg.detector.min_size == (30, 30)
    assert cfg.detector.scan_step == 2
    assert cfg.recognizer.face_size == (150, 150)
    assert math.isinf(cfg.recognizer.threshold)
    assert (cfg.bands.excellent, cfg.bands.good, cfg.bands.weak) == (35.0, 65.0, 100.0)
    assert cfg.paths.model_path == "face_recognizer_model.npz"
    assert cfg.paths.names_path == "face_names_map.json"


def test_shipped_yaml_matches_defaults():
    cfg = load_config(DEFAULT_YAML)
    default = AppConfig()
    assert cfg.detector == default.detector
    assert cfg.bands == default.bands
    assert cfg.paths == default.paths
    assert cfg.camera == default.camera
    assert math.isinf(cfg.recognizer.threshold)


def test_yaml_overrides(tmp_path):
    p = tmp_path / "c.yaml"
    p.write_text(
        "detector:\n  scale_factor: 1.2\n  min_size: [40, 40]\n"
        "recognizer:\n  threshold: 80\n"
        "camera:\n  index: 2\n"
    )
    cfg = load_config(p)
    assert cfg.detector.scale_factor == 1.2
    assert cfg.detector.min_size == (40, 40)
    assert cfg.recognizer.threshold == 80.0
    assert cfg.camera.index == 2
    assert cfg.detector.min_neighbors == 3


def test_unknown_keys_ignored(tmp_path, caplog):
    p = tmp_path / "c.yaml"
    p.write_text("detector:\n  flavour: vanilla\nextras:\n  a: 1\n")
    with caplog.at_level(logging.WARNING):
        cfg = load_config(p)
    assert cfg.detector == DetectorConfig()
    assert "flavour" in caplog.text


def test_empty_file_gives_defaults(tmp_path):
    p = tmp_path / "c.yaml"
    p.write_text("")
    assert load_config(p) == AppConfig()


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(tmp_path / "absent.yaml")


def test_invalid_yaml(tmp_path):
    p = tmp_path / "c.yaml"
    p.write_text("detector: [unclosed\n")
    with pytest.raises(ConfigurationError):
        load_config(p)


@pytest.mark.parametrize("raw", [
    ["not", "a", "mapping"],
    {"detector": "oops"},
    {"detector": {"scale_factor": 1.0}},
    {"detector": {"min_neighbors": 0}},
    {"detector": {"scan_step": 0}},
    {"bands": {"excellent": 70}},
    {"recognizer": {"face_size": [10, 10], "grid_x": 16}},
    {"recognizer": {"threshold": -1}},
])
def test_invalid_values(raw):
    with pytest.raises(ConfigurationError):
        config_from_mapping(raw)


def test_recognizer_validation():
    with pytest.raises(ConfigurationError):
        RecognizerConfig(neighbors=20)
    with pytest.raises(ConfigurationError):
        RecognizerConfig(radius=0)
