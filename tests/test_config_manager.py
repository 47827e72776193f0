"""
Tests for configuration loading, environment overlay and validation.
"""
import json

import pytest
import yaml

from models.config import AppConfig
from models.errors import ConfigurationError
from services.config_manager import ConfigManager


def test_defaults_without_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    cfg = ConfigManager(environ={}).load_config()
    assert cfg.azure.max_poll_attempts == 60
    assert cfg.azure.poll_interval == 1.0
    assert cfg.cluster.vertical_gap == 25.0
    assert cfg.pipeline.max_concurrency == 3


def test_yaml_sections_are_applied(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "azure": {"endpoint": "https://vision.example/", "max_poll_attempts": "30"},
        "color": {"sent_ratio": 0.25},
        "noise": {"extra_patterns": "^encrypted$"},
        "pipeline": {"use_color_with_side_mapping": "yes"},
    }), encoding="utf-8")
    cfg = ConfigManager(str(path), environ={}).load_config()
    assert cfg.azure.endpoint == "https://vision.example/"
    assert cfg.azure.max_poll_attempts == 30
    assert cfg.color.sent_ratio == 0.25
    assert cfg.noise.extra_patterns == ["^encrypted$"]
    assert cfg.pipeline.use_color_with_side_mapping is True


def test_json_config(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"server": {"port": 9000}}), encoding="utf-8")
    assert ConfigManager(str(path), environ={}).load_config().server.port == 9000


def test_unknown_keys_are_ignored(tmp_path, caplog):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"ocr": {"language": "ch"}, "azure": {"region": "west"}}), encoding="utf-8")
    ConfigManager(str(path), environ={}).load_config()
    assert "unknown config section: ocr" in caplog.text
    assert "unknown config key: azure.region" in caplog.text


def test_environment_overrides_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"azure": {"endpoint": "https://file.example/"}}), encoding="utf-8")
    env = {
        "AZURE_VISION_ENDPOINT": "https://env.example/",
        "AZURE_VISION_KEY": " k3y ",
        "OCR_LOG_LEVEL": "debug",
        "PORT": "8123",
    }
    cfg = ConfigManager(str(path), environ=env).load_config()
    assert cfg.azure.endpoint == "https://env.example/"
    assert cfg.azure.subscription_key == "k3y"
    assert cfg.logging.level == "DEBUG"
    assert cfg.server.port == 8123


def test_invalid_values_fail_validation(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"pipeline": {"max_concurrency": 0}}), encoding="utf-8")
    with pytest.raises(ValueError, match="max_concurrency"):
        ConfigManager(str(path), environ={}).load_config()


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        ConfigManager(str(tmp_path / "nope.yaml"), environ={}).load_config()


def test_unsupported_extension(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text("x = 1", encoding="utf-8")
    with pytest.raises(ValueError):
        ConfigManager(str(path), environ={}).load_config()


def test_require_credentials_names_missing_variables(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    mgr = ConfigManager(environ={"AZURE_VISION_ENDPOINT": "https://env.example/"})
    with pytest.raises(ConfigurationError, match="AZURE_VISION_KEY"):
        mgr.require_credentials()


def test_require_credentials_passes(app_config):
    assert ConfigManager(environ={}).require_credentials(app_config) is app_config


def test_save_never_writes_the_key(tmp_path, app_config):
    path = tmp_path / "saved.yaml"
    ConfigManager(environ={}).save_config(app_config, str(path))
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert data["azure"]["subscription_key"] == ""
    assert data["azure"]["endpoint"] == app_config.azure.endpoint


def test_default_file_round_trips(tmp_path):
    path = tmp_path / "config.json"
    mgr = ConfigManager(str(path), environ={})
    mgr.create_default_config_file(str(path))
    assert mgr.reload_config().to_dict() == AppConfig().to_dict()
