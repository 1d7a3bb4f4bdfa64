"""Tests covering YAML loading and environment variable overrides for segment config."""

from __future__ import annotations

from pathlib import Path

import pytest

from segmon import config as config_module
from segmon.config import SegmentConfig, SegmentConfigError

_ENV_KEYS = (
    "DEV",
    "SEGMENT_MAX_BYTES",
    "SEGMENT_CHECK_INTERVAL_MS",
    "SEGMENT_TRIGGER_RATIO",
    "SEGMENT_EXTENSION",
)


def _reset_config_state(monkeypatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(config_module, "_cfg_cache", None, raising=False)
    monkeypatch.setattr(config_module, "_search_paths", [], raising=False)
    monkeypatch.setattr(config_module, "_active_config_path", None, raising=False)
    monkeypatch.setattr(config_module, "_primary_config_path", None, raising=False)


def test_defaults_without_config_file(monkeypatch, tmp_path: Path) -> None:
    _reset_config_state(monkeypatch)
    monkeypatch.setenv("SEGMON_CONFIG", str(tmp_path / "missing.yaml"))

    cfg = config_module.get_cfg()
    segment = SegmentConfig.from_cfg(cfg)

    assert segment.max_segment_size_bytes == 20_971_520
    assert segment.check_interval == 5.0
    assert segment.trigger_threshold_ratio == 0.95
    assert segment.segment_extension == ".mp4"
    assert segment.trigger_size == 19_923_044
    assert config_module.dev_mode(cfg) is False
    assert config_module.primary_config_path() == (tmp_path / "missing.yaml").resolve()


def test_yaml_values_and_env_overrides(monkeypatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "segment:\n"
        "  max_segment_size_bytes: 104857600\n"
        "  check_interval_ms: 1000\n"
        "  segment_extension: .mkv\n"
    )
    _reset_config_state(monkeypatch)
    monkeypatch.setenv("SEGMON_CONFIG", str(config_path))
    monkeypatch.setenv("SEGMENT_TRIGGER_RATIO", "0.9")
    monkeypatch.setenv("SEGMENT_CHECK_INTERVAL_MS", "not-a-number")
    monkeypatch.setenv("DEV", "1")

    cfg = config_module.get_cfg()
    segment = SegmentConfig.from_cfg(cfg)

    assert segment.max_segment_size_bytes == 104_857_600
    assert segment.check_interval == 1.0
    assert segment.trigger_threshold_ratio == 0.9
    assert segment.segment_extension == ".mkv"
    assert config_module.dev_mode(cfg) is True
    assert config_module.active_config_path() == config_path.resolve()


def test_env_max_bytes_override(monkeypatch, tmp_path: Path) -> None:
    _reset_config_state(monkeypatch)
    monkeypatch.setenv("SEGMON_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("SEGMENT_MAX_BYTES", "1000")

    segment = SegmentConfig.from_cfg(config_module.reload_cfg())
    assert segment.trigger_size == 950


@pytest.mark.parametrize(
    "settings",
    [
        {"max_segment_size_bytes": 0},
        {"max_segment_size_bytes": "big"},
        {"check_interval_ms": 0},
        {"trigger_threshold_ratio": 1.5},
        {"trigger_threshold_ratio": 0},
        {"segment_extension": "mp4"},
    ],
)
def test_invalid_segment_settings_rejected(settings) -> None:
    with pytest.raises(SegmentConfigError):
        SegmentConfig.from_cfg({"segment": settings})


def test_update_segment_settings_persists(monkeypatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "# recorder configuration\n"
        "segment:\n"
        "  max_segment_size_bytes: 1048576  # hard limit\n"
        "logging:\n"
        "  dev_mode: false\n"
    )
    _reset_config_state(monkeypatch)
    monkeypatch.setenv("SEGMON_CONFIG", str(config_path))

    section = config_module.update_segment_settings({"trigger_threshold_ratio": 0.8})

    assert section["trigger_threshold_ratio"] == 0.8
    assert section["max_segment_size_bytes"] == 1_048_576
    text = config_path.read_text()
    assert "# hard limit" in text
    assert "dev_mode: false" in text
    assert SegmentConfig.from_cfg(config_module.get_cfg()).trigger_size == 838_860


def test_update_segment_settings_validates(monkeypatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("segment:\n  check_interval_ms: 500\n")
    _reset_config_state(monkeypatch)
    monkeypatch.setenv("SEGMON_CONFIG", str(config_path))

    with pytest.raises(SegmentConfigError):
        config_module.update_segment_settings({"trigger_threshold_ratio": 2.0})
    with pytest.raises(SegmentConfigError):
        config_module.update_segment_settings({"chunk_size": 1})

    assert config_path.read_text() == "segment:\n  check_interval_ms: 500\n"


def test_segment_config_coerces_numeric_strings() -> None:
    segment = SegmentConfig(max_segment_size_bytes="2048", check_interval="5", trigger_threshold_ratio="0.5")

    assert segment.max_segment_size_bytes == 2048
    assert segment.check_interval == 5.0
    assert segment.trigger_threshold_ratio == 0.5
    assert segment.trigger_size == 1024


@pytest.mark.parametrize(
    "kwargs",
    [
        {"check_interval": "soon"},
        {"check_interval": None},
        {"trigger_threshold_ratio": None},
        {"max_segment_size_bytes": "big"},
        {"max_segment_size_bytes": True},
    ],
)
def test_segment_config_rejects_non_numeric_values(kwargs) -> None:
    with pytest.raises(SegmentConfigError):
        SegmentConfig(**kwargs)
