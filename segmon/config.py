#!/usr/bin/env python3
"""
Unified configuration loader for segmon.

Load order (first found wins):
  1) SEGMON_CONFIG (env, absolute or relative to CWD)
  2) /etc/segmon/config.yaml
  3) <project_root>/config.yaml (derived from this file's location)
  4) <script_dir>/config.yaml (directory of the running script)
  5) ./config.yaml (current working directory)

Environment variables override file values when present.
"""
from __future__ import annotations
import copy
import math
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping

import yaml
from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap

_ROUND_TRIP_YAML = YAML(typ="rt")
_ROUND_TRIP_YAML.indent(mapping=2, sequence=4, offset=2)
_ROUND_TRIP_YAML.default_flow_style = False
_ROUND_TRIP_YAML.allow_unicode = True
_ROUND_TRIP_YAML.preserve_quotes = True

ETC_CONFIG_PATH = Path("/etc/segmon/config.yaml")

# 20 MiB, polled every 5 seconds, rollover requested at 95% of the limit
DEFAULT_MAX_SEGMENT_SIZE = 20_971_520
DEFAULT_CHECK_INTERVAL_MS = 5_000
DEFAULT_TRIGGER_THRESHOLD = 0.95
DEFAULT_SEGMENT_EXTENSION = ".mp4"

_DEFAULTS: Dict[str, Any] = {
    "segment": {
        "max_segment_size_bytes": DEFAULT_MAX_SEGMENT_SIZE,
        "check_interval_ms": DEFAULT_CHECK_INTERVAL_MS,
        "trigger_threshold_ratio": DEFAULT_TRIGGER_THRESHOLD,
        "segment_extension": DEFAULT_SEGMENT_EXTENSION,
    },
    "logging": {
        "dev_mode": False  # if True or ENV DEV=1, enable verbose debug
    },
}

_cfg_cache: Dict[str, Any] | None = None
_search_paths: list[Path] = []
_active_config_path: Path | None = None
_primary_config_path: Path | None = None


class ConfigPersistenceError(Exception):
    """Raised when configuration changes cannot be persisted."""


class SegmentConfigError(ValueError):
    """Raised when segment settings are missing or out of range."""


@dataclass(frozen=True)
class SegmentConfig:
    """Immutable rollover settings shared by one monitoring session."""

    max_segment_size_bytes: int = DEFAULT_MAX_SEGMENT_SIZE
    check_interval: float = DEFAULT_CHECK_INTERVAL_MS / 1000.0
    trigger_threshold_ratio: float = DEFAULT_TRIGGER_THRESHOLD
    segment_extension: str = DEFAULT_SEGMENT_EXTENSION

    def __post_init__(self) -> None:
        try:
            max_bytes = int(self.max_segment_size_bytes)
        except (TypeError, ValueError) as exc:
            raise SegmentConfigError(f"max_segment_size_bytes must be an integer: {exc}") from exc
        if isinstance(self.max_segment_size_bytes, bool) or max_bytes <= 0:
            raise SegmentConfigError("max_segment_size_bytes must be a positive integer")
        try:
            interval = float(self.check_interval)
        except (TypeError, ValueError) as exc:
            raise SegmentConfigError(f"check interval must be a number: {exc}") from exc
        if math.isnan(interval) or not interval > 0:
            raise SegmentConfigError("check interval must be greater than zero")
        try:
            ratio = float(self.trigger_threshold_ratio)
        except (TypeError, ValueError) as exc:
            raise SegmentConfigError(f"trigger_threshold_ratio must be a number: {exc}") from exc
        if math.isnan(ratio) or not 0.0 < ratio <= 1.0:
            raise SegmentConfigError("trigger_threshold_ratio must be within (0, 1]")
        ext = self.segment_extension
        if not isinstance(ext, str) or len(ext) < 2 or not ext.startswith("."):
            raise SegmentConfigError("segment_extension must look like '.mp4'")
        # Frozen dataclass: store the coerced values
        object.__setattr__(self, "max_segment_size_bytes", max_bytes)
        object.__setattr__(self, "check_interval", interval)
        object.__setattr__(self, "trigger_threshold_ratio", ratio)

    @property
    def trigger_size(self) -> int:
        """Byte count at which a rollover is requested."""
        return math.floor(self.max_segment_size_bytes * self.trigger_threshold_ratio)

    @classmethod
    def from_cfg(cls, cfg: Mapping[str, Any] | None = None) -> "SegmentConfig":
        if cfg is None:
            cfg = get_cfg()
        section = cfg.get("segment") if isinstance(cfg, Mapping) else None
        if not isinstance(section, Mapping):
            section = {}
        defaults = _DEFAULTS["segment"]
        try:
            max_bytes = int(section.get("max_segment_size_bytes", defaults["max_segment_size_bytes"]))
            interval_ms = float(section.get("check_interval_ms", defaults["check_interval_ms"]))
            ratio = float(section.get("trigger_threshold_ratio", defaults["trigger_threshold_ratio"]))
        except (TypeError, ValueError) as exc:
            raise SegmentConfigError(f"Invalid segment settings: {exc}") from exc
        extension = section.get("segment_extension", defaults["segment_extension"])
        return cls(
            max_segment_size_bytes=max_bytes,
            check_interval=interval_ms / 1000.0,
            trigger_threshold_ratio=ratio,
            segment_extension=extension,
        )

    def to_settings(self) -> Dict[str, Any]:
        interval_ms = self.check_interval * 1000.0
        return {
            "max_segment_size_bytes": int(self.max_segment_size_bytes),
            "check_interval_ms": int(interval_ms) if interval_ms.is_integer() else interval_ms,
            "trigger_threshold_ratio": float(self.trigger_threshold_ratio),
            "segment_extension": self.segment_extension,
        }


def _load_yaml_if_exists(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r") as f:
            data = yaml.safe_load(f) or {}
            if isinstance(data, dict):
                return data
    except (OSError, yaml.YAMLError) as exc:
        # Ignore parse errors and continue with other locations/defaults
        print(f"[config] WARNING: unable to load {path}: {exc}", file=sys.stderr, flush=True)
    return {}


def _candidate_search_paths(project_root: Path, script_dir: Path) -> list[Path]:
    search: list[Path] = []
    env_cfg = os.getenv("SEGMON_CONFIG")
    if env_cfg:
        search.append(Path(env_cfg).expanduser().resolve())
    search.extend(
        [
            ETC_CONFIG_PATH,
            project_root / "config.yaml",
            script_dir / "config.yaml",
            Path.cwd() / "config.yaml",
        ]
    )
    seen: set[Path] = set()
    ordered: list[Path] = []
    for candidate in search:
        try:
            resolved = candidate.resolve()
        except OSError:
            resolved = candidate
        if resolved in seen:
            continue
        seen.add(resolved)
        ordered.append(resolved)
    return ordered


def _resolve_primary_path(search: list[Path], active: Path | None) -> Path:
    env_cfg = os.getenv("SEGMON_CONFIG")
    if env_cfg:
        return Path(env_cfg).expanduser().resolve()

    if active is not None and active != ETC_CONFIG_PATH:
        return active

    for candidate in search:
        if str(candidate).startswith("/etc/"):
            continue
        return candidate
    return Path.cwd() / "config.yaml"


def _deep_merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in extra.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _apply_env_overrides(cfg: Dict[str, Any]) -> None:
    # DEV mode
    if os.getenv("DEV") == "1":
        cfg.setdefault("logging", {})["dev_mode"] = True

    env_map = {
        "SEGMENT_MAX_BYTES": ("max_segment_size_bytes", int),
        "SEGMENT_CHECK_INTERVAL_MS": ("check_interval_ms", int),
        "SEGMENT_TRIGGER_RATIO": ("trigger_threshold_ratio", float),
        "SEGMENT_EXTENSION": ("segment_extension", lambda s: s.strip()),
    }
    for env_key, (key, cast) in env_map.items():
        if env_key in os.environ:
            try:
                cfg.setdefault("segment", {})[key] = cast(os.environ[env_key])
            except ValueError:
                pass


def get_cfg() -> Dict[str, Any]:
    global _cfg_cache, _search_paths, _active_config_path, _primary_config_path
    if _cfg_cache is not None:
        return _cfg_cache

    cfg = copy.deepcopy(_DEFAULTS)

    # <root>/segmon -> <root>
    project_root = Path(__file__).resolve().parent.parent

    # Derive script directory (useful for tools run as ./tool.py)
    try:
        script_dir = Path(sys.argv[0]).resolve().parent
    except (IndexError, OSError):
        script_dir = Path.cwd()

    search = _candidate_search_paths(project_root, script_dir)
    _search_paths = list(search)

    active: Path | None = None
    for candidate in search:
        try:
            if candidate.exists():
                active = candidate
                break
        except OSError:
            pass

    for candidate in reversed(search):
        cfg = _deep_merge(cfg, _load_yaml_if_exists(candidate))

    _active_config_path = active
    _primary_config_path = _resolve_primary_path(search, active)

    _apply_env_overrides(cfg)
    _cfg_cache = cfg
    return cfg


def reload_cfg() -> Dict[str, Any]:
    global _cfg_cache
    _cfg_cache = None
    return get_cfg()


def primary_config_path() -> Path:
    global _primary_config_path
    if _primary_config_path is None:
        get_cfg()
    assert _primary_config_path is not None
    return _primary_config_path


def active_config_path() -> Path | None:
    global _active_config_path
    if _active_config_path is None:
        get_cfg()
    return _active_config_path


def search_paths() -> list[Path]:
    global _search_paths
    if not _search_paths:
        get_cfg()
    return list(_search_paths)


def _load_yaml_for_update(path: Path) -> MutableMapping[str, Any]:
    if path.exists():
        try:
            with path.open("r", encoding="utf-8") as handle:
                data = _ROUND_TRIP_YAML.load(handle)
        except Exception as exc:
            raise ConfigPersistenceError(f"Unable to read configuration: {exc}") from exc
        if isinstance(data, MutableMapping):
            return data
    return CommentedMap()


def _dump_yaml(path: Path, payload: MutableMapping[str, Any]) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigPersistenceError(f"Unable to create configuration directory: {exc}") from exc
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        with tmp_path.open("w", encoding="utf-8") as handle:
            _ROUND_TRIP_YAML.dump(payload, handle)
        os.replace(tmp_path, path)
    except OSError as exc:
        raise ConfigPersistenceError(f"Unable to write configuration: {exc}") from exc


def _persist_settings_section(section: str, settings: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(settings, dict):
        raise ConfigPersistenceError(f"{section} settings payload must be a mapping")

    primary_path = primary_config_path()
    updated = _load_yaml_for_update(primary_path)

    target = updated.get(section)
    if target is None:
        target = CommentedMap()
        updated[section] = target
    if not isinstance(target, MutableMapping):
        raise ConfigPersistenceError(f"Configuration section {section!r} is not a mapping")

    for key, value in settings.items():
        target[key] = copy.deepcopy(value)

    _dump_yaml(primary_path, updated)
    return reload_cfg().get(section, {})


def update_segment_settings(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Validate and persist the ``segment`` section, returning the reloaded values."""
    if not isinstance(settings, dict):
        raise ConfigPersistenceError("segment settings payload must be a mapping")
    unknown = set(settings) - set(_DEFAULTS["segment"])
    if unknown:
        raise SegmentConfigError(f"Unknown segment settings: {', '.join(sorted(unknown))}")
    merged = _deep_merge(get_cfg(), {"segment": settings})
    SegmentConfig.from_cfg(merged)
    return _persist_settings_section("segment", settings)


def dev_mode(cfg: Mapping[str, Any] | None = None) -> bool:
    if cfg is None:
        cfg = get_cfg()
    section = cfg.get("logging") if isinstance(cfg, Mapping) else None
    if isinstance(section, Mapping):
        return bool(section.get("dev_mode", False))
    return False


__all__ = [
    "ConfigPersistenceError",
    "DEFAULT_CHECK_INTERVAL_MS",
    "DEFAULT_MAX_SEGMENT_SIZE",
    "DEFAULT_SEGMENT_EXTENSION",
    "DEFAULT_TRIGGER_THRESHOLD",
    "SegmentConfig",
    "SegmentConfigError",
    "active_config_path",
    "dev_mode",
    "get_cfg",
    "primary_config_path",
    "reload_cfg",
    "search_paths",
    "update_segment_settings",
]
