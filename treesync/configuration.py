"""Configuration loading for the treesync service."""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Mapping, MutableMapping, Optional, Tuple

import yaml

REPO_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_DIR = REPO_ROOT / "config"
CONFIG_DIR_ENV = "TREESYNC_CONFIG_DIR"

DiagnosticLevel = Literal["info", "warning", "error"]
ConfigurationStatus = Literal["ready", "invalid"]


SchemaSpec = Dict[str, Any]


CONFIG_SCHEMA: SchemaSpec = {
    "logging": {
        "type": dict,
        "schema": {
            "level": {"type": str, "default": "INFO"},
            "directory": {"type": str, "default": "logs"},
            "structured": {"type": bool, "default": True},
        },
        "default": {},
    },
    "sync": {
        "type": dict,
        "schema": {
            "content_dir": {"type": str, "default": "content"},
            "session_timeout": {"type": (int, float), "default": 60.0},
            "batch_size": {"type": int, "default": 10},
            "max_workers": {"type": int, "default": 4},
            "exclude_patterns": {
                "type": list,
                "item_type": str,
                "default_factory": list,
            },
        },
        "default": {},
    },
    "api": {
        "type": dict,
        "schema": {
            "host": {"type": str, "default": "0.0.0.0"},
            "port": {"type": int, "default": 3000},
            "prefix": {"type": str, "default": "/api/v1"},
            "cors_origins": {
                "type": list,
                "item_type": str,
                "default_factory": list,
            },
        },
        "default": {},
    },
    "rebuild": {
        "type": dict,
        "schema": {
            "hook_url": {"type": str, "default": ""},
            "service_name": {"type": str, "default": ""},
            "timeout": {"type": (int, float), "default": 10.0},
        },
        "default": {},
    },
}


def _milliseconds(raw: str) -> float:
    return int(raw) / 1000.0


# Environment variable -> (section, key, converter)
ENV_OVERRIDES: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    "CONTENT_DIR": ("sync", "content_dir", str),
    "UPDATE_SESSION_TIMEOUT": ("sync", "session_timeout", _milliseconds),
    "BATCH_SIZE": ("sync", "batch_size", int),
    "TREESYNC_MAX_WORKERS": ("sync", "max_workers", int),
    "TREESYNC_LOG_LEVEL": ("logging", "level", str),
    "TREESYNC_LOG_DIR": ("logging", "directory", str),
    "TREESYNC_HOST": ("api", "host", str),
    "TREESYNC_PORT": ("api", "port", int),
    "REBUILD_HOOK_URL": ("rebuild", "hook_url", str),
    "QUARTZ_SERVICE_NAME": ("rebuild", "service_name", str),
}


@dataclass
class Diagnostic:
    """Represents a configuration validation or loading issue."""

    level: DiagnosticLevel
    message: str
    source: Optional[Path] = None


@dataclass
class ConfigurationBundle:
    """All configuration data treesync needs at runtime."""

    status: ConfigurationStatus
    merged: Dict[str, Any] = field(default_factory=dict)
    repo_defaults: Dict[str, Any] = field(default_factory=dict)
    overrides: Dict[str, Any] = field(default_factory=dict)
    env_overrides: Dict[str, Any] = field(default_factory=dict)
    files_loaded: List[Path] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    log_path: Optional[Path] = None

    def section(self, name: str) -> Dict[str, Any]:
        return (self.merged.get(name, {}) or {}) if self.merged else {}


@dataclass
class SyncSettings:
    """Typed view of the ``sync`` section."""

    content_dir: Path = Path("content")
    session_timeout: float = 60.0
    batch_size: int = 10
    max_workers: int = 4
    exclude_patterns: tuple = ()

    @classmethod
    def from_bundle(cls, bundle: ConfigurationBundle) -> "SyncSettings":
        raw = bundle.section("sync")
        return cls(
            content_dir=Path(str(raw.get("content_dir", "content"))).expanduser(),
            session_timeout=float(raw.get("session_timeout", 60.0)),
            batch_size=max(1, int(raw.get("batch_size", 10))),
            max_workers=max(1, int(raw.get("max_workers", 4))),
            exclude_patterns=tuple(raw.get("exclude_patterns", [])),
        )


@dataclass
class APISettings:
    """Typed view of the ``api`` section."""

    host: str = "0.0.0.0"
    port: int = 3000
    prefix: str = "/api/v1"
    cors_origins: tuple = ()

    @classmethod
    def from_bundle(cls, bundle: ConfigurationBundle) -> "APISettings":
        raw = bundle.section("api")
        prefix = "/" + str(raw.get("prefix", "/api/v1")).strip("/")
        return cls(
            host=str(raw.get("host", "0.0.0.0")),
            port=int(raw.get("port", 3000)),
            prefix=prefix if prefix != "/" else "",
            cors_origins=tuple(raw.get("cors_origins", [])),
        )


def load_runtime_configuration(
    config_dir: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ConfigurationBundle:
    """Load repo defaults, directory overrides and environment overrides."""

    env_source = os.environ if env is None else env
    diagnostics: List[Diagnostic] = []
    files_loaded: List[Path] = []

    repo_defaults, repo_files = _load_directory_configs(
        DEFAULT_CONFIG_DIR,
        diagnostics,
        label="repo defaults",
    )
    files_loaded.extend(repo_files)

    overrides: Dict[str, Any] = {}
    resolved_dir = config_dir
    if resolved_dir is None and env_source.get(CONFIG_DIR_ENV):
        resolved_dir = Path(env_source[CONFIG_DIR_ENV]).expanduser()
    if resolved_dir is not None:
        overrides, override_files = _load_directory_configs(
            resolved_dir,
            diagnostics,
            label="overrides",
        )
        files_loaded.extend(override_files)

    env_overrides = _environment_overrides(env_source, diagnostics)

    merged = deepcopy(repo_defaults)
    _deep_merge_dicts(merged, overrides)
    _deep_merge_dicts(merged, env_overrides)

    _validate_schema(merged, diagnostics)

    status: ConfigurationStatus = "ready"
    if any(diag.level == "error" for diag in diagnostics):
        status = "invalid"

    return ConfigurationBundle(
        status=status,
        merged=merged,
        repo_defaults=repo_defaults,
        overrides=overrides,
        env_overrides=env_overrides,
        files_loaded=files_loaded,
        diagnostics=diagnostics,
    )


def _environment_overrides(
    env: Mapping[str, str],
    diagnostics: List[Diagnostic],
) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    for variable, (section, key, convert) in ENV_OVERRIDES.items():
        raw = env.get(variable)
        if raw is None or raw == "":
            continue
        try:
            value = convert(raw)
        except ValueError:
            diagnostics.append(
                Diagnostic(
                    level="error",
                    message=f"Ignoring environment variable {variable}={raw!r}: not a valid value.",
                )
            )
            continue
        data.setdefault(section, {})[key] = value
    return data


def _load_directory_configs(
    directory: Path,
    diagnostics: List[Diagnostic],
    label: str,
) -> Tuple[Dict[str, Any], List[Path]]:
    """Load all YAML files from a directory, merging them in order."""

    data: Dict[str, Any] = {}
    loaded_files: List[Path] = []

    if not directory.exists():
        diagnostics.append(
            Diagnostic(
                level="warning",
                message=f"No configuration directory found at '{directory}' ({label}).",
                source=directory,
            )
        )
        return data, loaded_files

    if not directory.is_dir():
        diagnostics.append(
            Diagnostic(
                level="error",
                message=f"Configuration path '{directory}' ({label}) is not a directory.",
                source=directory,
            )
        )
        return data, loaded_files

    yaml_files = sorted(directory.glob("*.yml")) + sorted(directory.glob("*.yaml"))

    for yaml_file in yaml_files:
        try:
            content = yaml.safe_load(yaml_file.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            diagnostics.append(
                Diagnostic(
                    level="error",
                    message=f"Failed to parse '{yaml_file}': {exc}",
                    source=yaml_file,
                )
            )
            continue

        if content is None:
            loaded_files.append(yaml_file)
            continue

        if not isinstance(content, MutableMapping):
            diagnostics.append(
                Diagnostic(
                    level="warning",
                    message=f"Ignoring '{yaml_file}' because it does not contain a mapping.",
                    source=yaml_file,
                )
            )
            continue

        _deep_merge_dicts(data, dict(content))
        loaded_files.append(yaml_file)

    if not loaded_files:
        diagnostics.append(
            Diagnostic(
                level="info",
                message=f"No YAML files found under '{directory}' ({label}).",
                source=directory,
            )
        )

    return data, loaded_files


def _deep_merge_dicts(dest: MutableMapping[str, Any], source: Mapping[str, Any]) -> None:
    """Recursively merge mapping values."""

    for key, value in source.items():
        if (
            key in dest
            and isinstance(dest[key], MutableMapping)
            and isinstance(value, Mapping)
        ):
            _deep_merge_dicts(dest[key], value)
        else:
            dest[key] = deepcopy(value)


def _default_from_spec(spec: SchemaSpec) -> Any:
    if "default_factory" in spec and callable(spec["default_factory"]):
        return spec["default_factory"]()
    return deepcopy(spec.get("default"))


def _validate_schema(config: Dict[str, Any], diagnostics: List[Diagnostic]) -> None:
    _validate_section(config, CONFIG_SCHEMA, "config", diagnostics)


def _validate_section(
    target: Dict[str, Any],
    schema: SchemaSpec,
    path: str,
    diagnostics: List[Diagnostic],
) -> None:
    if not isinstance(target, dict):
        diagnostics.append(
            Diagnostic(
                level="error",
                message=f"Configuration section '{path}' must be a mapping.",
            )
        )
        return

    for key in list(target.keys()):
        if key not in schema:
            diagnostics.append(
                Diagnostic(
                    level="warning",
                    message=f"Unknown configuration key '{path}.{key}'.",
                )
            )

    for key, spec in schema.items():
        child_path = f"{path}.{key}"
        if key not in target:
            if "default" in spec or "default_factory" in spec:
                target[key] = _default_from_spec(spec)
                if spec.get("type") is dict:
                    _validate_section(target[key], spec.get("schema", {}), child_path, diagnostics)
            continue

        value = target[key]
        expected_type = spec.get("type")

        if expected_type is dict:
            if not isinstance(value, dict):
                diagnostics.append(
                    Diagnostic(
                        level="error",
                        message=f"'{child_path}' must be a mapping.",
                    )
                )
                target[key] = _default_from_spec(spec) or {}
                value = target[key]
            _validate_section(value, spec.get("schema", {}), child_path, diagnostics)
        elif expected_type is list:
            if not isinstance(value, list):
                diagnostics.append(
                    Diagnostic(
                        level="error",
                        message=f"'{child_path}' must be a list.",
                    )
                )
                target[key] = _default_from_spec(spec) or []
                continue
            item_type = spec.get("item_type")
            if item_type is not None:
                filtered: List[Any] = []
                for idx, item in enumerate(value):
                    if isinstance(item, item_type):
                        filtered.append(item)
                    else:
                        diagnostics.append(
                            Diagnostic(
                                level="error",
                                message=(
                                    f"'{child_path}[{idx}]' must be of type "
                                    f"{item_type.__name__}."
                                ),
                            )
                        )
                target[key] = filtered
        elif expected_type and (
            not isinstance(value, expected_type) or isinstance(value, bool) and expected_type is not bool
        ):
            if isinstance(expected_type, tuple):
                type_name = ", ".join(t.__name__ for t in expected_type)
            else:
                type_name = expected_type.__name__
            diagnostics.append(
                Diagnostic(
                    level="error",
                    message=f"'{child_path}' must be of type {type_name}.",
                )
            )
            target[key] = _default_from_spec(spec)


__all__ = [
    "APISettings",
    "ConfigurationBundle",
    "ConfigurationStatus",
    "DEFAULT_CONFIG_DIR",
    "Diagnostic",
    "SyncSettings",
    "load_runtime_configuration",
]
