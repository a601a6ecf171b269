"""Wallet-aware configuration loading for Harbor."""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, MutableMapping, Optional, Tuple

import yaml

REPO_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_DIR = REPO_ROOT / "config"
DEFAULT_WALLET_DIR = "~/.harbor"

DiagnosticLevel = Literal["info", "warning", "error"]
ConfigurationStatus = Literal["ready", "missing", "invalid"]


SchemaSpec = Dict[str, Any]

CONFLICT_STRATEGIES = ("local_wins", "remote_wins", "merge", "manual")


CONFIG_SCHEMA: SchemaSpec = {
    "runtime": {
        "type": dict,
        "schema": {
            "name": {"type": str, "default": "Harbor"},
        },
        "default": {},
    },
    "logging": {
        "type": dict,
        "schema": {
            "level": {"type": str, "default": "INFO"},
            "structured": {"type": bool, "default": True},
        },
        "default": {},
    },
    "storage": {
        "type": dict,
        "schema": {
            "directory": {"type": str, "default": "state"},
        },
        "default": {},
    },
    "sync": {
        "type": dict,
        "schema": {
            "enabled": {"type": bool, "default": True},
            "server_url": {"type": str, "default": ""},
            "auto_sync": {"type": bool, "default": True},
            "interval_minutes": {"type": (int, float), "default": 5},
            "conflict_strategy": {
                "type": str,
                "default": "local_wins",
                "choices": CONFLICT_STRATEGIES,
            },
            "honor_priority": {"type": bool, "default": False},
            "retry_delay": {"type": (int, float), "default": 1.0},
            "request_timeout": {"type": (int, float), "default": 15.0},
            "auth_token_env": {"type": str, "default": "HARBOR_API_TOKEN"},
        },
        "default": {},
    },
    "realtime": {
        "type": dict,
        "schema": {
            "enabled": {"type": bool, "default": True},
            "url": {"type": str, "default": ""},
            "reconnect_delay": {"type": (int, float), "default": 5.0},
        },
        "default": {},
    },
    "network": {
        "type": dict,
        "schema": {
            "probe_interval": {"type": (int, float), "default": 5.0},
            "debounce": {"type": (int, float), "default": 0.1},
            "include_loopback": {"type": bool, "default": False},
            "connectivity_checks": {
                "type": list,
                "item_type": str,
                "default_factory": list,
            },
            "connectivity_timeout": {"type": (int, float), "default": 1.0},
        },
        "default": {},
    },
}


@dataclass
class Diagnostic:
    """Represents a configuration validation or loading issue."""

    level: DiagnosticLevel
    message: str
    source: Optional[Path] = None


@dataclass
class ConfigurationBundle:
    """All configuration data Harbor needs at runtime."""

    wallet_dir: Path
    status: ConfigurationStatus
    merged: Dict[str, Any] = field(default_factory=dict)
    repo_defaults: Dict[str, Any] = field(default_factory=dict)
    wallet_overrides: Dict[str, Any] = field(default_factory=dict)
    files_loaded: List[Path] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    log_path: Optional[Path] = None


def resolve_wallet_dir(
    env: Optional[Mapping[str, str]] = None,
    default: str = DEFAULT_WALLET_DIR,
) -> Path:
    """Resolve the wallet path from ``HARBOR_WALLET_DIR``."""

    source = os.environ if env is None else env
    return Path(source.get("HARBOR_WALLET_DIR") or default).expanduser()


def load_runtime_configuration(
    wallet_dir: Optional[Path] = None,
    config_dir: Optional[Path] = None,
) -> ConfigurationBundle:
    """Merge repository defaults with the wallet's own ``config/*.yml`` files.

    Problems never raise; they are reported as diagnostics and reflected in
    the bundle status so the console can still start and explain itself.
    """

    wallet = wallet_dir or resolve_wallet_dir()
    bundle = ConfigurationBundle(wallet_dir=wallet, status="ready")

    bundle.repo_defaults = _read_layer(bundle, config_dir or DEFAULT_CONFIG_DIR, "repo defaults")

    problem = _wallet_problem(wallet)
    if problem is not None:
        bundle.status, message = problem
        bundle.diagnostics.append(_error(message))
    elif (wallet / "config").exists():
        # A wallet without a config directory simply runs on the defaults.
        bundle.wallet_overrides = _read_layer(bundle, wallet / "config", "wallet overrides")

    merged = deepcopy(bundle.repo_defaults)
    _deep_merge_dicts(merged, bundle.wallet_overrides)
    bundle.diagnostics.extend(_check_section(merged, CONFIG_SCHEMA, "config"))
    bundle.merged = merged

    if bundle.status == "ready" and any(d.level == "error" for d in bundle.diagnostics):
        bundle.status = "invalid"
    return bundle


def _wallet_problem(wallet: Path) -> Optional[Tuple[ConfigurationStatus, str]]:
    if not wallet.exists():
        return "missing", f"Wallet directory '{wallet}' does not exist."
    if not wallet.is_dir():
        return "invalid", f"Wallet path '{wallet}' is not a directory."
    return None


def _read_layer(bundle: ConfigurationBundle, directory: Path, label: str) -> Dict[str, Any]:
    """Read every YAML file of one layer in name order; later files win."""

    layer: Dict[str, Any] = {}
    if not directory.is_dir():
        if directory.exists():
            bundle.diagnostics.append(
                _error(f"Configuration path '{directory}' ({label}) is not a directory.", directory)
            )
        else:
            bundle.diagnostics.append(
                Diagnostic("warning", f"No configuration directory found at '{directory}' ({label}).", directory)
            )
        return layer

    loaded = 0
    for path in sorted(directory.glob("*.yml")) + sorted(directory.glob("*.yaml")):
        try:
            content = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            bundle.diagnostics.append(_error(f"Failed to parse '{path}': {exc}", path))
            continue
        if content is not None and not isinstance(content, MutableMapping):
            bundle.diagnostics.append(
                Diagnostic("warning", f"Ignoring '{path}' because it does not contain a mapping.", path)
            )
            continue
        _deep_merge_dicts(layer, dict(content or {}))
        bundle.files_loaded.append(path)
        loaded += 1

    if not loaded:
        bundle.diagnostics.append(
            Diagnostic("info", f"No YAML files found under '{directory}' ({label}).", directory)
        )
    return layer


def _deep_merge_dicts(dest: MutableMapping[str, Any], source: Mapping[str, Any]) -> None:
    """Recursively merge mapping values."""

    for key, value in source.items():
        current = dest.get(key)
        if isinstance(current, MutableMapping) and isinstance(value, Mapping):
            _deep_merge_dicts(current, value)
        else:
            dest[key] = deepcopy(value)


def _error(message: str, source: Optional[Path] = None) -> Diagnostic:
    return Diagnostic(level="error", message=message, source=source)


def _default(spec: SchemaSpec) -> Any:
    factory = spec.get("default_factory")
    if callable(factory):
        return factory()
    return deepcopy(spec.get("default"))


def _type_name(expected: Any) -> str:
    if isinstance(expected, tuple):
        return ", ".join(t.__name__ for t in expected)
    return expected.__name__


def _check_section(values: Dict[str, Any], schema: SchemaSpec, path: str) -> List[Diagnostic]:
    """Validate ``values`` in place: unknown keys warn, bad values revert to defaults."""

    found = [
        Diagnostic("warning", f"Unknown configuration key '{path}.{key}'.")
        for key in values
        if key not in schema
    ]
    for key, spec in schema.items():
        if key in values:
            values[key], problems = _check_field(values[key], spec, f"{path}.{key}")
            found.extend(problems)
        elif "default" in spec or "default_factory" in spec:
            values[key] = _default(spec)
            if spec.get("type") is dict:
                found.extend(_check_section(values[key], spec.get("schema", {}), f"{path}.{key}"))
    return found


def _check_field(value: Any, spec: SchemaSpec, path: str) -> Tuple[Any, List[Diagnostic]]:
    expected = spec.get("type")

    if expected is dict:
        problems: List[Diagnostic] = []
        if not isinstance(value, dict):
            problems.append(_error(f"'{path}' must be a mapping."))
            value = _default(spec) or {}
        problems.extend(_check_section(value, spec.get("schema", {}), path))
        return value, problems

    if expected is list:
        if not isinstance(value, list):
            return _default(spec) or [], [_error(f"'{path}' must be a list.")]
        item_type = spec.get("item_type")
        if item_type is None:
            return value, []
        kept = [item for item in value if isinstance(item, item_type)]
        problems = [
            _error(f"'{path}[{idx}]' must be of type {item_type.__name__}.")
            for idx, item in enumerate(value)
            if not isinstance(item, item_type)
        ]
        return kept, problems

    if expected and not isinstance(value, expected):
        return _default(spec), [_error(f"'{path}' must be of type {_type_name(expected)}.")]

    choices = spec.get("choices")
    if choices and value not in choices:
        return _default(spec), [
            _error(f"'{path}' must be one of {', '.join(choices)}; got '{value}'.")
        ]
    return value, []


__all__ = [
    "CONFIG_SCHEMA",
    "ConfigurationBundle",
    "ConfigurationStatus",
    "DEFAULT_CONFIG_DIR",
    "Diagnostic",
    "load_runtime_configuration",
    "resolve_wallet_dir",
]
