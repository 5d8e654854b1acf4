"""
Configuration loader with YAML file support and environment variable overrides.

Values are resolved in this order (later wins):
1. Defaults defined in settings.py
2. YAML configuration file
3. Environment variables named INTEL_GRAPH__{SECTION}__{KEY}

Example: INTEL_GRAPH__TRAVERSAL__DEFAULT_MAX_DEPTH=5
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from intel_graph.config.settings import Settings
from intel_graph.core.exceptions import ConfigurationError

ENV_PREFIX = "INTEL_GRAPH"

_settings_instance: Settings | None = None

_TRUE_WORDS = frozenset({"true", "yes", "on"})
_FALSE_WORDS = frozenset({"false", "no", "off"})
_NULL_WORDS = frozenset({"none", "null", ""})


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of base with override merged in, section by section."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _parse_env_value(raw: str) -> Any:
    """
    Turn an environment string into a YAML-like scalar.

    Booleans and nulls are matched by keyword, numbers are parsed when
    they look like numbers, anything else stays a string.
    """
    lowered = raw.strip().lower()
    if lowered in _TRUE_WORDS:
        return True
    if lowered in _FALSE_WORDS:
        return False
    if lowered in _NULL_WORDS:
        return None

    for cast in (int, float):
        try:
            return cast(raw)
        except ValueError:
            continue
    return raw


def _load_env_overrides(
    prefix: str = ENV_PREFIX,
    environ: dict[str, str] | None = None,
) -> dict[str, Any]:
    """
    Collect overrides from variables shaped like {PREFIX}__{SECTION}__{KEY}.

    Variables with fewer than two path components after the prefix are
    ignored, since every setting lives inside a section.
    """
    source = os.environ if environ is None else environ
    marker = f"{prefix}__"
    overrides: dict[str, Any] = {}

    for name, raw in source.items():
        if not name.startswith(marker):
            continue
        parts = name[len(marker):].lower().split("__")
        if len(parts) < 2 or not all(parts):
            continue

        node = overrides
        for section in parts[:-1]:
            node = node.setdefault(section, {})
        node[parts[-1]] = _parse_env_value(raw)

    return overrides


def _load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Read a YAML mapping from disk.

    Raises:
        ConfigurationError: If the file is missing, unparsable or not a mapping
    """
    if not path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {path}",
            details={"path": str(path)},
        )

    try:
        with open(path, "r", encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in {path}",
            details={"path": str(path), "error": str(e)},
        ) from e

    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigurationError(
            "Configuration file must contain a mapping",
            details={"path": str(path), "type": type(content).__name__},
        )
    return content


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = ENV_PREFIX,
) -> Settings:
    """
    Build validated Settings from an optional YAML file and the environment.

    Args:
        config_path: YAML file to read. None means defaults plus environment.
        env_prefix: Prefix for environment variable overrides

    Returns:
        Validated Settings instance

    Raises:
        ConfigurationError: If the file cannot be read or a value is invalid
    """
    data: dict[str, Any] = {}
    if config_path is not None:
        data = _deep_merge(data, _load_yaml_file(Path(config_path)))
    data = _deep_merge(data, _load_env_overrides(env_prefix))

    try:
        return Settings(**data)
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid configuration",
            details={"errors": e.errors(include_url=False)},
        ) from e


def get_settings(
    config_path: Path | str | None = None,
    reload: bool = False,
) -> Settings:
    """Return the process-wide Settings, loading them on first use."""
    global _settings_instance

    if _settings_instance is None or reload:
        _settings_instance = load_config(config_path or get_default_config_path())
    return _settings_instance


def reset_settings() -> None:
    """Forget the cached Settings so the next call reloads them."""
    global _settings_instance
    _settings_instance = None


def get_default_config_path() -> Path | None:
    """
    Locate a config.yaml in the usual places.

    Checked in order: ./config.yaml, ./config/config.yaml and
    ~/.intel_graph/config.yaml.
    """
    candidates = (
        Path.cwd() / "config.yaml",
        Path.cwd() / "config" / "config.yaml",
        Path.home() / ".intel_graph" / "config.yaml",
    )
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None
