"""Loading and validation of the YAML configuration file."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from orthoremote.core.errors import ConfigLoadError, ConfigValidationError
from orthoremote.core.model import RemoteConfig

CONFIG_ENV_VAR = "ORTHOREMOTE_CONFIG"
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedConfig:
    config: RemoteConfig
    source: Path | None
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("orthoremote.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def default_config_path() -> Path:
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override)
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "orthoremote/config.yaml"


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Config file {path} must contain a mapping at root")
    return loaded


def _build_config(doc: dict[str, Any], source: Path) -> RemoteConfig:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    defaults = RemoteConfig()
    long_click_ms = doc.get("long_click_ms")
    return RemoteConfig(
        connect_timeout_s=float(doc.get("connect_timeout_s", defaults.connect_timeout_s)),
        discovery_timeout_s=float(doc.get("discovery_timeout_s", defaults.discovery_timeout_s)),
        long_click_s=long_click_ms / 1000 if long_click_ms is not None else defaults.long_click_s,
        normalize_rotation=doc.get("normalize_rotation", defaults.normalize_rotation),
        device_ids=tuple(doc.get("device_ids", defaults.device_ids)),
    )


def load_config(path: Path | None = None) -> LoadedConfig:
    """Load the configuration, falling back to defaults when no file exists.

    An explicit `path` (or `$ORTHOREMOTE_CONFIG`) must exist.
    """
    explicit = path is not None or bool(os.environ.get(CONFIG_ENV_VAR))
    config_path = path or default_config_path()

    if not config_path.exists():
        if explicit:
            raise ConfigLoadError(f"Config file {config_path} does not exist")
        LOGGER.debug("No config file at %s, using defaults", config_path)
        return LoadedConfig(config=RemoteConfig(), source=None, warnings=())

    doc = _read_yaml(config_path)
    config = _build_config(doc, config_path)

    warnings: list[str] = []
    if config.long_click_s > 2.0:
        warning = f"long_click_ms={int(config.long_click_s * 1000)} makes plain clicks hard to tell apart"
        LOGGER.warning(warning)
        warnings.append(warning)

    return LoadedConfig(config=config, source=config_path, warnings=tuple(warnings))
