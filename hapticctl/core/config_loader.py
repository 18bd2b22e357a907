"""Settings loading and validation for YAML config and alias files."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from hapticctl.core.errors import ConfigLoadError, ConfigValidationError, RuleParseError
from hapticctl.core.model import DeviceRule, Settings, parse_rule_line

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
class LoadedSettings:
    settings: Settings
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("hapticctl.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _config_dir() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "hapticctl"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
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


def _validate(doc: dict[str, Any], source: Path | Traversable) -> None:
    try:
        _load_schema_validator().validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def parse_rule_lines(lines: list[str], *, source: str) -> tuple[list[DeviceRule], list[str]]:
    """Parse alias lines, skipping malformed ones.

    Blank lines and ``#`` comments are ignored. Returns the rules in order
    plus a warning for every skipped line.
    """
    rules: list[DeviceRule] = []
    warnings: list[str] = []
    for number, line in enumerate(lines, start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        try:
            rules.append(parse_rule_line(stripped))
        except RuleParseError as exc:
            warning = f"{source}:{number}: {exc}"
            LOGGER.warning(warning)
            warnings.append(warning)
    return rules, warnings


def load_settings(config_path: Path | None = None) -> LoadedSettings:
    defaults_path = resources.files("hapticctl.defaults").joinpath("config.yaml")
    doc = _read_yaml(defaults_path)
    _validate(doc, defaults_path)

    user_path = config_path or _config_dir() / "config.yaml"
    if config_path is not None or user_path.is_file():
        user_doc = _read_yaml(user_path)
        _validate(user_doc, user_path)
        doc = _merge(doc, user_doc)

    rules, warnings = parse_rule_lines(list(doc.get("aliases", [])), source="aliases")

    aliases_path = _config_dir() / "aliases"
    if aliases_path.is_file():
        try:
            content = aliases_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigLoadError(f"Could not read alias file {aliases_path}: {exc}") from exc
        file_rules, file_warnings = parse_rule_lines(content.splitlines(), source=str(aliases_path))
        rules.extend(file_rules)
        warnings.extend(file_warnings)

    server = doc["server"]
    settings = Settings(
        host=server["host"],
        port=int(server["port"]),
        path=server["path"],
        client_name=doc["client_name"],
        message_version=int(doc["message_version"]),
        scan_seconds=float(doc["scan_seconds"]),
        rules=tuple(rules),
    )
    return LoadedSettings(settings=settings, warnings=tuple(warnings))
