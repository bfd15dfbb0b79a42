"""Console configuration: YAML file validated by a packaged JSON schema."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError as SchemaValidationError
from jsonschema import validators

from smsgw.core.errors import ConfigError
from smsgw.core.registry import CONTROL_POLL_INTERVAL_S, MANAGEMENT_POLL_INTERVAL_S
from smsgw.transports.http import DEFAULT_BASE_URL

LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigError(f"Duplicate key '{key}' in configuration")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class Settings:
    base_url: str = DEFAULT_BASE_URL
    management_poll_s: float = MANAGEMENT_POLL_INTERVAL_S
    control_poll_s: float = CONTROL_POLL_INTERVAL_S
    discard_stale: bool = False


def config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "smsgw/config.yaml"


def _load_schema_validator() -> Any:
    schema_text = resources.files("smsgw.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Could not read configuration {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"Configuration {path} must contain a mapping at root")
    return loaded


def load_settings(path: Path | None = None) -> Settings:
    """Read the config file (if any), then apply ``SMSGW_URL``."""
    path = path or config_path()
    doc: dict[str, Any] = {}
    if path.exists():
        doc = _read_yaml(path)
        try:
            _load_schema_validator().validate(doc)
        except SchemaValidationError as exc:
            where = ".".join(str(p) for p in exc.path)
            where = f" ({where})" if where else ""
            raise ConfigError(f"Schema validation failed for {path}{where}: {exc.message}") from exc
        LOGGER.debug("Loaded configuration from %s", path)

    poll = doc.get("poll", {})
    base_url = os.environ.get("SMSGW_URL", "").strip() or doc.get("base_url", DEFAULT_BASE_URL)
    return Settings(
        base_url=base_url.rstrip("/"),
        management_poll_s=float(poll.get("management_s", MANAGEMENT_POLL_INTERVAL_S)),
        control_poll_s=float(poll.get("control_s", CONTROL_POLL_INTERVAL_S)),
        discard_stale=bool(doc.get("discard_stale", False)),
    )
