"""Terminal configuration loading and validation.

Settings come from an optional ``terminal.yaml`` in the config directory and
from optional single-value text files (``crt_port.txt`` and friends) that
override it. Everything is re-read on each issue and status request so a
technician can swap ports without restarting the service.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass, replace
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from cardterm.core.errors import SettingsLoadError, SettingsValidationError

CONFIG_DIR_ENV = "CARDTERM_CONFIG_DIR"
SETTINGS_FILE = "terminal.yaml"
LOGGER = logging.getLogger(__name__)

_ON_WINDOWS = sys.platform.startswith("win")

# single-value override file -> settings key
VALUE_FILES = {
    "crt_port.txt": "crt_port",
    "rfid_port.txt": "rfid_port",
    "rfid_window_ms.txt": "rfid_window_ms",
    "rfid_idle_ms.txt": "rfid_idle_ms",
    "confirm_timeout_sec.txt": "confirm_timeout_sec",
    "reader_hint.txt": "reader_hint",
}


@dataclass(frozen=True)
class TerminalSettings:
    crt_port: str = "COM5" if _ON_WINDOWS else "/dev/ttyUSB0"
    rfid_port: str = "COM4" if _ON_WINDOWS else "/dev/ttyUSB1"
    rfid_mode: str = "serial"
    baudrate: int = 9600
    serial_timeout_ms: int = 1000
    rfid_window_ms: int = 1200
    rfid_idle_ms: int = 250
    rfid_first_byte_timeout_ms: int | None = 7000
    rfid_max_capture_ms: int = 7000
    confirm_timeout_sec: float = 30
    dispense_retract_delay_sec: float = 15
    reader_hint: str | None = None
    pcsc_timeout_ms: int = 5000
    read_position: int = 2
    stage_attempts: int = 1


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise SettingsValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


def _load_schema_validator() -> Any:
    schema_text = resources.files("cardterm.schemas").joinpath("settings.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def default_config_dir() -> Path:
    return Path(os.environ.get(CONFIG_DIR_ENV, Path.cwd()))


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SettingsLoadError(f"Could not read settings file {path}: {exc}") from exc


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        loaded = yaml.load(_read_text(path), Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise SettingsValidationError(f"Invalid YAML in {path}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise SettingsValidationError(f"Settings file {path} must contain a mapping at root")
    return loaded


def _coerce(key: str, raw: str, *, source: Path) -> Any:
    value = raw.strip()
    if key in {"crt_port", "rfid_port"}:
        return value
    if key == "reader_hint":
        return value or None
    try:
        number = float(value)
    except ValueError as exc:
        raise SettingsValidationError(f"{source} must contain a number, got '{value}'") from exc
    return int(number) if number.is_integer() else number


def _read_value_files(config_dir: Path) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for filename, key in VALUE_FILES.items():
        path = config_dir / filename
        if path.is_file():
            overrides[key] = _coerce(key, _read_text(path), source=path)
    return overrides


def load_settings(config_dir: Path | None = None) -> TerminalSettings:
    config_dir = config_dir or default_config_dir()
    doc: dict[str, Any] = {}

    yaml_path = config_dir / SETTINGS_FILE
    if yaml_path.is_file():
        doc.update(_read_yaml(yaml_path))

    for key, value in _read_value_files(config_dir).items():
        if key in doc:
            LOGGER.info("%s overridden by %s.txt", key, key)
        doc[key] = value

    try:
        _load_schema_validator().validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise SettingsValidationError(
            f"Settings validation failed in {config_dir}{where}: {exc.message}"
        ) from exc

    return replace(TerminalSettings(), **doc)
