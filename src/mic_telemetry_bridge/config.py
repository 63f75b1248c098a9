"""Configuration loading, environment expansion, and validation.

String values may embed ``${VAR:-default}``; the placeholder is replaced
by the environment variable when set, else by *default*.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import orjson

logger = logging.getLogger(__name__)

_ENV_RE = re.compile(r"\$\{(\w+):-([^}]*)\}")

_SCHEMA_PATH = Path(__file__).resolve().parent.parent.parent / "config" / "config.schema.json"


@dataclass
class DeviceConfig:
    """Receiver connection settings."""

    port: int = 2202
    dial_timeout_ms: int = 3000
    read_error_pause_ms: int = 1000
    role: str = "Receiver"


@dataclass
class LookupConfig:
    """Device directory settings."""

    devices_file: str = "/etc/mic-bridge/devices.json"
    retry_delay_ms: int = 5000


@dataclass
class FilterConfig:
    """Event filtering rules applied on top of the FLAG/empty-key check."""

    drop_keys: list[str] = field(default_factory=list)
    drop_channels: list[str] = field(default_factory=list)


@dataclass
class OutputConfig:
    """Where file-mode records go: one daily file per record stream."""

    output_dir: str = "/var/lib/mic-bridge/data"
    events_prefix: str = "mic-events"
    errors_prefix: str = "mic-errors"


@dataclass
class LogFileConfig:
    """Optional rotating log file, written in addition to stderr."""

    enabled: bool = False
    path: str = "/var/log/mic-telemetry-bridge/app.log"
    max_size_bytes: int = 10485760   # 10 MB
    backup_count: int = 5


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "info"
    file: LogFileConfig = field(default_factory=LogFileConfig)


@dataclass
class AppConfig:
    """Top-level application configuration."""

    system_id: str = "mic-bridge-01"
    building: str = ""
    rooms: list[str] = field(default_factory=list)
    device: DeviceConfig = field(default_factory=DeviceConfig)
    lookup: LookupConfig = field(default_factory=LookupConfig)
    filter: FilterConfig = field(default_factory=FilterConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _expand_env(obj: Any) -> Any:
    """Expand ``${VAR:-default}`` in every string of a JSON-like value."""
    if isinstance(obj, str):
        return _ENV_RE.sub(lambda m: os.environ.get(m.group(1), m.group(2)), obj)
    if isinstance(obj, dict):
        return {k: _expand_env(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env(v) for v in obj]
    return obj


def _section(cls: type, raw: dict[str, Any]) -> Any:
    """Build dataclass *cls* from the keys of *raw* it knows about."""
    return cls(**{k: v for k, v in raw.items() if k in cls.__dataclass_fields__})


def _dict_to_config(raw: dict[str, Any]) -> AppConfig:
    """Convert a raw dict into a typed :class:`AppConfig`."""
    filter_raw = raw.get("filter", {})
    logging_raw = raw.get("logging", {})

    return AppConfig(
        system_id=raw.get("system_id", "mic-bridge-01"),
        building=raw.get("building", ""),
        rooms=[str(r) for r in raw.get("rooms", [])],
        device=_section(DeviceConfig, raw.get("device", {})),
        lookup=_section(LookupConfig, raw.get("lookup", {})),
        filter=FilterConfig(
            drop_keys=filter_raw.get("drop_keys", []),
            drop_channels=[str(c) for c in filter_raw.get("drop_channels", [])],
        ),
        output=_section(OutputConfig, raw.get("output", {})),
        logging=LoggingConfig(
            level=logging_raw.get("level", "info"),
            file=_section(LogFileConfig, logging_raw.get("file", {})),
        ),
    )


def load_config(path: str | Path, schema_path: str | Path | None = None) -> AppConfig:
    """Load, expand, validate, and return the application config.

    Raises
    ------
    jsonschema.ValidationError
        If the expanded config fails schema validation.
    """
    raw: dict[str, Any] = orjson.loads(Path(path).read_bytes())
    expanded = _expand_env(raw)

    sp = Path(schema_path) if schema_path else _SCHEMA_PATH
    if sp.exists():
        jsonschema.validate(instance=expanded, schema=orjson.loads(sp.read_bytes()))
        logger.debug("Config passed schema validation")
    else:
        logger.warning("Schema file not found at %s, skipping validation", sp)

    return _dict_to_config(expanded)
