"""Device lookup by room and role.

:class:`FileDeviceDirectory` re-reads a JSON file on every lookup::

    {"devices": [
        {"name": "BLDG-101-RCV1", "address": "10.20.1.41",
         "room": "BLDG-101", "role": "Receiver"}
    ]}

A missing or unreadable file is reported as :class:`DeviceLookupError`,
which the monitor treats as transient and retries.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

import orjson

from mic_telemetry_bridge.errors import DeviceLookupError
from mic_telemetry_bridge.models import Device

logger = logging.getLogger(__name__)


class DeviceDirectory(Protocol):
    """Anything that can resolve the devices registered for a room."""

    def resolve_devices(self, room_key: str, role: str = "Receiver") -> list[Device]:
        """Return every device in *room_key* with *role*.

        Raises :class:`DeviceLookupError` when the directory is unavailable.
        """
        ...


class FileDeviceDirectory:
    """Device directory backed by a JSON file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def resolve_devices(self, room_key: str, role: str = "Receiver") -> list[Device]:
        try:
            raw = orjson.loads(self._path.read_bytes())
        except OSError as exc:
            raise DeviceLookupError(f"cannot read {self._path}: {exc}") from exc
        except orjson.JSONDecodeError as exc:
            raise DeviceLookupError(f"invalid JSON in {self._path}: {exc}") from exc

        entries = raw.get("devices") if isinstance(raw, dict) else None
        if not isinstance(entries, list):
            raise DeviceLookupError(f"{self._path} has no 'devices' list")

        devices = []
        for entry in entries:
            if not isinstance(entry, dict) or "name" not in entry or "address" not in entry:
                logger.warning("Skipping malformed directory entry: %r", entry)
                continue
            if entry.get("room") != room_key or entry.get("role", "Receiver") != role:
                continue
            devices.append(Device(
                name=entry["name"],
                address=entry["address"],
                room=entry["room"],
                role=entry.get("role", "Receiver"),
            ))
        return devices
