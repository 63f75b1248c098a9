"""Dataclass models for receiver telemetry.

Events are built by the extractors, never shared across messages, and
serialized to NDJSON by :mod:`mic_telemetry_bridge.transform`.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional

from mic_telemetry_bridge.errors import ExtractionError

# Reserved value meaning "no meaningful reading".
FLAG = "UNKNOWN"

DETAIL_STATE = "detail-state"
AUTO_GENERATED = "auto-generated"


class EventCategory(enum.Enum):
    """Closed set of status categories, in classification priority order.

    The value is the token that identifies the category inside a raw
    message.
    """

    INTERFERENCE = "INTERFERENCE"
    POWER = "POWER"
    BATTERY = "BATT"


@dataclass(frozen=True)
class Device:
    """A receiver record from the device directory."""

    name: str
    address: str
    room: str = ""
    role: str = "Receiver"


@dataclass(frozen=True)
class DeviceIdentity:
    """One microphone channel on the room's receiver."""

    room_id: str
    channel: str

    @property
    def name(self) -> str:
        return f"{self.room_id}-MIC{self.channel}"


@dataclass
class Event:
    """A single key/value reading for one microphone channel."""

    target_device: DeviceIdentity
    key: str = ""
    value: str = ""
    tags: set[str] = field(default_factory=set)

    def add_tags(self, *tags: str) -> None:
        self.tags.update(tags)


@dataclass
class EventInfo:
    """Result of one classify/extract/derive/filter pass.

    ``error`` is set when extraction failed; the partially built event is
    still present in ``events`` unless the filter suppressed it.
    """

    events: list[Event] = field(default_factory=list)
    error: Optional[ExtractionError] = None


@dataclass
class EventRecord:
    """Published form of an :class:`Event`, one NDJSON line."""

    record_type: str = "event"
    timestamp: str = ""
    building: str = ""
    room: str = ""
    device: str = ""
    key: str = ""
    value: str = ""
    tags: list[str] = field(default_factory=list)
    is_final: bool = False


@dataclass
class ErrorRecord:
    """Published form of an error report.

    These are written alongside events so operators see protocol and
    connectivity faults in the same stream.
    """

    record_type: str = "error"
    timestamp: str = ""
    building: str = ""
    room: str = ""
    identity: str = ""
    message: str = ""
