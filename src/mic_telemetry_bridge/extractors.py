"""Per-category field extraction.

Each extractor fills ``key``/``value`` on a target :class:`Event` from a
classified message whose channel marker has already been removed.  On a
malformed field it sets what it could and raises :class:`ExtractionError`;
the caller still forwards the partially built event.

Wire examples (channel marker removed)::

    < INTERFERENCE_STATUS CRITICAL      → interference = critical
    < TX_POWER ON                       → power = on
    < BATT_RUN_TIME 00125               → minutes = 125
    < BATT_CHARGE 080                   → percentage = 80
    < BATT_BARS 004                     → bars = 4
      BATT 45 minutes                   → minutes = 45
"""

from __future__ import annotations

import abc
from typing import Optional

from mic_telemetry_bridge.errors import ExtractionError
from mic_telemetry_bridge.models import DETAIL_STATE, FLAG, Event, EventCategory

INTERFERENCE_KEY = "interference"
POWER_KEY = "power"
MINUTES_KEY = "minutes"
PERCENTAGE_KEY = "percentage"
BARS_KEY = "bars"
BATTERY_KEY = "battery"

# Argument spellings that mean the device has no reading.
_NO_READING = {"UNKNOWN", "N/A", "---"}

_POWER_STATES = {"ON": "on", "OFF": "off", "STANDBY": "standby"}

# Named battery fields: field token → (key, device codes meaning "no reading")
_BATTERY_FIELDS = {
    "BATT_RUN_TIME": (MINUTES_KEY, {65535, 65534}),
    "BATT_CHARGE": (PERCENTAGE_KEY, {255}),
    "BATT_BARS": (BARS_KEY, {255}),
}

_BATTERY_UNITS = {
    "minutes": MINUTES_KEY,
    "minute": MINUTES_KEY,
    "mins": MINUTES_KEY,
    "min": MINUTES_KEY,
    "%": PERCENTAGE_KEY,
    "percent": PERCENTAGE_KEY,
    "percentage": PERCENTAGE_KEY,
    "bars": BARS_KEY,
    "bar": BARS_KEY,
}


class FieldExtractor(abc.ABC):
    """Shared extraction capability for one :class:`EventCategory`."""

    category: EventCategory

    def extract(self, message: str, event: Event) -> None:
        """Fill *event* from *message*.

        Raises
        ------
        ExtractionError
            The category token was found but its field is malformed.
        """
        tokens = message.replace("<", " ").split()
        for index, token in enumerate(tokens):
            if self.category.value in token:
                event.add_tags(DETAIL_STATE)
                self._fill(token, tokens[index + 1:], event)
                return
        raise ExtractionError(f"no {self.category.value} field in {message.strip()!r}")

    @abc.abstractmethod
    def _fill(self, field_name: str, args: list[str], event: Event) -> None:
        """Set key and value from the field token and its arguments."""


class InterferenceExtractor(FieldExtractor):
    category = EventCategory.INTERFERENCE

    def _fill(self, field_name: str, args: list[str], event: Event) -> None:
        event.key = INTERFERENCE_KEY
        if not args:
            raise ExtractionError(f"{field_name} has no value")
        raw = args[0]
        if raw.upper() in _NO_READING:
            event.value = FLAG
        elif raw.isdecimal():
            event.value = str(int(raw))
        else:
            event.value = raw.lower()


class PowerExtractor(FieldExtractor):
    category = EventCategory.POWER

    def _fill(self, field_name: str, args: list[str], event: Event) -> None:
        event.key = POWER_KEY
        if not args:
            raise ExtractionError(f"{field_name} has no value")
        raw = args[0].upper()
        if raw in _NO_READING:
            event.value = FLAG
            return
        state = _POWER_STATES.get(raw)
        if state is None:
            event.value = args[0].lower()
            raise ExtractionError(f"unrecognized power state {args[0]!r}")
        event.value = state


class BatteryExtractor(FieldExtractor):
    """Battery level as a countdown in minutes, a percentage, or bars."""

    category = EventCategory.BATTERY

    def _fill(self, field_name: str, args: list[str], event: Event) -> None:
        named = _BATTERY_FIELDS.get(field_name)
        if named is not None:
            key, no_reading = named
            event.key = key
            if not args:
                raise ExtractionError(f"{field_name} has no value")
            event.value = _battery_value(args[0], no_reading)
            return

        # Generic form: BATT <value> [<unit>]
        if not args:
            event.key = BATTERY_KEY
            raise ExtractionError(f"{field_name} has no value")
        raw = args[0]
        unit: Optional[str] = args[1].lower() if len(args) > 1 else None
        if raw.endswith("%") and len(raw) > 1:
            raw, unit = raw[:-1], "%"

        key = _BATTERY_UNITS.get(unit) if unit is not None else None
        if key is None:
            event.key = BATTERY_KEY
            event.value = raw
            if unit is None:
                raise ExtractionError(f"battery reading {raw!r} has no unit")
            raise ExtractionError(f"unrecognized battery unit {args[1]!r}")
        event.key = key
        event.value = _battery_value(raw, set())


def _battery_value(raw: str, no_reading: set[int]) -> str:
    """Normalize a battery argument, mapping no-reading codes to FLAG.

    Non-numeric values pass through unchanged.
    """
    if raw.upper() in _NO_READING:
        return FLAG
    if not raw.isdecimal():
        return raw
    number = int(raw)
    if number in no_reading:
        return FLAG
    return str(number)


EXTRACTORS: dict[EventCategory, FieldExtractor] = {
    EventCategory.INTERFERENCE: InterferenceExtractor(),
    EventCategory.POWER: PowerExtractor(),
    EventCategory.BATTERY: BatteryExtractor(),
}
