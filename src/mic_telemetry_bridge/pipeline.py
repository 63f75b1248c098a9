"""Turn one raw receiver message into publishable events.

Pipeline::

    raw message
      │
      ├─ find_channel   → no marker         → []
      ├─ classify       → no category       → []
      ├─ extract        → ExtractionError   → [event], error
      ├─ filter         → suppressed        → []  (error kept if any)
      └─ derive         → [event] or [event, derived]

The pass holds no state between calls, so the same message always yields
the same result.
"""

from __future__ import annotations

import logging
from typing import Optional

from mic_telemetry_bridge.classifier import classify, find_channel
from mic_telemetry_bridge.derive import derive_event
from mic_telemetry_bridge.errors import ExtractionError
from mic_telemetry_bridge.extractors import EXTRACTORS
from mic_telemetry_bridge.filter import EventFilter
from mic_telemetry_bridge.models import DeviceIdentity, Event, EventInfo

logger = logging.getLogger(__name__)

_DEFAULT_FILTER = EventFilter()


def get_event_info(
    data: str,
    room_id: str,
    event_filter: Optional[EventFilter] = None,
) -> EventInfo:
    """Run classify, extract, derive and filter over one message.

    Parameters
    ----------
    data:
        The framed message text, terminator excluded.
    room_id:
        ``{building}-{room}``; prefixes every device name.
    event_filter:
        Filter for the primary event. Defaults to FLAG/empty-key only.
    """
    found = find_channel(data)
    if found is None:
        logger.debug("No channel marker, ignoring: %r", data)
        return EventInfo()

    channel, message = found
    device = DeviceIdentity(room_id=room_id, channel=channel)
    logger.debug("Device %s reporting", device.name)

    category = classify(message)
    if category is None:
        logger.debug("Unclassified message from %s: %r", device.name, data)
        return EventInfo()

    event = Event(target_device=device)
    error: Optional[ExtractionError] = None
    try:
        EXTRACTORS[category].extract(message, event)
    except ExtractionError as exc:
        logger.debug("Extraction error for %s: %s", device.name, exc)
        error = exc

    if (event_filter or _DEFAULT_FILTER).apply(event) is None:
        return EventInfo(error=error)

    if error is not None:
        return EventInfo(events=[event], error=error)

    events = [event]
    derived = derive_event(event)
    if derived is not None:
        events.append(derived)
    return EventInfo(events=events)
