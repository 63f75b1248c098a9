"""Derive secondary events from extracted readings."""

from __future__ import annotations

import logging
from typing import Optional

from mic_telemetry_bridge.models import AUTO_GENERATED, DETAIL_STATE, Event

logger = logging.getLogger(__name__)

# Kept byte-for-byte as downstream consumers match on it.
HOURS_MINUTES_KEY = "battery level (hours:minute remaining"


def derive_event(event: Event) -> Optional[Event]:
    """Convert a minutes-remaining reading into an ``H:M`` event.

    Returns ``None`` when *event* is not a minutes reading or its value is
    not a run of ASCII digits; the primary event already carries the raw
    value, so nothing is lost.
    """
    if "minutes" not in event.key:
        return None
    # int() would also take signs, underscores and surrounding spaces.
    if not (event.value.isascii() and event.value.isdecimal()):
        return None
    minutes = int(event.value)

    derived = Event(
        target_device=event.target_device,
        key=HOURS_MINUTES_KEY,
        value=f"{minutes // 60}:{minutes % 60}",
    )
    derived.add_tags(DETAIL_STATE, AUTO_GENERATED)
    logger.debug("Generated event %s=%s for %s", derived.key, derived.value,
                 derived.target_device.name)
    return derived
