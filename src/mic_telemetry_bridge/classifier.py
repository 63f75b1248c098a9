"""Locate the channel marker and classify receiver status messages.

Classification pipeline::

    raw string
      │
      ├─ no ``REP <digit>`` marker       → None  (not telemetry, skip)
      ├─ marker, no category token       → None  (idle traffic, skip)
      └─ marker + token                  → EventCategory

Category tokens are checked in :class:`EventCategory` declaration order
(interference, power, battery); the first match wins.
"""

from __future__ import annotations

import re
from typing import Optional

from mic_telemetry_bridge.models import EventCategory

CHANNEL_RE = re.compile(r"REP \d")


def find_channel(data: str) -> Optional[tuple[str, str]]:
    """Return ``(channel_digit, data_without_markers)`` or ``None``.

    The channel comes from the first marker; every marker is removed from
    the returned remainder.
    """
    match = CHANNEL_RE.search(data)
    if match is None:
        return None
    return match.group()[-1], CHANNEL_RE.sub("", data)


def classify(data: str) -> Optional[EventCategory]:
    """Return the first category whose token appears in *data*, else ``None``."""
    for category in EventCategory:
        if category.value in data:
            return category
    return None
