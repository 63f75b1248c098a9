"""Suppress extracted events that carry no usable reading.

Filter chain (evaluated in order)::

    1. ``key`` empty                                  → drop
    2. ``value`` equals FLAG (case-insensitive)       → drop
    3. ``key`` in ``drop_keys``                       → drop
    4. channel in ``drop_channels``                   → drop
    5. Otherwise                                      → pass

Only primary events are filtered; derived events are built from events
that already passed.
"""

from __future__ import annotations

import logging
from typing import Optional

from mic_telemetry_bridge.config import FilterConfig
from mic_telemetry_bridge.models import FLAG, Event

logger = logging.getLogger(__name__)


class EventFilter:
    """Stateless filter that decides whether an extracted event passes through."""

    def __init__(self, config: Optional[FilterConfig] = None) -> None:
        config = config or FilterConfig()
        self._drop_keys: set[str] = set(config.drop_keys)
        self._drop_channels: set[str] = {str(c) for c in config.drop_channels}

    def __call__(self, event: Event) -> Optional[Event]:
        """Return *event* if it passes all filters, else ``None``."""
        return self.apply(event)

    def apply(self, event: Event) -> Optional[Event]:
        """Evaluate the filter chain.

        Returns
        -------
        Event or None
            The input event unchanged when it passes, ``None`` when filtered.
        """
        device = event.target_device.name

        if not event.key:
            logger.debug("Filtered event for %s: empty key", device)
            return None

        if event.value.casefold() == FLAG.casefold():
            logger.debug("Filtered event for %s: %s has no reading", device, event.key)
            return None

        if event.key in self._drop_keys:
            logger.debug("Filtered event for %s: %s in drop_keys", device, event.key)
            return None

        if event.target_device.channel in self._drop_channels:
            logger.debug("Filtered event for %s: channel in drop_channels", device)
            return None

        return event
