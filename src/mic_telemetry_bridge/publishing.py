"""Publishing and error-reporting channels used by the monitor."""

from __future__ import annotations

import logging
from typing import Protocol

from mic_telemetry_bridge.errors import PublishError
from mic_telemetry_bridge.models import Event
from mic_telemetry_bridge.output import Sink
from mic_telemetry_bridge.transform import Transformer

logger = logging.getLogger(__name__)


class EventPublisher(Protocol):
    def publish(self, is_final: bool, event: Event, building: str, room: str) -> None:
        """Hand one event downstream. Raises :class:`PublishError`."""
        ...


class ErrorReporter(Protocol):
    def report_error(self, message: str, identity: str, building: str, room: str) -> None:
        """Report a fault. Must not raise."""
        ...


class NdjsonPublisher:
    """Write event and error records as NDJSON lines.

    Implements both :class:`EventPublisher` and :class:`ErrorReporter`.
    Error records go to *error_sink* when one is given, else they share
    *event_sink*.
    """

    def __init__(
        self,
        event_sink: Sink,
        error_sink: Sink | None = None,
        transformer: Transformer | None = None,
    ) -> None:
        self._event_sink = event_sink
        self._error_sink = error_sink or event_sink
        self._xform = transformer or Transformer()

    def publish(self, is_final: bool, event: Event, building: str, room: str) -> None:
        data = self._xform.transform_event(event, building, room, is_final=is_final)
        try:
            self._event_sink.write(data)
        except OSError as exc:
            raise PublishError(f"sink write failed: {exc}") from exc

    def report_error(self, message: str, identity: str, building: str, room: str) -> None:
        logger.warning("[%s-%s] %s (%s)", building, room, message, identity)
        data = self._xform.transform_error(message, identity, building, room)
        try:
            self._error_sink.write(data)
        except OSError:
            logger.exception("Could not write error record for %s-%s", building, room)
