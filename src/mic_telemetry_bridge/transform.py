"""Serialize events and error reports into NDJSON records.

Every record is stamped with the time it is serialized; the pipeline
itself attaches no timestamps so repeated passes over a message compare
equal.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timezone

import orjson

from mic_telemetry_bridge.models import ErrorRecord, Event, EventRecord


class Transformer:
    """Stateless transform: events and errors → newline-terminated NDJSON bytes."""

    def transform_event(
        self,
        event: Event,
        building: str,
        room: str,
        is_final: bool = False,
    ) -> bytes:
        """Convert an :class:`Event` into one NDJSON line."""
        record = EventRecord(
            timestamp=_now(),
            building=building,
            room=room,
            device=event.target_device.name,
            key=event.key,
            value=event.value,
            tags=sorted(event.tags),
            is_final=is_final,
        )
        return orjson.dumps(asdict(record), option=orjson.OPT_APPEND_NEWLINE)

    def transform_error(self, message: str, identity: str, building: str, room: str) -> bytes:
        """Convert an error report into one NDJSON line."""
        record = ErrorRecord(
            timestamp=_now(),
            building=building,
            room=room,
            identity=identity,
            message=message,
        )
        return orjson.dumps(asdict(record), option=orjson.OPT_APPEND_NEWLINE)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
