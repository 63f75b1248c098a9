"""Output sinks for published records.

In file mode events and error reports go to separate day files::

    {output_dir}/mic-events-{system_id}-20261018.ndjson
    {output_dir}/mic-errors-{system_id}-20261018.ndjson

A sink switches to the next file on the first write after UTC midnight.
Every room monitor shares the same pair of sinks; writes happen on the
event loop thread, so lines from different rooms never interleave.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Sink(Protocol):
    def write(self, data: bytes) -> None:
        ...

    def close(self) -> None:
        ...


class StdoutSink:
    """Write NDJSON bytes to stdout, flushing each record."""

    def write(self, data: bytes) -> None:
        try:
            sys.stdout.buffer.write(data)
            sys.stdout.buffer.flush()
        except BrokenPipeError:
            logger.warning("stdout closed by reader")
            raise

    def close(self) -> None:
        pass


class DailyFileSink:
    """Append records to one NDJSON file per UTC day.

    Each record is flushed as soon as it is written so a tailing consumer
    sees it immediately.  The file is opened lazily on the first write.

    Parameters
    ----------
    output_dir:
        Directory for the day files, created if missing.
    prefix:
        Record stream name, e.g. ``mic-events``.
    system_id:
        Bridge instance, so several bridges can share one directory.
    clock:
        Returns the current aware datetime; tests pass a fake.
    """

    def __init__(
        self,
        output_dir: str,
        prefix: str,
        system_id: str,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._output_dir = Path(output_dir)
        self._output_dir.mkdir(parents=True, exist_ok=True)
        self._prefix = prefix
        self._system_id = system_id
        self._clock = clock or _utc_now
        self._day: Optional[str] = None
        self._fh: Optional[BinaryIO] = None

    @property
    def path(self) -> Optional[Path]:
        """File currently written to, or ``None`` before the first write."""
        if self._day is None:
            return None
        return self._path_for(self._day)

    def write(self, data: bytes) -> None:
        day = self._clock().astimezone(timezone.utc).strftime("%Y%m%d")
        if day != self._day or self._fh is None:
            self._switch_to(day)
        self._fh.write(data)
        self._fh.flush()

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
            logger.info("Closed %s", self.path)

    def _path_for(self, day: str) -> Path:
        return self._output_dir / f"{self._prefix}-{self._system_id}-{day}.ndjson"

    def _switch_to(self, day: str) -> None:
        self.close()
        self._day = day
        self._fh = open(self._path_for(day), "ab")
        logger.info("Writing %s records to %s", self._prefix, self.path)
