"""Split the receiver's byte stream into ``>``-terminated messages.

The receiver is trusted hardware, so no maximum frame length is enforced:
a frame longer than the stream reader's buffer limit is accumulated
piecewise instead of failing.
"""

from __future__ import annotations

import asyncio
import logging

from mic_telemetry_bridge.errors import ConnectionClosedError, FramingError

logger = logging.getLogger(__name__)

TERMINATOR = b">"


class MessageFramer:
    """Read one protocol message at a time from an ``asyncio.StreamReader``."""

    def __init__(self, reader: asyncio.StreamReader) -> None:
        self._reader = reader

    async def read_message(self) -> str:
        """Block until the next terminator and return the text before it.

        Raises
        ------
        ConnectionClosedError
            The stream ended or was reset before a terminator arrived.
        FramingError
            The frame was read but is not ASCII. The frame is consumed, so
            the next call starts at the following message.
        """
        frame = bytearray()
        while True:
            try:
                chunk = await self._reader.readuntil(TERMINATOR)
            except asyncio.LimitOverrunError as exc:
                # Terminator not within the buffer limit: drain what has been
                # scanned and keep looking.
                frame += await self._read_exactly(exc.consumed)
                continue
            except asyncio.IncompleteReadError as exc:
                raise ConnectionClosedError(
                    f"stream ended with {len(frame) + len(exc.partial)} unterminated bytes"
                ) from exc
            except OSError as exc:
                raise ConnectionClosedError(str(exc) or type(exc).__name__) from exc
            frame += chunk[: -len(TERMINATOR)]
            break

        try:
            return frame.decode("ascii")
        except UnicodeDecodeError as exc:
            raise FramingError(f"non-ASCII frame: {bytes(frame)!r}") from exc

    async def _read_exactly(self, n: int) -> bytes:
        try:
            return await self._reader.readexactly(n)
        except asyncio.IncompleteReadError as exc:
            raise ConnectionClosedError("stream ended mid-frame") from exc
