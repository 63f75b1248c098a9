"""Per-room receiver monitor: device lookup, TCP dial, and read loop.

State machine::

    INIT → RESOLVING ─(lookup error)→ RESOLVING        (retry forever)
                     ─(0 or >1 device)→ STOPPED
                     ─(1 device)→ CONNECTING ─(dial error)→ STOPPED
                                             ─(ok)→ LISTENING ─(read error)→ LISTENING

Connection-establishment faults end the monitor; the caller decides
whether to start a new one.  Read faults (bad frame, closed or reset
stream) and message faults (extraction or publish error) are reported and
the loop keeps reading; after a stream-level read fault it pauses
``device.read_error_pause_ms`` first.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Optional

from mic_telemetry_bridge.config import DeviceConfig, LookupConfig
from mic_telemetry_bridge.directory import DeviceDirectory
from mic_telemetry_bridge.errors import (
    ConnectionClosedError,
    DeviceLookupError,
    FramingError,
    PublishError,
)
from mic_telemetry_bridge.filter import EventFilter
from mic_telemetry_bridge.framer import MessageFramer
from mic_telemetry_bridge.models import Device
from mic_telemetry_bridge.pipeline import get_event_info
from mic_telemetry_bridge.publishing import ErrorReporter, EventPublisher

logger = logging.getLogger(__name__)


class MonitorState(enum.Enum):
    """States in the monitor lifecycle."""

    INIT = "INIT"
    RESOLVING = "RESOLVING"
    CONNECTING = "CONNECTING"
    LISTENING = "LISTENING"
    STOPPED = "STOPPED"


class ExitReason(enum.Enum):
    """Why :meth:`ReceiverMonitor.run` returned."""

    NO_DEVICE = "no_device"
    AMBIGUOUS_DEVICE = "ambiguous_device"
    DIAL_FAILED = "dial_failed"


class ReceiverMonitor:
    """Owns the single receiver connection for one room.

    Parameters
    ----------
    building, room:
        Location of the receiver; ``{building}-{room}`` is the lookup key
        and the prefix of every device name.
    directory:
        Device lookup.
    publisher, reporter:
        Where surviving events and faults go.
    system_id:
        Identity used on error reports raised before a device is known.
    """

    def __init__(
        self,
        building: str,
        room: str,
        directory: DeviceDirectory,
        publisher: EventPublisher,
        reporter: ErrorReporter,
        system_id: str,
        device_config: Optional[DeviceConfig] = None,
        lookup_config: Optional[LookupConfig] = None,
        event_filter: Optional[EventFilter] = None,
    ) -> None:
        self._building = building
        self._room = room
        self._room_id = f"{building}-{room}"
        self._directory = directory
        self._publisher = publisher
        self._reporter = reporter
        self._system_id = system_id
        self._device_config = device_config or DeviceConfig()
        self._lookup_config = lookup_config or LookupConfig()
        self._filter = event_filter or EventFilter()
        self._state = MonitorState.INIT

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def room_id(self) -> str:
        return self._room_id

    async def run(self) -> ExitReason:
        """Resolve the receiver, connect, and publish events.

        Returns only on a terminal connection-establishment fault; once
        connected it reads until cancelled.
        """
        logger.info("Starting mic reporting for %s", self._room_id)
        try:
            devices = await self._resolve()
            if not devices:
                logger.warning("No receiver found in %s, stopping monitor", self._room_id)
                return ExitReason.NO_DEVICE
            if len(devices) > 1:
                self._report(f"detected {len(devices)} receivers, expecting 1", self._system_id)
                return ExitReason.AMBIGUOUS_DEVICE

            device = devices[0]
            connection = await self._dial(device)
            if connection is None:
                return ExitReason.DIAL_FAILED

            reader, writer = connection
            try:
                await self._listen(device, MessageFramer(reader))
            finally:
                writer.close()
                try:
                    await writer.wait_closed()
                except OSError as exc:
                    logger.debug("Error closing connection to %s: %s", device.name, exc)
        finally:
            self._set_state(MonitorState.STOPPED)

    async def _resolve(self) -> list[Device]:
        """Query the directory, retrying lookup failures indefinitely."""
        self._set_state(MonitorState.RESOLVING)
        delay = self._lookup_config.retry_delay_ms / 1000.0
        while True:
            try:
                return await asyncio.to_thread(
                    self._directory.resolve_devices,
                    self._room_id,
                    role=self._device_config.role,
                )
            except (DeviceLookupError, OSError) as exc:
                logger.info(
                    "Receiver lookup for %s failed: %s, retrying in %.1fs",
                    self._room_id,
                    exc,
                    delay,
                )
            await asyncio.sleep(delay)

    async def _dial(
        self, device: Device
    ) -> Optional[tuple[asyncio.StreamReader, asyncio.StreamWriter]]:
        self._set_state(MonitorState.CONNECTING)
        port = self._device_config.port
        timeout = self._device_config.dial_timeout_ms / 1000.0
        logger.info("Connecting to device %s at %s:%d", device.name, device.address, port)
        try:
            connection = await asyncio.wait_for(
                asyncio.open_connection(device.address, port), timeout=timeout
            )
        except asyncio.TimeoutError:
            self._report(
                f"could not connect to device: timed out after {timeout:.1f}s", device.name
            )
            return None
        except OSError as exc:
            self._report(f"could not connect to device: {exc}", device.name)
            return None
        logger.info("Connected to device %s", device.name)
        return connection

    async def _listen(self, device: Device, framer: MessageFramer) -> None:
        self._set_state(MonitorState.LISTENING)
        pause = self._device_config.read_error_pause_ms / 1000.0
        while True:
            try:
                data = await framer.read_message()
            except FramingError as exc:
                self._report(f"problem reading receiver string: {exc}", device.name)
                continue
            except ConnectionClosedError as exc:
                self._report(f"problem reading receiver string: {exc}", device.name)
                await asyncio.sleep(pause)
                continue

            logger.debug("Read string from %s: %r", device.name, data)
            self._handle_message(device, data)

    def _handle_message(self, device: Device, data: str) -> None:
        try:
            info = get_event_info(data, self._room_id, self._filter)
        except Exception as exc:
            logger.exception("Unexpected failure processing %r", data)
            self._report(f"problem processing receiver string: {exc}", device.name)
            return

        if info.error is not None:
            self._report(f"problem reading receiver string: {info.error}", device.name)

        for event in info.events:
            try:
                self._publisher.publish(False, event, self._building, self._room)
            except PublishError as exc:
                self._report(f"failed to publish event: {exc}", device.name)

    def _report(self, message: str, identity: str) -> None:
        self._reporter.report_error(message, identity, self._building, self._room)

    def _set_state(self, new: MonitorState) -> None:
        old = self._state
        self._state = new
        logger.info("Monitor %s state: %s → %s", self._room_id, old.value, new.value)
