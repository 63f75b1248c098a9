"""Tests for the per-room receiver monitor."""

import asyncio
import socket
import threading
from unittest.mock import AsyncMock

import pytest

from mic_telemetry_bridge import connection as connection_module
from mic_telemetry_bridge.config import DeviceConfig, FilterConfig, LookupConfig
from mic_telemetry_bridge.connection import ExitReason, MonitorState, ReceiverMonitor
from mic_telemetry_bridge.errors import DeviceLookupError, PublishError
from mic_telemetry_bridge.filter import EventFilter
from mic_telemetry_bridge.models import Device


class FakeDirectory:
    """Returns queued results; exceptions in the queue are raised."""

    def __init__(self, *results) -> None:
        self._results = list(results)
        self.calls: list[tuple[str, str]] = []

    def resolve_devices(self, room_key: str, role: str = "Receiver") -> list[Device]:
        self.calls.append((room_key, role))
        result = self._results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class RecordingPublisher:
    """Collects published events and error reports."""

    def __init__(self, fail_keys: tuple[str, ...] = ()) -> None:
        self.events = []
        self.errors: list[tuple[str, str, str, str]] = []
        self._fail_keys = fail_keys

    def publish(self, is_final, event, building, room) -> None:
        if event.key in self._fail_keys:
            raise PublishError("hub unavailable")
        self.events.append((is_final, event, building, room))

    def report_error(self, message, identity, building, room) -> None:
        self.errors.append((message, identity, building, room))


def _monitor(directory, publisher, port: int = 2202, **kwargs) -> ReceiverMonitor:
    return ReceiverMonitor(
        building="BLDG",
        room="101",
        directory=directory,
        publisher=publisher,
        reporter=publisher,
        system_id="bridge-test",
        device_config=DeviceConfig(port=port, dial_timeout_ms=1000, read_error_pause_ms=10),
        lookup_config=LookupConfig(retry_delay_ms=0),
        **kwargs,
    )


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _closed_reports(publisher) -> int:
    return sum(m.startswith("problem reading receiver string: stream ended")
               for m, _, _, _ in publisher.errors)


def _serve_and_monitor(payload: bytes, publisher, until=None, **kwargs) -> ReceiverMonitor:
    """Serve *payload* from a receiver that then hangs up, and monitor it.

    The monitor never returns on its own once connected, so it is cancelled
    as soon as *until(publisher)* holds (default: the hang-up was reported).
    """
    until = until or (lambda p: _closed_reports(p) >= 1)

    async def _run() -> ReceiverMonitor:
        async def _handle(reader, writer) -> None:
            writer.write(payload)
            await writer.drain()
            writer.close()

        server = await asyncio.start_server(_handle, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        directory = FakeDirectory([Device(name="BLDG-101-RCV1", address="127.0.0.1")])
        monitor = _monitor(directory, publisher, port=port, **kwargs)
        async with server:
            task = asyncio.create_task(monitor.run())
            for _ in range(500):
                if until(publisher) or task.done():
                    break
                await asyncio.sleep(0.01)
            assert not task.done(), "monitor returned while connected"
            assert monitor.state is MonitorState.LISTENING
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
        return monitor

    return asyncio.run(_run())


def test_zero_devices_stops_quietly() -> None:
    publisher = RecordingPublisher()
    monitor = _monitor(FakeDirectory([]), publisher)
    assert asyncio.run(monitor.run()) is ExitReason.NO_DEVICE
    assert publisher.errors == []
    assert monitor.state is MonitorState.STOPPED


def test_ambiguous_devices_reported_once_without_dialing(monkeypatch) -> None:
    publisher = RecordingPublisher()
    dial = AsyncMock()
    monkeypatch.setattr(connection_module.asyncio, "open_connection", dial)
    directory = FakeDirectory([
        Device(name="BLDG-101-RCV1", address="10.0.0.1"),
        Device(name="BLDG-101-RCV2", address="10.0.0.2"),
    ])

    result = asyncio.run(_monitor(directory, publisher).run())

    assert result is ExitReason.AMBIGUOUS_DEVICE
    assert publisher.errors == [
        ("detected 2 receivers, expecting 1", "bridge-test", "BLDG", "101")
    ]
    dial.assert_not_called()


def test_lookup_failures_are_retried() -> None:
    publisher = RecordingPublisher()
    directory = FakeDirectory(
        DeviceLookupError("directory not ready"),
        OSError("disk hiccup"),
        [],
    )
    result = asyncio.run(_monitor(directory, publisher).run())

    assert result is ExitReason.NO_DEVICE
    assert directory.calls == [("BLDG-101", "Receiver")] * 3
    assert publisher.errors == []


def test_dial_failure_reported_and_not_retried() -> None:
    publisher = RecordingPublisher()
    directory = FakeDirectory([Device(name="BLDG-101-RCV1", address="127.0.0.1")])

    result = asyncio.run(_monitor(directory, publisher, port=_free_port()).run())

    assert result is ExitReason.DIAL_FAILED
    assert len(publisher.errors) == 1
    message, identity, _, _ = publisher.errors[0]
    assert message.startswith("could not connect to device")
    assert identity == "BLDG-101-RCV1"
    assert len(directory.calls) == 1


def test_events_published_in_wire_order() -> None:
    publisher = RecordingPublisher()
    payload = (
        b"< REP 1 BATT_RUN_TIME 00125 >"
        b"HEARTBEAT OK>"
        b"< REP 2 TX_POWER ON >"
        b"REP 1 BATT 45 minutes>"
    )
    _serve_and_monitor(payload, publisher)

    published = [(e.target_device.name, e.key, e.value) for _, e, _, _ in publisher.events]
    assert published == [
        ("BLDG-101-MIC1", "minutes", "125"),
        ("BLDG-101-MIC1", "battery level (hours:minute remaining", "2:5"),
        ("BLDG-101-MIC2", "power", "on"),
        ("BLDG-101-MIC1", "minutes", "45"),
        ("BLDG-101-MIC1", "battery level (hours:minute remaining", "0:45"),
    ]
    assert all(not is_final and (b, r) == ("BLDG", "101")
               for is_final, _, b, r in publisher.events)
    # Every error so far is the closed stream, reported against the receiver.
    assert publisher.errors
    assert _closed_reports(publisher) == len(publisher.errors)
    assert {identity for _, identity, _, _ in publisher.errors} == {"BLDG-101-RCV1"}


def test_closed_stream_reported_while_listening() -> None:
    publisher = RecordingPublisher()
    monitor = _serve_and_monitor(
        b"REP 1 POWER ON>REP 2 POW", publisher, until=lambda p: _closed_reports(p) >= 3
    )

    assert [e.key for _, e, _, _ in publisher.events] == ["power"]
    assert publisher.errors[0][0] == (
        "problem reading receiver string: stream ended with 9 unterminated bytes"
    )
    assert _closed_reports(publisher) >= 3
    assert monitor.state is MonitorState.STOPPED


def test_closed_stream_waits_between_reads(monkeypatch) -> None:
    publisher = RecordingPublisher()
    pauses: list[float] = []

    class RecordingAsyncio:
        """The asyncio module as seen by the monitor, with sleeps recorded."""

        def __getattr__(self, name):
            return getattr(asyncio, name)

        async def sleep(self, delay):
            pauses.append(delay)
            await asyncio.sleep(delay)

    monkeypatch.setattr(connection_module, "asyncio", RecordingAsyncio())
    _serve_and_monitor(b"", publisher, until=lambda p: _closed_reports(p) >= 2)

    assert pauses[:2] == [0.01, 0.01]


def test_bad_frame_does_not_stop_monitoring() -> None:
    publisher = RecordingPublisher()
    payload = b"REP 1 \xff>< REP 1 TX_POWER SLEEPING >< REP 3 TX_POWER OFF >"
    _serve_and_monitor(payload, publisher)

    messages = [m for m, _, _, _ in publisher.errors]
    assert messages[0].startswith("problem reading receiver string: non-ASCII frame")
    assert "unrecognized power state" in messages[1]
    assert messages[2] == "problem reading receiver string: stream ended with 0 unterminated bytes"
    # The malformed power event is still forwarded, then the next frame.
    assert [(e.key, e.value) for _, e, _, _ in publisher.events] == [
        ("power", "sleeping"),
        ("power", "off"),
    ]


def test_publish_failure_reported_and_loop_continues() -> None:
    publisher = RecordingPublisher(fail_keys=("minutes",))
    _serve_and_monitor(b"REP 1 BATT 90 minutes>REP 2 POWER ON>", publisher)

    assert [e.key for _, e, _, _ in publisher.events] == [
        "battery level (hours:minute remaining",
        "power",
    ]
    assert publisher.errors[0][0] == "failed to publish event: hub unavailable"


def test_event_filter_applied() -> None:
    publisher = RecordingPublisher()
    _serve_and_monitor(
        b"REP 1 POWER ON>REP 2 POWER ON>",
        publisher,
        event_filter=EventFilter(FilterConfig(drop_channels=["2"])),
    )
    assert [e.target_device.name for _, e, _, _ in publisher.events] == ["BLDG-101-MIC1"]


def test_directory_called_off_the_event_loop() -> None:
    class ThreadRecordingDirectory(FakeDirectory):
        def resolve_devices(self, room_key, role="Receiver"):
            self.thread = threading.current_thread()
            return super().resolve_devices(room_key, role)

    directory = ThreadRecordingDirectory([])
    asyncio.run(_monitor(directory, RecordingPublisher()).run())
    assert directory.thread is not threading.main_thread()
