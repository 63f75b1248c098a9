"""Click CLI for the mic telemetry bridge.

Entry point registered in ``pyproject.toml`` as ``mic-telemetry-bridge``.

Subcommands::

    mic-telemetry-bridge                         # monitor every configured room
    mic-telemetry-bridge -r 101 -r 102           # monitor only these rooms
    mic-telemetry-bridge parse --room-id X FILE  # run captured traffic through the pipeline
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

import click
import orjson

from mic_telemetry_bridge import __version__
from mic_telemetry_bridge.config import AppConfig, LogFileConfig, load_config
from mic_telemetry_bridge.connection import ReceiverMonitor
from mic_telemetry_bridge.directory import FileDeviceDirectory
from mic_telemetry_bridge.filter import EventFilter
from mic_telemetry_bridge.output import DailyFileSink, Sink, StdoutSink
from mic_telemetry_bridge.pipeline import get_event_info
from mic_telemetry_bridge.publishing import NdjsonPublisher
from mic_telemetry_bridge.transform import Transformer

logger = logging.getLogger("mic_telemetry_bridge")

DEFAULT_CONFIG = "/etc/mic-bridge/config.json"


class _JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        obj = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            obj["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(obj).decode()


def _setup_logging(level: str, log_file_config: Optional[LogFileConfig] = None) -> None:
    """Configure the root logger with JSON output on stderr and an optional file."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(_JsonFormatter())
    root.addHandler(stderr_handler)

    if log_file_config and log_file_config.enabled:
        Path(log_file_config.path).parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=log_file_config.path,
            maxBytes=log_file_config.max_size_bytes,
            backupCount=log_file_config.backup_count,
        )
        file_handler.setFormatter(_JsonFormatter())
        root.addHandler(file_handler)


@click.group(invoke_without_command=True)
@click.option("-o", "--output", "output_mode", type=click.Choice(["stdout", "file"]),
              default=None, help="Output mode (default: file).")
@click.option("-d", "--output-dir", default=None, help="Override output directory.")
@click.option("-c", "--config", "config_path", default=None, help="Config file path.")
@click.option("-r", "--room", "rooms", multiple=True,
              help="Monitor only this room (repeatable).")
@click.option("--log-level", default=None,
              type=click.Choice(["debug", "info", "warn", "error"]),
              help="Log verbosity.")
@click.option("--validate-config", "validate_only", is_flag=True,
              help="Validate config and exit.")
@click.version_option(__version__)
@click.pass_context
def main(
    ctx: click.Context,
    output_mode: Optional[str],
    output_dir: Optional[str],
    config_path: Optional[str],
    rooms: tuple[str, ...],
    log_level: Optional[str],
    validate_only: bool,
) -> None:
    """Monitor room receivers and publish mic telemetry as NDJSON."""
    if ctx.invoked_subcommand is not None:
        return

    cfg_path = config_path or os.environ.get("MIC_BRIDGE_CONFIG", DEFAULT_CONFIG)
    try:
        cfg = load_config(cfg_path)
    except Exception as exc:
        click.echo(f"Config error: {exc}", err=True)
        raise SystemExit(1) from exc

    effective_level = log_level or os.environ.get("MIC_BRIDGE_LOG_LEVEL") or cfg.logging.level
    effective_output = output_mode or os.environ.get("MIC_BRIDGE_OUTPUT") or "file"
    if output_dir:
        cfg.output.output_dir = output_dir
    elif os.environ.get("MIC_BRIDGE_OUTPUT_DIR"):
        cfg.output.output_dir = os.environ["MIC_BRIDGE_OUTPUT_DIR"]
    if rooms:
        cfg.rooms = list(rooms)

    _setup_logging(effective_level, cfg.logging.file)

    if validate_only:
        click.echo("Configuration is valid.", err=True)
        raise SystemExit(0)

    logger.info(
        "Starting mic-telemetry-bridge %s (system=%s, building=%s, rooms=%s, output=%s)",
        __version__,
        cfg.system_id,
        cfg.building,
        ",".join(cfg.rooms),
        effective_output,
    )
    asyncio.run(_run_monitors(cfg, effective_output))


def _make_sinks(cfg: AppConfig, output_mode: str) -> tuple[Sink, Sink]:
    """Return the (event, error) sinks for *output_mode*."""
    if output_mode == "stdout":
        sink = StdoutSink()
        return sink, sink
    oc = cfg.output
    return (
        DailyFileSink(oc.output_dir, oc.events_prefix, cfg.system_id),
        DailyFileSink(oc.output_dir, oc.errors_prefix, cfg.system_id),
    )


async def _run_monitors(cfg: AppConfig, output_mode: str) -> None:
    """Run one independent monitor per room until all stop or a signal arrives."""
    loop = asyncio.get_running_loop()
    event_sink, error_sink = _make_sinks(cfg, output_mode)
    publisher = NdjsonPublisher(event_sink, error_sink)
    directory = FileDeviceDirectory(cfg.lookup.devices_file)
    event_filter = EventFilter(cfg.filter)

    monitors = [
        ReceiverMonitor(
            building=cfg.building,
            room=room,
            directory=directory,
            publisher=publisher,
            reporter=publisher,
            system_id=cfg.system_id,
            device_config=cfg.device,
            lookup_config=cfg.lookup,
            event_filter=event_filter,
        )
        for room in cfg.rooms
    ]
    tasks = [asyncio.create_task(m.run(), name=m.room_id) for m in monitors]

    def _handle_signal() -> None:
        logger.info("Received shutdown signal")
        for task in tasks:
            task.cancel()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _handle_signal)
        except NotImplementedError:
            pass  # Windows

    try:
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for monitor, result in zip(monitors, results):
            if isinstance(result, asyncio.CancelledError):
                logger.info("Monitor %s cancelled", monitor.room_id)
            elif isinstance(result, BaseException):
                logger.error("Monitor %s crashed", monitor.room_id, exc_info=result)
            else:
                logger.info("Monitor %s exited: %s", monitor.room_id, result.value)
    finally:
        event_sink.close()
        error_sink.close()
        logger.info("All monitors stopped")


@main.command("parse")
@click.argument("source", type=click.File("rb"), default="-")
@click.option("--room-id", required=True, help="Room prefix for device names, e.g. BLDG-101.")
def parse(source, room_id: str) -> None:
    """Run captured receiver traffic through the event pipeline.

    Reads raw protocol bytes from SOURCE (default stdin), splits them on
    ``>`` and prints one NDJSON event record per surviving event.
    """
    building, _, room = room_id.partition("-")
    xform = Transformer()
    sink = StdoutSink()
    frames = source.read().split(b">")
    # Text after the last terminator is an unterminated frame.
    for frame in frames[:-1]:
        data = frame.decode("ascii", errors="replace")
        info = get_event_info(data, room_id)
        if info.error is not None:
            click.echo(f"{data.strip()!r}: {info.error}", err=True)
        for event in info.events:
            sink.write(xform.transform_event(event, building, room))
