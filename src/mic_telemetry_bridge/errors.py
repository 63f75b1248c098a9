"""Exceptions raised by the telemetry bridge."""


class BridgeError(Exception):
    """Base exception for all bridge errors."""


class DeviceLookupError(BridgeError):
    """Raised when the device directory cannot be queried right now."""


class FramingError(BridgeError):
    """Raised when a single frame read off the wire is unusable."""


class ConnectionClosedError(BridgeError):
    """Raised when the receiver closes or resets the TCP stream."""


class ExtractionError(BridgeError):
    """Raised when a classified message carries a malformed field."""


class PublishError(BridgeError):
    """Raised when an event cannot be handed to the publishing layer."""
