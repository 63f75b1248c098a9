"""Bridge wireless-microphone receiver status lines into structured events."""

__version__ = "0.1.0"
