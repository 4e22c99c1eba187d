"""esplink - session engine for ESP32 motor controllers."""

__version__ = "0.1.0"
