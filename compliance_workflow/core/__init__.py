"""Core package - shared configuration and time source."""

from .config import Settings, get_settings
from .clock import Clock, FixedClock, utc_now

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Clock
    "Clock",
    "FixedClock",
    "utc_now",
]
