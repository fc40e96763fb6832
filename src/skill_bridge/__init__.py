"""Chat-to-CLI skill bridge."""

__version__ = "0.1.0"
