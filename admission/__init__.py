"""Request admission pipeline for API handlers."""

__version__ = "1.0.0"
