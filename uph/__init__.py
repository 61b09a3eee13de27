"""Batch units-per-hour calculation engine."""

__version__ = "0.4.0"
