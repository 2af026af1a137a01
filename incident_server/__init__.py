"""Incident lifecycle server: capability dispatcher, lifecycle manager and corpus sync."""

__version__ = "1.0.0"
