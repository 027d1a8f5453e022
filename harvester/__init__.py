"""Resilient paginated listing harvester."""

__version__ = "0.1.0"
