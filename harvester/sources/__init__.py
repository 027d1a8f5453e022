"""Source registry and the built-in generic sources."""

from harvester.sources.registry import SourceRegistry, resolve_factory

__all__ = ["SourceRegistry", "resolve_factory"]
