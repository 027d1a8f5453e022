"""Configuration: settings and per-source policies."""

from harvester.config.settings import HarvesterSettings
from harvester.config.source_policies import SourcePolicy, load_source_policies

__all__ = [
    "HarvesterSettings",
    "SourcePolicy",
    "load_source_policies",
]
