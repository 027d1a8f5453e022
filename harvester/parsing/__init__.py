"""Parser boundary and fallback extraction chain."""

from harvester.parsing.chain import ExtractorChain
from harvester.parsing.fragments import FRAGMENT_ERRORS, parse_fragments

__all__ = ["FRAGMENT_ERRORS", "ExtractorChain", "parse_fragments"]
