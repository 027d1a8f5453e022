"""Ordered extraction strategies; the first non-empty result wins.

Register strategies from most to least specific (e.g. embedded JSON state,
then structured data, then markup selectors). A strategy that raises one of
the fragment errors is logged and skipped.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Generic, TypeVar

from harvester.parsing.fragments import FRAGMENT_ERRORS

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExtractorChain(Generic[T]):
    """Tries named strategies in registration order."""

    def __init__(self) -> None:
        self._strategies: list[tuple[str, Callable[[Any], T | None]]] = []

    def register(self, name: str, strategy: Callable[[Any], T | None]) -> ExtractorChain[T]:
        """Append a strategy.

        Raises
        ------
        ValueError
            If a strategy with the same name is already registered.
        """
        if any(existing == name for existing, _ in self._strategies):
            raise ValueError(f"Strategy '{name}' is already registered")
        self._strategies.append((name, strategy))
        return self

    def names(self) -> list[str]:
        return [name for name, _ in self._strategies]

    def extract(self, content: Any) -> T | None:
        """Return the first non-empty strategy result, or None."""
        result, _ = self.extract_with_name(content)
        return result

    def extract_with_name(self, content: Any) -> tuple[T | None, str | None]:
        for name, strategy in self._strategies:
            try:
                result = strategy(content)
            except FRAGMENT_ERRORS as exc:
                logger.debug("Extractor strategy '%s' failed: %s", name, exc)
                continue
            if result:
                return result, name
        return None, None
