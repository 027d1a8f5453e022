"""Parser boundary.

A parse failure in one fragment degrades to "no record for this fragment":
``ParseError`` (and the usual suspects raised by sloppy markup/JSON handling)
is logged, reported to the activity log as a parsing warning and never
propagated to the crawl loop.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import TypeVar

from harvester.crawl.types import ListingRecord, ParseContext
from harvester.middleware.error_handler import ParseError
from harvester.monitoring.activity_log import ActivityStatus

logger = logging.getLogger(__name__)

F = TypeVar("F")

# Errors that mean "this fragment is malformed", not "the parser is broken"
FRAGMENT_ERRORS: tuple[type[Exception], ...] = (
    ParseError,
    ValueError,
    KeyError,
    IndexError,
    TypeError,
    AttributeError,
)


def parse_fragments(
    fragments: Iterable[F],
    parse_one: Callable[[F], ListingRecord | None],
    context: ParseContext,
) -> list[ListingRecord]:
    """Apply ``parse_one`` to every fragment and keep the successful records.

    ``parse_one`` may return ``None`` to skip a fragment silently.
    """
    records: list[ListingRecord] = []
    failures: list[str] = []

    for index, fragment in enumerate(fragments):
        try:
            record = parse_one(fragment)
        except FRAGMENT_ERRORS as exc:
            failures.append(f"fragment {index}: {exc}")
            continue
        if record is not None:
            records.append(record)

    if failures:
        summary = "; ".join(failures)
        logger.warning(
            "Skipped %d malformed fragment(s) on %s page %d: %s",
            len(failures),
            context.category,
            context.page,
            summary,
            extra={
                "source": context.source,
                "category": context.category,
                "page": context.page,
                "error_reason": summary,
            },
        )
        if context.activity_log is not None:
            context.activity_log.log_parsing(
                context.source,
                context.category,
                context.page,
                len(records),
                status=ActivityStatus.WARNING,
                error=f"skipped {len(failures)} malformed fragment(s): {summary}",
            )

    return records
