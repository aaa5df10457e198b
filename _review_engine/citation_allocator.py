"""
Citation identifiers: ES-<year>-<4-digit sequence>.

A citation id is assigned exactly once, at the moment a paper is published,
and never changes. Sequences restart every year and increase by one with each
publication in that year.

Allocation goes through the store's atomic counter. The first allocation of a
year seeds the counter from the highest citation already stored for that
year, so a store that predates the counter (or was seeded by hand) never
hands out an existing id.
"""

import re
from datetime import datetime, timezone
from typing import Optional

from . import engine_settings

MAX_SEQUENCE = 9999


def format_citation_id(year: int, sequence: int,
                       prefix: str = engine_settings.CITATION_PREFIX) -> str:
    if not 1 <= sequence <= MAX_SEQUENCE:
        raise ValueError(
            f"Citation sequence {sequence} is outside 1..{MAX_SEQUENCE} for {year}"
        )
    return f"{prefix}-{year:04d}-{sequence:04d}"


def parse_citation_id(citation_id: str,
                      prefix: str = engine_settings.CITATION_PREFIX) -> Optional[tuple]:
    """Return (year, sequence) for a well-formed citation id, else None."""
    match = re.fullmatch(re.escape(prefix) + r"-(\d{4})-(\d{4})", citation_id or "")
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def highest_sequence_for_year(store, year: int,
                              prefix: str = engine_settings.CITATION_PREFIX) -> int:
    highest = 0
    for paper in store.list_papers():
        parsed = parse_citation_id(paper.get("citation_id"), prefix)
        if parsed and parsed[0] == year:
            highest = max(highest, parsed[1])
    return highest


def allocate_citation_id(store, year: Optional[int] = None,
                         prefix: str = engine_settings.CITATION_PREFIX) -> str:
    """
    Allocate the next citation id for ``year`` (default: the current UTC year).

    Race-free: the increment happens inside the store's counter lock, so two
    concurrent callers always get different sequences.

    Raises:
        ValueError: the year's 4-digit sequence space is exhausted.
    """
    if year is None:
        year = datetime.now(timezone.utc).year
    sequence = store.next_counter(
        f"citation:{prefix}:{year}",
        seed=lambda: highest_sequence_for_year(store, year, prefix),
    )
    return format_citation_id(year, sequence, prefix)
