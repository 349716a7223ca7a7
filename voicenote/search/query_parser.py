"""Hybrid query parsing.

A query string mixes free text with inline directives::

    budget tag:work #q1 fav:true date:week

Recognised directives are removed and turned into :class:`NoteFilters`;
everything else, including directive-shaped tokens with unknown values
such as ``date:yesterday``, stays in the search text.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import NamedTuple

from voicenote.data.filters import NoteFilters, to_epoch_ms

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"^(?:tag:|#)(\w+)$", re.IGNORECASE)
_FAV_RE = re.compile(r"^fav:(true|false)$", re.IGNORECASE)
_DATE_RE = re.compile(r"^date:(today|week|month)$", re.IGNORECASE)


class ParsedQuery(NamedTuple):
    search_text: str
    filters: NoteFilters


def period_start(period: str, now: datetime | None = None) -> datetime:
    """Start of the current local day, week (Sunday) or month."""
    now = now or datetime.now()
    start_of_today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "today":
        return start_of_today
    if period == "week":
        days_since_sunday = (start_of_today.weekday() + 1) % 7
        return start_of_today - timedelta(days=days_since_sunday)
    if period == "month":
        return start_of_today.replace(day=1)
    raise ValueError(f"Unknown date period: {period}")


def parse_query(raw_query: str, now: datetime | None = None) -> ParsedQuery:
    """Split *raw_query* into free search text and structured filters.

    Directives may appear anywhere and in any combination. Tags accumulate
    in order of appearance; for ``fav:`` and ``date:`` the last occurrence
    wins. Never raises for user input.
    """
    tags: list[str] = []
    is_favorite: bool | None = None
    start_date: int | None = None
    words: list[str] = []

    for token in (raw_query or "").split():
        tag_match = _TAG_RE.match(token)
        fav_match = _FAV_RE.match(token)
        date_match = _DATE_RE.match(token)
        if tag_match:
            tags.append(tag_match.group(1).lower())
        elif fav_match:
            is_favorite = fav_match.group(1).lower() == "true"
        elif date_match:
            period = date_match.group(1).lower()
            start_date = to_epoch_ms(period_start(period, now))
        else:
            words.append(token)

    filters = NoteFilters(
        tags=tags or None,
        is_favorite=is_favorite,
        start_date=start_date,
    )
    search_text = " ".join(words)
    logger.debug(
        "Parsed query %r -> text=%r filters=%s", raw_query, search_text, filters
    )
    return ParsedQuery(search_text, filters)
