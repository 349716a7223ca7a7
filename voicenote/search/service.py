from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from voicenote.data.filters import NoteFilters
from voicenote.data.store import NoteStore
from voicenote.search.query_parser import ParsedQuery, parse_query

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50


@dataclass
class SearchResult:
    """One page of search results.

    ``total`` is the number of notes in the whole store, not the number of
    notes matching the query, and ``has_more`` compares against that same
    store-wide total.
    """

    results: list[dict]
    total: int
    has_more: bool


class SearchService:
    def __init__(self, store: NoteStore, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        self._store = store
        self._page_size = page_size

    def parse_query(self, raw_query: str, now: datetime | None = None) -> ParsedQuery:
        return parse_query(raw_query, now=now)

    def search(
        self,
        query: str,
        filters: NoteFilters | Mapping[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> SearchResult:
        """Run a hybrid query.

        Directives embedded in *query* are merged with *filters*; explicit
        filter fields win over parsed ones except tags, which are combined.
        Remaining free text is matched against the full-text index (ranked
        by relevance, then newest first); without free text the notes are
        simply listed newest first.
        """
        if limit is None:
            limit = self._page_size
        search_text, parsed = parse_query(query)
        explicit = (
            filters
            if isinstance(filters, NoteFilters) or filters is None
            else NoteFilters.from_mapping(filters)
        )
        combined = parsed.merged(explicit)

        if search_text.strip():
            results = self._store.search_notes(
                search_text, combined, limit=limit, offset=offset
            )
        else:
            results = self._store.list_notes(combined, limit=limit, offset=offset)

        total = self._store.count_notes()
        logger.debug(
            "Search %r returned %d result(s) (offset=%d, total=%d)",
            query,
            len(results),
            offset,
            total,
        )
        return SearchResult(
            results=results,
            total=total,
            has_more=offset + len(results) < total,
        )

    def get_recent(self, limit: int = 20, offset: int = 0) -> list[dict]:
        return self._store.list_notes(limit=limit, offset=offset)

    def get_favorites(self, limit: int = 50, offset: int = 0) -> list[dict]:
        return self._store.list_notes(
            NoteFilters(is_favorite=True), limit=limit, offset=offset
        )

    def get_by_date_range(
        self,
        start: datetime | int,
        end: datetime | int,
        limit: int = 100,
    ) -> list[dict]:
        """Notes whose timestamp falls within ``[start, end]``, newest first."""
        return self._store.list_notes(
            NoteFilters(start_date=start, end_date=end), limit=limit
        )
