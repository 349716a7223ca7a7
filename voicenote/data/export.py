"""Serialisation of notes into the supported export formats.

Output is bit-exact for a given set of rows and local timezone:

* ``json`` dumps the full rows with two-space indentation.
* ``markdown`` writes one ``# <date>`` section per note followed by a
  ``---`` rule.
* ``txt`` writes the date, the text and a 50 character ``=`` rule.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import datetime
from enum import StrEnum
from typing import Any

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
TEXT_SEPARATOR = "=" * 50


class ExportFormat(StrEnum):
    JSON = "json"
    MARKDOWN = "markdown"
    TXT = "txt"


def format_timestamp(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime(DATE_FORMAT)


def render_notes(notes: Sequence[dict[str, Any]], fmt: ExportFormat | str) -> str:
    """Render *notes* (already in export order) in the requested format.

    Raises:
        ValueError: *fmt* is not one of :class:`ExportFormat`.
    """
    try:
        export_format = ExportFormat(fmt)
    except ValueError:
        raise ValueError(f"Unsupported export format: {fmt}") from None

    if export_format is ExportFormat.JSON:
        return json.dumps(list(notes), indent=2, ensure_ascii=False)

    if export_format is ExportFormat.MARKDOWN:
        return "\n".join(
            f"# {format_timestamp(note['timestamp'])}\n\n"
            f"{note['formatted_text']}\n\n---\n"
            for note in notes
        )

    return "\n".join(
        f"{format_timestamp(note['timestamp'])}\n"
        f"{note['formatted_text']}\n\n{TEXT_SEPARATOR}\n"
        for note in notes
    )
