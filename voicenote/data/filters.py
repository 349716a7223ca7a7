from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from datetime import datetime
from typing import Any


def to_epoch_ms(value: datetime | int) -> int:
    """Convert a datetime (naive means local time) or epoch ms to epoch ms."""
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"Expected datetime or epoch milliseconds, got {value!r}")
    return value


@dataclass
class NoteFilters:
    """Structured note filters.

    Every field is optional; ``None`` means "not filtered". Tags match a
    note associated with *any* of them. Date bounds are inclusive epoch
    milliseconds compared against the note ``timestamp``.
    """

    tags: list[str] | None = None
    is_favorite: bool | None = None
    start_date: int | None = None
    end_date: int | None = None

    def __post_init__(self) -> None:
        if self.tags is not None:
            if isinstance(self.tags, str) or not all(
                isinstance(tag, str) for tag in self.tags
            ):
                raise TypeError(f"tags must be a list of strings, got {self.tags!r}")
            self.tags = list(self.tags)
        if self.is_favorite is not None and not isinstance(self.is_favorite, bool):
            raise TypeError(f"is_favorite must be a bool, got {self.is_favorite!r}")
        if self.start_date is not None:
            self.start_date = to_epoch_ms(self.start_date)
        if self.end_date is not None:
            self.end_date = to_epoch_ms(self.end_date)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> NoteFilters:
        """Build filters from a plain mapping, rejecting unknown keys."""
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise TypeError(f"Unknown filter field(s): {', '.join(sorted(unknown))}")
        return cls(**dict(data))

    def merged(self, explicit: NoteFilters | None) -> NoteFilters:
        """Overlay *explicit* filters on top of these ones.

        Scalar fields set in *explicit* replace ours. Tags are the one
        exception: both lists are concatenated, ours first.
        """
        if explicit is None:
            return replace(self, tags=list(self.tags) if self.tags else self.tags)

        tags = self.tags
        if explicit.tags is not None:
            tags = [*(self.tags or []), *explicit.tags]
        return NoteFilters(
            tags=list(tags) if tags is not None else None,
            is_favorite=(
                explicit.is_favorite
                if explicit.is_favorite is not None
                else self.is_favorite
            ),
            start_date=(
                explicit.start_date
                if explicit.start_date is not None
                else self.start_date
            ),
            end_date=(
                explicit.end_date if explicit.end_date is not None else self.end_date
            ),
        )

    def is_empty(self) -> bool:
        return (
            not self.tags
            and self.is_favorite is None
            and self.start_date is None
            and self.end_date is None
        )
