from __future__ import annotations

import logging
import re
import sqlite3
import time
from typing import Any

from voicenote.data.errors import DuplicatePhraseError
from voicenote.data.store import NoteStore

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset(
    {"spoken_phrase", "replacement", "is_case_sensitive", "is_enabled"}
)
_FLAG_FIELDS = frozenset({"is_case_sensitive", "is_enabled"})


def _now_ms() -> int:
    return int(time.time() * 1000)


class PhraseDictionary:
    """User-defined spoken phrase replacements.

    Entries live in the ``dictionary_entries`` table of the note database
    and are applied to transcribed text after formatting.
    """

    def __init__(self, store: NoteStore) -> None:
        self._store = store

    def add_entry(
        self,
        spoken_phrase: str,
        replacement: str,
        is_case_sensitive: bool = False,
    ) -> int:
        """Create an enabled entry and return its id.

        Raises:
            DuplicatePhraseError: The phrase is already in the dictionary.
            ValueError: The phrase is empty.
        """
        spoken_phrase = self._clean_phrase(spoken_phrase)
        if replacement is None:
            raise ValueError("Replacement cannot be null")
        now = _now_ms()
        try:
            with self._store.transaction() as conn:
                cur = conn.execute(
                    """
                    INSERT INTO dictionary_entries(
                        spoken_phrase, replacement, is_case_sensitive,
                        is_enabled, created_at, updated_at)
                    VALUES (?, ?, ?, 1, ?, ?)
                    """,
                    (
                        spoken_phrase,
                        replacement,
                        1 if is_case_sensitive else 0,
                        now,
                        now,
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicatePhraseError(spoken_phrase) from exc
        assert cur.lastrowid is not None
        entry_id = int(cur.lastrowid)
        logger.info(
            "Added dictionary entry #%d: %r -> %r", entry_id, spoken_phrase, replacement
        )
        return entry_id

    def get_entry(self, entry_id: int) -> dict | None:
        with self._store.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM dictionary_entries WHERE id = ?", (entry_id,)
            ).fetchone()
        return dict(row) if row else None

    def list_entries(self) -> list[dict]:
        with self._store.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM dictionary_entries "
                "ORDER BY spoken_phrase COLLATE NOCASE ASC"
            ).fetchall()
        return [dict(row) for row in rows]

    def list_enabled_entries(self) -> list[dict]:
        """Enabled entries, longest phrase first.

        Longer phrases must be replaced before any shorter phrase they
        contain, otherwise "Kleene Star" would consume the start of
        "Kleene Star closure".
        """
        with self._store.transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM dictionary_entries
                WHERE is_enabled = 1
                ORDER BY LENGTH(spoken_phrase) DESC, id ASC
                """
            ).fetchall()
        return [dict(row) for row in rows]

    def update_entry(self, entry_id: int, **fields: Any) -> None:
        """Update an entry in place. Unknown ids are ignored.

        Raises:
            DuplicatePhraseError: The new phrase clashes with another entry.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            names = ", ".join(sorted(unknown))
            raise ValueError(f"Cannot update dictionary field(s): {names}")
        if not fields:
            return

        assignments: list[str] = []
        params: list[Any] = []
        for name in sorted(fields):
            value = fields[name]
            if value is None:
                raise ValueError(f"Dictionary field '{name}' cannot be null")
            if name in _FLAG_FIELDS:
                value = 1 if value else 0
            elif name == "spoken_phrase":
                value = self._clean_phrase(value)
            assignments.append(f"{name} = ?")
            params.append(value)
        assignments.append("updated_at = ?")
        params.extend([_now_ms(), entry_id])

        try:
            with self._store.transaction() as conn:
                conn.execute(
                    f"UPDATE dictionary_entries SET {', '.join(assignments)} "
                    "WHERE id = ?",
                    params,
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicatePhraseError(str(fields.get("spoken_phrase"))) from exc
        logger.info("Updated dictionary entry #%d", entry_id)

    def delete_entry(self, entry_id: int) -> None:
        with self._store.transaction() as conn:
            conn.execute("DELETE FROM dictionary_entries WHERE id = ?", (entry_id,))
        logger.info("Deleted dictionary entry #%d", entry_id)

    def toggle_enabled(self, entry_id: int) -> bool:
        """Flip the enabled flag. Returns the new value (False if missing)."""
        with self._store.transaction() as conn:
            conn.execute(
                """
                UPDATE dictionary_entries
                SET is_enabled = 1 - is_enabled, updated_at = ?
                WHERE id = ?
                """,
                (_now_ms(), entry_id),
            )
            row = conn.execute(
                "SELECT is_enabled FROM dictionary_entries WHERE id = ?", (entry_id,)
            ).fetchone()
        if row is None:
            return False
        logger.info("Toggled enabled for dictionary entry #%d", entry_id)
        return bool(row["is_enabled"])

    def apply(self, text: str) -> str:
        """Apply every enabled replacement to *text*, longest phrase first."""
        result = text
        for entry in self.list_enabled_entries():
            phrase = entry["spoken_phrase"]
            replacement = entry["replacement"]
            if entry["is_case_sensitive"]:
                result = result.replace(phrase, replacement)
            else:
                result = re.sub(
                    re.escape(phrase),
                    lambda _match, value=replacement: value,
                    result,
                    flags=re.IGNORECASE,
                )
        return result

    def stats(self) -> dict[str, int]:
        with self._store.transaction() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(is_enabled), 0) AS enabled
                FROM dictionary_entries
                """
            ).fetchone()
        return {"total": int(row["total"]), "enabled": int(row["enabled"])}

    @staticmethod
    def _clean_phrase(phrase: str | None) -> str:
        if phrase is None or not phrase.strip():
            raise ValueError("Spoken phrase cannot be empty")
        return phrase.strip()
