from __future__ import annotations

import logging
import os
import re
import sqlite3
import threading
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from voicenote.data.errors import MigrationError, StoreError
from voicenote.data.export import ExportFormat, render_notes
from voicenote.data.filters import NoteFilters, to_epoch_ms
from voicenote.data.migrations import apply_migrations

if TYPE_CHECKING:
    from voicenote.config import Config

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = "casual"
BACKUP_SUFFIX = ".bak"
DEFAULT_TAG_COLOR = "#6366f1"

_UPDATABLE_FIELDS = frozenset(
    {"raw_text", "formatted_text", "formatting_profile", "is_favorite"}
)
_FTS_SPECIAL_RE = re.compile(r'["\^*()\[\]]')
_WORD_RE = re.compile(r"\w")
# Stay well below SQLITE_MAX_VARIABLE_NUMBER on old builds.
_MAX_IN_PARAMS = 500


def _now_ms() -> int:
    return int(time.time() * 1000)


class NoteStore:
    """SQLite-backed store for transcribed notes.

    The full-text index (``notes_fts``) is maintained by triggers on the
    ``notes`` table, so every insert, text update and delete changes the
    index inside the same statement and transaction.

    One connection is shared by all callers; a re-entrant lock serialises
    access so multi-statement operations and backups never interleave.
    """

    def __init__(self, db_path: str, default_profile: str = DEFAULT_PROFILE) -> None:
        self._db_path = db_path
        self._backup_path = f"{db_path}{BACKUP_SUFFIX}"
        self._default_profile = default_profile
        self._lock = threading.RLock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        try:
            self._conn = self._connect()
            apply_migrations(self._conn)
        except sqlite3.Error as exc:
            self._discard_connection()
            raise MigrationError(0, str(exc)) from exc
        except StoreError:
            self._discard_connection()
            raise
        logger.info("Note store initialized at %s", db_path)

    @classmethod
    def from_config(cls, config: Config) -> NoteStore:
        return cls(str(config.db_path), default_profile=config.default_profile)

    def __enter__(self) -> NoteStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def db_path(self) -> str:
        return self._db_path

    @property
    def backup_path(self) -> str:
        return self._backup_path

    @property
    def closed(self) -> bool:
        return self._conn is None

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    def _discard_connection(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield the connection under the store lock inside a transaction.

        The transaction commits when the block exits normally and rolls
        back if it raises.
        """
        with self._lock:
            if self._conn is None:
                raise StoreError("Note store is closed")
            with self._conn:
                yield self._conn

    # -- notes ---------------------------------------------------------------

    def insert_note(
        self,
        raw_text: str,
        formatted_text: str,
        timestamp: int,
        formatting_profile: str | None = None,
        is_favorite: bool = False,
    ) -> int:
        """Persist a new note and return its id."""
        if raw_text is None or formatted_text is None or timestamp is None:
            raise ValueError("raw_text, formatted_text and timestamp are required")
        with self.transaction() as conn:
            cur = conn.execute(
                """
                INSERT INTO notes(
                    raw_text, formatted_text, timestamp,
                    formatting_profile, is_favorite, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    raw_text,
                    formatted_text,
                    to_epoch_ms(timestamp),
                    formatting_profile or self._default_profile,
                    1 if is_favorite else 0,
                    _now_ms(),
                ),
            )
        assert cur.lastrowid is not None
        note_id = int(cur.lastrowid)
        logger.info("Saved note #%d", note_id)
        return note_id

    def get_note(self, note_id: int) -> dict | None:
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM notes WHERE id = ?", (note_id,)
            ).fetchone()
        return dict(row) if row else None

    def list_notes(
        self,
        filters: NoteFilters | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict]:
        """Return notes matching *filters*, newest ``timestamp`` first."""
        clauses, params = self._filter_sql(filters or NoteFilters(), alias="n")
        query = "SELECT n.* FROM notes n"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY n.timestamp DESC, n.id DESC"
        query = self._paginate(query, params, limit, offset)
        with self.transaction() as conn:
            rows = conn.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def update_note(self, note_id: int, **fields: Any) -> None:
        """Apply the given fields to a note. Unknown ids are ignored.

        Accepted fields are ``raw_text``, ``formatted_text``,
        ``formatting_profile`` and ``is_favorite``.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            names = ", ".join(sorted(unknown))
            raise ValueError(f"Cannot update note field(s): {names}")
        if not fields:
            return

        assignments: list[str] = []
        params: list[Any] = []
        for name in sorted(fields):
            value = fields[name]
            if value is None:
                raise ValueError(f"Note field '{name}' cannot be null")
            if name == "is_favorite":
                value = 1 if value else 0
            assignments.append(f"{name} = ?")
            params.append(value)
        params.append(note_id)

        with self.transaction() as conn:
            cur = conn.execute(
                f"UPDATE notes SET {', '.join(assignments)} WHERE id = ?", params
            )
        if cur.rowcount:
            logger.info("Updated note #%d", note_id)
        else:
            logger.debug("Update skipped, note #%d does not exist", note_id)

    def delete_note(self, note_id: int) -> None:
        """Delete a note, its index entry and its tag links. Unknown ids are ignored."""
        with self.transaction() as conn:
            cur = conn.execute("DELETE FROM notes WHERE id = ?", (note_id,))
        if cur.rowcount:
            logger.info("Deleted note #%d", note_id)
        else:
            logger.debug("Delete skipped, note #%d does not exist", note_id)

    def toggle_favorite(self, note_id: int) -> bool:
        """Toggle the is_favorite flag. Returns the new value."""
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT is_favorite FROM notes WHERE id = ?", (note_id,)
            ).fetchone()
            if row is None:
                return False
            new_val = 0 if row["is_favorite"] else 1
            conn.execute(
                "UPDATE notes SET is_favorite = ? WHERE id = ?", (new_val, note_id)
            )
        logger.info("Toggled favorite for note #%d", note_id)
        return bool(new_val)

    def count_notes(self) -> int:
        with self.transaction() as conn:
            row = conn.execute("SELECT COUNT(*) AS cnt FROM notes").fetchone()
        return int(row["cnt"])

    def stats(self) -> dict[str, int]:
        with self.transaction() as conn:
            row = conn.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM notes) AS total,
                    (SELECT COUNT(*) FROM notes WHERE is_favorite = 1) AS favorites,
                    (SELECT COUNT(*) FROM tags) AS total_tags
                """
            ).fetchone()
        return {
            "total": int(row["total"]),
            "favorites": int(row["favorites"]),
            "total_tags": int(row["total_tags"]),
        }

    # -- full-text search ----------------------------------------------------

    def search_notes(
        self,
        query: str,
        filters: NoteFilters | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict]:
        """Full-text BM25 search over raw and formatted text.

        Results are ordered by relevance, then newest ``timestamp`` first.
        An empty *query* falls back to :meth:`list_notes`.
        """
        if not query.strip():
            return self.list_notes(filters, limit=limit, offset=offset)
        safe_query = self._sanitize_fts_query(query)
        if not safe_query:
            return []

        clauses, params = self._filter_sql(filters or NoteFilters(), alias="n")
        sql = """
            SELECT n.*
            FROM notes_fts
            JOIN notes n ON n.id = notes_fts.rowid
            WHERE notes_fts MATCH ?
        """
        if clauses:
            sql += " AND " + " AND ".join(clauses)
        sql += " ORDER BY notes_fts.rank, n.timestamp DESC"
        params = [safe_query, *params]
        sql = self._paginate(sql, params, limit, offset)
        try:
            with self.transaction() as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.OperationalError as exc:
            logger.warning("Full-text search failed (FTS5 error): %s", exc)
            return []
        logger.debug("FTS search returned %d results for %r", len(rows), query[:50])
        return [dict(row) for row in rows]

    def rebuild_search_index(self) -> None:
        """Regenerate the full-text index from the notes table."""
        with self.transaction() as conn:
            conn.execute("INSERT INTO notes_fts(notes_fts) VALUES('rebuild')")
        logger.info("Full-text index rebuilt")

    def check_search_index(self) -> bool:
        """Return True when the full-text index matches the notes table."""
        try:
            with self.transaction() as conn:
                conn.execute(
                    "INSERT INTO notes_fts(notes_fts, rank) "
                    "VALUES('integrity-check', 1)"
                )
        except sqlite3.DatabaseError as exc:
            logger.warning("Full-text index integrity check failed: %s", exc)
            return False
        return True

    @staticmethod
    def _sanitize_fts_query(query: str) -> str:
        """Sanitize a user query string for use as an FTS5 MATCH term.

        Wraps each word in double-quotes to prevent FTS5 operator injection,
        so multiple words are matched with an implicit AND. Tokens without
        any word character are dropped.
        """
        cleaned = _FTS_SPECIAL_RE.sub(" ", query)
        words = [w for w in cleaned.split() if _WORD_RE.search(w)]
        if not words:
            return ""
        return " ".join(f'"{w}"' for w in words)

    @staticmethod
    def _filter_sql(filters: NoteFilters, alias: str) -> tuple[list[str], list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if filters.is_favorite is not None:
            clauses.append(f"{alias}.is_favorite = ?")
            params.append(1 if filters.is_favorite else 0)
        if filters.start_date is not None:
            clauses.append(f"{alias}.timestamp >= ?")
            params.append(filters.start_date)
        if filters.end_date is not None:
            clauses.append(f"{alias}.timestamp <= ?")
            params.append(filters.end_date)
        tag_names = sorted({t.strip().lower() for t in filters.tags or [] if t.strip()})
        if tag_names:
            placeholders = ",".join(["?"] * len(tag_names))
            clauses.append(
                f"""{alias}.id IN (
                    SELECT nt.note_id
                    FROM note_tags nt
                    JOIN tags t ON t.id = nt.tag_id
                    WHERE t.name IN ({placeholders})
                )"""
            )
            params.extend(tag_names)
        return clauses, params

    @staticmethod
    def _paginate(
        query: str, params: list[Any], limit: int | None, offset: int
    ) -> str:
        if limit is not None and limit < 0:
            raise ValueError("limit must not be negative")
        if offset < 0:
            raise ValueError("offset must not be negative")
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        elif offset:
            query += " LIMIT -1"
        if offset:
            query += " OFFSET ?"
            params.append(offset)
        return query

    # -- tags ----------------------------------------------------------------

    def ensure_tag(self, name: str, color: str | None = None) -> int:
        with self.transaction() as conn:
            return self._ensure_tag(conn, name, color)

    @staticmethod
    def _ensure_tag(
        conn: sqlite3.Connection, name: str, color: str | None = None
    ) -> int:
        name = name.strip().lower()
        if not name:
            raise ValueError("Tag name is empty")
        row = conn.execute("SELECT id FROM tags WHERE name = ?", (name,)).fetchone()
        if row:
            return int(row["id"])
        cur = conn.execute(
            "INSERT INTO tags(name, color, created_at) VALUES (?, ?, ?)",
            (name, color or DEFAULT_TAG_COLOR, _now_ms()),
        )
        assert cur.lastrowid is not None
        return int(cur.lastrowid)

    def set_note_tags(self, note_id: int, tag_names: Iterable[str]) -> None:
        """Replace the tags of a note. Unknown note ids are ignored."""
        names = [name for name in tag_names if name.strip()]
        with self.transaction() as conn:
            exists = conn.execute(
                "SELECT 1 FROM notes WHERE id = ?", (note_id,)
            ).fetchone()
            if exists is None:
                logger.debug("Tagging skipped, note #%d does not exist", note_id)
                return
            tag_ids = [self._ensure_tag(conn, name) for name in names]
            conn.execute("DELETE FROM note_tags WHERE note_id = ?", (note_id,))
            conn.executemany(
                "INSERT OR IGNORE INTO note_tags(note_id, tag_id) VALUES (?, ?)",
                [(note_id, tag_id) for tag_id in tag_ids],
            )

    def get_note_tags(self, note_id: int) -> list[dict]:
        with self.transaction() as conn:
            rows = conn.execute(
                """
                SELECT t.*
                FROM tags t
                JOIN note_tags nt ON nt.tag_id = t.id
                WHERE nt.note_id = ?
                ORDER BY t.name
                """,
                (note_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def list_tags(self) -> list[dict]:
        with self.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM tags ORDER BY use_count DESC, name"
            ).fetchall()
        return [dict(row) for row in rows]

    def rename_tag(self, tag_id: int, new_name: str) -> None:
        new_name = new_name.strip().lower()
        if not new_name:
            raise ValueError("Tag name cannot be empty")
        with self.transaction() as conn:
            clash = conn.execute(
                "SELECT id FROM tags WHERE name = ? AND id != ?", (new_name, tag_id)
            ).fetchone()
            if clash:
                raise ValueError(f"Tag '{new_name}' already exists")
            conn.execute("UPDATE tags SET name = ? WHERE id = ?", (new_name, tag_id))

    def delete_tag(self, tag_id: int) -> None:
        """Delete a tag. CASCADE removes its note_tags rows."""
        with self.transaction() as conn:
            conn.execute("DELETE FROM tags WHERE id = ?", (tag_id,))

    def get_tag_usage_count(self, tag_id: int) -> int:
        """Return the number of notes using this tag."""
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS cnt FROM note_tags WHERE tag_id = ?", (tag_id,)
            ).fetchone()
        return int(row["cnt"]) if row else 0

    # -- export and lifecycle ------------------------------------------------

    def export_notes(self, note_ids: Iterable[int], fmt: ExportFormat | str) -> str:
        """Serialise the selected notes, oldest first, in *fmt*."""
        ids = list(dict.fromkeys(note_ids))
        rows: list[dict] = []
        with self.transaction() as conn:
            for start in range(0, len(ids), _MAX_IN_PARAMS):
                batch = ids[start : start + _MAX_IN_PARAMS]
                placeholders = ",".join(["?"] * len(batch))
                cur = conn.execute(
                    f"SELECT * FROM notes WHERE id IN ({placeholders})", batch
                )
                rows.extend(dict(row) for row in cur.fetchall())
        rows.sort(key=lambda note: (note["timestamp"], note["id"]))
        return render_notes(rows, fmt)

    def backup(self) -> bool:
        """Snapshot the live database to :attr:`backup_path`.

        Uses SQLite's online backup API while holding the store lock, so
        the copy is consistent even though the store stays open. The snapshot
        is written beside the old backup and swapped in, replacing whatever
        was there before. Failures are logged and reported as ``False``;
        they never propagate.
        """
        with self._lock:
            if self._conn is None:
                logger.warning("Backup skipped, note store is closed")
                return False
            staging_path = f"{self._backup_path}.tmp"
            try:
                Path(staging_path).unlink(missing_ok=True)
                target = sqlite3.connect(staging_path)
                try:
                    self._conn.backup(target)
                finally:
                    target.close()
                os.replace(staging_path, self._backup_path)
            except (sqlite3.Error, OSError):
                logger.exception("Backup to %s failed", self._backup_path)
                Path(staging_path).unlink(missing_ok=True)
                return False
        logger.info("Backup created at %s", self._backup_path)
        return True

    def restore(self) -> bool:
        """Replace the live database with the last backup.

        Returns:
            True if the backup was restored, False if no backup exists or
            copying failed (the store is reopened on the live file).
        """
        with self._lock:
            if not Path(self._backup_path).exists():
                logger.error("No backup found at %s", self._backup_path)
                return False
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            try:
                source = sqlite3.connect(self._backup_path)
                try:
                    target = sqlite3.connect(self._db_path)
                    try:
                        source.backup(target)
                    finally:
                        target.close()
                finally:
                    source.close()
                self._conn = self._connect()
                apply_migrations(self._conn)
            except (sqlite3.Error, OSError, StoreError):
                logger.exception("Restore from %s failed", self._backup_path)
                if self._conn is None:
                    self._conn = self._connect()
                return False
        logger.info("Restored from backup %s", self._backup_path)
        return True

    def vacuum(self) -> None:
        logger.info("Running VACUUM...")
        with self._lock:
            if self._conn is None:
                raise StoreError("Note store is closed")
            self._conn.execute("VACUUM")
        logger.info("VACUUM complete")

    def close(self) -> None:
        """Back up and close the database. Closing twice is a no-op."""
        with self._lock:
            if self._conn is None:
                return
            self.backup()
            self._conn.close()
            self._conn = None
        logger.info("Database closed")
