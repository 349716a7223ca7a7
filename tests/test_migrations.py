from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from voicenote.data.errors import MigrationError
from voicenote.data.migrations import apply_migrations, current_version
from voicenote.data.schema import MIGRATIONS, TARGET_VERSION
from voicenote.data.store import NoteStore


def _tables(conn: sqlite3.Connection) -> set[str]:
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type IN ('table', 'trigger', 'index')"
    ).fetchall()
    return {row[0] for row in rows}


def test_fresh_database_reaches_target_version(tmp_path: Path) -> None:
    conn = sqlite3.connect(tmp_path / "notes.db")

    assert current_version(conn) == 0
    assert apply_migrations(conn) == TARGET_VERSION
    assert current_version(conn) == TARGET_VERSION

    names = _tables(conn)
    for expected in (
        "notes",
        "notes_fts",
        "notes_fts_insert",
        "notes_fts_update",
        "notes_fts_delete",
        "tags",
        "note_tags",
        "dictionary_entries",
        "idx_notes_timestamp",
        "idx_notes_favorite",
        "idx_tags_name",
        "idx_tags_use_count",
    ):
        assert expected in names
    conn.close()


def test_second_run_is_a_no_op(tmp_path: Path) -> None:
    conn = sqlite3.connect(tmp_path / "notes.db")
    apply_migrations(conn)
    conn.execute(
        "INSERT INTO notes(raw_text, formatted_text, timestamp, created_at) "
        "VALUES ('a', 'a', 1, 1)"
    )
    conn.commit()

    assert apply_migrations(conn) == TARGET_VERSION
    rows = conn.execute("SELECT version FROM schema_version").fetchall()
    assert [row[0] for row in rows] == [TARGET_VERSION]
    assert conn.execute("SELECT COUNT(*) FROM notes").fetchone()[0] == 1
    conn.close()


def test_upgrade_from_first_version_adds_dictionary(tmp_path: Path) -> None:
    conn = sqlite3.connect(tmp_path / "notes.db")
    assert apply_migrations(conn, MIGRATIONS[:1]) == 1
    assert "dictionary_entries" not in _tables(conn)

    assert apply_migrations(conn) == 2
    assert "dictionary_entries" in _tables(conn)
    conn.close()


def test_failed_step_is_rolled_back_and_not_recorded() -> None:
    conn = sqlite3.connect(":memory:")
    steps = [
        (1, "CREATE TABLE first (x INTEGER);"),
        (2, "CREATE TABLE second (y INTEGER);\nCREATE TABLE first (z INTEGER);"),
    ]

    with pytest.raises(MigrationError) as excinfo:
        apply_migrations(conn, steps)

    assert excinfo.value.version == 2
    assert current_version(conn) == 1
    names = _tables(conn)
    assert "first" in names
    assert "second" not in names
    conn.close()


def test_store_refuses_newer_database(tmp_path: Path) -> None:
    db_path = tmp_path / "notes.db"
    conn = sqlite3.connect(db_path)
    apply_migrations(conn)
    conn.execute("UPDATE schema_version SET version = ?", (TARGET_VERSION + 1,))
    conn.commit()
    conn.close()

    with pytest.raises(MigrationError):
        NoteStore(str(db_path))


def test_reopening_store_keeps_data(tmp_path: Path) -> None:
    db_path = str(tmp_path / "notes.db")
    with NoteStore(db_path) as store:
        note_id = store.insert_note("hello", "Hello.", 1000)

    with NoteStore(db_path) as store:
        note = store.get_note(note_id)
        assert note is not None
        assert note["formatted_text"] == "Hello."


def test_store_rejects_file_that_is_not_a_database(tmp_path: Path) -> None:
    db_path = tmp_path / "notes.db"
    db_path.write_bytes(b"this is not a database" * 100)

    with pytest.raises(MigrationError) as excinfo:
        NoteStore(str(db_path))

    assert excinfo.value.version == 0
    assert db_path.read_bytes().startswith(b"this is not a database")
