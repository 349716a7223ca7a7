SCHEMA_VERSION_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);
"""

NOTES_SQL = """
CREATE TABLE IF NOT EXISTS notes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    raw_text TEXT NOT NULL,
    formatted_text TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    formatting_profile TEXT NOT NULL DEFAULT 'casual',
    is_favorite INTEGER NOT NULL DEFAULT 0,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS tags (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    color TEXT NOT NULL DEFAULT '#6366f1',
    use_count INTEGER NOT NULL DEFAULT 0,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS note_tags (
    note_id INTEGER NOT NULL,
    tag_id INTEGER NOT NULL,
    PRIMARY KEY (note_id, tag_id),
    FOREIGN KEY(note_id) REFERENCES notes(id) ON DELETE CASCADE,
    FOREIGN KEY(tag_id) REFERENCES tags(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_notes_timestamp ON notes(timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_notes_favorite ON notes(is_favorite);
CREATE INDEX IF NOT EXISTS idx_notes_created_at ON notes(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_tags_name ON tags(name);
CREATE INDEX IF NOT EXISTS idx_tags_use_count ON tags(use_count DESC);
CREATE INDEX IF NOT EXISTS idx_note_tags_tag ON note_tags(tag_id);

CREATE TRIGGER IF NOT EXISTS note_tags_use_count_insert
    AFTER INSERT ON note_tags BEGIN
    UPDATE tags SET use_count = use_count + 1 WHERE id = new.tag_id;
END;

CREATE TRIGGER IF NOT EXISTS note_tags_use_count_delete
    AFTER DELETE ON note_tags BEGIN
    UPDATE tags SET use_count = MAX(use_count - 1, 0) WHERE id = old.tag_id;
END;
"""

FTS_SQL = """
CREATE VIRTUAL TABLE IF NOT EXISTS notes_fts
    USING fts5(raw_text, formatted_text, content=notes, content_rowid=id);

CREATE TRIGGER IF NOT EXISTS notes_fts_insert
    AFTER INSERT ON notes BEGIN
    INSERT INTO notes_fts(rowid, raw_text, formatted_text)
        VALUES (new.id, new.raw_text, new.formatted_text);
END;

CREATE TRIGGER IF NOT EXISTS notes_fts_update
    AFTER UPDATE OF raw_text, formatted_text ON notes BEGIN
    INSERT INTO notes_fts(notes_fts, rowid, raw_text, formatted_text)
        VALUES ('delete', old.id, old.raw_text, old.formatted_text);
    INSERT INTO notes_fts(rowid, raw_text, formatted_text)
        VALUES (new.id, new.raw_text, new.formatted_text);
END;

CREATE TRIGGER IF NOT EXISTS notes_fts_delete
    AFTER DELETE ON notes BEGIN
    INSERT INTO notes_fts(notes_fts, rowid, raw_text, formatted_text)
        VALUES ('delete', old.id, old.raw_text, old.formatted_text);
END;
"""

DICTIONARY_SQL = """
CREATE TABLE IF NOT EXISTS dictionary_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    spoken_phrase TEXT NOT NULL UNIQUE,
    replacement TEXT NOT NULL,
    is_case_sensitive INTEGER NOT NULL DEFAULT 0,
    is_enabled INTEGER NOT NULL DEFAULT 1,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_dictionary_enabled ON dictionary_entries(is_enabled);
"""

# Ordered (version, ddl) steps. Append new versions; never edit a shipped step.
MIGRATIONS: list[tuple[int, str]] = [
    (1, NOTES_SQL + FTS_SQL),
    (2, DICTIONARY_SQL),
]

TARGET_VERSION = MIGRATIONS[-1][0]
