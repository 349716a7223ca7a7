from __future__ import annotations

import logging
import sqlite3

from voicenote.data.errors import MigrationError
from voicenote.data.schema import MIGRATIONS, SCHEMA_VERSION_SQL

logger = logging.getLogger(__name__)


def current_version(conn: sqlite3.Connection) -> int:
    """Return the recorded schema version, or 0 for a fresh database."""
    try:
        row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    except sqlite3.OperationalError:
        return 0
    if row is None or row[0] is None:
        return 0
    return int(row[0])


def apply_migrations(
    conn: sqlite3.Connection,
    migrations: list[tuple[int, str]] | None = None,
) -> int:
    """Bring the database up to the newest schema version.

    Safe to call on every startup: when the recorded version is current
    nothing runs. Each pending step runs in its own transaction together
    with the version bump, so a failing step leaves the previous version
    recorded and none of its DDL applied.

    Args:
        conn: Open connection to the note database.
        migrations: Ordered ``(version, ddl)`` steps. Defaults to the
            application schema.

    Returns:
        The schema version after migrating.

    Raises:
        MigrationError: A step failed, or the database was written by a
            newer release.
    """
    steps = MIGRATIONS if migrations is None else migrations
    target = steps[-1][0] if steps else 0

    try:
        conn.executescript(SCHEMA_VERSION_SQL)
        version = current_version(conn)
    except sqlite3.Error as exc:
        logger.error("Could not read schema version: %s", exc)
        raise MigrationError(0, str(exc)) from exc

    if version > target:
        raise MigrationError(
            version, f"database is newer than this release (expects {target})"
        )
    if version == target:
        logger.debug("Schema is current (version %d)", version)
        return version

    for step_version, ddl in steps:
        if step_version <= version:
            continue
        logger.info("Applying schema migration %d -> %d", version, step_version)
        script = (
            "BEGIN;\n"
            f"{ddl}\n"
            "DELETE FROM schema_version;\n"
            f"INSERT INTO schema_version(version) VALUES ({int(step_version)});\n"
            "COMMIT;\n"
        )
        try:
            conn.executescript(script)
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.rollback()
            logger.error("Schema migration %d failed: %s", step_version, exc)
            raise MigrationError(step_version, str(exc)) from exc
        version = step_version

    logger.info("Migration complete. Schema version: %d", version)
    return version
