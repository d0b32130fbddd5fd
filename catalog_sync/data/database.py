"""SQLite storage for the discipline catalog and synchronization run history."""

import json
import os
import sqlite3
from contextlib import contextmanager
from typing import Callable, Dict, List, Optional, Set

from ..core.logger import setup_logging
from ..core.models import ClassRecord, DisciplineRecord, SyncRun, parse_class_number

logger = setup_logging()

DEFAULT_DB_PATH = os.path.join(os.path.dirname(__file__), 'catalog.db')


class CatalogDatabase:
    """Manages catalog persistence on SQLite; every write is its own transaction."""

    def __init__(self, db_path: Optional[str] = None, busy_timeout: float = 10.0):
        """
        Initialize the database and make sure the schema exists.

        Args:
            db_path: SQLite file path (default: catalog.db next to this module)
            busy_timeout: Seconds a writer waits for a lock held by another connection
        """
        self.sqlite_path = db_path or DEFAULT_DB_PATH
        self.busy_timeout = busy_timeout

        directory = os.path.dirname(os.path.abspath(self.sqlite_path))
        os.makedirs(directory, exist_ok=True)
        self.create_tables()

    def get_connection(self):
        """Create and return SQLite connection in autocommit mode; transactions are explicit."""
        conn = sqlite3.connect(self.sqlite_path, timeout=self.busy_timeout, isolation_level=None)
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def transaction(self):
        """Yield a cursor inside BEGIN IMMEDIATE; commit on success, roll back on error."""
        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("BEGIN IMMEDIATE")
            yield cursor
            cursor.execute("COMMIT")
        except Exception:
            if conn.in_transaction:
                cursor.execute("ROLLBACK")
            raise
        finally:
            cursor.close()
            conn.close()

    @contextmanager
    def snapshot(self):
        """Yield a cursor inside a deferred BEGIN so several SELECTs see one consistent state."""
        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("BEGIN")
            yield cursor
            cursor.execute("COMMIT")
        finally:
            if conn.in_transaction:
                conn.rollback()
            cursor.close()
            conn.close()

    def create_tables(self):
        """Create all database tables with indexes."""
        with self.transaction() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS disciplines (
                    discipline_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    archived INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT DEFAULT (datetime('now'))
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS classes (
                    discipline_id TEXT NOT NULL,
                    number INTEGER NOT NULL,
                    position INTEGER NOT NULL,
                    schedule TEXT NOT NULL DEFAULT '',
                    professor TEXT NOT NULL DEFAULT '',
                    vacancies INTEGER NOT NULL DEFAULT 0,
                    whatsapp_group TEXT,
                    PRIMARY KEY (discipline_id, number),
                    FOREIGN KEY (discipline_id) REFERENCES disciplines(discipline_id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS sync_runs (
                    run_id TEXT PRIMARY KEY,
                    started_at TEXT NOT NULL,
                    finished_at TEXT,
                    status TEXT NOT NULL,
                    enumeration_complete INTEGER NOT NULL DEFAULT 0,
                    succeeded INTEGER NOT NULL DEFAULT 0,
                    unchanged INTEGER NOT NULL DEFAULT 0,
                    failed INTEGER NOT NULL DEFAULT 0,
                    skipped INTEGER NOT NULL DEFAULT 0,
                    archived TEXT NOT NULL DEFAULT '[]',
                    error TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS sync_failures (
                    run_id TEXT NOT NULL,
                    discipline_id TEXT NOT NULL,
                    kind TEXT,
                    message TEXT,
                    FOREIGN KEY (run_id) REFERENCES sync_runs(run_id) ON DELETE CASCADE
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_disciplines_archived ON disciplines (archived)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_sync_runs_started ON sync_runs (started_at)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_sync_failures_run ON sync_failures (run_id)")
        logger.debug(f"Catalog schema ready in {self.sqlite_path}")

    # ---------------------- Disciplines ----------------------

    @staticmethod
    def _read_classes(cursor, discipline_id) -> List[ClassRecord]:
        cursor.execute("""
            SELECT number, schedule, professor, vacancies, whatsapp_group
            FROM classes WHERE discipline_id = ?
            ORDER BY position
        """, (discipline_id,))
        return [
            ClassRecord(number=row[0], schedule=row[1], professor=row[2],
                        vacancies=row[3], whatsapp_group=row[4])
            for row in cursor.fetchall()
        ]

    def _read_discipline(self, cursor, discipline_id) -> Optional[DisciplineRecord]:
        cursor.execute(
            "SELECT discipline_id, name, archived FROM disciplines WHERE discipline_id = ?",
            (discipline_id,))
        row = cursor.fetchone()
        if not row:
            return None
        return DisciplineRecord(
            discipline_id=row[0],
            name=row[1],
            archived=bool(row[2]),
            classes=self._read_classes(cursor, row[0]),
        )

    @staticmethod
    def _write_discipline(cursor, record: DisciplineRecord):
        cursor.execute("""
            INSERT INTO disciplines (discipline_id, name, archived)
            VALUES (?, ?, ?)
            ON CONFLICT (discipline_id) DO UPDATE SET
                name = EXCLUDED.name,
                archived = EXCLUDED.archived,
                updated_at = CURRENT_TIMESTAMP
        """, (record.discipline_id, record.name, int(record.archived)))

        cursor.execute("DELETE FROM classes WHERE discipline_id = ?", (record.discipline_id,))

        for position, class_record in enumerate(record.classes):
            cursor.execute("""
                INSERT INTO classes (discipline_id, number, position, schedule,
                                     professor, vacancies, whatsapp_group)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                record.discipline_id, class_record.number, position,
                class_record.schedule, class_record.professor,
                class_record.vacancies, class_record.whatsapp_group,
            ))

    def get_all_disciplines(self, include_archived: bool = False) -> List[DisciplineRecord]:
        """Return the catalog ordered by discipline id, read from a single snapshot."""
        with self.snapshot() as cursor:
            where_clause = "" if include_archived else "WHERE archived = 0"
            cursor.execute(f"""
                SELECT discipline_id, name, archived FROM disciplines
                {where_clause}
                ORDER BY discipline_id
            """)
            rows = cursor.fetchall()

            return [
                DisciplineRecord(
                    discipline_id=row[0],
                    name=row[1],
                    archived=bool(row[2]),
                    classes=self._read_classes(cursor, row[0]),
                )
                for row in rows
            ]

    def get_discipline_by_id(self, discipline_id: str) -> Optional[DisciplineRecord]:
        """Return one discipline, archived or not, or None."""
        with self.snapshot() as cursor:
            return self._read_discipline(cursor, discipline_id)

    def get_active_discipline_ids(self) -> Set[str]:
        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT discipline_id FROM disciplines WHERE archived = 0")
            return {row[0] for row in cursor.fetchall()}
        finally:
            cursor.close()
            conn.close()

    def upsert_discipline(self, record: DisciplineRecord):
        """Insert or replace a discipline and its full class list."""
        with self.transaction() as cursor:
            self._write_discipline(cursor, record)

    def apply_discipline(self, discipline_id: str,
                         merge: Callable[[Optional[DisciplineRecord]], Optional[DisciplineRecord]]):
        """
        Atomically read a discipline, merge, and write the result.

        Args:
            discipline_id: Discipline to update
            merge: Receives the stored record (or None) and returns the record to
                store, or None to leave the row as it is

        Returns:
            tuple: (stored record before the call, record written or None)
        """
        with self.transaction() as cursor:
            existing = self._read_discipline(cursor, discipline_id)
            merged = merge(existing)
            if merged is not None:
                self._write_discipline(cursor, merged)
            return existing, merged

    def archive_discipline(self, discipline_id: str) -> bool:
        """Mark a discipline stale. Its classes and links are kept for id lookups."""
        with self.transaction() as cursor:
            cursor.execute("""
                UPDATE disciplines SET archived = 1, updated_at = CURRENT_TIMESTAMP
                WHERE discipline_id = ? AND archived = 0
            """, (discipline_id,))
            return cursor.rowcount > 0

    def update_whatsapp_group(self, discipline_id: str, class_number, whatsapp_group: Optional[str]) -> bool:
        """
        Set the WhatsApp group link of one class.

        Returns:
            bool: False when the discipline or class does not exist
        """
        number = parse_class_number(class_number)
        if number is None:
            return False

        with self.transaction() as cursor:
            cursor.execute("""
                UPDATE classes SET whatsapp_group = ?
                WHERE discipline_id = ? AND number = ?
            """, (whatsapp_group or None, discipline_id, number))
            return cursor.rowcount > 0

    # ---------------------- Sync runs ----------------------

    def record_sync_run(self, run: SyncRun):
        """Store the summary of a finished run and its per-discipline failures."""
        counts = run.counts()

        with self.transaction() as cursor:
            cursor.execute("""
                INSERT INTO sync_runs (run_id, started_at, finished_at, status, enumeration_complete,
                                       succeeded, unchanged, failed, skipped, archived, error)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (run_id) DO UPDATE SET
                    finished_at = EXCLUDED.finished_at,
                    status = EXCLUDED.status,
                    enumeration_complete = EXCLUDED.enumeration_complete,
                    succeeded = EXCLUDED.succeeded,
                    unchanged = EXCLUDED.unchanged,
                    failed = EXCLUDED.failed,
                    skipped = EXCLUDED.skipped,
                    archived = EXCLUDED.archived,
                    error = EXCLUDED.error
            """, (
                run.run_id,
                run.started_at.isoformat(),
                run.finished_at.isoformat() if run.finished_at else None,
                run.status,
                int(run.enumeration_complete),
                counts['succeeded'], counts['unchanged'], counts['failed'], counts['skipped'],
                json.dumps(run.archived),
                run.error,
            ))

            cursor.execute("DELETE FROM sync_failures WHERE run_id = ?", (run.run_id,))
            for outcome in run.failures:
                cursor.execute("""
                    INSERT INTO sync_failures (run_id, discipline_id, kind, message)
                    VALUES (?, ?, ?, ?)
                """, (run.run_id, outcome.discipline_id, outcome.failure_kind, outcome.message))

    def get_latest_sync_run(self) -> Optional[Dict]:
        """Return the most recent run summary with its failures, or None."""
        conn = self.get_connection()
        conn.row_factory = sqlite3.Row
        cursor = conn.cursor()

        try:
            cursor.execute("SELECT * FROM sync_runs ORDER BY started_at DESC LIMIT 1")
            row = cursor.fetchone()
            if not row:
                return None

            run = dict(row)
            run['enumeration_complete'] = bool(run['enumeration_complete'])
            run['archived'] = json.loads(run['archived'])

            cursor.execute("""
                SELECT discipline_id, kind, message FROM sync_failures
                WHERE run_id = ? ORDER BY discipline_id
            """, (run['run_id'],))
            run['failures'] = [dict(failure) for failure in cursor.fetchall()]
            return run
        finally:
            cursor.close()
            conn.close()


# Singleton pattern
_instance = None


def get_db(db_path: Optional[str] = None) -> CatalogDatabase:
    """
    Get the shared singleton database instance.

    Args:
        db_path: SQLite file path (only used on first call)

    Returns:
        CatalogDatabase singleton instance
    """
    global _instance
    if _instance is None:
        _instance = CatalogDatabase(db_path)
    return _instance


def reset_db():
    """Reset the singleton instance (useful for testing)."""
    global _instance
    _instance = None
