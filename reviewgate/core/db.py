"""
SQLite persistence for review records, incidents and the audit log.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator, Optional
from . import config


@contextmanager
def get_db(db_path: Optional[str] = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    path = db_path or config.DB_PATH
    config.ensure_db_directory(path)
    conn = sqlite3.connect(path, timeout=30)
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: Optional[str] = None):
    """Initialize the database with required tables."""
    with get_db(db_path) as conn:
        cursor = conn.cursor()

        # One row per review cycle of a content item
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS review_records (
                content_id TEXT NOT NULL,
                cycle INTEGER NOT NULL,
                state TEXT NOT NULL,
                archived BOOLEAN DEFAULT FALSE,
                version INTEGER NOT NULL DEFAULT 0,
                document TEXT NOT NULL,   -- JSON serialized ReviewRecord
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (content_id, cycle)
            )
        ''')

        # Append-only hallucination incidents
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS incidents (
                incident_id TEXT PRIMARY KEY,
                content_id TEXT NOT NULL,
                record_cycle INTEGER NOT NULL,
                ts TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                document TEXT NOT NULL
            )
        ''')

        # Append-only audit sink: prompt/retrieval context, comments, failed checks
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                content_id TEXT NOT NULL,
                record_cycle INTEGER,
                ts TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                kind TEXT NOT NULL,   -- 'context', 'comment', 'failed_check', 'transition'
                actor TEXT,
                payload TEXT
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_records_state ON review_records(state)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_incidents_content ON incidents(content_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_audit_content_ts ON audit_log(content_id, ts DESC)')

        conn.commit()


def health_check(db_path: Optional[str] = None):
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [table[0] for table in cursor.fetchall()]
            required_tables = ['review_records', 'incidents', 'audit_log']
            return all(table in table_names for table in required_tables)
    except sqlite3.Error:
        return False
