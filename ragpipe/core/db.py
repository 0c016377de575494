"""
SQLite plumbing for the vector store - connection management and schema setup.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator, Optional

from .config import get_db_path, ensure_db_directory


@contextmanager
def get_db(db_path: Optional[str] = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    path = db_path or get_db_path()
    if path != ":memory:":
        ensure_db_directory(path)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row  # Enable dict-like access to rows
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: Optional[str] = None):
    """Initialize the database with required tables. Safe to call repeatedly."""
    with get_db(db_path) as conn:
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS documents (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                chunk_text TEXT NOT NULL,
                source_file TEXT NOT NULL,
                chunk_index INTEGER NOT NULL,
                start_position INTEGER NOT NULL DEFAULT 0,
                end_position INTEGER NOT NULL DEFAULT 0,
                overlap INTEGER NOT NULL DEFAULT 0,
                heading_context TEXT,   -- markdown heading path, NULL when not tracked
                token_count INTEGER NOT NULL,
                dimension INTEGER NOT NULL,
                embedding BLOB NOT NULL, -- little-endian float64
                synthetic BOOLEAN DEFAULT FALSE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_documents_source ON documents(source_file)')

        conn.commit()


def health_check(db_path: Optional[str] = None) -> bool:
    """Check that the database is reachable and the documents table exists."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            tables = [row[0] for row in cursor.fetchall()]
            return 'documents' in tables
    except sqlite3.Error:
        return False
