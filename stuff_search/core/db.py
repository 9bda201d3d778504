"""
SQLite connection handling and schema bootstrap.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator

from .config import DB_PATH, ensure_db_directory


@contextmanager
def get_db(db_path: str = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection with foreign keys enforced."""
    conn = sqlite3.connect(db_path or DB_PATH, timeout=30)
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: str = None):
    """Initialize the database with required tables."""
    db_path = db_path or DB_PATH
    ensure_db_directory(db_path)

    with get_db(db_path) as conn:
        cursor = conn.cursor()

        # Readers never block the writer
        cursor.execute("PRAGMA journal_mode = WAL")

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS containers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL CHECK (length(trim(name)) > 0),
                location TEXT,
                parent_id INTEGER REFERENCES containers(id),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                container_id INTEGER NOT NULL REFERENCES containers(id),
                name TEXT NOT NULL,
                description TEXT NOT NULL,
                image_ref TEXT,
                thumbnail_ref TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        # One vector per item; the embedding id is the item id
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS vectors (
                item_id INTEGER PRIMARY KEY REFERENCES items(id),
                dim INTEGER NOT NULL,
                embedding BLOB NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS imports (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                source TEXT NOT NULL,
                status TEXT NOT NULL,
                message TEXT,
                container_id INTEGER NOT NULL,
                succeeded INTEGER NOT NULL DEFAULT 0,
                failed INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        # Databases created before thumbnails were kept
        cursor.execute("PRAGMA table_info(items)")
        if "thumbnail_ref" not in [row[1] for row in cursor.fetchall()]:
            cursor.execute("ALTER TABLE items ADD COLUMN thumbnail_ref TEXT")

        # Create indexes for performance
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_items_container_id ON items(container_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_containers_parent_id ON containers(parent_id)')

        conn.commit()


def health_check(db_path: str = None):
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [row[0] for row in cursor.fetchall()]

            required_tables = ['containers', 'items', 'vectors', 'imports']
            return all(table in table_names for table in required_tables)
    except sqlite3.Error:
        return False
