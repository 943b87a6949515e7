"""
Migration V1 -> V2
- Adds 'is_featured' and 'stock' columns to menu_items if missing
- Adds 'needs_cleanup' and 'updated_at' columns to orders if missing
- Backfills orders.updated_at from created_at when NULL

Usage:
  python -m migration.migration_v1_to_v2 --db path/to/tiffin_table.db
"""
import argparse
import logging
import os
import sqlite3
from contextlib import closing

logger = logging.getLogger(__name__)

# (table, column, DDL fragment)
NEW_COLUMNS = [
    ("menu_items", "is_featured", "BOOLEAN NOT NULL DEFAULT 0"),
    ("menu_items", "stock", "INTEGER"),
    ("orders", "needs_cleanup", "BOOLEAN NOT NULL DEFAULT 0"),
    ("orders", "updated_at", "DATETIME"),
]


def has_column(conn: sqlite3.Connection, table: str, column: str) -> bool:
    cur = conn.execute(f"PRAGMA table_info({table})")
    return any(row[1] == column for row in cur.fetchall())


def migrate(db_path: str) -> list:
    """Upgrade the database in place and return the columns that were added."""
    if db_path == ":memory:":
        raise ValueError("Use a file-backed DB for migration script")

    if not os.path.exists(db_path):
        raise FileNotFoundError(db_path)

    added = []
    with closing(sqlite3.connect(db_path)) as conn:
        conn.execute("PRAGMA foreign_keys=ON")

        tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        missing = {"menu_items", "orders"} - tables
        if missing:
            raise RuntimeError(f"{', '.join(sorted(missing))} table missing; cannot migrate")

        for table, column, ddl in NEW_COLUMNS:
            if not has_column(conn, table, column):
                conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")
                added.append(f"{table}.{column}")

        conn.execute("UPDATE orders SET updated_at = created_at WHERE updated_at IS NULL")
        conn.commit()

    if added:
        logger.info("migrated %s: added %s", db_path, ", ".join(added))
    return added


def main():
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", required=True, help="Path to SQLite database file")
    args = parser.parse_args()
    migrate(args.db)


if __name__ == "__main__":
    main()
