# Kuze Core: SQLite Connection Helper
#
# Every Kuze database (token table, reference vault) opens connections
# through `connect()` so that each one gets:
#
#   - WAL journal mode (concurrent readers + one writer)
#   - busy_timeout so contended writers wait instead of failing at once
#   - foreign_keys enforcement
#
# Connections are short-lived: one per store operation, closed on exit.

import sqlite3
from pathlib import Path
from typing import Union

DEFAULT_BUSY_TIMEOUT_MS = 5000


def connect(
    db_path: Union[str, Path],
    *,
    row_factory: bool = False,
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode and safe PRAGMAs.

    Args:
        db_path: Path to the database file.
        row_factory: If True, set conn.row_factory = sqlite3.Row.
        busy_timeout_ms: How long a writer waits on a locked database.

    Returns:
        sqlite3.Connection with WAL mode, busy_timeout, and foreign_keys.
    """
    conn = sqlite3.connect(
        str(db_path),
        timeout=busy_timeout_ms / 1000,
        check_same_thread=False,
    )
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
    conn.execute("PRAGMA foreign_keys=ON")
    if row_factory:
        conn.row_factory = sqlite3.Row
    return conn
