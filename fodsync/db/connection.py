import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

_MIGRATIONS_DIR = Path(__file__).parent / "migrations"


def get_connection(db_path: str) -> sqlite3.Connection:
    """Open a SQLite connection to the record store with WAL mode and row factory enabled."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=10, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def run_migrations(db_path: str) -> list[str]:
    """
    Apply unapplied SQL files from the migrations directory, in filename order.

    Returns the filenames applied by this call; an up-to-date store returns [].
    """
    conn = get_connection(db_path)
    newly_applied: list[str] = []
    try:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS _schema_migrations (
                filename TEXT PRIMARY KEY,
                applied_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        conn.commit()

        applied = {
            row["filename"]
            for row in conn.execute("SELECT filename FROM _schema_migrations")
        }
        pending = [p for p in sorted(_MIGRATIONS_DIR.glob("*.sql")) if p.name not in applied]

        for migration_path in pending:
            logger.info("[store] applying migration | file=%s", migration_path.name)
            conn.executescript(migration_path.read_text())
            conn.execute(
                "INSERT INTO _schema_migrations (filename) VALUES (?)", (migration_path.name,)
            )
            conn.commit()
            newly_applied.append(migration_path.name)
    finally:
        conn.close()

    if newly_applied:
        logger.info("[store] migrations applied | count=%d | db=%s", len(newly_applied), db_path)
    else:
        logger.debug("[store] schema up to date | db=%s", db_path)
    return newly_applied
