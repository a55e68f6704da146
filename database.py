import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from config import settings
from errors import StorageError

logger = logging.getLogger(__name__)

# Table written by the first release of the system. Open loans were stored
# with an empty return_date instead of NULL.
LEGACY_LOAN_TABLE = "borrow_records"


def get_db_connection(db_file: str, timeout: Optional[float] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database at ``db_file``.

    Connections run in autocommit mode; multi-statement writes go through
    ``transaction()``. Foreign keys are switched on for every connection
    because SQLite does not persist that setting.
    """
    conn = sqlite3.connect(
        db_file,
        timeout=settings.busy_timeout if timeout is None else timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection, immediate: bool = False) -> Iterator[sqlite3.Connection]:
    """Run the enclosed statements as one transaction; roll back on any error.

    ``immediate=True`` takes the database write lock up front so that a
    read-check-write sequence cannot interleave with another writer.
    """
    conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
    try:
        yield conn
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    else:
        conn.execute("COMMIT")


def create_tables(db_file: str) -> None:
    """Create the four tables, their indexes and the loan-record triggers."""
    conn = get_db_connection(db_file)
    try:
        # WAL lets readers proceed while a borrow/return holds the write lock
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.executescript("""
            BEGIN;

            CREATE TABLE IF NOT EXISTS authors (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL CHECK (length(trim(name)) > 0)
            );

            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL CHECK (length(trim(title)) > 0),
                author_id INTEGER NOT NULL,
                genre TEXT NOT NULL DEFAULT '',
                is_borrowed INTEGER NOT NULL DEFAULT 0 CHECK (is_borrowed IN (0, 1)),
                FOREIGN KEY (author_id) REFERENCES authors(id) ON DELETE RESTRICT
            );

            CREATE TABLE IF NOT EXISTS borrowers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL CHECK (length(trim(name)) > 0),
                email TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS loan_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                book_id INTEGER NOT NULL,
                borrower_id INTEGER NOT NULL,
                borrow_date TEXT NOT NULL,
                return_date TEXT,
                FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE RESTRICT,
                FOREIGN KEY (borrower_id) REFERENCES borrowers(id) ON DELETE RESTRICT
            );

            CREATE INDEX IF NOT EXISTS idx_books_author_id ON books(author_id);
            CREATE INDEX IF NOT EXISTS idx_books_genre ON books(genre);
            CREATE INDEX IF NOT EXISTS idx_loan_records_book_id ON loan_records(book_id);
            CREATE INDEX IF NOT EXISTS idx_loan_records_borrower_id ON loan_records(borrower_id);

            -- At most one open loan per book
            CREATE UNIQUE INDEX IF NOT EXISTS ux_loan_records_open_book
                ON loan_records(book_id) WHERE return_date IS NULL;

            CREATE TRIGGER IF NOT EXISTS trg_loan_records_closed_immutable
            BEFORE UPDATE ON loan_records
            WHEN OLD.return_date IS NOT NULL
            BEGIN
                SELECT RAISE(ABORT, 'closed loan record is immutable');
            END;

            CREATE TRIGGER IF NOT EXISTS trg_loan_records_no_delete
            BEFORE DELETE ON loan_records
            BEGIN
                SELECT RAISE(ABORT, 'loan records cannot be deleted');
            END;

            COMMIT;
        """)
    finally:
        conn.close()


def migrate_legacy_loans(db_file: str) -> int:
    """Copy rows from the legacy ``borrow_records`` table into ``loan_records``.

    Runs once: it does nothing when the legacy table is missing or when
    ``loan_records`` already holds data. Afterwards ``books.is_borrowed`` is
    recomputed from the open loans. Returns the number of rows copied.
    """
    conn = get_db_connection(db_file)
    try:
        cursor = conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?", (LEGACY_LOAN_TABLE,)
        )
        if cursor.fetchone() is None:
            return 0

        if conn.execute("SELECT COUNT(*) FROM loan_records").fetchone()[0] > 0:
            return 0

        legacy_count = conn.execute(f"SELECT COUNT(*) FROM {LEGACY_LOAN_TABLE}").fetchone()[0]
        with transaction(conn, immediate=True):
            # Rows pointing at deleted books or borrowers are left behind;
            # OR IGNORE drops a second open loan for the same book
            cursor = conn.execute(f"""
                INSERT OR IGNORE INTO loan_records (id, book_id, borrower_id, borrow_date, return_date)
                SELECT id, book_id, borrower_id, borrow_date, NULLIF(return_date, '')
                FROM {LEGACY_LOAN_TABLE}
                WHERE book_id IN (SELECT id FROM books)
                  AND borrower_id IN (SELECT id FROM borrowers)
            """)
            copied = cursor.rowcount
            conn.execute("""
                UPDATE books SET is_borrowed = EXISTS (
                    SELECT 1 FROM loan_records l
                    WHERE l.book_id = books.id AND l.return_date IS NULL
                )
            """)
        if copied < legacy_count:
            logger.warning(
                f"Skipped {legacy_count - copied} legacy loan rows that referenced a missing book or "
                f"borrower or conflicted with an open loan"
            )
        logger.info(f"Migrated {copied} loan records from {LEGACY_LOAN_TABLE}")
        return copied
    except sqlite3.Error as e:
        raise StorageError(f"Could not migrate {LEGACY_LOAN_TABLE}: {e}") from e
    finally:
        conn.close()


def initialize_database(db_file: str) -> None:
    """Create the schema if needed and migrate legacy loan data."""
    create_tables(db_file)
    migrate_legacy_loans(db_file)
