import logging
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Type, TypeVar, Union

from author import Author
from book import Book
from borrower import Borrower
from database import get_db_connection, transaction
from errors import NotFoundError, StorageBusyError, StorageError
from loan_record import LoanRecord

logger = logging.getLogger(__name__)

Record = Union[Author, Book, Borrower, LoanRecord]
R = TypeVar("R", Author, Book, Borrower, LoanRecord)

RECORD_KINDS = (Author, Book, Borrower, LoanRecord)


class EntityStore:
    """Generic create/read/update/delete over the four record kinds.

    Every method runs on its own connection unless ``conn`` is given, in
    which case it joins the caller's transaction and leaves commit/rollback
    to the caller.
    """

    def __init__(self, db_file: str) -> None:
        self.db_file = db_file

    @contextmanager
    def connection(self, conn: Optional[sqlite3.Connection] = None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        own = get_db_connection(self.db_file)
        try:
            yield own
        finally:
            own.close()

    # ------------------------- Writes ------------------------- #
    def create(self, entity: Record, conn: Optional[sqlite3.Connection] = None) -> int:
        """Insert ``entity`` and set its freshly assigned id. Returns the id."""
        kind = type(entity)
        self._check_kind(kind)
        values = entity.to_dict()
        columns = ", ".join(kind.FIELDS)
        placeholders = ", ".join("?" for _ in kind.FIELDS)
        params = tuple(values[field] for field in kind.FIELDS)
        try:
            with self.connection(conn) as c:
                cursor = c.execute(f"INSERT INTO {kind.TABLE} ({columns}) VALUES ({placeholders})", params)
                new_id = cursor.lastrowid
        except sqlite3.Error as e:
            raise _storage_error(f"Could not create {kind.KIND}: {e}", e) from e
        entity.id = new_id
        logger.debug(f"Created {kind.KIND} {entity.id}")
        return entity.id

    def update(self, kind: Type[Record], entity_id: int, conn: Optional[sqlite3.Connection] = None,
               **fields: Any) -> None:
        """Set the given columns on one row; raise NotFoundError if it does not exist."""
        self._check_kind(kind)
        if not fields:
            raise ValueError("Nothing to update.")
        if "id" in fields:
            raise ValueError("Identifiers cannot be changed.")
        self._check_fields(kind, fields)
        assignments = ", ".join(f"{name} = ?" for name in fields)
        params = tuple(fields.values()) + (entity_id,)
        try:
            with self.connection(conn) as c:
                cursor = c.execute(f"UPDATE {kind.TABLE} SET {assignments} WHERE id = ?", params)
                changed = cursor.rowcount
        except sqlite3.Error as e:
            raise _storage_error(f"Could not update {kind.KIND} {entity_id}: {e}", e) from e
        if changed == 0:
            raise NotFoundError(kind.KIND, entity_id)

    def delete(self, kind: Type[Record], entity_id: int, conn: Optional[sqlite3.Connection] = None) -> None:
        self._check_kind(kind)
        try:
            with self.connection(conn) as c:
                cursor = c.execute(f"DELETE FROM {kind.TABLE} WHERE id = ?", (entity_id,))
                deleted = cursor.rowcount
        except sqlite3.Error as e:
            raise _storage_error(f"Could not delete {kind.KIND} {entity_id}: {e}", e) from e
        if deleted == 0:
            raise NotFoundError(kind.KIND, entity_id)
        logger.debug(f"Deleted {kind.KIND} {entity_id}")

    # ------------------------- Reads ------------------------- #
    def get(self, kind: Type[R], entity_id: int, conn: Optional[sqlite3.Connection] = None) -> R:
        row = self._fetch_one(kind, entity_id, conn)
        if row is None:
            raise NotFoundError(kind.KIND, entity_id)
        return kind.from_dict(dict(row))

    def exists(self, kind: Type[Record], entity_id: int, conn: Optional[sqlite3.Connection] = None) -> bool:
        return self._fetch_one(kind, entity_id, conn) is not None

    def list(self, kind: Type[R], conn: Optional[sqlite3.Connection] = None, **filters: Any) -> List[R]:
        """Return all rows of ``kind`` matching every filter, ordered by id.

        A filter value of ``None`` matches NULL; anything else is an equality test.
        """
        self._check_kind(kind)
        self._check_fields(kind, filters)
        clauses = []
        params: List[Any] = []
        for name, value in filters.items():
            if value is None:
                clauses.append(f"{name} IS NULL")
            else:
                clauses.append(f"{name} = ?")
                params.append(value)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        try:
            with self.connection(conn) as c:
                rows = c.execute(f"SELECT * FROM {kind.TABLE}{where} ORDER BY id", params).fetchall()
        except sqlite3.Error as e:
            raise _storage_error(f"Could not list {kind.KIND} rows: {e}", e) from e
        return [kind.from_dict(dict(row)) for row in rows]

    def count(self, kind: Type[Record], conn: Optional[sqlite3.Connection] = None, **filters: Any) -> int:
        return len(self.list(kind, conn=conn, **filters))

    # ------------------------- Helpers ------------------------- #
    def _fetch_one(self, kind: Type[Record], entity_id: int,
                   conn: Optional[sqlite3.Connection]) -> Optional[sqlite3.Row]:
        self._check_kind(kind)
        try:
            with self.connection(conn) as c:
                return c.execute(f"SELECT * FROM {kind.TABLE} WHERE id = ?", (entity_id,)).fetchone()
        except sqlite3.Error as e:
            raise _storage_error(f"Could not read {kind.KIND} {entity_id}: {e}", e) from e

    @staticmethod
    def _check_kind(kind: type) -> None:
        if kind not in RECORD_KINDS:
            raise TypeError(f"Unsupported record kind: {kind!r}")

    @staticmethod
    def _check_fields(kind: Type[Record], fields: Dict[str, Any]) -> None:
        # Column names are interpolated into SQL, so only declared fields pass
        unknown = set(fields) - set(kind.FIELDS) - {"id"}
        if unknown:
            raise ValueError(f"Unknown {kind.KIND} field(s): {', '.join(sorted(unknown))}")

    @contextmanager
    def atomic(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Open a connection wrapped in one transaction for multi-row writes."""
        conn = get_db_connection(self.db_file)
        try:
            with transaction(conn, immediate=immediate):
                yield conn
        except sqlite3.Error as e:
            raise _storage_error(f"Transaction failed: {e}", e) from e
        finally:
            conn.close()


def _storage_error(message: str, exc: sqlite3.Error) -> StorageError:
    if is_busy_error(exc):
        return StorageBusyError(message)
    return StorageError(message)


def is_busy_error(exc: BaseException) -> bool:
    """True for the errors SQLite raises when another connection holds the lock."""
    if isinstance(exc, StorageBusyError):
        return True
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    text = str(exc).lower()
    return "locked" in text or "busy" in text
