import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar

from book import Book
from config import settings
from errors import (
    AlreadyBorrowedError,
    NotCurrentlyBorrowedError,
    StorageError,
    UnknownBookError,
    ValidationError,
)
from loan_record import LoanRecord
from store import EntityStore, is_busy_error
from validators import ReferentialValidator, TextValidator

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BookState(str, Enum):
    AVAILABLE = "available"
    BORROWED = "borrowed"


class LendingStateMachine:
    """Owns the Available/Borrowed state of books and their loan history.

    A borrow inserts an open LoanRecord and flags the book as borrowed; a
    return closes that record and clears the flag. Both writes of a
    transition share one ``BEGIN IMMEDIATE`` transaction, so they commit
    together or not at all.

    Transitions on the same book are serialised by a per-book lock inside
    the process and by SQLite's write lock across processes. The guard
    (book available / open loan present) is read inside the same
    transaction as the writes, which is what makes racing borrows resolve
    to exactly one winner.
    """

    def __init__(self, store: EntityStore, validator: ReferentialValidator,
                 max_retries: Optional[int] = None, retry_backoff: Optional[float] = None) -> None:
        self.store = store
        self.validator = validator
        self.max_retries = settings.max_retries if max_retries is None else max_retries
        self.retry_backoff = settings.retry_backoff if retry_backoff is None else retry_backoff
        # book id -> [lock, number of callers holding or waiting for it]
        self._book_locks: Dict[int, List[Any]] = {}
        self._book_locks_guard = threading.Lock()

    # ------------------------- Transitions ------------------------- #
    def borrow_book(self, book_id: int, borrower_id: int, borrow_date: str) -> LoanRecord:
        """Available -> Borrowed. Returns the new open LoanRecord."""
        borrow_date = TextValidator.validate_date(borrow_date, "borrow date")
        with self._lock_for(book_id):
            record = self._with_retry(lambda: self._borrow_once(book_id, borrower_id, borrow_date),
                                      "borrow", book_id)
        logger.info(f"Book {book_id} borrowed by borrower {borrower_id} on {borrow_date} (loan {record.id})")
        return record

    def return_book(self, book_id: int, return_date: str) -> LoanRecord:
        """Borrowed -> Available. Returns the closed LoanRecord."""
        return_date = TextValidator.validate_date(return_date, "return date")
        with self._lock_for(book_id):
            record = self._with_retry(lambda: self._return_once(book_id, return_date), "return", book_id)
        logger.info(f"Book {book_id} returned on {return_date} (loan {record.id})")
        return record

    def state_of(self, book_id: int) -> BookState:
        try:
            book = self.store.get(Book, book_id)
        except LookupError as e:
            raise UnknownBookError(book_id) from e
        return BookState.BORROWED if book.is_borrowed else BookState.AVAILABLE

    def open_loan_for(self, book_id: int, conn: Optional[sqlite3.Connection] = None) -> Optional[LoanRecord]:
        loans = self.store.list(LoanRecord, conn=conn, book_id=book_id, return_date=None)
        return loans[0] if loans else None

    # ------------------------- Single attempts ------------------------- #
    def _borrow_once(self, book_id: int, borrower_id: int, borrow_date: str) -> LoanRecord:
        with self.store.atomic(immediate=True) as conn:
            self.validator.validate_loan_refs(book_id, borrower_id, conn=conn)
            book = self.store.get(Book, book_id, conn=conn)
            if book.is_borrowed or self.open_loan_for(book_id, conn=conn) is not None:
                raise AlreadyBorrowedError(book_id)

            record = LoanRecord(book_id=book_id, borrower_id=borrower_id, borrow_date=borrow_date)
            self.store.create(record, conn=conn)
            self.store.update(Book, book_id, conn=conn, is_borrowed=True)
        return record

    def _return_once(self, book_id: int, return_date: str) -> LoanRecord:
        with self.store.atomic(immediate=True) as conn:
            if not self.store.exists(Book, book_id, conn=conn):
                raise UnknownBookError(book_id)
            record = self.open_loan_for(book_id, conn=conn)
            if record is None:
                raise NotCurrentlyBorrowedError(book_id)
            # ISO dates compare correctly as strings
            if return_date < record.borrow_date:
                raise ValidationError(
                    f"Return date {return_date} is before borrow date {record.borrow_date}."
                )

            self.store.update(LoanRecord, record.id, conn=conn, return_date=return_date)
            self.store.update(Book, book_id, conn=conn, is_borrowed=False)
            record.return_date = return_date
        return record

    # ------------------------- Helpers ------------------------- #
    @contextmanager
    def _lock_for(self, book_id: int) -> Iterator[None]:
        """Hold the per-book lock; the entry is dropped once no caller uses it."""
        with self._book_locks_guard:
            entry = self._book_locks.get(book_id)
            if entry is None:
                entry = self._book_locks[book_id] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._book_locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._book_locks[book_id]

    def _with_retry(self, operation: Callable[[], T], action: str, book_id: int) -> T:
        """Retry ``operation`` with exponential backoff while the database is locked."""
        for attempt in range(self.max_retries + 1):
            try:
                return operation()
            except (sqlite3.Error, StorageError) as e:
                if not is_busy_error(e):
                    if isinstance(e, StorageError):
                        raise
                    raise StorageError(f"Could not {action} book {book_id}: {e}") from e
                if attempt >= self.max_retries:
                    raise StorageError(
                        f"Could not {action} book {book_id}: database still locked after {attempt + 1} attempts"
                    ) from e
                delay = self.retry_backoff * (2 ** attempt)
                logger.warning(f"Database busy during {action} of book {book_id}, retrying in {delay:.3f}s")
                time.sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover
