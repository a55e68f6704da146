import logging
import sqlite3
from typing import Any, Dict, List, Optional

from author import Author
from book import Book
from borrower import Borrower
from errors import StorageError
from loan_record import LoanRecord
from store import EntityStore

logger = logging.getLogger(__name__)


class CatalogQueryService:
    """Read-only listings over the catalog and the loan history."""

    def __init__(self, store: EntityStore) -> None:
        self.store = store

    def list_books(self, available_only: bool = False, author_id: Optional[int] = None,
                   genre: Optional[str] = None) -> List[Book]:
        filters: Dict[str, Any] = {}
        if available_only:
            filters["is_borrowed"] = False
        if author_id is not None:
            filters["author_id"] = author_id
        if genre is not None:
            filters["genre"] = genre.strip()
        return self.store.list(Book, **filters)

    def list_authors(self) -> List[Author]:
        return self.store.list(Author)

    def list_borrowers(self) -> List[Borrower]:
        return self.store.list(Borrower)

    def list_loan_history(self, book_id: Optional[int] = None, borrower_id: Optional[int] = None,
                          open_only: bool = False) -> List[LoanRecord]:
        """Loan records of one book or one borrower, oldest first."""
        if (book_id is None) == (borrower_id is None):
            raise ValueError("Provide exactly one of book_id or borrower_id.")
        filters: Dict[str, Any] = {}
        if book_id is not None:
            filters["book_id"] = book_id
        else:
            filters["borrower_id"] = borrower_id
        if open_only:
            filters["return_date"] = None
        return self.store.list(LoanRecord, **filters)

    def list_open_loans(self) -> List[LoanRecord]:
        return self.store.list(LoanRecord, return_date=None)

    def get_statistics(self) -> Dict[str, int]:
        """Counts over all four tables, read in one snapshot."""
        try:
            with self.store.connection() as conn:
                row = conn.execute("""
                    SELECT
                        (SELECT COUNT(*) FROM books) AS total_books,
                        (SELECT COUNT(*) FROM books WHERE is_borrowed = 1) AS borrowed_books,
                        (SELECT COUNT(*) FROM authors) AS total_authors,
                        (SELECT COUNT(*) FROM borrowers) AS total_borrowers,
                        (SELECT COUNT(*) FROM loan_records WHERE return_date IS NULL) AS open_loans,
                        (SELECT COUNT(*) FROM loan_records) AS total_loans
                """).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Could not read statistics: {e}") from e
        stats = dict(row)
        stats["available_books"] = stats["total_books"] - stats["borrowed_books"]
        return stats

    def find_inconsistencies(self) -> List[int]:
        """Ids of books whose borrowed flag disagrees with their open loan count.

        A book is consistent when it is flagged borrowed and has exactly one
        open loan, or is not flagged and has none.
        """
        try:
            with self.store.connection() as conn:
                rows = conn.execute("""
                    SELECT b.id
                    FROM books b
                    LEFT JOIN loan_records l ON l.book_id = b.id AND l.return_date IS NULL
                    GROUP BY b.id, b.is_borrowed
                    HAVING (b.is_borrowed = 1 AND COUNT(l.id) != 1)
                        OR (b.is_borrowed = 0 AND COUNT(l.id) != 0)
                    ORDER BY b.id
                """).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Could not check consistency: {e}") from e
        book_ids = [row["id"] for row in rows]
        if book_ids:
            logger.warning(f"Borrowed flag out of sync for books: {book_ids}")
        return book_ids
