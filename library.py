import logging
from typing import Any, Dict, List, Optional

from author import Author
from book import Book
from borrower import Borrower
from catalog import CatalogQueryService
from config import settings
from database import initialize_database
from errors import BookOnLoanError, EntityInUseError
from lending import BookState, LendingStateMachine
from loan_record import LoanRecord
from store import EntityStore
from validators import ReferentialValidator, TextValidator

logger = logging.getLogger(__name__)


class Library:
    """Entry point for callers: catalog maintenance, lending and queries.

    One instance is created per process for a given database file and passed
    to the CLI or the HTTP app. It owns no connection; every operation opens
    and closes its own.
    """

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file or settings.database_file
        initialize_database(self.db_file)

        self.store = EntityStore(self.db_file)
        self.validator = ReferentialValidator(self.store)
        self.lending = LendingStateMachine(self.store, self.validator)
        self.catalog = CatalogQueryService(self.store)

    # ------------------------- Authors ------------------------- #
    def add_author(self, name: str) -> int:
        author = Author(name=TextValidator.require_text(name, "name"))
        author_id = self.store.create(author)
        logger.info(f"Added author {author_id}: {author.name}")
        return author_id

    def get_author(self, author_id: int) -> Author:
        return self.store.get(Author, author_id)

    def update_author_name(self, author_id: int, name: str) -> None:
        self.store.update(Author, author_id, name=TextValidator.require_text(name, "name"))

    def delete_author(self, author_id: int) -> None:
        """Delete an author nobody references; books must be removed first."""
        with self.store.atomic(immediate=True) as conn:
            self.store.get(Author, author_id, conn=conn)
            if self.store.count(Book, conn=conn, author_id=author_id):
                raise EntityInUseError("author", author_id, "books")
            self.store.delete(Author, author_id, conn=conn)
        logger.info(f"Deleted author {author_id}")

    # ------------------------- Books ------------------------- #
    def add_book(self, title: str, author_id: int, genre: str = "") -> int:
        """Create an available book. Raises UnknownAuthorError before any write."""
        book = Book(title=TextValidator.require_text(title, "title"), author_id=author_id, genre=genre)
        with self.store.atomic(immediate=True) as conn:
            self.validator.validate_book_refs(author_id, conn=conn)
            book_id = self.store.create(book, conn=conn)
        logger.info(f"Added book {book_id}: {book.title}")
        return book_id

    def get_book(self, book_id: int) -> Book:
        return self.store.get(Book, book_id)

    def update_book(self, book_id: int, *, title: Optional[str] = None, author_id: Optional[int] = None,
                    genre: Optional[str] = None) -> Book:
        """Change title, author and/or genre. The borrowed flag is not editable here."""
        if title is None and author_id is None and genre is None:
            raise ValueError("Nothing to update. Provide title, author_id and/or genre.")
        fields: Dict[str, Any] = {}
        if title is not None:
            fields["title"] = TextValidator.require_text(title, "title")
        if genre is not None:
            fields["genre"] = genre.strip()
        if author_id is not None:
            fields["author_id"] = author_id

        with self.store.atomic(immediate=True) as conn:
            self.store.get(Book, book_id, conn=conn)
            if author_id is not None:
                self.validator.validate_book_refs(author_id, conn=conn)
            self.store.update(Book, book_id, conn=conn, **fields)
            book = self.store.get(Book, book_id, conn=conn)
        return book

    def update_book_title(self, book_id: int, new_title: str) -> None:
        self.update_book(book_id, title=new_title)

    def delete_book(self, book_id: int) -> None:
        """Delete a book that is neither on loan nor part of any loan history."""
        with self.store.atomic(immediate=True) as conn:
            book = self.store.get(Book, book_id, conn=conn)
            if book.is_borrowed:
                raise BookOnLoanError(book_id)
            if self.store.count(LoanRecord, conn=conn, book_id=book_id):
                raise EntityInUseError("book", book_id, "loan records")
            self.store.delete(Book, book_id, conn=conn)
        logger.info(f"Deleted book {book_id}")

    def book_state(self, book_id: int) -> BookState:
        return self.lending.state_of(book_id)

    # ------------------------- Borrowers ------------------------- #
    def add_borrower(self, name: str, email: str) -> int:
        borrower = Borrower(
            name=TextValidator.require_text(name, "name"),
            email=TextValidator.validate_email(email),
        )
        borrower_id = self.store.create(borrower)
        logger.info(f"Added borrower {borrower_id}: {borrower.name}")
        return borrower_id

    def get_borrower(self, borrower_id: int) -> Borrower:
        return self.store.get(Borrower, borrower_id)

    def delete_borrower(self, borrower_id: int) -> None:
        """Delete a borrower with no loan history."""
        with self.store.atomic(immediate=True) as conn:
            self.store.get(Borrower, borrower_id, conn=conn)
            if self.store.count(LoanRecord, conn=conn, borrower_id=borrower_id):
                raise EntityInUseError("borrower", borrower_id, "loan records")
            self.store.delete(Borrower, borrower_id, conn=conn)
        logger.info(f"Deleted borrower {borrower_id}")

    # ------------------------- Lending ------------------------- #
    def borrow_book(self, book_id: int, borrower_id: int, borrow_date: str) -> int:
        """Lend a book. Returns the id of the new loan record."""
        return self.lending.borrow_book(book_id, borrower_id, borrow_date).id

    def return_book(self, book_id: int, return_date: str) -> LoanRecord:
        """Close the open loan of a book and return the closed record."""
        return self.lending.return_book(book_id, return_date)

    def get_loan(self, loan_id: int) -> LoanRecord:
        return self.store.get(LoanRecord, loan_id)

    # ------------------------- Queries ------------------------- #
    def list_books(self, available_only: bool = False, author_id: Optional[int] = None,
                   genre: Optional[str] = None) -> List[Book]:
        return self.catalog.list_books(available_only=available_only, author_id=author_id, genre=genre)

    def list_authors(self) -> List[Author]:
        return self.catalog.list_authors()

    def list_borrowers(self) -> List[Borrower]:
        return self.catalog.list_borrowers()

    def list_loan_history(self, book_id: Optional[int] = None, borrower_id: Optional[int] = None,
                          open_only: bool = False) -> List[LoanRecord]:
        return self.catalog.list_loan_history(book_id=book_id, borrower_id=borrower_id, open_only=open_only)

    def list_open_loans(self) -> List[LoanRecord]:
        return self.catalog.list_open_loans()

    def get_statistics(self) -> Dict[str, int]:
        return self.catalog.get_statistics()

    def check_consistency(self) -> List[int]:
        """Ids of books whose borrowed flag disagrees with the loan records (empty when healthy)."""
        return self.catalog.find_inconsistencies()

    def close(self) -> None:
        """Kept for callers that manage the library as a resource.

        Connections are opened per operation, so there is nothing to release.
        """
        return None
