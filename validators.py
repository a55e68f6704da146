import re
import sqlite3
from datetime import date
from typing import Optional

from author import Author
from book import Book
from borrower import Borrower
from errors import UnknownAuthorError, UnknownBookError, UnknownBorrowerError, ValidationError
from store import EntityStore

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class ReferentialValidator:
    """Checks that foreign ids point at existing rows before a write uses them.

    Pure reads. Pass ``conn`` to run the check inside the transaction that
    will perform the write, so the referenced row cannot vanish in between.
    """

    def __init__(self, store: EntityStore) -> None:
        self.store = store

    def validate_book_refs(self, author_id: int, conn: Optional[sqlite3.Connection] = None) -> None:
        if not self.store.exists(Author, author_id, conn=conn):
            raise UnknownAuthorError(author_id)

    def validate_loan_refs(self, book_id: int, borrower_id: int,
                           conn: Optional[sqlite3.Connection] = None) -> None:
        if not self.store.exists(Book, book_id, conn=conn):
            raise UnknownBookError(book_id)
        if not self.store.exists(Borrower, borrower_id, conn=conn):
            raise UnknownBorrowerError(borrower_id)


class TextValidator:
    """Input checks for names, titles, e-mail addresses and dates."""

    @staticmethod
    def require_text(value: Optional[str], field: str) -> str:
        if value is None or not value.strip():
            raise ValidationError(f"{field.capitalize()} cannot be empty.")
        return value.strip()

    @staticmethod
    def validate_email(email: Optional[str]) -> str:
        email = TextValidator.require_text(email, "email")
        if not _EMAIL_RE.match(email):
            raise ValidationError(f"Invalid email address: {email}")
        return email

    @staticmethod
    def validate_date(value: Optional[str], field: str = "date") -> str:
        """Accept only ``YYYY-MM-DD`` strings naming a real calendar day."""
        if value is None:
            raise ValidationError(f"{field.capitalize()} is required.")
        value = value.strip()
        if not _ISO_DATE_RE.match(value):
            raise ValidationError(f"{field.capitalize()} must use the YYYY-MM-DD format: {value}")
        try:
            date.fromisoformat(value)
        except ValueError as e:
            raise ValidationError(f"{field.capitalize()} is not a valid date: {value}") from e
        return value
