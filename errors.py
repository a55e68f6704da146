"""Exceptions raised by the lending core.

Every error a caller can observe derives from ``LibraryError`` so the CLI and
the HTTP layer can handle them in one place.
"""


class LibraryError(Exception):
    pass


class NotFoundError(LibraryError, LookupError):
    """A referenced id does not exist."""

    def __init__(self, kind: str, entity_id: int) -> None:
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind.capitalize()} with id {entity_id} not found.")


class UnknownAuthorError(NotFoundError):
    def __init__(self, author_id: int) -> None:
        super().__init__("author", author_id)


class UnknownBookError(NotFoundError):
    def __init__(self, book_id: int) -> None:
        super().__init__("book", book_id)


class UnknownBorrowerError(NotFoundError):
    def __init__(self, borrower_id: int) -> None:
        super().__init__("borrower", borrower_id)


class LendingStateError(LibraryError):
    """A borrow/return was attempted from the wrong state."""

    def __init__(self, book_id: int, message: str) -> None:
        self.book_id = book_id
        super().__init__(message)


class AlreadyBorrowedError(LendingStateError):
    def __init__(self, book_id: int) -> None:
        super().__init__(book_id, f"Book with id {book_id} is already borrowed.")


class NotCurrentlyBorrowedError(LendingStateError):
    def __init__(self, book_id: int) -> None:
        super().__init__(book_id, f"Book with id {book_id} is not currently borrowed.")


class BookOnLoanError(LibraryError):
    def __init__(self, book_id: int) -> None:
        self.book_id = book_id
        super().__init__(f"Book with id {book_id} is on loan and cannot be deleted.")


class EntityInUseError(LibraryError):
    """Deletion refused because other rows still reference the entity."""

    def __init__(self, kind: str, entity_id: int, referenced_by: str) -> None:
        self.kind = kind
        self.entity_id = entity_id
        self.referenced_by = referenced_by
        super().__init__(
            f"{kind.capitalize()} with id {entity_id} is still referenced by {referenced_by}."
        )


class ValidationError(LibraryError, ValueError):
    pass


class StorageError(LibraryError):
    """The underlying database failed (I/O, lock timeout, constraint)."""


class StorageBusyError(StorageError):
    """The database stayed locked by another writer; the operation may be retried."""
