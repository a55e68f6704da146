from __future__ import annotations


class LoanRecord:
    """One borrow/return event pair for a book.

    A record with no ``return_date`` is open: the book is currently on loan.
    Once closed the record is never modified again.
    """

    TABLE = "loan_records"
    KIND = "loan record"
    FIELDS = ("book_id", "borrower_id", "borrow_date", "return_date")

    def __init__(self, book_id: int, borrower_id: int, borrow_date: str, return_date: str | None = None,
                 id: int | None = None) -> None:
        self.id = id
        self.book_id = book_id
        self.borrower_id = borrower_id
        self.borrow_date = borrow_date
        self.return_date = return_date

    @property
    def is_open(self) -> bool:
        return self.return_date is None

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        end = self.return_date or "open"
        return f"Loan #{self.id}: book {self.book_id} -> borrower {self.borrower_id} ({self.borrow_date} .. {end})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "borrower_id": self.borrower_id,
            "borrow_date": self.borrow_date,
            "return_date": self.return_date,
        }

    @staticmethod
    def from_dict(data: dict) -> "LoanRecord":
        # Legacy rows may carry an empty string for an open loan
        return LoanRecord(
            id=data.get("id"),
            book_id=data["book_id"],
            borrower_id=data["borrower_id"],
            borrow_date=data["borrow_date"],
            return_date=data.get("return_date") or None,
        )
