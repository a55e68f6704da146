import pytest

from author import Author
from book import Book
from borrower import Borrower
from errors import NotFoundError, StorageError
from loan_record import LoanRecord


def test_create_and_get_round_trip(lib):
    author = Author("Ursula K. Le Guin")
    author_id = lib.store.create(author)

    assert author.id == author_id
    fetched = lib.store.get(Author, author_id)
    assert fetched.to_dict() == {"id": author_id, "name": "Ursula K. Le Guin"}

def test_list_returns_submitted_fields(lib):
    author_id = lib.store.create(Author("Frank Herbert"))
    book = Book("Dune", author_id, "Science Fiction")
    lib.store.create(book)

    listed = lib.store.list(Book)
    assert len(listed) == 1
    assert listed[0].to_dict() == book.to_dict()
    assert listed[0].is_borrowed is False

def test_ids_are_monotonic_and_never_reused(lib):
    first = lib.store.create(Author("First"))
    second = lib.store.create(Author("Second"))
    assert second > first

    lib.store.delete(Author, second)
    third = lib.store.create(Author("Third"))
    assert third > second

def test_get_missing_raises_not_found(lib):
    with pytest.raises(NotFoundError) as excinfo:
        lib.store.get(Borrower, 42)
    assert excinfo.value.kind == "borrower"
    assert excinfo.value.entity_id == 42

def test_update_and_delete_missing_raise_not_found(lib):
    with pytest.raises(NotFoundError):
        lib.store.update(Author, 7, name="Nobody")
    with pytest.raises(NotFoundError):
        lib.store.delete(Author, 7)

def test_update_partial_fields(lib):
    borrower_id = lib.store.create(Borrower("Old Name", "old@example.com"))
    lib.store.update(Borrower, borrower_id, name="New Name")

    borrower = lib.store.get(Borrower, borrower_id)
    assert borrower.name == "New Name"
    assert borrower.email == "old@example.com"

def test_update_rejects_unknown_or_id_fields(lib):
    author_id = lib.store.create(Author("Someone"))
    with pytest.raises(ValueError):
        lib.store.update(Author, author_id, nickname="x")
    with pytest.raises(ValueError):
        lib.store.update(Author, author_id, id=99)
    with pytest.raises(ValueError):
        lib.store.update(Author, author_id)

def test_list_filters_equality_and_null(lib, seeded):
    lib.borrow_book(seeded["book_id"], seeded["borrower_id"], "2024-01-01")
    lib.return_book(seeded["book_id"], "2024-01-02")
    lib.borrow_book(seeded["book_id"], seeded["borrower_id"], "2024-02-01")

    open_loans = lib.store.list(LoanRecord, book_id=seeded["book_id"], return_date=None)
    assert [l.borrow_date for l in open_loans] == ["2024-02-01"]
    assert len(lib.store.list(LoanRecord, book_id=seeded["book_id"])) == 2

def test_list_rejects_unknown_filter(lib):
    with pytest.raises(ValueError):
        lib.store.list(Book, colour="red")

def test_foreign_key_violation_is_storage_error(lib):
    # Bypasses the referential validator on purpose
    with pytest.raises(StorageError):
        lib.store.create(Book("Orphan", 999))
    assert lib.store.list(Book) == []

def test_unsupported_kind_rejected(lib):
    with pytest.raises(TypeError):
        lib.store.list(dict)
