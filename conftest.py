import pytest

from library import Library

@pytest.fixture
def lib(tmp_path):
    # Each test gets its own database file
    db_file = str(tmp_path / "library.db")
    lib = Library(db_file=db_file)
    yield lib
    lib.close()

@pytest.fixture
def seeded(lib):
    """One author, one book and one borrower, all with id 1."""
    author_id = lib.add_author("A. Author")
    book_id = lib.add_book("Dune", author_id, "Science Fiction")
    borrower_id = lib.add_borrower("B. Reader", "reader@example.com")
    return {"author_id": author_id, "book_id": book_id, "borrower_id": borrower_id}
