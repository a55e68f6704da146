import pytest


@pytest.fixture
def catalog_lib(lib):
    herbert = lib.add_author("Frank Herbert")
    leguin = lib.add_author("Ursula K. Le Guin")
    books = {
        "dune": lib.add_book("Dune", herbert, "Science Fiction"),
        "messiah": lib.add_book("Dune Messiah", herbert, "Science Fiction"),
        "earthsea": lib.add_book("A Wizard of Earthsea", leguin, "Fantasy"),
    }
    alice = lib.add_borrower("Alice", "alice@example.com")
    bob = lib.add_borrower("Bob", "bob@example.com")
    lib.borrow_book(books["dune"], alice, "2024-01-01")
    lib.return_book(books["dune"], "2024-01-10")
    lib.borrow_book(books["dune"], bob, "2024-01-11")
    lib.borrow_book(books["earthsea"], alice, "2024-01-12")
    return lib, {"herbert": herbert, "leguin": leguin, "alice": alice, "bob": bob, **books}

def test_list_books_filters(catalog_lib):
    lib, ids = catalog_lib

    assert [b.title for b in lib.list_books()] == ["Dune", "Dune Messiah", "A Wizard of Earthsea"]
    assert [b.title for b in lib.list_books(available_only=True)] == ["Dune Messiah"]
    assert [b.title for b in lib.list_books(author_id=ids["herbert"])] == ["Dune", "Dune Messiah"]
    assert [b.title for b in lib.list_books(genre="Fantasy")] == ["A Wizard of Earthsea"]
    assert lib.list_books(available_only=True, author_id=ids["leguin"]) == []

def test_list_authors_and_borrowers(catalog_lib):
    lib, _ = catalog_lib
    assert [a.name for a in lib.list_authors()] == ["Frank Herbert", "Ursula K. Le Guin"]
    assert [b.email for b in lib.list_borrowers()] == ["alice@example.com", "bob@example.com"]

def test_loan_history_by_book(catalog_lib):
    lib, ids = catalog_lib
    history = lib.list_loan_history(book_id=ids["dune"])
    assert [(l.borrower_id, l.borrow_date, l.return_date) for l in history] == [
        (ids["alice"], "2024-01-01", "2024-01-10"),
        (ids["bob"], "2024-01-11", None),
    ]
    assert [l.borrower_id for l in lib.list_loan_history(book_id=ids["dune"], open_only=True)] == [ids["bob"]]

def test_loan_history_by_borrower(catalog_lib):
    lib, ids = catalog_lib
    history = lib.list_loan_history(borrower_id=ids["alice"])
    assert [l.book_id for l in history] == [ids["dune"], ids["earthsea"]]
    assert lib.list_loan_history(book_id=ids["messiah"]) == []

def test_loan_history_requires_exactly_one_key(catalog_lib):
    lib, ids = catalog_lib
    with pytest.raises(ValueError):
        lib.list_loan_history()
    with pytest.raises(ValueError):
        lib.list_loan_history(book_id=ids["dune"], borrower_id=ids["alice"])

def test_open_loans(catalog_lib):
    lib, ids = catalog_lib
    assert sorted(l.book_id for l in lib.list_open_loans()) == sorted([ids["dune"], ids["earthsea"]])

def test_statistics(catalog_lib):
    lib, _ = catalog_lib
    assert lib.get_statistics() == {
        "total_books": 3,
        "borrowed_books": 2,
        "available_books": 1,
        "total_authors": 2,
        "total_borrowers": 2,
        "open_loans": 2,
        "total_loans": 3,
    }

def test_find_inconsistencies_detects_tampered_flag(catalog_lib):
    lib, ids = catalog_lib
    assert lib.check_consistency() == []

    # Flip the flag behind the state machine's back
    with lib.store.connection() as conn:
        conn.execute("UPDATE books SET is_borrowed = 1 WHERE id = ?", (ids["messiah"],))
        conn.execute("UPDATE books SET is_borrowed = 0 WHERE id = ?", (ids["dune"],))

    assert lib.check_consistency() == sorted([ids["dune"], ids["messiah"]])
