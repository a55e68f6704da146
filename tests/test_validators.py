import pytest

from errors import UnknownAuthorError, UnknownBookError, UnknownBorrowerError, ValidationError
from validators import ReferentialValidator, TextValidator


def test_book_refs(lib, seeded):
    validator = ReferentialValidator(lib.store)
    validator.validate_book_refs(seeded["author_id"])
    with pytest.raises(UnknownAuthorError):
        validator.validate_book_refs(404)

def test_loan_refs_checks_book_before_borrower(lib, seeded):
    validator = ReferentialValidator(lib.store)
    validator.validate_loan_refs(seeded["book_id"], seeded["borrower_id"])
    with pytest.raises(UnknownBookError):
        validator.validate_loan_refs(404, 405)
    with pytest.raises(UnknownBorrowerError):
        validator.validate_loan_refs(seeded["book_id"], 405)

@pytest.mark.parametrize("value", ["2024-01-10", "2024-02-29", " 2024-12-31 "])
def test_valid_dates(value):
    assert TextValidator.validate_date(value) == value.strip()

@pytest.mark.parametrize("value", ["2024-1-10", "10/01/2024", "2023-02-29", "2024-13-01", "", None, "2024-01-10T10:00"])
def test_invalid_dates(value):
    with pytest.raises(ValidationError):
        TextValidator.validate_date(value)

def test_email_validation():
    assert TextValidator.validate_email(" reader@example.com ") == "reader@example.com"
    for bad in ["reader", "reader@", "@example.com", "a b@example.com", ""]:
        with pytest.raises(ValidationError):
            TextValidator.validate_email(bad)

def test_require_text():
    assert TextValidator.require_text("  Dune ", "title") == "Dune"
    with pytest.raises(ValidationError, match="Title cannot be empty."):
        TextValidator.require_text("   ", "title")
