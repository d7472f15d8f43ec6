import pytest

from book import Book, normalize_isbn, normalize_key
from utils.validators import ISBNValidator, TextValidator


@pytest.mark.parametrize("raw, expected", [
    ("978-0-306-40615-7", True),
    ("9781111111111", True),
    ("0-8044-2957-X", True),
    ("12345", False),
    ("97803064061A7", False),
    ("", False),
])
def test_isbn_well_formed(raw, expected):
    assert ISBNValidator.is_well_formed(raw) is expected

def test_isbn_checksum():
    assert ISBNValidator.has_valid_checksum("978-0-306-40615-7")
    assert not ISBNValidator.has_valid_checksum("978-0-306-40615-8")
    assert ISBNValidator.has_valid_checksum("0-8044-2957-X")

def test_text_validator():
    assert TextValidator.validate_name("Doe, J")
    assert not TextValidator.validate_name("   ")
    assert not TextValidator.validate_name("12345")
    assert TextValidator.validate_year(2020)
    assert not TextValidator.validate_year(-5)
    assert TextValidator.sanitize_text("  Doe,\tJ \n") == "Doe, J"

def test_normalization_helpers():
    assert normalize_isbn(" 0-8044-2957-x ") == "080442957X"
    assert normalize_isbn(9781111111111) == "9781111111111"
    assert normalize_key("  Doe,   J ") == normalize_key("doe, j") == "doe, j"

def test_book_dict_round_trip():
    book = Book("978-1-111-11111-1", " X ", "Doe, J", "Letras", 2020, copies=2)
    assert book.isbn == "9781111111111"
    assert book.title == "X"
    assert Book.from_dict(book.to_dict()) == book
