import random

import pytest

from book import Book
from library import (
    DuplicateKeyError,
    InvalidStateError,
    Library,
    NotFoundError,
    UnavailableError,
)

ISBN = "9781111111111"


def make_book(isbn=ISBN, title="X", author="Doe, J", subject="Letras", year=2020, copies=2):
    return Book(isbn=isbn, title=title, author=author, subject=subject,
                publication_year=year, copies=copies)

def assert_coherent(lib):
    assert lib.check_integrity() == []
    catalog = {b.isbn for b in lib.list_books()}
    for name, index in lib.indexes().items():
        seen = [isbn for bucket in index.values() for isbn in bucket]
        # every isbn exactly once per index, and nothing else
        assert sorted(seen) == sorted(catalog), name
        assert all(index.values()), f"empty bucket left in {name}"


def test_add_list_and_find(lib):
    assert lib.list_books() == []

    lib.add_book(make_book())

    found = lib.find_book(ISBN)
    assert found is not None
    assert found.title == "X"
    assert len(lib.list_books()) == 1
    assert_coherent(lib)

def test_find_normalizes_isbn(lib):
    lib.add_book(make_book())
    assert lib.find_book("978-1-111-11111-1").isbn == ISBN
    assert lib.find_book(int(ISBN)).isbn == ISBN

def test_add_duplicate_isbn_leaves_structures_unchanged(lib):
    lib.add_book(make_book())
    before = (lib.list_books(), lib.indexes(), lib.loans())

    with pytest.raises(DuplicateKeyError, match=f"Book with ISBN {ISBN} already exists."):
        lib.add_book(make_book(title="Other", author="Someone", subject="Ciencias", year=1999))

    assert (lib.list_books(), lib.indexes(), lib.loans()) == before

@pytest.mark.parametrize("kwargs", [{"copies": 0}, {"year": -1}, {"isbn": ""}])
def test_add_rejects_invalid_fields(lib, kwargs):
    with pytest.raises(ValueError):
        lib.add_book(make_book(**kwargs))
    assert lib.list_books() == []
    assert lib.indexes() == {"by_year": {}, "by_subject": {}, "by_author": {}}

def test_add_does_not_share_caller_object(lib):
    book = make_book()
    lib.add_book(book)
    book.copies = 50
    lib.find_book(ISBN).copies = 70
    assert lib.find_book(ISBN).copies == 2

def test_add_copy(lib):
    lib.add_book(make_book(copies=1))
    indexes = lib.indexes()

    book = lib.add_copy(ISBN)

    assert book.copies == 2
    assert lib.available(ISBN) == 2
    assert lib.indexes() == indexes

def test_add_copy_unknown(lib):
    with pytest.raises(NotFoundError):
        lib.add_copy("0000000000")

def test_edit_moves_isbn_between_buckets(lib):
    lib.add_book(make_book())
    lib.add_book(make_book(isbn="9782222222222", title="Y"))

    lib.edit_book(ISBN, publication_year=2021, subject="Historia", author="Roe, K")

    indexes = lib.indexes()
    assert indexes["by_year"] == {2020: {"9782222222222"}, 2021: {ISBN}}
    assert indexes["by_subject"] == {"letras": {"9782222222222"}, "historia": {ISBN}}
    assert indexes["by_author"] == {"doe, j": {"9782222222222"}, "roe, k": {ISBN}}
    assert_coherent(lib)

def test_edit_prunes_emptied_bucket(lib):
    lib.add_book(make_book())
    lib.edit_book(ISBN, subject="Historia")
    assert "letras" not in lib.indexes()["by_subject"]
    assert lib.books_by_subject("Letras") == []

def test_edit_partial_keeps_other_fields(lib):
    lib.add_book(make_book())
    updated = lib.edit_book(ISBN, title="New Title", author=None)
    assert updated.title == "New Title"
    assert updated.author == "Doe, J"
    assert updated.copies == 2

def test_edit_not_found(lib):
    with pytest.raises(NotFoundError):
        lib.edit_book("nonexistent", title="New Title")

def test_edit_rejects_unknown_or_empty_update(lib):
    lib.add_book(make_book())
    with pytest.raises(ValueError, match="Unknown field"):
        lib.edit_book(ISBN, isbn="123")
    with pytest.raises(ValueError, match="Nothing to update"):
        lib.edit_book(ISBN)
    with pytest.raises(ValueError):
        lib.edit_book(ISBN, title="   ")

def test_edit_cannot_reduce_copies_below_loans(lib):
    lib.add_book(make_book(copies=3))
    lib.lend_book(ISBN, "Alice")
    lib.lend_book(ISBN, "Bob")

    with pytest.raises(InvalidStateError):
        lib.edit_book(ISBN, copies=1, title="Changed")

    book = lib.find_book(ISBN)
    assert book.copies == 3
    assert book.title == "X"
    assert lib.edit_book(ISBN, copies=2).copies == 2

def test_remove_purges_indices(lib):
    lib.add_book(make_book())
    lib.remove_book(ISBN)
    assert lib.find_book(ISBN) is None
    assert lib.indexes() == {"by_year": {}, "by_subject": {}, "by_author": {}}

def test_remove_not_found(lib):
    with pytest.raises(NotFoundError):
        lib.remove_book("123")

def test_remove_with_outstanding_loan_fails(lib):
    lib.add_book(make_book())
    lib.lend_book(ISBN, "Alice")
    before = (lib.list_books(), lib.indexes())

    with pytest.raises(InvalidStateError):
        lib.remove_book(ISBN)

    assert (lib.list_books(), lib.indexes()) == before

def test_lend_unknown_isbn(lib):
    with pytest.raises(NotFoundError):
        lib.lend_book("9780000000000", "Alice")

def test_lend_requires_borrower(lib):
    lib.add_book(make_book())
    with pytest.raises(ValueError):
        lib.lend_book(ISBN, "  ")
    assert lib.loans() == []

def test_loans_never_exceed_copies(lib):
    lib.add_book(make_book(copies=3))
    for name in ("A", "B", "C"):
        lib.lend_book(ISBN, name)
    for name in ("D", "E"):
        with pytest.raises(UnavailableError):
            lib.lend_book(ISBN, name)
    assert lib.outstanding(ISBN) == 3
    assert lib.available(ISBN) == 0

def test_return_matches_borrower_case_insensitively(lib):
    lib.add_book(make_book())
    lib.lend_book(ISBN, "Alice  Smith")
    loan = lib.return_book(ISBN, "alice smith")
    assert loan.borrower == "Alice  Smith"
    assert lib.loans() == []

def test_return_without_borrower_closes_oldest_loan(lib):
    lib.add_book(make_book())
    lib.lend_book(ISBN, "Alice")
    lib.lend_book(ISBN, "Bob")
    assert lib.return_book(ISBN).borrower == "Alice"
    assert [loan.borrower for loan in lib.loans(ISBN)] == ["Bob"]

def test_return_unknown_loan(lib):
    lib.add_book(make_book())
    lib.lend_book(ISBN, "Alice")
    with pytest.raises(NotFoundError):
        lib.return_book(ISBN, "Bob")
    lib.return_book(ISBN, "Alice")
    with pytest.raises(NotFoundError):
        lib.return_book(ISBN)
    with pytest.raises(NotFoundError):
        lib.return_book("9780000000000", "Alice")

def test_lending_scenario(lib):
    lib.add_book(make_book())

    lib.lend_book(ISBN, "Alice")
    assert lib.available(ISBN) == 1
    lib.lend_book(ISBN, "Bob")
    assert lib.available(ISBN) == 0
    with pytest.raises(UnavailableError):
        lib.lend_book(ISBN, "Carol")

    lib.return_book(ISBN, "Alice")
    with pytest.raises(InvalidStateError):
        lib.remove_book(ISBN)

    lib.return_book(ISBN, "Bob")
    lib.remove_book(ISBN)

    indexes = lib.indexes()
    assert 2020 not in indexes["by_year"]
    assert "letras" not in indexes["by_subject"]
    assert "doe, j" not in indexes["by_author"]
    assert lib.books_by_year(2020) == []
    assert lib.books_by_author("Doe, J") == []

def test_index_lookups_normalize_text(lib):
    lib.add_book(make_book())
    lib.add_book(make_book(isbn="9782222222222", title="A", author="doe,  j", subject="LETRAS ", year=1999))
    lib.add_book(make_book(isbn="9783333333333", title="B", author="Roe, K", subject="Historia", year=2020))

    assert [b.isbn for b in lib.books_by_author("DOE, J")] == ["9782222222222", ISBN]
    assert [b.isbn for b in lib.books_by_subject("letras")] == ["9782222222222", ISBN]
    assert [b.isbn for b in lib.books_by_year(2020)] == ["9783333333333", ISBN]
    assert lib.books_by_year(1850) == []
    # the record keeps the author as entered
    assert lib.find_book("9782222222222").author == "doe,  j"

def test_get_statistics(lib):
    assert lib.get_statistics()["total_titles"] == 0
    lib.add_book(make_book())
    lib.add_book(make_book(isbn="9782222222222", author="Roe, K", copies=1))
    lib.lend_book(ISBN, "Alice")
    assert lib.get_statistics() == {
        "total_titles": 2,
        "total_copies": 3,
        "copies_on_loan": 1,
        "unique_authors": 2,
        "unique_subjects": 1,
    }

def test_indices_stay_coherent_under_random_operations(lib):
    rng = random.Random(1234)
    authors = ["Doe, J", "Roe, K", "Poe, E"]
    subjects = ["Letras", "Historia", "Ciencias"]
    isbns = [f"97800000000{n:02d}" for n in range(12)]

    for _ in range(300):
        isbn = rng.choice(isbns)
        action = rng.choice(["add", "edit", "remove", "lend", "return"])
        try:
            if action == "add":
                lib.add_book(make_book(isbn=isbn, author=rng.choice(authors),
                                       subject=rng.choice(subjects),
                                       year=rng.randint(1990, 1995), copies=rng.randint(1, 3)))
            elif action == "edit":
                lib.edit_book(isbn, author=rng.choice(authors), subject=rng.choice(subjects),
                              publication_year=rng.randint(1990, 1995), copies=rng.randint(0, 3))
            elif action == "remove":
                lib.remove_book(isbn)
            elif action == "lend":
                lib.lend_book(isbn, rng.choice(["Ann", "Ben"]))
            else:
                lib.return_book(isbn)
        except (DuplicateKeyError, NotFoundError, InvalidStateError, UnavailableError):
            pass
        assert_coherent(lib)
        for book in lib.list_books():
            assert lib.outstanding(book.isbn) <= book.copies

def test_library_starts_empty_without_stored_data(storage):
    lib = Library(storage)
    assert lib.list_books() == []
    assert lib.trusted

def test_edit_missing_isbn_is_not_found(lib):
    with pytest.raises(NotFoundError):
        lib.edit_book("9780000000000")
    with pytest.raises(NotFoundError):
        lib.edit_book("9780000000000", borrower="Alice")
