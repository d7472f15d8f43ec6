import logging
import threading
from functools import wraps
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from book import Book, Loan, normalize_isbn, normalize_key
from database import DATASET_NAMES, StorageError

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "author", "subject", "publication_year", "copies")

Index = Dict[Any, Set[str]]


class CatalogError(Exception):
    """Base class for errors raised by catalog operations."""


class DuplicateKeyError(CatalogError, ValueError):
    pass


class NotFoundError(CatalogError, LookupError):
    pass


class InvalidStateError(CatalogError):
    pass


class UnavailableError(CatalogError):
    pass


class PersistenceFailedError(CatalogError):
    """Storage rejected the write; ``written`` lists datasets that did land."""

    def __init__(self, message: str, written: Iterable[str] = (), failed: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.written = list(written)
        self.failed = list(failed)


class PersistencePartialError(PersistenceFailedError):
    pass


def _mutation(func):
    """Run a catalog mutation as one unit: apply, persist, or restore on failure."""
    @wraps(func)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            snapshot = self._snapshot()
            try:
                result = func(self, *args, **kwargs)
            except Exception:
                self._restore(snapshot)
                raise
            self._commit(snapshot, func.__name__)
            return result
    return wrapper


class Library:
    """Manages the catalog, its secondary indices and the lending ledger.

    All state is owned by the instance. Every mutating operation either
    updates memory and storage together or leaves memory as it was.
    """

    def __init__(self, storage) -> None:
        self.storage = storage
        self._lock = threading.RLock()
        self._books: Dict[str, Book] = {}
        self._by_year: Index = {}
        self._by_subject: Index = {}
        self._by_author: Index = {}
        self._loans: List[Loan] = []
        self._trusted = True
        self._load()

    @property
    def trusted(self) -> bool:
        """False while memory may disagree with storage."""
        return self._trusted

    # ------------------------- Core operations ------------------------- #
    @_mutation
    def add_book(self, book: Book) -> Book:
        """Add a new title. Prevent duplicates by ISBN."""
        if not book.isbn:
            raise ValueError("ISBN cannot be empty.")
        if book.isbn in self._books:
            raise DuplicateKeyError(f"Book with ISBN {book.isbn} already exists.")
        if book.copies < 1:
            raise ValueError("A new book needs at least one copy.")
        if book.publication_year < 0:
            raise ValueError("Publication year cannot be negative.")

        stored = book.copy()
        self._books[stored.isbn] = stored
        self._index_book(stored)
        logger.info(f"Added book {stored.isbn} ({stored.title})")
        return stored.copy()

    @_mutation
    def add_copy(self, isbn) -> Book:
        """Register one more copy of a title already in the catalog."""
        book = self._get(isbn)
        book.copies += 1
        logger.info(f"Book {book.isbn} now has {book.copies} copies")
        return book.copy()

    @_mutation
    def edit_book(self, isbn, /, **fields) -> Book:
        """Update fields of a book, moving it between index buckets as keys change."""
        book = self._get(isbn)
        unknown = sorted(set(fields) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValueError(f"Unknown field(s): {', '.join(unknown)}")
        changes = {name: value for name, value in fields.items() if value is not None}
        if not changes:
            raise ValueError("Nothing to update. Provide at least one field.")

        for name in ("title", "author", "subject"):
            if name in changes:
                changes[name] = str(changes[name]).strip()
                if not changes[name]:
                    raise ValueError(f"{name.capitalize()} cannot be empty.")
        if "publication_year" in changes:
            changes["publication_year"] = int(changes["publication_year"])
            if changes["publication_year"] < 0:
                raise ValueError("Publication year cannot be negative.")
        if "copies" in changes:
            changes["copies"] = int(changes["copies"])
            if changes["copies"] < 0:
                raise ValueError("Copy count cannot be negative.")
            on_loan = self._outstanding(book.isbn)
            if changes["copies"] < on_loan:
                raise InvalidStateError(
                    f"Book {book.isbn} has {on_loan} copies on loan; "
                    f"cannot reduce copies to {changes['copies']}."
                )

        self._unindex_book(book)
        for name, value in changes.items():
            setattr(book, name, value)
        self._index_book(book)
        logger.info(f"Edited book {book.isbn}: {', '.join(sorted(changes))}")
        return book.copy()

    @_mutation
    def remove_book(self, isbn) -> None:
        """Remove a title and purge it from every index."""
        book = self._get(isbn)
        on_loan = self._outstanding(book.isbn)
        if on_loan:
            raise InvalidStateError(
                f"Book {book.isbn} cannot be removed: {on_loan} copies are on loan."
            )
        self._unindex_book(book)
        del self._books[book.isbn]
        logger.info(f"Removed book {book.isbn}")

    @_mutation
    def lend_book(self, isbn, borrower: str) -> Loan:
        borrower = (borrower or "").strip()
        if not borrower:
            raise ValueError("Borrower cannot be empty.")
        book = self._get(isbn)
        if self._outstanding(book.isbn) >= book.copies:
            raise UnavailableError(f"No copies of {book.isbn} are available.")
        loan = Loan(isbn=book.isbn, borrower=borrower)
        self._loans.append(loan)
        logger.info(f"Lent {book.isbn} to {borrower}")
        return loan

    @_mutation
    def return_book(self, isbn, borrower: Optional[str] = None) -> Loan:
        """Close one outstanding loan; the oldest one when no borrower is given."""
        book = self._get(isbn)
        wanted = normalize_key(borrower) if borrower is not None else None
        for position, loan in enumerate(self._loans):
            if loan.isbn != book.isbn:
                continue
            if wanted is None or normalize_key(loan.borrower) == wanted:
                del self._loans[position]
                logger.info(f"{loan.borrower} returned {book.isbn}")
                return loan
        if borrower is None:
            raise NotFoundError(f"No copies of {book.isbn} are on loan.")
        raise NotFoundError(f"No loan of {book.isbn} to {borrower}.")

    def persist_all(self) -> None:
        """Write every dataset to storage in one batch."""
        with self._lock:
            try:
                self._write_all()
            except PersistencePartialError as e:
                self._trusted = False
                logger.warning(f"Catalog state is untrusted after partial write: {e}")
                raise

    # ------------------------- Lookups ------------------------- #
    def find_book(self, isbn) -> Optional[Book]:
        with self._lock:
            book = self._books.get(normalize_isbn(isbn))
            return book.copy() if book else None

    def list_books(self) -> List[Book]:
        with self._lock:
            return self._resolve(self._books)

    def books_by_year(self, year: int) -> List[Book]:
        with self._lock:
            return self._resolve(self._by_year.get(int(year), ()))

    def books_by_subject(self, subject: str) -> List[Book]:
        with self._lock:
            return self._resolve(self._by_subject.get(normalize_key(subject), ()))

    def books_by_author(self, author: str) -> List[Book]:
        with self._lock:
            return self._resolve(self._by_author.get(normalize_key(author), ()))

    def loans(self, isbn=None) -> List[Loan]:
        with self._lock:
            if isbn is None:
                return list(self._loans)
            wanted = normalize_isbn(isbn)
            return [loan for loan in self._loans if loan.isbn == wanted]

    def outstanding(self, isbn) -> int:
        with self._lock:
            return self._outstanding(self._get(isbn).isbn)

    def available(self, isbn) -> int:
        with self._lock:
            book = self._get(isbn)
            return book.copies - self._outstanding(book.isbn)

    def indexes(self) -> Dict[str, Dict[Any, Set[str]]]:
        """Copies of the three secondary indices, keyed by dataset name."""
        with self._lock:
            return {
                "by_year": _copy_index(self._by_year),
                "by_subject": _copy_index(self._by_subject),
                "by_author": _copy_index(self._by_author),
            }

    def get_statistics(self) -> Dict[str, int]:
        with self._lock:
            return {
                "total_titles": len(self._books),
                "total_copies": sum(book.copies for book in self._books.values()),
                "copies_on_loan": len(self._loans),
                "unique_authors": len(self._by_author),
                "unique_subjects": len(self._by_subject),
            }

    def check_integrity(self) -> List[str]:
        """Describe every way the indices or ledger disagree with the catalog."""
        with self._lock:
            return _find_problems(
                self._books, self._by_year, self._by_subject, self._by_author, self._loans
            )

    # ------------------------- Index maintenance ------------------------- #
    def _index_book(self, book: Book) -> None:
        self._by_year.setdefault(book.publication_year, set()).add(book.isbn)
        self._by_subject.setdefault(normalize_key(book.subject), set()).add(book.isbn)
        self._by_author.setdefault(normalize_key(book.author), set()).add(book.isbn)

    def _unindex_book(self, book: Book) -> None:
        _discard(self._by_year, book.publication_year, book.isbn)
        _discard(self._by_subject, normalize_key(book.subject), book.isbn)
        _discard(self._by_author, normalize_key(book.author), book.isbn)

    def _get(self, isbn) -> Book:
        book = self._books.get(normalize_isbn(isbn))
        if book is None:
            raise NotFoundError(f"Book with ISBN {normalize_isbn(isbn)} not found.")
        return book

    def _outstanding(self, isbn: str) -> int:
        return sum(1 for loan in self._loans if loan.isbn == isbn)

    def _resolve(self, isbns: Iterable[str]) -> List[Book]:
        books = [self._books[isbn].copy() for isbn in isbns]
        return sorted(books, key=lambda b: (b.title.casefold(), b.isbn))

    # ------------------------- Persistence ------------------------- #
    def _snapshot(self) -> Tuple:
        return (
            {isbn: book.copy() for isbn, book in self._books.items()},
            _copy_index(self._by_year),
            _copy_index(self._by_subject),
            _copy_index(self._by_author),
            list(self._loans),
        )

    def _restore(self, snapshot: Tuple) -> None:
        books, by_year, by_subject, by_author, loans = snapshot
        self._books = books
        self._by_year = by_year
        self._by_subject = by_subject
        self._by_author = by_author
        self._loans = loans

    def _commit(self, snapshot: Tuple, operation: str) -> None:
        try:
            self._write_all()
        except PersistencePartialError as e:
            logger.error(f"{operation} partially persisted ({', '.join(e.failed)} failed); rolling back")
            self._restore(snapshot)
            try:
                self._write_all()
            except PersistenceFailedError as repair:
                self._trusted = False
                logger.warning(f"Could not restore storage after {operation}: {repair}")
            raise
        except PersistenceFailedError as e:
            logger.error(f"{operation} was not persisted: {e}")
            self._restore(snapshot)
            raise

    def _dump(self) -> Dict[str, Any]:
        return {
            "catalog": [self._books[isbn].to_dict() for isbn in sorted(self._books)],
            "by_year": {str(year): sorted(isbns) for year, isbns in sorted(self._by_year.items())},
            "by_subject": {key: sorted(isbns) for key, isbns in sorted(self._by_subject.items())},
            "by_author": {key: sorted(isbns) for key, isbns in sorted(self._by_author.items())},
            "loans": [loan.to_dict() for loan in self._loans],
        }

    def _write_all(self) -> None:
        datasets = self._dump()
        written: List[str] = []
        try:
            with self.storage.batch():
                for name in DATASET_NAMES:
                    self.storage.save(name, datasets[name])
                    written.append(name)
        except (StorageError, OSError) as e:
            if getattr(self.storage, "atomic_batches", False):
                written = []
            failed = [name for name in DATASET_NAMES if name not in written]
            if written and failed:
                raise PersistencePartialError(
                    f"Only {', '.join(written)} were saved: {e}", written, failed
                ) from e
            raise PersistenceFailedError(f"Nothing was saved: {e}", [], DATASET_NAMES) from e
        self._trusted = True

    def _load(self) -> None:
        raw: Dict[str, Any] = {}
        for name in DATASET_NAMES:
            try:
                raw[name] = self.storage.load(name)
            except (StorageError, OSError) as e:
                raise PersistenceFailedError(f"Could not load {name}: {e}", [], [name]) from e

        try:
            books = {}
            for item in raw["catalog"] or []:
                book = Book.from_dict(item)
                books[book.isbn] = book
            by_year = {int(year): set(isbns) for year, isbns in (raw["by_year"] or {}).items()}
            by_subject = {key: set(isbns) for key, isbns in (raw["by_subject"] or {}).items()}
            by_author = {key: set(isbns) for key, isbns in (raw["by_author"] or {}).items()}
            loans = [Loan.from_dict(item) for item in raw["loans"] or []]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise PersistenceFailedError(f"Stored catalog is malformed: {e!r}") from e
        self._books = books
        self._by_year, self._by_subject, self._by_author = by_year, by_subject, by_author
        self._loans = loans

        problems = self.check_integrity()
        if problems:
            for problem in problems:
                logger.warning(f"Stored catalog is inconsistent: {problem}")
            self._rebuild()
            self._trusted = False
            logger.warning("Indices rebuilt from the catalog; state untrusted until the next full save")
        logger.info(f"Loaded {len(self._books)} books and {len(self._loans)} loans")

    def _rebuild(self) -> None:
        """Recreate indices from the catalog and drop loans it cannot back."""
        self._by_year, self._by_subject, self._by_author = {}, {}, {}
        for book in self._books.values():
            self._index_book(book)
        kept: List[Loan] = []
        for loan in self._loans:
            book = self._books.get(loan.isbn)
            if book is None or sum(1 for k in kept if k.isbn == loan.isbn) >= book.copies:
                logger.warning(f"Dropping loan of {loan.isbn} to {loan.borrower}")
                continue
            kept.append(loan)
        self._loans = kept


def _discard(index: Index, key, isbn: str) -> None:
    bucket = index.get(key)
    if bucket is None:
        return
    bucket.discard(isbn)
    if not bucket:
        del index[key]


def _copy_index(index: Index) -> Index:
    return {key: set(isbns) for key, isbns in index.items()}


def _find_problems(books: Dict[str, Book], by_year: Index, by_subject: Index,
                   by_author: Index, loans: List[Loan]) -> List[str]:
    expected: Dict[str, Index] = {"by_year": {}, "by_subject": {}, "by_author": {}}
    for book in books.values():
        expected["by_year"].setdefault(book.publication_year, set()).add(book.isbn)
        expected["by_subject"].setdefault(normalize_key(book.subject), set()).add(book.isbn)
        expected["by_author"].setdefault(normalize_key(book.author), set()).add(book.isbn)

    problems: List[str] = []
    for name, actual in (("by_year", by_year), ("by_subject", by_subject), ("by_author", by_author)):
        wanted = expected[name]
        for key, bucket in actual.items():
            if not bucket:
                problems.append(f"{name}[{key!r}] is an empty bucket")
            for isbn in sorted(bucket - wanted.get(key, set())):
                problems.append(f"{isbn} should not be in {name}[{key!r}]")
        for key, bucket in wanted.items():
            for isbn in sorted(bucket - actual.get(key, set())):
                problems.append(f"{isbn} is missing from {name}[{key!r}]")

    counts: Dict[str, int] = {}
    for loan in loans:
        counts[loan.isbn] = counts.get(loan.isbn, 0) + 1
    for isbn, count in sorted(counts.items()):
        book = books.get(isbn)
        if book is None:
            problems.append(f"loan ledger references unknown ISBN {isbn}")
        elif count > book.copies:
            problems.append(f"{isbn} has {count} loans but only {book.copies} copies")
    return problems
