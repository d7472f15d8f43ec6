import logging
from typing import Optional

import typer

from book import Book
from config import settings
from database import SQLiteStorage, StorageError
from library import CatalogError, Library, PersistenceFailedError
from utils.ui_helpers import (
    print_book_detail,
    print_list_result,
    print_loans_result,
    print_stats_result,
    set_output_mode,
)
from utils.validators import ISBNValidator, TextValidator

APP_NAME = settings.app_name

app = typer.Typer(help=f"{APP_NAME} CLI v{settings.app_version}")


def get_library() -> Library:
    """Open the catalog stored in the configured database file."""
    try:
        storage = SQLiteStorage(settings.database_file)
    except StorageError as e:
        raise PersistenceFailedError(str(e)) from e
    return Library(storage)


def _fail(message: str) -> None:
    print(f"Error: {message}")
    raise typer.Exit(code=1)


def _checked_isbn(isbn: str) -> str:
    if not ISBNValidator.is_well_formed(isbn):
        _fail(f"Invalid ISBN format: {isbn}")
    return ISBNValidator.normalize_isbn(isbn)


def _open_library() -> Library:
    try:
        return get_library()
    except CatalogError as e:
        _fail(str(e))


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global options for the CLI (e.g. output mode)."""
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.WARNING))
    set_output_mode(output or settings.default_output)


@app.command("list")
def cli_list():
    """List every book in the catalog."""
    print_list_result(_open_library().list_books())


@app.command("find")
def cli_find(isbn: str):
    """Show one book and how many copies are available."""
    lib = _open_library()
    book = lib.find_book(isbn)
    if not book:
        print(f"Book with ISBN {isbn} not found.")
        return
    print_book_detail(book, lib.available(book.isbn))


@app.command("add")
def cli_add(
    isbn: str,
    title: str = typer.Option(..., "--title", "-t"),
    author: str = typer.Option(..., "--author", "-a"),
    subject: str = typer.Option(..., "--subject", "-s"),
    year: int = typer.Option(..., "--year", "-y"),
    copies: int = typer.Option(1, "--copies", "-c"),
):
    """Add a new book to the catalog."""
    isbn = _checked_isbn(isbn)
    if not ISBNValidator.has_valid_checksum(isbn):
        print(f"Warning: ISBN {isbn} has an invalid check digit.")
    for label, value in (("title", title), ("author", author), ("subject", subject)):
        if not TextValidator.validate_name(value):
            _fail(f"Invalid {label}: {value!r}")
    if not TextValidator.validate_year(year):
        _fail(f"Invalid year: {year}")
    book = Book(
        isbn=isbn,
        title=TextValidator.sanitize_text(title),
        author=TextValidator.sanitize_text(author),
        subject=TextValidator.sanitize_text(subject),
        publication_year=year,
        copies=copies,
    )
    try:
        added = _open_library().add_book(book)
    except (CatalogError, ValueError) as e:
        _fail(str(e))
    print(f"Successfully added: {added.title} by {added.author}")


@app.command("add-copy")
def cli_add_copy(isbn: str):
    """Register one more copy of an existing book."""
    try:
        book = _open_library().add_copy(isbn)
    except CatalogError as e:
        _fail(str(e))
    print(f"{book.title} now has {book.copies} copies.")


@app.command("edit")
def cli_edit(
    isbn: str,
    title: Optional[str] = typer.Option(None, "--title", "-t"),
    author: Optional[str] = typer.Option(None, "--author", "-a"),
    subject: Optional[str] = typer.Option(None, "--subject", "-s"),
    year: Optional[int] = typer.Option(None, "--year", "-y"),
    copies: Optional[int] = typer.Option(None, "--copies", "-c"),
):
    """Edit the fields of an existing book."""
    try:
        book = _open_library().edit_book(
            isbn,
            title=TextValidator.sanitize_text(title) if title is not None else None,
            author=TextValidator.sanitize_text(author) if author is not None else None,
            subject=TextValidator.sanitize_text(subject) if subject is not None else None,
            publication_year=year,
            copies=copies,
        )
    except (CatalogError, ValueError) as e:
        _fail(str(e))
    print(f"Updated: {book.title} by {book.author}")


@app.command("remove")
def cli_remove(isbn: str):
    """Remove a book that has no copies on loan."""
    try:
        _open_library().remove_book(isbn)
    except CatalogError as e:
        _fail(str(e))
    print(f"Book with ISBN {isbn} has been removed.")


@app.command("lend")
def cli_lend(isbn: str, borrower: str):
    """Lend one copy of a book to a borrower."""
    if not TextValidator.validate_name(borrower):
        _fail(f"Invalid borrower: {borrower!r}")
    try:
        loan = _open_library().lend_book(isbn, TextValidator.sanitize_text(borrower))
    except (CatalogError, ValueError) as e:
        _fail(str(e))
    print(f"Lent {loan.isbn} to {loan.borrower}.")


@app.command("return")
def cli_return(isbn: str, borrower: Optional[str] = typer.Argument(None)):
    """Return a copy; without a borrower the oldest loan is closed."""
    try:
        loan = _open_library().return_book(isbn, borrower)
    except CatalogError as e:
        _fail(str(e))
    print(f"{loan.borrower} returned {loan.isbn}.")


@app.command("loans")
def cli_loans(isbn: Optional[str] = typer.Argument(None)):
    """List outstanding loans, optionally for one book."""
    print_loans_result(_open_library().loans(isbn))


@app.command("by-year")
def cli_by_year(year: int):
    """List books published in a given year."""
    print_list_result(_open_library().books_by_year(year), f"No books from {year}.")


@app.command("by-subject")
def cli_by_subject(subject: str):
    """List books filed under a subject."""
    print_list_result(_open_library().books_by_subject(subject), f"No books on {subject}.")


@app.command("by-author")
def cli_by_author(author: str):
    """List books by an author."""
    print_list_result(_open_library().books_by_author(author), f"No books by {author}.")


@app.command("stats")
def cli_stats():
    """Show catalog statistics."""
    print_stats_result(_open_library().get_statistics())


@app.command("check")
def cli_check():
    """Verify the indices and loan ledger against the catalog, rewriting storage if needed."""
    lib = _open_library()
    problems = lib.check_integrity()
    for problem in problems:
        print(f"- {problem}")
    if not lib.trusted:
        try:
            lib.persist_all()
        except CatalogError as e:
            _fail(str(e))
        print("Storage rewritten from the rebuilt catalog.")
    if not problems:
        print("Catalog is consistent.")


if __name__ == "__main__":
    app()
