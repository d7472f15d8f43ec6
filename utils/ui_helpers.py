import os
import json
from typing import List, Any, Dict
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()

def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode

def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()

def print_list_result(books: List[Any], empty_message: str = "No books in library.") -> None:
    """Print books in the current output mode.
    - plain: 'ISBN - Title by Author (year, subject) [copies]' lines
    - json: JSON array of book dicts
    - rich: Rich table
    """
    mode = get_output_mode()

    if not books:
        print(empty_message)
        return

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ISBN", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Subject", style="white")
        table.add_column("Year", justify="right")
        table.add_column("Copies", justify="right")
        for b in books:
            table.add_row(b.isbn, b.title, b.author, b.subject, str(b.publication_year), str(b.copies))
        _console.print(table)
    else:
        for b in books:
            print(f"{b.isbn} - {b.title} by {b.author} ({b.publication_year}, {b.subject}) [{b.copies} copies]")

def print_book_detail(book: Any, available: int) -> None:
    mode = get_output_mode()
    if mode == "json":
        payload = dict(book.to_dict(), available=available)
        print(json.dumps(payload, ensure_ascii=False))
    elif mode == "rich":
        content = (
            f"[bold]Title:[/] {book.title}\n[bold]Author:[/] {book.author}\n"
            f"[bold]Subject:[/] {book.subject}\n[bold]Year:[/] {book.publication_year}\n"
            f"[bold]Copies:[/] {book.copies} ({available} available)"
        )
        _console.print(Panel.fit(content, title=f"📖 {book.isbn}", border_style="green"))
    else:
        print("Book Found")
        print(f"Title: {book.title}")
        print(f"Author: {book.author}")
        print(f"Subject: {book.subject}")
        print(f"Year: {book.publication_year}")
        print(f"ISBN: {book.isbn}")
        print(f"Copies: {book.copies} ({available} available)")

def print_loans_result(loans: List[Any]) -> None:
    mode = get_output_mode()

    if not loans:
        print("No outstanding loans.")
        return

    if mode == "json":
        print(json.dumps([loan.to_dict() for loan in loans], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="🔖 Loans", header_style="bold cyan")
        table.add_column("ISBN", style="magenta", no_wrap=True)
        table.add_column("Borrower", style="white")
        for loan in loans:
            table.add_row(loan.isbn, loan.borrower)
        _console.print(table)
    else:
        for loan in loans:
            print(f"{loan.isbn} - {loan.borrower}")

def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print statistics in the current output mode."""
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    labels = {
        "total_titles": "Total Titles",
        "total_copies": "Total Copies",
        "copies_on_loan": "Copies On Loan",
        "unique_authors": "Unique Authors",
        "unique_subjects": "Unique Subjects",
    }

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {stats.get(key, 0)}" for key, label in labels.items())
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, label in labels.items():
            print(f"{label}: {stats.get(key, 0)}")
