from __future__ import annotations

from dataclasses import dataclass


def normalize_isbn(raw) -> str:
    """Strip separators from an ISBN and upper-case a trailing X."""
    if raw is None:
        return ""
    cleaned = "".join(ch for ch in str(raw) if ch.isalnum())
    return cleaned.upper()


def normalize_key(text: str | None) -> str:
    """Index key for free-text fields: collapsed whitespace, case-folded."""
    return " ".join((text or "").split()).casefold()


class Book:
    """A single title/edition held by the library."""

    def __init__(self, isbn, title: str, author: str, subject: str,
                 publication_year: int, copies: int = 1) -> None:
        self.isbn = normalize_isbn(isbn)
        self.title = title.strip()
        self.author = author.strip()
        self.subject = subject.strip()
        self.publication_year = int(publication_year)
        self.copies = int(copies)

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (ISBN: {self.isbn})"

    def __repr__(self) -> str:
        return f"Book(isbn={self.isbn!r}, title={self.title!r}, copies={self.copies})"

    def __eq__(self, other) -> bool:
        if not isinstance(other, Book):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def copy(self) -> "Book":
        return Book.from_dict(self.to_dict())

    def to_dict(self) -> dict:
        return {
            "isbn": self.isbn,
            "title": self.title,
            "author": self.author,
            "subject": self.subject,
            "publication_year": self.publication_year,
            "copies": self.copies,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            isbn=data["isbn"],
            title=data["title"],
            author=data["author"],
            subject=data.get("subject", ""),
            publication_year=data.get("publication_year", 0),
            copies=data.get("copies", 1),
        )


@dataclass(frozen=True)
class Loan:
    """One outstanding loan of a single copy."""

    isbn: str
    borrower: str

    def to_dict(self) -> dict:
        return {"isbn": self.isbn, "borrower": self.borrower}

    @staticmethod
    def from_dict(data: dict) -> "Loan":
        return Loan(isbn=normalize_isbn(data["isbn"]), borrower=data["borrower"])
