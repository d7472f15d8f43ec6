import re
from typing import Optional

class ISBNValidator:
    """ISBN-10 / ISBN-13 validation for text typed at the command line."""

    @staticmethod
    def normalize_isbn(raw: str) -> str:
        if raw is None:
            return ""
        s = re.sub(r"[^0-9Xx]", "", raw)
        return s.upper()

    @staticmethod
    def is_well_formed(isbn: str) -> bool:
        """Shape check only: 9 digits plus a digit or 'X', or 13 digits."""
        s = ISBNValidator.normalize_isbn(isbn)
        if len(s) == 10:
            return s[:9].isdigit() and (s[9].isdigit() or s[9] == 'X')
        if len(s) == 13:
            return s.isdigit()
        return False

    @staticmethod
    def has_valid_checksum(isbn: str) -> bool:
        if not ISBNValidator.is_well_formed(isbn):
            return False
        s = ISBNValidator.normalize_isbn(isbn)
        if len(s) == 10:
            # Weighted 1..10 checksum
            total = sum(i * int(ch) for i, ch in enumerate(s[:-1], 1))
            check_val = 10 if s[-1] == 'X' else int(s[-1])
            return (total + 10 * check_val) % 11 == 0
        total = 0
        for i, ch in enumerate(s[:-1]):
            factor = 1 if i % 2 == 0 else 3
            total += factor * int(ch)
        return (10 - (total % 10)) % 10 == int(s[-1])

class TextValidator:
    """Basic checks on free-text fields."""

    @staticmethod
    def validate_name(text: Optional[str]) -> bool:
        # must contain something other than digits and whitespace
        if text is None:
            return False
        t = text.strip()
        if not t:
            return False
        return not t.isdigit()

    @staticmethod
    def validate_year(year: Optional[int]) -> bool:
        return year is not None and 0 <= year <= 9999

    @staticmethod
    def sanitize_text(text: str) -> str:
        if text is None:
            return ""
        # drop control characters and collapse runs of whitespace
        cleaned = re.sub(r"[\x00-\x1f\x7f]", " ", text)
        return " ".join(cleaned.split())
