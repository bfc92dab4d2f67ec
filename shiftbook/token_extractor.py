"""
Token Extractor
===============
Turns a page's text-drawing program into positioned text tokens.

The shift books are generated with one positioning instruction per text
literal, so after stripping the text operators a page stream reads:

    /F1 8
    92.5 720
    (Dienst G 12)

Every parenthesised literal takes its (x, y) position from the closest
non-empty line above it.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Iterator, Optional

import fitz  # PyMuPDF

from .errors import (
    DocumentOpenError,
    ShiftbookError,
    TokenCoordinateMissing,
    TokenCoordinateUnparsable,
)
from .models import ContentToken, ParseError

logger = logging.getLogger(__name__)

# Literal strings, honouring \( \) and \\ escapes
LITERAL_PATTERN = re.compile(r"\(((?:\\.|[^\\)])*)\)")

_ESCAPE_PATTERN = re.compile(r"\\(.)")

# Lines that only open or close a text object
_TEXT_OBJECT_LINES = {"BT", "ET"}

# Trailing operator words: text position, text show, font select
_TEXT_OPERATOR_PATTERN = re.compile(r"\s*\b(?:Td|Tj|Tf)\s*$")


def strip_text_operators(raw_stream: str) -> str:
    """Remove BT/ET lines and trailing Td/Tj/Tf operators from a stream."""
    lines = []
    for line in raw_stream.splitlines():
        if line.strip() in _TEXT_OBJECT_LINES:
            continue
        lines.append(_TEXT_OPERATOR_PATTERN.sub("", line))
    return "\n".join(lines)


def unescape_literal(text: str) -> str:
    return _ESCAPE_PATTERN.sub(r"\1", text)


def parse_coordinate(line: str, page_number: Optional[int] = None) -> tuple[float, float]:
    """Read `x y` from the first two whitespace-separated fields of a line."""
    parts = line.split()
    if len(parts) < 2:
        raise TokenCoordinateUnparsable(
            "Coordinate line needs an x and a y value",
            page_number=page_number,
            line=line,
        )
    try:
        return float(parts[0]), float(parts[1])
    except ValueError:
        raise TokenCoordinateUnparsable(
            f"Coordinate line is not numeric: {line.strip()!r}",
            page_number=page_number,
            line=line,
        ) from None


def extract_tokens(
    stream: str,
    page_number: Optional[int] = None,
) -> tuple[list[ContentToken], list[ParseError]]:
    """
    Extract every text literal of a (stripped) page stream, in stream order.

    Returns:
        (tokens, errors). A literal without a usable coordinate line is
        reported in `errors` and skipped; the remaining literals still parse.
    """
    tokens: list[ContentToken] = []
    errors: list[ParseError] = []
    previous_line: Optional[str] = None

    for line in stream.splitlines():
        for match in LITERAL_PATTERN.finditer(line):
            text = unescape_literal(match.group(1))
            try:
                if previous_line is None:
                    raise TokenCoordinateMissing(
                        f"No coordinate line before {text!r}",
                        page_number=page_number,
                        line=line,
                    )
                x, y = parse_coordinate(previous_line, page_number)
            except ShiftbookError as e:
                logger.debug(f"Skipping token on page {page_number}: {e}")
                errors.append(e.to_record())
                continue
            tokens.append(ContentToken(text=text, x=x, y=y))

        if line.strip():
            previous_line = line

    return tokens, errors


class PageStreamReader:
    """
    Reads decoded content streams from a PDF using PyMuPDF (fitz).

    Yields one operator-stripped stream per page; pages are 1-indexed.
    """

    def __init__(self, pdf_path: str):
        self.pdf_path = os.path.abspath(pdf_path)

    def _open(self) -> fitz.Document:
        if not os.path.exists(self.pdf_path):
            raise DocumentOpenError(f"PDF not found: {self.pdf_path}")
        try:
            return fitz.open(self.pdf_path)
        except (RuntimeError, ValueError) as e:
            raise DocumentOpenError(
                f"Cannot open PDF {self.pdf_path}: {e}"
            ) from e

    def get_page_count(self) -> int:
        with self._open() as doc:
            return doc.page_count

    def read_page(self, page_number: int) -> str:
        """
        Return the stripped stream of a single page.

        Raises:
            IndexError: page_number is outside 1..page_count.
        """
        with self._open() as doc:
            if not 1 <= page_number <= doc.page_count:
                raise IndexError(
                    f"Page {page_number} out of range 1-{doc.page_count}"
                )
            return self._page_stream(doc[page_number - 1])

    def iter_pages(
        self,
        page_range: Optional[tuple[int, int]] = None,
        progress_callback: Optional[callable] = None,
    ) -> Iterator[tuple[int, str]]:
        """
        Yield (page_number, stripped_stream) pairs.

        Args:
            page_range: Optional (start, end) range (1-indexed, inclusive).
            progress_callback: Optional callable(current, total).
        """
        with self._open() as doc:
            total_pages = doc.page_count
            start_page = 1
            end_page = total_pages
            if page_range:
                start_page = max(1, page_range[0])
                end_page = min(total_pages, page_range[1])

            logger.info(
                f"Reading page streams from {self.pdf_path} "
                f"(pages {start_page} to {end_page})"
            )

            for page_idx in range(start_page - 1, end_page):
                yield page_idx + 1, self._page_stream(doc[page_idx])

                if progress_callback:
                    progress_callback(
                        page_idx - start_page + 2, end_page - start_page + 1
                    )

    @staticmethod
    def _page_stream(page: fitz.Page) -> str:
        raw = page.read_contents().decode("utf-8", errors="replace")
        return strip_text_operators(raw)
