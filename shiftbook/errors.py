"""
Error Taxonomy
==============
Exceptions raised by the parsing and lookup layers.

Page-level failures are recoverable: the parser catches them and stores
their `ParseError` record on the owning shift so the page keeps parsing.
Lookup failures (not found, prefix mismatch) propagate to the caller and
carry a user-facing message.
"""

from __future__ import annotations

from typing import Optional

from .models import ParseError, ParseErrorType


class ShiftbookError(Exception):
    """Base class for all shiftbook errors."""

    error_type: Optional[ParseErrorType] = None

    def __init__(
        self,
        message: str,
        page_number: Optional[int] = None,
        line: Optional[str] = None,
        job: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.page_number = page_number
        self.line = line
        self.job = job

    def to_record(self) -> ParseError:
        return ParseError(
            type=self.error_type,
            message=self.message,
            page_number=self.page_number,
            line=self.line,
            job=self.job,
        )


class DocumentOpenError(ShiftbookError):
    """The source document cannot be opened at all."""
    error_type = ParseErrorType.DOCUMENT_OPEN_FAILURE


# ─── Token extraction ─────────────────────────────────────────────────────────


class TokenCoordinateMissing(ShiftbookError):
    error_type = ParseErrorType.TOKEN_COORDINATE_MISSING


class TokenCoordinateUnparsable(ShiftbookError):
    error_type = ParseErrorType.TOKEN_COORDINATE_UNPARSABLE


# ─── Page structure ───────────────────────────────────────────────────────────


class MetadataFailure(ShiftbookError):
    error_type = ParseErrorType.METADATA_FAILURE

    def __init__(self, page_number: int, line: Optional[str] = None,
                 reason: str = "Failed to parse metadata"):
        super().__init__(
            f"{reason} on page {page_number}",
            page_number=page_number,
            line=line,
        )


class TimeFieldMissing(ShiftbookError):
    error_type = ParseErrorType.TIME_FIELD_MISSING


class TimeFieldUnparsable(ShiftbookError):
    error_type = ParseErrorType.TIME_FIELD_UNPARSABLE


# ─── Collections ──────────────────────────────────────────────────────────────


class CollectionMergeConflict(ShiftbookError):
    """An entry owned by another source file was overwritten (non-fatal)."""
    error_type = ParseErrorType.COLLECTION_MERGE_CONFLICT


# ─── Lookup ───────────────────────────────────────────────────────────────────


class ShiftNotFound(ShiftbookError):
    error_type = ParseErrorType.SHIFT_NOT_FOUND

    def __init__(self, identifier: str):
        super().__init__(
            f"Shift {identifier} is not listed in any active timetable"
        )
        self.identifier = identifier


class PrefixMismatch(ShiftbookError):
    error_type = ParseErrorType.PREFIX_MISMATCH

    def __init__(self, identifier: str, requested: str, stored: str):
        super().__init__(
            f"Shift {identifier} exists, but as {stored or '(no prefix)'} "
            f"instead of {requested}"
        )
        self.identifier = identifier
        self.requested = requested
        self.stored = stored
