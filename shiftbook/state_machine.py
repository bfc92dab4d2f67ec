"""
State Machine Parser
====================
Row-boundary state machine that turns the positioned tokens of one shift
page into a Shift.

Tokens arrive in stream order. Table tokens accumulate into a row until a
token with a different y arrives; the row is then finalized into a job.
Header and footer tokens feed the metadata rules and never move the row
boundary.
"""

from __future__ import annotations

import logging
from datetime import date
from enum import Enum
from typing import NamedTuple, Optional

from .classifier import build_job
from .columns import classify_token
from .errors import MetadataFailure, ShiftbookError
from .models import (
    ContentToken,
    ParseError,
    RawRow,
    Shift,
    ShiftJob,
    TableColumn,
    ValidityPattern,
    parse_date,
)

logger = logging.getLogger(__name__)

# Depot label sits in the bottom-right footer
LOCATION_MIN_Y = 760.0
LOCATION_MIN_X = 300.0


# ─── Metadata Rules ───────────────────────────────────────────────────────────


class MetadataField(Enum):
    STARTING_DATE = "starting_date"
    SHIFT_NUMBER = "shift_number"
    VALID_ON = "valid_on"
    LOCATION = "location"


class MetadataRule(NamedTuple):
    marker: str
    field: MetadataField
    validity: Optional[ValidityPattern] = None


# Checked in order, first match wins. "MA/DI/WO/DO/VR" must precede "WO".
METADATA_RULES: tuple[MetadataRule, ...] = (
    MetadataRule("Ingangsdatum ", MetadataField.STARTING_DATE),
    MetadataRule("Dienst ", MetadataField.SHIFT_NUMBER),
    MetadataRule("MA/DI/WO/DO/VR", MetadataField.VALID_ON, ValidityPattern.WEEKDAYS),
    MetadataRule(
        "MA/DI/DO/VR",
        MetadataField.VALID_ON,
        ValidityPattern.WEEKDAYS_EXCEPT_WEDNESDAY,
    ),
    MetadataRule("WO", MetadataField.VALID_ON, ValidityPattern.WEDNESDAY),
    MetadataRule("ZA", MetadataField.VALID_ON, ValidityPattern.SATURDAY),
    MetadataRule("ZO", MetadataField.VALID_ON, ValidityPattern.SUNDAY),
)


def identify_metadata(
    token: ContentToken,
    page_number: Optional[int] = None,
) -> Optional[tuple[MetadataField, object]]:
    """
    Match a header/footer token against the metadata rules.

    Returns:
        (field, value), or None when the token carries no metadata.

    Raises:
        MetadataFailure: a rule matched but its value cannot be parsed.
    """
    text = token.text
    for rule in METADATA_RULES:
        if rule.marker not in text:
            continue
        tail = text.rsplit(rule.marker, 1)[-1]

        if rule.field == MetadataField.STARTING_DATE:
            try:
                return rule.field, parse_date(tail)
            except ValueError:
                raise MetadataFailure(
                    page_number, line=text, reason="Unreadable starting date"
                ) from None

        if rule.field == MetadataField.SHIFT_NUMBER:
            return rule.field, tail.replace(" ", "")

        return rule.field, rule.validity

    if token.y > LOCATION_MIN_Y and token.x > LOCATION_MIN_X:
        return MetadataField.LOCATION, text

    return None


# ─── Row State Machine ────────────────────────────────────────────────────────


class RowState(Enum):
    """Internal states of the row assembler."""
    ACCUMULATING = "ACCUMULATING"
    FINALIZING = "FINALIZING"


class ShiftPageParser:
    """
    Finite State Machine that transforms the ordered tokens of one page
    into a Shift.

    Args:
        flush_trailing_row: Finalize the row still open after the last
            token. Off by default: a trailing row without a following
            y-change is dropped.
        default_date: Starting date for pages without an "Ingangsdatum".
    """

    def __init__(
        self,
        flush_trailing_row: bool = False,
        default_date: Optional[date] = None,
    ):
        self.flush_trailing_row = flush_trailing_row
        self.default_date = default_date
        self.reset()

    def reset(self):
        """Reset the state machine for a fresh page."""
        self.state = RowState.ACCUMULATING
        self.row: Optional[RawRow] = None
        self.offset = 0.0
        self.page_number: Optional[int] = None
        self.jobs: list[ShiftJob] = []
        self.errors: list[ParseError] = []
        self.shift_number = ""
        self.starting_date: Optional[date] = None
        self.valid_on = ValidityPattern.UNKNOWN
        self.location = ""

    def parse_page(
        self,
        tokens: list[ContentToken],
        page_number: int,
        offset: float = 0.0,
        shift_number: Optional[str] = None,
        errors: Optional[list[ParseError]] = None,
    ) -> Shift:
        """
        Parse one page.

        Args:
            tokens: Page tokens in stream order.
            page_number: 1-based page number, used in error records.
            offset: Horizontal column offset of the page.
            shift_number: Known shift number; a "Dienst" header overrides it.
            errors: Errors already recorded for this page (token extraction).

        Raises:
            MetadataFailure: the page has no starting date and no default.
        """
        self.reset()
        self.page_number = page_number
        self.offset = offset
        self.shift_number = shift_number or ""
        self.errors.extend(errors or [])

        if tokens:
            self.row = RawRow(y=tokens[0].y)

        for token in tokens:
            self._process_token(token)

        return self.finish()

    def finish(self) -> Shift:
        """Close the page and build the Shift."""
        if self.flush_trailing_row and self.row and not self.row.is_blank:
            self._finalize_row()

        if self.jobs and not self.shift_number:
            self.errors.append(MetadataFailure(
                self.page_number, reason="Missing shift number"
            ).to_record())

        starting_date = self.starting_date or self.default_date
        if starting_date is None:
            raise MetadataFailure(
                self.page_number, reason="Missing starting date"
            )

        logger.debug(
            f"Page {self.page_number}: shift {self.shift_number or '?'} "
            f"with {len(self.jobs)} jobs, {len(self.errors)} errors"
        )

        return Shift(
            shift_number=self.shift_number,
            valid_on=self.valid_on,
            location=self.location,
            jobs=self.jobs,
            starting_date=starting_date,
            parse_errors=self.errors or None,
        )

    def _process_token(self, token: ContentToken):
        column = classify_token(token, self.offset)

        if column == TableColumn.METADATA:
            self._apply_metadata(token)
            return

        if self.row is None:
            self.row = RawRow(y=token.y)
        elif token.y != self.row.y:
            self._finalize_row()
            self.row = RawRow(y=token.y)

        if column is not None:
            self.row.put(column, token.text)

    def _apply_metadata(self, token: ContentToken):
        try:
            found = identify_metadata(token, self.page_number)
        except ShiftbookError as e:
            logger.warning(str(e))
            self.errors.append(e.to_record())
            return

        if found is None:
            return

        field, value = found
        if field == MetadataField.STARTING_DATE:
            self.starting_date = value
        elif field == MetadataField.SHIFT_NUMBER:
            self.shift_number = value
        elif field == MetadataField.VALID_ON:
            self.valid_on = value
        elif field == MetadataField.LOCATION:
            self.location = value

    def _finalize_row(self):
        """Turn the accumulated row into a job; empty rows are dropped."""
        self.state = RowState.FINALIZING
        try:
            job = build_job(self.row)
        except ShiftbookError as e:
            e.page_number = self.page_number
            logger.warning(f"Page {self.page_number}: {e}")
            self.errors.append(e.to_record())
        else:
            if not job.is_empty:
                self.jobs.append(job)
        finally:
            self.state = RowState.ACCUMULATING


# ─── Page Grouping ────────────────────────────────────────────────────────────


def merge_shift_pages(
    parsed_pages: list[tuple[int, Shift]],
) -> dict[str, tuple[list[int], Shift]]:
    """
    Combine pages sharing a shift number into one Shift.

    Jobs and errors are concatenated in page order; header fields come
    from the first page that has them. Pages without a shift number are
    left out.

    Returns:
        shift_number -> (page numbers, merged Shift), in document order.
    """
    grouped: dict[str, tuple[list[int], Shift]] = {}

    for page_number, shift in parsed_pages:
        if not shift.shift_number:
            continue

        if shift.shift_number not in grouped:
            grouped[shift.shift_number] = ([page_number], shift)
            continue

        pages, merged = grouped[shift.shift_number]
        pages.append(page_number)
        errors = (merged.parse_errors or []) + (shift.parse_errors or [])
        grouped[shift.shift_number] = (pages, merged.model_copy(update={
            "jobs": merged.jobs + shift.jobs,
            "parse_errors": errors or None,
            "location": merged.location or shift.location,
            "valid_on": (
                merged.valid_on
                if merged.valid_on != ValidityPattern.UNKNOWN
                else shift.valid_on
            ),
        }))

    return grouped
