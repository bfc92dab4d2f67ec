"""
Column Classifier
=================
Maps a token's position to a column of the duty table.

Shift books are printed two pages per sheet, so every odd page (0-based
index within the document) is shifted left by a fixed offset. Column
bounds are nominal positions measured on an even page; the actual bound
is `nominal - offset`.
"""

from __future__ import annotations

from enum import Enum
from typing import NamedTuple, Optional

from .models import ContentToken, TableColumn

# Vertical band holding the duty table; anything outside is header/footer
TABLE_BAND_LOWER = 50.0
TABLE_BAND_UPPER = 735.0

EVEN_PAGE_OFFSET = 0.0
ODD_PAGE_OFFSET = 48.0

# Left edge of the line column on an even page
NOMINAL_LEFT_MARGIN = 83.0


class ColumnBounds(NamedTuple):
    column: TableColumn
    lower: float
    upper: Optional[float]  # None: open-ended

    def contains(self, x: float, offset: float) -> bool:
        if x < self.lower - offset:
            return False
        return self.upper is None or x <= self.upper - offset


# Priority order: first match wins where intervals touch
COLUMN_BOUNDS: tuple[ColumnBounds, ...] = (
    ColumnBounds(TableColumn.LINE_OR_DUTY, 83.0, 150.0),
    ColumnBounds(TableColumn.CYCLE, 150.1, 290.0),
    ColumnBounds(TableColumn.TRIP, 300.0, 350.0),
    ColumnBounds(TableColumn.START_TIME, 350.0, 390.0),
    ColumnBounds(TableColumn.FROM_LOCATION, 400.0, 420.0),
    ColumnBounds(TableColumn.TO_LOCATION, 450.0, 480.0),
    ColumnBounds(TableColumn.END_TIME, 490.0, None),
)


class OffsetMode(str, Enum):
    """How a page's horizontal offset is determined."""
    PARITY = "parity"
    MARGIN = "margin"


def page_offset(page_index: int) -> float:
    """Offset for a page by its 0-based position in the source document."""
    return EVEN_PAGE_OFFSET if page_index % 2 == 0 else ODD_PAGE_OFFSET


def margin_offset(tokens: list[ContentToken]) -> float:
    """Offset that aligns the left-most token with the line column."""
    if not tokens:
        return EVEN_PAGE_OFFSET
    return NOMINAL_LEFT_MARGIN - min(t.x for t in tokens)


def in_table_band(y: float) -> bool:
    return TABLE_BAND_LOWER <= y <= TABLE_BAND_UPPER


def classify(x: float, y: float, offset: float = 0.0) -> Optional[TableColumn]:
    """
    Classify a position.

    Returns METADATA outside the table band, the first matching table
    column inside it, or None when the token falls between columns.
    """
    if not in_table_band(y):
        return TableColumn.METADATA
    for bounds in COLUMN_BOUNDS:
        if bounds.contains(x, offset):
            return bounds.column
    return None


def classify_token(token: ContentToken, offset: float = 0.0) -> Optional[TableColumn]:
    return classify(token.x, token.y, offset)
