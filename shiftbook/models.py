"""
Data Models
===========
Pydantic models for parsed shifts and dated timetable collections.
All persisted models serialise to the JSON documents kept in the
collection directory; dates are written as dd-mm-yyyy.
"""

from __future__ import annotations

from datetime import date, datetime, time
from enum import Enum
from typing import Annotated, Optional

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    computed_field,
)

DATE_FORMAT = "%d-%m-%Y"
TIME_FORMAT = "%H:%M"


def parse_date(value: str) -> date:
    """Parse a dd-mm-yyyy string."""
    return datetime.strptime(value.strip(), DATE_FORMAT).date()


def format_date(value: date) -> str:
    return value.strftime(DATE_FORMAT)


def _coerce_date(value):
    if isinstance(value, str):
        return parse_date(value)
    return value


def _coerce_time(value):
    if isinstance(value, str) and len(value) <= 5:
        return datetime.strptime(value, TIME_FORMAT).time()
    return value


DutchDate = Annotated[
    date,
    BeforeValidator(_coerce_date),
    PlainSerializer(format_date, return_type=str),
]

ClockTime = Annotated[
    time,
    BeforeValidator(_coerce_time),
    PlainSerializer(lambda t: t.strftime(TIME_FORMAT), return_type=str),
]


# ─── Enums ────────────────────────────────────────────────────────────────────


class TableColumn(str, Enum):
    """Semantic column of the duty table printed on every shift page."""
    LINE_OR_DUTY = "line_or_duty"
    CYCLE = "cycle"
    TRIP = "trip"
    START_TIME = "start_time"
    FROM_LOCATION = "from_location"
    TO_LOCATION = "to_location"
    END_TIME = "end_time"
    METADATA = "metadata"


class ValidityPattern(str, Enum):
    """Days of the week a shift operates on."""
    WEEKDAYS = "weekdays"
    WEEKDAYS_EXCEPT_WEDNESDAY = "weekdays_except_wednesday"
    WEDNESDAY = "wednesday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"
    UNKNOWN = "unknown"


class JobKind(str, Enum):
    """Tag of a ShiftJob's job type."""
    DRIVING = "driving"
    BREAK = "break"
    INTERRUPTION = "interruption"
    BOARD_ALIGHT = "board_alight"
    PREPARE_VEHICLE = "prepare_vehicle"
    STOW_VEHICLE = "stow_vehicle"
    MESSAGE = "message"
    WALK_TRAVEL = "walk_travel"
    RESERVE = "reserve"
    UNKNOWN = "unknown"


class DriveType(str, Enum):
    LINE = "line"
    MAT = "mat"


class MessageKind(str, Enum):
    """Free-text instructions printed in the line column."""
    TAKE_VEHICLE = "take_vehicle"
    BOARD_LINE = "board_line"
    RIDE_ALONG = "ride_along"
    OTHER = "other"


class ParseErrorType(str, Enum):
    """Recoverable and user-facing failure kinds."""
    TOKEN_COORDINATE_MISSING = "token_coordinate_missing"
    TOKEN_COORDINATE_UNPARSABLE = "token_coordinate_unparsable"
    METADATA_FAILURE = "metadata_failure"
    TIME_FIELD_MISSING = "time_field_missing"
    TIME_FIELD_UNPARSABLE = "time_field_unparsable"
    COLLECTION_MERGE_CONFLICT = "collection_merge_conflict"
    SHIFT_NOT_FOUND = "shift_not_found"
    PREFIX_MISMATCH = "prefix_mismatch"
    DOCUMENT_OPEN_FAILURE = "document_open_failure"


# ─── Page-level Models ────────────────────────────────────────────────────────


class ContentToken(BaseModel):
    """One text literal drawn on a page, with its drawing position."""
    text: str
    x: float
    y: float


class RawRow(BaseModel):
    """
    Accumulator for one table row: at most one raw string per column,
    keyed by the row's y coordinate.
    """
    y: float
    cells: dict[TableColumn, str] = Field(default_factory=dict)

    def put(self, column: TableColumn, text: str):
        self.cells[column] = text

    def get(self, column: TableColumn) -> Optional[str]:
        return self.cells.get(column)

    @property
    def is_blank(self) -> bool:
        return not self.cells


class ParseError(BaseModel):
    """A single failure recorded while parsing, kept for later auditing."""
    type: ParseErrorType
    message: str
    page_number: Optional[int] = None
    line: Optional[str] = None
    job: Optional[str] = None


# ─── Job Models ───────────────────────────────────────────────────────────────


class JobMessage(BaseModel):
    kind: MessageKind
    text: str
    vehicle_type: Optional[str] = None
    line: Optional[int] = None
    duty_number: Optional[int] = None
    cycle: Optional[str] = None


class JobType(BaseModel):
    """
    Tagged job variant. DRIVING carries a drive type (and a line number
    for LINE); MESSAGE carries the classified message.
    """
    kind: JobKind = JobKind.UNKNOWN
    drive_type: Optional[DriveType] = None
    line: Optional[int] = None
    message: Optional[JobMessage] = None

    @classmethod
    def driving_line(cls, line: int) -> JobType:
        return cls(kind=JobKind.DRIVING, drive_type=DriveType.LINE, line=line)

    @classmethod
    def driving_mat(cls) -> JobType:
        return cls(kind=JobKind.DRIVING, drive_type=DriveType.MAT)

    @classmethod
    def with_message(cls, message: JobMessage) -> JobType:
        return cls(kind=JobKind.MESSAGE, message=message)


class ShiftJob(BaseModel):
    """One row of the duty table."""
    job_type: JobType = Field(default_factory=JobType)
    start: Optional[ClockTime] = None
    end: Optional[ClockTime] = None
    # None means the same location as a sibling job
    start_location: Optional[str] = None
    end_location: Optional[str] = None
    cycle: Optional[int] = None
    trip: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return (
            self.job_type.kind == JobKind.UNKNOWN
            and self.start is None
            and self.end is None
            and self.start_location is None
            and self.end_location is None
            and self.cycle is None
            and self.trip is None
        )


# ─── Shift Model ──────────────────────────────────────────────────────────────


class Shift(BaseModel):
    """
    A fully parsed shift ("Dienst"): metadata from the page header and
    footer plus the ordered jobs from the duty table.
    """
    shift_number: str
    valid_on: ValidityPattern = ValidityPattern.UNKNOWN
    location: str = ""
    jobs: list[ShiftJob] = Field(default_factory=list)
    starting_date: DutchDate
    parse_errors: Optional[list[ParseError]] = None

    @computed_field
    @property
    def has_errors(self) -> bool:
        return bool(self.parse_errors)


# ─── Collection Models ────────────────────────────────────────────────────────


class ShiftData(BaseModel):
    """Where a shift lives inside a collection's source documents."""
    model_config = ConfigDict(frozen=True)

    pages: list[int]
    file_id: int
    shift_prefix: str = ""


class PdfTimetableCollection(BaseModel):
    """
    All shifts sharing one effective date. `pages` is keyed by the
    numeric part of the shift identifier.
    """
    model_config = ConfigDict(frozen=True)

    valid_from: DutchDate
    files: dict[int, str] = Field(default_factory=dict)
    pages: dict[str, ShiftData] = Field(default_factory=dict)

    @property
    def file_name(self) -> str:
        return f"{format_date(self.valid_from)}.json"


# ─── Report Models ────────────────────────────────────────────────────────────


class IndexShift(BaseModel):
    """A shift reachable on a given date and the generation it comes from."""
    shift_number: str
    valid_from: DutchDate


class CollectionSummary(BaseModel):
    valid_from: DutchDate
    file_id: int
    shift_count: int


class IndexResult(BaseModel):
    """Outcome of indexing one source document."""
    source_pdf: str
    total_pages: int = 0
    parsed_pages: int = 0
    shift_count: int = 0
    collections: list[CollectionSummary] = Field(default_factory=list)
    errored_shifts: list[str] = Field(default_factory=list)
    skipped_pages: list[int] = Field(default_factory=list)
    conflicts: list[ParseError] = Field(default_factory=list)

    @computed_field
    @property
    def error_count(self) -> int:
        return len(self.errored_shifts)


class Statistics(BaseModel):
    """Snapshot of the collection store as seen from one date."""
    shifts: int = 0
    valid_shifts: int = 0
    active_shifts: int = 0
    inactive_shifts: int = 0
    timetables: int = 0
    active_timetables: int = 0
    future_timetables: int = 0
    recent_timetable: Optional[str] = None
    next_timetable: Optional[str] = None
    errored_shifts: list[str] = Field(default_factory=list)
