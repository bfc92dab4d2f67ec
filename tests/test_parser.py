"""
Test Suite for the Shift Page Parser
=====================================
Unit tests for token extraction, column classification, job
classification, metadata rules and the row state machine.
"""

from __future__ import annotations

import json
from datetime import date, time

import pytest

from shiftbook.classifier import (
    END_JOB,
    build_job,
    classify_line,
    classify_message,
    parse_time,
)
from shiftbook.columns import (
    ODD_PAGE_OFFSET,
    classify,
    margin_offset,
    page_offset,
)
from shiftbook.errors import (
    DocumentOpenError,
    MetadataFailure,
    TimeFieldMissing,
    TimeFieldUnparsable,
)
from shiftbook.models import (
    ContentToken,
    DriveType,
    JobKind,
    MessageKind,
    ParseErrorType,
    RawRow,
    Shift,
    ShiftJob,
    TableColumn,
    ValidityPattern,
)
from shiftbook.state_machine import (
    MetadataField,
    ShiftPageParser,
    identify_metadata,
    merge_shift_pages,
)
from shiftbook.token_extractor import extract_tokens, strip_text_operators


def page_stream(items) -> str:
    """Render (text, x, y) items the way the shift books draw them."""
    lines = ["BT"]
    for text, x, y in items:
        lines.extend(["/F1 8 Tf", f"{x} {y} Td", f"({text}) Tj"])
    lines.append("ET")
    return strip_text_operators("\n".join(lines))


def tokens_of(items) -> list[ContentToken]:
    return [ContentToken(text=t, x=x, y=y) for t, x, y in items]


HEADER = [
    ("Dienst G 12", 90.0, 780.0),
    ("Ingangsdatum 29-06-2025", 300.0, 790.0),
    ("MA/DI/WO/DO/VR", 200.0, 780.0),
    ("Utrecht", 450.0, 770.0),
]

ROWS = [
    ("Rijklaar maken", 200.0, 700.0),
    ("6:00", 360.0, 700.0),
    ("Cs", 405.0, 700.0),
    ("6:10", 500.0, 700.0),
    ("12", 100.0, 690.0),
    ("3401", 200.0, 690.0),
    ("15", 320.0, 690.0),
    ("6:10", 360.0, 690.0),
    ("Cs", 405.0, 690.0),
    ("Zd", 460.0, 690.0),
    ("6:45", 500.0, 690.0),
    ("Pauze", 100.0, 680.0),
    ("6:45", 360.0, 680.0),
    ("7:15", 500.0, 680.0),
    # Last row: only finalized when flushing
    ("MAT", 100.0, 670.0),
    ("24:10", 360.0, 670.0),
    ("25:00", 500.0, 670.0),
]


# ═══════════════════════════════════════════════════════════════════════════════
# MODEL TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestShiftModels:
    """Test ShiftJob and Shift models."""

    def test_default_job_is_empty(self):
        assert ShiftJob().is_empty

    def test_job_with_location_is_not_empty(self):
        assert not ShiftJob(start_location="Cs").is_empty

    def test_job_with_only_cycle_is_not_empty(self):
        assert not ShiftJob(cycle=3401).is_empty

    def test_shift_serialization(self):
        shift = Shift(
            shift_number="G12",
            valid_on=ValidityPattern.SATURDAY,
            jobs=[ShiftJob(start=time(6, 5), end=time(7, 0))],
            starting_date=date(2025, 6, 29),
        )
        data = shift.model_dump()
        assert data["starting_date"] == "29-06-2025"
        assert data["jobs"][0]["start"] == "06:05"
        assert data["valid_on"] == "saturday"
        assert data["parse_errors"] is None
        assert data["has_errors"] is False

    def test_shift_reads_back_from_json(self):
        shift = Shift(
            shift_number="G12",
            jobs=[ShiftJob(start=time(23, 59))],
            starting_date=date(2025, 6, 29),
        )
        restored = Shift.model_validate(json.loads(json.dumps(shift.model_dump())))
        assert restored == shift

    def test_raw_row(self):
        row = RawRow(y=700.0)
        assert row.is_blank
        row.put(TableColumn.TRIP, "15")
        assert row.get(TableColumn.TRIP) == "15"
        assert row.get(TableColumn.CYCLE) is None
        assert not row.is_blank

    def test_document_open_error_record(self):
        record = DocumentOpenError("PDF not found: /data/missing.pdf").to_record()
        assert record.type == ParseErrorType.DOCUMENT_OPEN_FAILURE
        assert record.message == "PDF not found: /data/missing.pdf"


# ═══════════════════════════════════════════════════════════════════════════════
# TOKEN EXTRACTION TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestTokenExtractor:
    """Test content-stream token extraction."""

    def test_strip_text_operators(self):
        raw = "BT\n/F1 8 Tf\n100 700 Td\n(Dienst G 12) Tj\nET"
        assert strip_text_operators(raw) == "/F1 8\n100 700\n(Dienst G 12)"

    def test_tokens_round_trip(self):
        items = [("Dienst G 12", 92.5, 780.0), ("6:10", 361.25, 690.5)]
        tokens, errors = extract_tokens(page_stream(items))

        assert errors == []
        assert [(t.text, t.x, t.y) for t in tokens] == items

    def test_stream_order_is_kept(self):
        items = [("b", 300.0, 100.0), ("a", 100.0, 700.0)]
        tokens, _ = extract_tokens(page_stream(items))
        assert [t.text for t in tokens] == ["b", "a"]

    def test_blank_lines_are_skipped(self):
        tokens, errors = extract_tokens("100 700\n\n   \n(Pauze)")
        assert errors == []
        assert tokens[0].x == 100.0
        assert tokens[0].y == 700.0

    def test_literals_on_one_line_share_coordinate(self):
        tokens, _ = extract_tokens("100 700\n(Bus) (op lijn)")
        assert [t.text for t in tokens] == ["Bus", "op lijn"]
        assert all(t.x == 100.0 for t in tokens)

    def test_escaped_parentheses(self):
        tokens, _ = extract_tokens("10 20\n(Pass \\(x\\))")
        assert tokens[0].text == "Pass (x)"

    def test_missing_coordinate_does_not_abort(self):
        tokens, errors = extract_tokens("(orphan)\n100 700\n(Pauze)", page_number=3)

        assert [t.text for t in tokens] == ["Pauze"]
        assert len(errors) == 1
        assert errors[0].type == ParseErrorType.TOKEN_COORDINATE_MISSING
        assert errors[0].page_number == 3

    def test_unparsable_coordinate(self):
        tokens, errors = extract_tokens("abc def\n(first)\n100 700\n(second)")

        assert [t.text for t in tokens] == ["second"]
        assert errors[0].type == ParseErrorType.TOKEN_COORDINATE_UNPARSABLE

    def test_single_number_coordinate_is_unparsable(self):
        tokens, errors = extract_tokens("100\n(first)")
        assert tokens == []
        assert errors[0].type == ParseErrorType.TOKEN_COORDINATE_UNPARSABLE


# ═══════════════════════════════════════════════════════════════════════════════
# COLUMN CLASSIFIER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestColumnClassifier:
    """Test coordinate-based column classification."""

    @pytest.mark.parametrize("x, expected", [
        (100.0, TableColumn.LINE_OR_DUTY),
        (200.0, TableColumn.CYCLE),
        (320.0, TableColumn.TRIP),
        (350.0, TableColumn.TRIP),
        (370.0, TableColumn.START_TIME),
        (410.0, TableColumn.FROM_LOCATION),
        (460.0, TableColumn.TO_LOCATION),
        (500.0, TableColumn.END_TIME),
        (1000.0, TableColumn.END_TIME),
    ])
    def test_columns(self, x, expected):
        assert classify(x, 400.0) == expected

    @pytest.mark.parametrize("x", [50.0, 295.0, 430.0, 485.0])
    def test_between_columns(self, x):
        assert classify(x, 400.0) is None

    def test_outside_table_band_is_metadata(self):
        assert classify(100.0, 40.0) == TableColumn.METADATA
        assert classify(100.0, 740.0) == TableColumn.METADATA
        assert classify(100.0, 50.0) == TableColumn.LINE_OR_DUTY
        assert classify(100.0, 735.0) == TableColumn.LINE_OR_DUTY

    @pytest.mark.parametrize("x", [100.0, 200.0, 320.0, 370.0, 410.0, 460.0, 520.0])
    def test_offset_invariance(self, x):
        shifted = classify(x - ODD_PAGE_OFFSET, 400.0, ODD_PAGE_OFFSET)
        assert shifted == classify(x, 400.0, 0.0)

    def test_page_parity(self):
        assert page_offset(0) == 0.0
        assert page_offset(1) == ODD_PAGE_OFFSET
        assert page_offset(2) == 0.0

    def test_margin_offset(self):
        tokens = tokens_of([("12", 40.0, 700.0), ("6:10", 320.0, 700.0)])
        assert margin_offset(tokens) == 43.0
        assert margin_offset([]) == 0.0


# ═══════════════════════════════════════════════════════════════════════════════
# JOB CLASSIFIER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestTimes:
    """Test clock time parsing."""

    @pytest.mark.parametrize("text, expected", [
        ("24:00", time(0, 0)),
        ("25:30", time(1, 30)),
        ("23:59", time(23, 59)),
        ("7:05", time(7, 5)),
    ])
    def test_rollover(self, text, expected):
        assert parse_time(text) == expected

    @pytest.mark.parametrize("text", ["12", ":30", "12:"])
    def test_missing_component(self, text):
        with pytest.raises(TimeFieldMissing):
            parse_time(text)

    @pytest.mark.parametrize("text", ["ab:30", "12:xx", "49:00", "12:75"])
    def test_unparsable(self, text):
        with pytest.raises(TimeFieldUnparsable) as exc:
            parse_time(text, END_JOB)
        assert exc.value.job == END_JOB


class TestJobClassifier:
    """Test line, message and row classification."""

    def test_line_markers(self):
        mat = classify_line("MAT")
        assert mat.kind == JobKind.DRIVING
        assert mat.drive_type == DriveType.MAT
        assert classify_line("Pauze").kind == JobKind.BREAK
        assert classify_line("Op/Afstaptijd").kind == JobKind.BOARD_ALIGHT

    def test_numeric_line(self):
        job_type = classify_line("42")
        assert job_type.kind == JobKind.DRIVING
        assert job_type.drive_type == DriveType.LINE
        assert job_type.line == 42

    def test_take_vehicle(self):
        message = classify_message("neem gelede bus")
        assert message.kind == MessageKind.TAKE_VEHICLE
        assert message.vehicle_type == "gelede bus"

    def test_board_line(self):
        message = classify_message("Bus op lijn 12")
        assert message.kind == MessageKind.BOARD_LINE
        assert message.line == 12

    def test_board_line_without_number_is_other(self):
        message = classify_message("Bus naar depot")
        assert message.kind == MessageKind.OTHER
        assert message.text == "Bus naar depot"

    def test_pod(self):
        message = classify_message("POD 8")
        assert message.kind == MessageKind.TAKE_VEHICLE
        assert message.vehicle_type == "POD 8"

    def test_ride_along(self):
        message = classify_message("Pass met 4012/7")
        assert message.kind == MessageKind.RIDE_ALONG
        assert message.duty_number == 4012
        assert message.cycle == "7"

    def test_ride_along_malformed_is_other(self):
        assert classify_message("Pass met collega").kind == MessageKind.OTHER
        assert classify_message("Pass met 4012").kind == MessageKind.OTHER

    def test_ride_along_with_empty_cycle(self):
        message = classify_message("Pass met 4012/")
        assert message.kind == MessageKind.RIDE_ALONG
        assert message.duty_number == 4012
        assert message.cycle == ""

    def test_other_message(self):
        job_type = classify_line("Meenemen 4012")
        assert job_type.kind == JobKind.MESSAGE
        assert job_type.message.kind == MessageKind.OTHER

    def test_full_row(self):
        row = RawRow(y=690.0, cells={
            TableColumn.LINE_OR_DUTY: "12",
            TableColumn.CYCLE: "3401",
            TableColumn.TRIP: "15",
            TableColumn.START_TIME: "6:10",
            TableColumn.FROM_LOCATION: "Cs",
            TableColumn.TO_LOCATION: "Zd",
            TableColumn.END_TIME: "6:45",
        })
        job = build_job(row)

        assert job.job_type.line == 12
        assert job.cycle == 3401
        assert job.trip == 15
        assert job.start == time(6, 10)
        assert job.end == time(6, 45)
        assert job.start_location == "Cs"
        assert job.end_location == "Zd"

    def test_cycle_marker_overrides_line(self):
        row = RawRow(y=700.0, cells={
            TableColumn.LINE_OR_DUTY: "12",
            TableColumn.CYCLE: "Onderbreking",
        })
        job = build_job(row)
        assert job.job_type.kind == JobKind.INTERRUPTION
        assert job.cycle is None

    def test_unparsable_cycle_and_trip_left_empty(self):
        row = RawRow(y=700.0, cells={
            TableColumn.CYCLE: "34a",
            TableColumn.TRIP: "x",
        })
        job = build_job(row)
        assert job.cycle is None
        assert job.trip is None
        assert job.is_empty

    def test_bad_time_raises(self):
        row = RawRow(y=700.0, cells={TableColumn.START_TIME: "6:xx"})
        with pytest.raises(TimeFieldUnparsable):
            build_job(row)


# ═══════════════════════════════════════════════════════════════════════════════
# METADATA TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestMetadata:
    """Test header/footer metadata rules."""

    def _identify(self, text, x=90.0, y=780.0):
        return identify_metadata(ContentToken(text=text, x=x, y=y), 1)

    def test_starting_date(self):
        assert self._identify("Ingangsdatum 29-06-2025") == (
            MetadataField.STARTING_DATE, date(2025, 6, 29)
        )

    def test_shift_number_spaces_removed(self):
        assert self._identify("Dienst G 12") == (MetadataField.SHIFT_NUMBER, "G12")

    @pytest.mark.parametrize("text, expected", [
        ("MA/DI/WO/DO/VR", ValidityPattern.WEEKDAYS),
        ("MA/DI/DO/VR", ValidityPattern.WEEKDAYS_EXCEPT_WEDNESDAY),
        ("WO", ValidityPattern.WEDNESDAY),
        ("ZA", ValidityPattern.SATURDAY),
        ("ZO", ValidityPattern.SUNDAY),
    ])
    def test_validity(self, text, expected):
        assert self._identify(text) == (MetadataField.VALID_ON, expected)

    def test_location(self):
        assert self._identify("Utrecht", x=450.0, y=770.0) == (
            MetadataField.LOCATION, "Utrecht"
        )

    def test_unmatched_tokens_are_ignored(self):
        assert self._identify("Utrecht", x=100.0, y=770.0) is None
        assert self._identify("Utrecht", x=450.0, y=740.0) is None

    def test_bad_date_is_metadata_failure(self):
        with pytest.raises(MetadataFailure) as exc:
            self._identify("Ingangsdatum 31-02-2025")
        assert exc.value.page_number == 1


# ═══════════════════════════════════════════════════════════════════════════════
# STATE MACHINE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestShiftPageParser:
    """Test the row-boundary state machine."""

    def test_complete_page(self):
        parser = ShiftPageParser()
        shift = parser.parse_page(tokens_of(HEADER + ROWS), page_number=1)

        assert shift.shift_number == "G12"
        assert shift.starting_date == date(2025, 6, 29)
        assert shift.valid_on == ValidityPattern.WEEKDAYS
        assert shift.location == "Utrecht"
        assert shift.parse_errors is None
        assert [j.job_type.kind for j in shift.jobs] == [
            JobKind.PREPARE_VEHICLE,
            JobKind.DRIVING,
            JobKind.BREAK,
        ]

    def test_trailing_row_dropped_by_default(self):
        shift = ShiftPageParser().parse_page(tokens_of(HEADER + ROWS), 1)
        assert all(j.job_type.drive_type != DriveType.MAT for j in shift.jobs)

    def test_trailing_row_flushed_when_enabled(self):
        parser = ShiftPageParser(flush_trailing_row=True)
        shift = parser.parse_page(tokens_of(HEADER + ROWS), 1)

        assert len(shift.jobs) == 4
        last = shift.jobs[-1]
        assert last.job_type.drive_type == DriveType.MAT
        assert last.start == time(0, 10)
        assert last.end == time(1, 0)

    def test_metadata_tokens_do_not_split_rows(self):
        items = HEADER[:2] + [
            ("12", 100.0, 690.0),
            ("Utrecht", 450.0, 770.0),
            ("6:10", 360.0, 690.0),
            ("Totaal", 295.0, 600.0),
        ]
        shift = ShiftPageParser().parse_page(tokens_of(items), 1)

        assert len(shift.jobs) == 1
        assert shift.jobs[0].job_type.line == 12
        assert shift.jobs[0].start == time(6, 10)

    def test_blank_rows_never_append_jobs(self):
        items = HEADER[:2] + [
            ("?", 295.0, 700.0),
            ("?", 295.0, 690.0),
            ("?", 295.0, 680.0),
        ]
        shift = ShiftPageParser(flush_trailing_row=True).parse_page(
            tokens_of(items), 1
        )
        assert shift.jobs == []

    def test_bad_time_recorded_and_parsing_continues(self):
        items = HEADER[:2] + [
            ("12", 100.0, 700.0),
            ("6:xx", 360.0, 700.0),
            ("Pauze", 100.0, 690.0),
            ("Totaal", 295.0, 600.0),
        ]
        shift = ShiftPageParser().parse_page(tokens_of(items), 5)

        assert [j.job_type.kind for j in shift.jobs] == [JobKind.BREAK]
        assert len(shift.parse_errors) == 1
        assert shift.parse_errors[0].type == ParseErrorType.TIME_FIELD_UNPARSABLE
        assert shift.parse_errors[0].page_number == 5

    def test_token_errors_are_kept(self):
        _, errors = extract_tokens("(orphan)", page_number=2)
        shift = ShiftPageParser().parse_page(tokens_of(HEADER), 2, errors=errors)
        assert shift.parse_errors[0].type == ParseErrorType.TOKEN_COORDINATE_MISSING

    def test_odd_page_offset(self):
        shifted = [(t, x - ODD_PAGE_OFFSET, y) for t, x, y in ROWS]
        even = ShiftPageParser().parse_page(tokens_of(HEADER + ROWS), 1)
        odd = ShiftPageParser().parse_page(
            tokens_of(HEADER + shifted), 2, offset=ODD_PAGE_OFFSET
        )
        assert odd.jobs == even.jobs

    def test_missing_starting_date_raises(self):
        with pytest.raises(MetadataFailure):
            ShiftPageParser().parse_page(tokens_of(HEADER[:1] + ROWS), 1)

    def test_default_date(self):
        parser = ShiftPageParser(default_date=date(2024, 1, 1))
        shift = parser.parse_page(tokens_of(HEADER[:1] + ROWS), 1)
        assert shift.starting_date == date(2024, 1, 1)

    def test_jobs_without_shift_number(self):
        shift = ShiftPageParser().parse_page(tokens_of(HEADER[1:2] + ROWS), 7)

        assert shift.shift_number == ""
        assert shift.parse_errors[-1].type == ParseErrorType.METADATA_FAILURE
        assert shift.parse_errors[-1].page_number == 7

    def test_known_shift_number(self):
        shift = ShiftPageParser().parse_page(
            tokens_of(HEADER[1:2] + ROWS), 1, shift_number="GM7"
        )
        assert shift.shift_number == "GM7"
        assert shift.parse_errors is None

    def test_parser_state_is_reset_between_pages(self):
        parser = ShiftPageParser()
        parser.parse_page(tokens_of(HEADER + ROWS), 1)
        second = parser.parse_page(tokens_of(HEADER[1:2]), 2)

        assert second.shift_number == ""
        assert second.jobs == []
        assert second.valid_on == ValidityPattern.UNKNOWN


class TestMergeShiftPages:
    """Test grouping of pages per shift number."""

    def _shift(self, number, jobs=1, location=""):
        return Shift(
            shift_number=number,
            location=location,
            jobs=[ShiftJob(cycle=i + 1) for i in range(jobs)],
            starting_date=date(2025, 6, 29),
        )

    def test_pages_with_same_number_are_merged(self):
        grouped = merge_shift_pages([
            (3, self._shift("G12", jobs=2)),
            (4, self._shift("G12", jobs=1, location="Utrecht")),
            (5, self._shift("G13")),
        ])

        assert list(grouped) == ["G12", "G13"]
        pages, shift = grouped["G12"]
        assert pages == [3, 4]
        assert len(shift.jobs) == 3
        assert shift.location == "Utrecht"
        assert grouped["G13"][0] == [5]

    def test_pages_without_number_are_left_out(self):
        grouped = merge_shift_pages([(1, self._shift(""))])
        assert grouped == {}
