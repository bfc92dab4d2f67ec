"""
Job Classifier
==============
Converts the raw strings of one table row into a typed ShiftJob.

Classification uses explicit ordered tables so the precedence of the
literal markers is visible in one place:

    CYCLE_MARKERS   special values of the cycle ("omloop") column
    LINE_MARKERS    special values of the line column
    MESSAGE_RULES   first-word rules for free-text line instructions
"""

from __future__ import annotations

import re
from datetime import time
from typing import Callable, Optional

from .errors import TimeFieldMissing, TimeFieldUnparsable
from .models import (
    JobKind,
    JobMessage,
    JobType,
    MessageKind,
    RawRow,
    ShiftJob,
    TableColumn,
)

_UNSIGNED = re.compile(r"[0-9]+")

CYCLE_MARKERS: dict[str, JobKind] = {
    "Onderbreking": JobKind.INTERRUPTION,
    "Loop/Reis": JobKind.WALK_TRAVEL,
    "Rijklaar maken": JobKind.PREPARE_VEHICLE,
    "Bus stallen/afm": JobKind.STOW_VEHICLE,
    "Reserve": JobKind.RESERVE,
}

LINE_MARKERS: dict[str, JobType] = {
    "MAT": JobType.driving_mat(),
    "Pauze": JobType(kind=JobKind.BREAK),
    "Op/Afstaptijd": JobType(kind=JobKind.BOARD_ALIGHT),
}

START_JOB = "Start time"
END_JOB = "End time"


def parse_unsigned(text: str) -> Optional[int]:
    """Parse a plain unsigned integer, None when the text is anything else."""
    if _UNSIGNED.fullmatch(text):
        return int(text)
    return None


# ─── Times ────────────────────────────────────────────────────────────────────


def parse_time(text: str, job: str = START_JOB) -> time:
    """
    Parse an `H:MM` clock time. Hours past midnight are printed as 24, 25,
    ... and roll over to the next day's clock time.

    Raises:
        TimeFieldMissing: the hour or minute component is absent.
        TimeFieldUnparsable: a component is not numeric or out of range.
    """
    parts = text.split(":")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise TimeFieldMissing(
            f"{job}: missing hour or minute in {text!r}",
            line=text,
            job=job,
        )

    hour = parse_unsigned(parts[0])
    minute = parse_unsigned(parts[1])
    if hour is None or minute is None:
        raise TimeFieldUnparsable(
            f"{job}: {text!r} is not a clock time",
            line=text,
            job=job,
        )

    if hour >= 24:
        hour -= 24

    try:
        return time(hour, minute)
    except ValueError:
        raise TimeFieldUnparsable(
            f"{job}: {text!r} is out of range",
            line=text,
            job=job,
        ) from None


# ─── Messages ─────────────────────────────────────────────────────────────────


def _take_vehicle(text: str) -> Optional[JobMessage]:
    rest = text.split(None, 1)
    vehicle_type = rest[1] if len(rest) > 1 else ""
    return JobMessage(
        kind=MessageKind.TAKE_VEHICLE, text=text, vehicle_type=vehicle_type
    )


def _board_line(text: str) -> Optional[JobMessage]:
    line = parse_unsigned(text.replace("Bus op lijn ", "").strip())
    if line is None:
        return None
    return JobMessage(kind=MessageKind.BOARD_LINE, text=text, line=line)


def _take_pod(text: str) -> Optional[JobMessage]:
    return JobMessage(
        kind=MessageKind.TAKE_VEHICLE, text=text, vehicle_type=text
    )


def _ride_along(text: str) -> Optional[JobMessage]:
    # "Pass met 4012/7 ..." -> duty 4012, cycle "7"; the cycle may be empty
    fields = text.replace("Pass met ", "").split()
    if not fields:
        return None
    duty, separator, cycle = fields[0].partition("/")
    duty_number = parse_unsigned(duty)
    if duty_number is None or not separator:
        return None
    return JobMessage(
        kind=MessageKind.RIDE_ALONG,
        text=text,
        duty_number=duty_number,
        cycle=cycle,
    )


MESSAGE_RULES: tuple[tuple[str, Callable[[str], Optional[JobMessage]]], ...] = (
    ("neem", _take_vehicle),
    ("bus", _board_line),
    ("pod", _take_pod),
    ("pass", _ride_along),
)


def classify_message(text: str) -> JobMessage:
    """Classify a free-text line-column instruction by its first word."""
    words = text.split()
    if words:
        first_word = words[0].lower()
        for keyword, build in MESSAGE_RULES:
            if first_word == keyword:
                message = build(text)
                if message is not None:
                    return message
                break
    return JobMessage(kind=MessageKind.OTHER, text=text)


# ─── Jobs ─────────────────────────────────────────────────────────────────────


def classify_line(text: str) -> JobType:
    if text in LINE_MARKERS:
        return LINE_MARKERS[text].model_copy(deep=True)
    line = parse_unsigned(text)
    if line is not None:
        return JobType.driving_line(line)
    return JobType.with_message(classify_message(text))


def build_job(row: RawRow) -> ShiftJob:
    """
    Build a ShiftJob from a finalized row.

    Raises:
        TimeFieldMissing / TimeFieldUnparsable for a malformed start or end.
    """
    job_type = JobType()
    cycle = None
    trip = None
    start = None
    end = None

    line_text = row.get(TableColumn.LINE_OR_DUTY)
    if line_text is not None:
        job_type = classify_line(line_text)

    trip_text = row.get(TableColumn.TRIP)
    if trip_text is not None:
        trip = parse_unsigned(trip_text)

    start_text = row.get(TableColumn.START_TIME)
    if start_text is not None:
        start = parse_time(start_text, START_JOB)

    end_text = row.get(TableColumn.END_TIME)
    if end_text is not None:
        end = parse_time(end_text, END_JOB)

    cycle_text = row.get(TableColumn.CYCLE)
    if cycle_text is not None:
        if cycle_text in CYCLE_MARKERS:
            job_type = JobType(kind=CYCLE_MARKERS[cycle_text])
        else:
            cycle = parse_unsigned(cycle_text)

    return ShiftJob(
        job_type=job_type,
        start=start,
        end=end,
        start_location=row.get(TableColumn.FROM_LOCATION),
        end_location=row.get(TableColumn.TO_LOCATION),
        cycle=cycle,
        trip=trip,
    )
