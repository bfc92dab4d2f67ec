"""
Timetable Resolver
==================
Decides which generation of the shift book is authoritative for a date.

A collection is active from its valid_from date onwards. Lookups walk the
active collections newest first, so a shift that was not reissued in the
latest generation is still served from the most recent generation that
lists it.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date
from typing import Callable, NamedTuple, Optional, Sequence

from .errors import PrefixMismatch, ShiftNotFound
from .models import IndexShift, PdfTimetableCollection, Shift, ShiftData
from .store import TimetableStore

logger = logging.getLogger(__name__)

# Duty-type codes that name the same shifts
ALIAS_PREFIXES = frozenset({"GM", "G"})


def split_identifier(identifier: str) -> tuple[str, str]:
    """
    Split a shift identifier into (prefix, number).

    All alphabetic characters form the prefix and everything else the
    number, so "GM 12" and "12GM" both give ("GM", "12").
    """
    cleaned = identifier.replace(" ", "")
    prefix = "".join(c for c in cleaned if c.isalpha())
    number = "".join(c for c in cleaned if not c.isalpha())
    return prefix, number


def prefixes_match(requested: str, stored: str) -> bool:
    if not requested or requested == stored:
        return True
    return {requested, stored} == ALIAS_PREFIXES


@dataclass(frozen=True)
class Resolution:
    """Collections active on `on` (newest first) and the next change date."""
    on: date
    active: tuple[PdfTimetableCollection, ...]
    upcoming_change: Optional[date]


class ShiftLocation(NamedTuple):
    collection: PdfTimetableCollection
    shift_data: ShiftData
    number: str

    @property
    def identifier(self) -> str:
        return f"{self.shift_data.shift_prefix}{self.number}"

    @property
    def source_path(self) -> Optional[str]:
        return self.collection.files.get(self.shift_data.file_id)


def resolve(
    collections: Sequence[PdfTimetableCollection],
    on: date,
) -> Resolution:
    """Partition collections into active and upcoming for a lookup date."""
    active = sorted(
        (c for c in collections if c.valid_from <= on),
        key=lambda c: c.valid_from,
        reverse=True,
    )
    upcoming = [c.valid_from for c in collections if c.valid_from > on]
    return Resolution(
        on=on,
        active=tuple(active),
        upcoming_change=min(upcoming) if upcoming else None,
    )


def find_shift(
    number: str,
    active: Sequence[PdfTimetableCollection],
) -> Optional[ShiftLocation]:
    """First collection (newest first) that lists `number`, or None."""
    for collection in active:
        shift_data = collection.pages.get(number)
        if shift_data is not None:
            return ShiftLocation(collection, shift_data, number)
    return None


class TimetableResolver:
    """
    Serves lookups against a shared resolution of the store's snapshot.

    The shared resolution is replaced as a whole when the wall-clock date
    reaches the upcoming change date or the store publishes a new snapshot.
    Lookups for an explicit date get a private resolution and leave the
    shared one untouched.
    """

    def __init__(
        self,
        store: TimetableStore,
        clock: Callable[[], date] = date.today,
    ):
        self.store = store
        self.clock = clock
        self._state: Optional[tuple[tuple, Resolution]] = None
        self._lock = threading.Lock()

    def resolution(self, on: Optional[date] = None) -> Resolution:
        snapshot = self.store.collections()
        if on is not None:
            return resolve(snapshot, on)

        today = self.clock()
        state = self._state
        if state is not None and state[0] is snapshot:
            current = state[1]
            change = current.upcoming_change
            if current.on <= today and (change is None or today < change):
                return current

        current = resolve(snapshot, today)
        with self._lock:
            self._state = (snapshot, current)
        logger.info(
            f"Resolved {len(current.active)} active timetables for {today}, "
            f"next change: {current.upcoming_change or 'none'}"
        )
        return current

    def lookup(self, identifier: str, on: Optional[date] = None) -> ShiftLocation:
        """
        Find the authoritative entry for a shift identifier.

        Raises:
            ShiftNotFound: no active collection lists the number.
            PrefixMismatch: the number is listed under another duty type.
        """
        prefix, number = split_identifier(identifier)
        location = find_shift(number, self.resolution(on).active)
        if location is None:
            raise ShiftNotFound(identifier)

        stored = location.shift_data.shift_prefix
        if not prefixes_match(prefix, stored):
            raise PrefixMismatch(identifier, prefix, stored)

        return location

    def load_shift(self, location: ShiftLocation) -> Shift:
        return self.store.read_shift(
            location.collection.valid_from, location.identifier
        )

    def valid_shifts(self, on: Optional[date] = None) -> list[IndexShift]:
        """Every shift reachable on a date, from its newest generation."""
        available: dict[str, IndexShift] = {}
        for collection in reversed(self.resolution(on).active):
            for number, shift_data in collection.pages.items():
                available[number] = IndexShift(
                    shift_number=f"{shift_data.shift_prefix}{number}",
                    valid_from=collection.valid_from,
                )
        return sorted(available.values(), key=lambda s: s.shift_number)
