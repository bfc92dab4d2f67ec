"""
Statistics Engine
=================
Summarises the collection store as seen from one date:
    - Total shifts and timetables
    - Active / upcoming timetables
    - Shifts reachable on the date
    - Shift bodies that carry parse errors

Unreadable shift bodies are reported, never silently skipped.
"""

from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .models import Shift, Statistics, format_date
from .resolver import TimetableResolver
from .store import TimetableStore

logger = logging.getLogger(__name__)


class StatisticsEngine:
    """Builds a Statistics report for a store."""

    def __init__(self, store: TimetableStore, resolver: TimetableResolver):
        self.store = store
        self.resolver = resolver

    def build(self, on: Optional[date] = None) -> Statistics:
        """
        Args:
            on: Lookup date; defaults to today's shared resolution.
        """
        timetables = self.store.collections()
        resolution = self.resolver.resolution(on)

        shifts = sum(len(c.pages) for c in timetables)
        active_shifts = sum(len(c.pages) for c in resolution.active)

        report = Statistics(
            shifts=shifts,
            valid_shifts=len(self.resolver.valid_shifts(on)),
            active_shifts=active_shifts,
            inactive_shifts=shifts - active_shifts,
            timetables=len(timetables),
            active_timetables=len(resolution.active),
            future_timetables=len(timetables) - len(resolution.active),
            recent_timetable=(
                format_date(resolution.active[0].valid_from)
                if resolution.active else None
            ),
            next_timetable=(
                format_date(resolution.upcoming_change)
                if resolution.upcoming_change else None
            ),
            errored_shifts=self.errored_shifts(),
        )

        logger.info("=" * 60)
        logger.info("STATISTICS")
        logger.info("=" * 60)
        logger.info(f"Timetables: {report.timetables} "
                    f"({report.active_timetables} active, "
                    f"{report.future_timetables} upcoming)")
        logger.info(f"Shifts: {report.shifts} "
                    f"({report.active_shifts} active, "
                    f"{report.valid_shifts} reachable)")
        logger.info(f"Recent timetable: {report.recent_timetable}")
        logger.info(f"Next timetable: {report.next_timetable}")
        logger.info(f"Shifts with parse errors: {len(report.errored_shifts)}")
        logger.info("=" * 60)

        return report

    def errored_shifts(self) -> list[str]:
        """Paths of stored shift bodies that recorded parse errors."""
        errored = []
        for path in self.store.iter_shift_files():
            shift = self._read_shift(path)
            if shift is not None and shift.has_errors:
                errored.append(str(path))
        return errored

    def _read_shift(self, path: Path) -> Optional[Shift]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return Shift.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Unreadable shift body {path}: {e}")
            return None
