"""
Shift Indexer
=============
Main orchestrator that turns a shift-book PDF into stored shifts and
merges them into the dated timetable collections.

Usage:
    indexer = ShiftIndexer(config)
    result = indexer.index("path/to/dienstboek.pdf")
    # result is an IndexResult summarising what was stored

Architecture:
    PDF → PageStreamReader → page streams → extract_tokens → ContentTokens
        → ShiftPageParser → Shifts → merge_shift_pages → TimetableStore
"""

from __future__ import annotations

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Iterable, Optional

from .columns import OffsetMode, margin_offset, page_offset
from .errors import MetadataFailure
from .models import CollectionSummary, IndexResult, Shift
from .resolver import split_identifier
from .state_machine import ShiftPageParser, merge_shift_pages
from .store import ShiftEntry, TimetableStore
from .token_extractor import PageStreamReader, extract_tokens

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class IndexerConfig:
    """Configuration for the shift indexer."""

    # Storage
    collection_dir: Optional[str] = None

    # Parsing
    offset_mode: OffsetMode = OffsetMode.PARITY
    flush_trailing_row: bool = False
    default_date: Optional[date] = None

    # Processing
    page_range: Optional[tuple[int, int]] = None

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """Configure the shiftbook package logger."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    package_logger = logging.getLogger("shiftbook")
    package_logger.setLevel(level)

    if not package_logger.handlers:
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        package_logger.addHandler(console)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        package_logger.addHandler(file_handler)


class ShiftIndexer:
    """
    Indexes shift-book PDFs.

    Orchestrates:
        1. Page stream reading
        2. Token extraction
        3. Row state machine parsing
        4. Grouping pages per shift and shifts per effective date
        5. Writing shift bodies and merging collections

    Several documents may be indexed in parallel; the store serialises
    merges into the same collection.
    """

    def __init__(
        self,
        config: Optional[IndexerConfig] = None,
        store: Optional[TimetableStore] = None,
    ):
        self.config = config or IndexerConfig()
        self.store = store or TimetableStore(self.config.collection_dir)
        setup_logging(self.config.log_level, self.config.log_file)

    def index(
        self,
        pdf_path: str,
        progress_callback: Optional[callable] = None,
    ) -> IndexResult:
        """
        Index a PDF file.

        Raises:
            DocumentOpenError: the PDF is missing or cannot be opened.
        """
        pdf_path = os.path.abspath(pdf_path)
        start_time = time.time()
        logger.info(f"Starting index of: {pdf_path}")

        reader = PageStreamReader(pdf_path)
        total_pages = reader.get_page_count()
        streams = reader.iter_pages(
            page_range=self.config.page_range,
            progress_callback=progress_callback,
        )
        result = self.index_streams(streams, pdf_path, total_pages=total_pages)

        elapsed = time.time() - start_time
        logger.info(
            f"Index complete in {elapsed:.2f}s: "
            f"{result.shift_count} shifts, {result.error_count} with errors"
        )
        return result

    def index_many(
        self,
        pdf_paths: list[str],
        parallel: int = 1,
    ) -> tuple[list[IndexResult], list[tuple[str, str]]]:
        """
        Index several PDFs. A failing document never stops the others.

        Returns:
            (results, errors) where errors holds (pdf_path, message) pairs.
        """
        results: list[IndexResult] = []
        errors: list[tuple[str, str]] = []

        with ThreadPoolExecutor(max_workers=max(1, parallel)) as executor:
            futures = {executor.submit(self.index, p): p for p in pdf_paths}
            for future in as_completed(futures):
                pdf_path = futures[future]
                try:
                    results.append(future.result())
                except Exception as e:
                    logger.error(f"Failed to index {pdf_path}: {e}")
                    errors.append((pdf_path, str(e)))

        return results, errors

    def parse_streams(
        self,
        streams: Iterable[tuple[int, str]],
    ) -> tuple[list[tuple[int, Shift]], list[int]]:
        """
        Parse page streams into per-page shifts.

        Returns:
            (parsed pages, skipped page numbers).
        """
        parser = ShiftPageParser(
            flush_trailing_row=self.config.flush_trailing_row,
            default_date=self.config.default_date,
        )
        parsed: list[tuple[int, Shift]] = []
        skipped: list[int] = []

        for page_number, stream in streams:
            tokens, token_errors = extract_tokens(stream, page_number)
            if self.config.offset_mode == OffsetMode.MARGIN:
                offset = margin_offset(tokens)
            else:
                offset = page_offset(page_number - 1)

            try:
                shift = parser.parse_page(
                    tokens, page_number, offset, errors=token_errors
                )
            except MetadataFailure as e:
                logger.warning(f"Skipping page {page_number}: {e}")
                skipped.append(page_number)
                continue

            if not shift.shift_number:
                logger.debug(f"Page {page_number} holds no shift")
                skipped.append(page_number)
                continue

            parsed.append((page_number, shift))

        return parsed, skipped

    def index_streams(
        self,
        streams: Iterable[tuple[int, str]],
        source_path: str,
        total_pages: int = 0,
    ) -> IndexResult:
        """Parse page streams and store the shifts found in them."""
        parsed, skipped = self.parse_streams(streams)
        result = IndexResult(
            source_pdf=source_path,
            total_pages=total_pages or len(parsed) + len(skipped),
            parsed_pages=len(parsed),
            skipped_pages=skipped,
        )

        entries_by_date: dict[date, dict[str, ShiftEntry]] = {}
        for shift_number, (pages, shift) in merge_shift_pages(parsed).items():
            prefix, number = split_identifier(shift_number)
            if not number:
                logger.warning(
                    f"Shift {shift_number} on pages {pages} has no number"
                )
                result.skipped_pages.extend(pages)
                continue

            identifier = f"{prefix}{number}"
            if shift.has_errors:
                logger.error(
                    f"Errors in shift {identifier}: "
                    f"{[e.message for e in shift.parse_errors]}"
                )
                result.errored_shifts.append(identifier)

            entries_by_date.setdefault(shift.starting_date, {})[number] = (
                ShiftEntry(pages=pages, shift_prefix=prefix, shift=shift)
            )
            result.shift_count += 1

        for valid_from in sorted(entries_by_date):
            entries = entries_by_date[valid_from]
            outcome = self.store.merge(valid_from, source_path, entries)
            result.conflicts.extend(outcome.conflicts)
            result.collections.append(CollectionSummary(
                valid_from=valid_from,
                file_id=outcome.file_id,
                shift_count=len(entries),
            ))

        return result
