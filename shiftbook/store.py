"""
Timetable Collection Store
===========================
Filesystem storage for dated timetable collections and their shifts.

Directory Layout:
    pdf_collection/
    ├── 29-06-2025.json        # PdfTimetableCollection
    └── 29-06-2025/
        └── G12.json           # Shift body, one file per shift

Collections are loaded once and published as an immutable, sorted
snapshot. Writers merge into one collection file at a time under a
per-date lock and publish a fresh snapshot afterwards.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from datetime import date
from pathlib import Path
from typing import Iterator, NamedTuple, Optional

from pydantic import ValidationError

from .errors import CollectionMergeConflict
from .models import (
    ParseError,
    PdfTimetableCollection,
    Shift,
    ShiftData,
    format_date,
)

logger = logging.getLogger(__name__)

# Project root: one level up from /shiftbook/ package
_PROJECT_ROOT = Path(__file__).parent.parent.absolute()

DEFAULT_COLLECTION_DIR = _PROJECT_ROOT / "pdf_collection"

_COLLECTION_FILE = re.compile(r"^\d{2}-\d{2}-\d{4}\.json$")


class ShiftEntry(NamedTuple):
    """A shift found in a source document, before it gets a file id."""
    pages: list[int]
    shift_prefix: str
    # Parsed body, written together with the collection entry
    shift: Optional[Shift] = None


class MergeOutcome(NamedTuple):
    collection: PdfTimetableCollection
    file_id: int
    conflicts: list[ParseError]


def write_json(data, filepath: Path):
    """Write pretty-printed JSON, replacing the target in one step."""
    filepath.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        dir=filepath.parent,
        prefix=filepath.name + ".",
        suffix=".tmp",
        delete=False,
    ) as f:
        json.dump(data, f, indent=2, ensure_ascii=False, default=str)
    try:
        os.replace(f.name, filepath)
    except OSError:
        os.unlink(f.name)
        raise


class TimetableStore:
    """Loads, caches and merges the collection documents under `root`."""

    def __init__(self, root: Optional[str | Path] = None):
        self.root = Path(root) if root else DEFAULT_COLLECTION_DIR
        self._snapshot: Optional[tuple[PdfTimetableCollection, ...]] = None
        self._publish_lock = threading.Lock()
        self._date_locks: dict[date, threading.Lock] = {}
        self._date_locks_guard = threading.Lock()

    def init_storage(self):
        """Ensure the collection directory exists."""
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info(f"Storage initialized: {self.root}")

    # ─── Paths ────────────────────────────────────────────────────────────────

    def collection_path(self, valid_from: date) -> Path:
        return self.root / f"{format_date(valid_from)}.json"

    def shift_dir(self, valid_from: date) -> Path:
        return self.root / format_date(valid_from)

    def shift_path(self, valid_from: date, identifier: str) -> Path:
        return self.shift_dir(valid_from) / f"{identifier}.json"

    # ─── Snapshot ─────────────────────────────────────────────────────────────

    def collections(self) -> tuple[PdfTimetableCollection, ...]:
        """The current snapshot, sorted ascending by valid_from."""
        snapshot = self._snapshot
        if snapshot is None:
            snapshot = self.reload()
        return snapshot

    def reload(self) -> tuple[PdfTimetableCollection, ...]:
        """Rebuild the snapshot from disk. Only one rebuild runs at a time."""
        with self._publish_lock:
            collections = []
            if self.root.is_dir():
                for path in sorted(self.root.iterdir()):
                    if not path.is_file() or not _COLLECTION_FILE.match(path.name):
                        continue
                    collection = self._read_collection_file(path)
                    if collection is not None:
                        collections.append(collection)

            collections.sort(key=lambda c: c.valid_from)
            self._snapshot = tuple(collections)

        logger.info(f"Loaded {len(collections)} timetable collections")
        return self._snapshot

    def _publish(self, collection: PdfTimetableCollection):
        with self._publish_lock:
            if self._snapshot is None:
                return
            others = [
                c for c in self._snapshot
                if c.valid_from != collection.valid_from
            ]
            others.append(collection)
            others.sort(key=lambda c: c.valid_from)
            self._snapshot = tuple(others)

    # ─── Collections ──────────────────────────────────────────────────────────

    def _read_collection_file(self, path: Path) -> Optional[PdfTimetableCollection]:
        """Read one collection; a corrupt file counts as absent."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                return PdfTimetableCollection.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error(f"Ignoring unreadable collection {path.name}: {e}")
            return None

    def read_collection(self, valid_from: date) -> Optional[PdfTimetableCollection]:
        path = self.collection_path(valid_from)
        if not path.exists():
            return None
        return self._read_collection_file(path)

    def _date_lock(self, valid_from: date) -> threading.Lock:
        with self._date_locks_guard:
            return self._date_locks.setdefault(valid_from, threading.Lock())

    def merge(
        self,
        valid_from: date,
        source_path: str,
        entries: dict[str, ShiftEntry],
    ) -> MergeOutcome:
        """
        Merge the shifts of one source document into the collection for
        `valid_from`, creating it when needed.

        The source keeps its file id across re-indexing runs. Entries from
        this run replace existing entries with the same number; replacing
        an entry that belonged to another file is reported as a conflict.
        Shift bodies carried by the entries are written under the same
        per-date lock, so a body always matches its collection entry.
        """
        with self._date_lock(valid_from):
            existing = self.read_collection(valid_from) or PdfTimetableCollection(
                valid_from=valid_from
            )

            file_id = _file_id_for(existing.files, source_path)
            files = dict(existing.files)
            files[file_id] = source_path

            pages = dict(existing.pages)
            conflicts: list[ParseError] = []
            for number, entry in entries.items():
                previous = pages.get(number)
                if previous is not None and previous.file_id != file_id:
                    conflict = CollectionMergeConflict(
                        f"Shift {entry.shift_prefix}{number} on "
                        f"{format_date(valid_from)} moved from file "
                        f"{previous.file_id} to file {file_id}",
                        line=number,
                    )
                    logger.warning(conflict.message)
                    conflicts.append(conflict.to_record())
                pages[number] = ShiftData(
                    pages=list(entry.pages),
                    file_id=file_id,
                    shift_prefix=entry.shift_prefix,
                )
                if entry.shift is not None:
                    write_json(
                        entry.shift.model_dump(),
                        self.shift_path(valid_from, f"{entry.shift_prefix}{number}"),
                    )

            collection = PdfTimetableCollection(
                valid_from=valid_from, files=files, pages=pages
            )
            write_json(collection.model_dump(), self.collection_path(valid_from))
            self._publish(collection)

        logger.info(
            f"Merged {len(entries)} shifts into {collection.file_name} "
            f"(file {file_id})"
        )
        return MergeOutcome(collection, file_id, conflicts)

    # ─── Shift Bodies ─────────────────────────────────────────────────────────

    def write_shift(self, valid_from: date, identifier: str, shift: Shift) -> Path:
        path = self.shift_path(valid_from, identifier)
        with self._date_lock(valid_from):
            write_json(shift.model_dump(), path)
        return path

    def read_shift(self, valid_from: date, identifier: str) -> Shift:
        """
        Raises:
            FileNotFoundError: no body stored for this shift.
        """
        path = self.shift_path(valid_from, identifier)
        with open(path, "r", encoding="utf-8") as f:
            return Shift.model_validate(json.load(f))

    def iter_shift_files(self) -> Iterator[Path]:
        if not self.root.is_dir():
            return
        for directory in sorted(self.root.iterdir()):
            if directory.is_dir():
                yield from sorted(directory.glob("*.json"))


def _file_id_for(files: dict[int, str], source_path: str) -> int:
    for file_id, path in files.items():
        if path == source_path:
            return file_id
    return max(files, default=-1) + 1
