"""Durable index of uploaded files.

:class:`MetadataStore` is the source of truth for "already uploaded". It
keeps every :class:`~telecloud.models.FileRecord` in memory and persists the
whole collection as a gzip-compressed, versioned JSON snapshot::

    {"version": 1, "saved_at": "2026-10-19T12:00:00+00:00", "records": [...]}

Snapshots are written atomically (write ``.tmp``, fsync, then rename) so a
crash mid-save leaves either the previous snapshot or the new one, never a
truncated file. A snapshot that cannot be parsed is moved aside to
``<name>.corrupt`` and the store starts empty: re-uploading is cheaper than
refusing to start.
"""

from __future__ import annotations

import asyncio
import gzip
import json
import logging
import os
import threading
import zlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from telecloud.constants import SNAPSHOT_VERSION
from telecloud.models import FileRecord
from telecloud.upload.exceptions import CorruptSnapshotError

logger = logging.getLogger(__name__)


def decode_snapshot(raw: bytes) -> list[FileRecord]:
    """Decode snapshot bytes into records.

    Accepts the versioned object format and the bare list written by
    earlier, unversioned releases.

    Raises:
        CorruptSnapshotError: The bytes are not a valid snapshot.
    """
    try:
        data = json.loads(gzip.decompress(raw).decode("utf-8"))
    except (OSError, EOFError, zlib.error, UnicodeDecodeError, ValueError) as exc:
        raise CorruptSnapshotError(f"unreadable snapshot: {exc}") from exc

    if isinstance(data, list):
        entries = data
    elif isinstance(data, dict):
        version = data.get("version")
        if version != SNAPSHOT_VERSION:
            raise CorruptSnapshotError(f"unsupported snapshot version {version!r}")
        entries = data.get("records")
        if not isinstance(entries, list):
            raise CorruptSnapshotError("snapshot has no records list")
    else:
        raise CorruptSnapshotError(f"unexpected snapshot type {type(data).__name__}")

    try:
        return [FileRecord.from_dict(entry) for entry in entries]
    except (KeyError, TypeError, AttributeError) as exc:
        raise CorruptSnapshotError(f"malformed record: {exc!r}") from exc


def encode_snapshot(records: list[FileRecord]) -> bytes:
    payload = {
        "version": SNAPSHOT_VERSION,
        "saved_at": datetime.now(timezone.utc).isoformat(),
        "records": [record.to_dict() for record in records],
    }
    return gzip.compress(json.dumps(payload, indent=2).encode("utf-8"))


class MetadataStore:
    """In-memory FileRecord collection with snapshot persistence.

    All mutation goes through :meth:`add`, serialised by a lock, so
    concurrent scheduler workers cannot interleave partial updates.

    Usage::

        store = MetadataStore(Path("uploadedFiles.json.gz"))
        store.load()
        if not store.is_uploaded("photos/a.jpg"):
            store.add(FileRecord("photos/a.jpg", "AgAD...", "Path: ...", -100123))
        store.save()
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._records: list[FileRecord] = []
        self._uploaded: set[str] = set()
        self._lock = threading.Lock()
        self._save_lock = threading.Lock()
        self._dirty = False

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> int:
        """Replace in-memory state with the snapshot on disk.

        Never raises: a missing snapshot means first run, a corrupt one is
        logged, moved aside and replaced by an empty index.

        Returns:
            Number of records loaded.
        """
        records: list[FileRecord] = []
        if self.path.exists():
            try:
                records = decode_snapshot(self.path.read_bytes())
            except OSError as exc:
                logger.error("Could not read snapshot %s: %s", self.path, exc)
            except CorruptSnapshotError as exc:
                logger.error(
                    "Snapshot %s is corrupt (%s); starting with an empty index",
                    self.path,
                    exc,
                )
                self._quarantine()
        else:
            logger.info("No snapshot at %s; starting with an empty index", self.path)

        with self._lock:
            self._records = records
            self._uploaded = {record.relative_path for record in records}
            self._dirty = False

        if records:
            logger.info("Loaded %d uploaded file records from %s", len(records), self.path)
        return len(records)

    def save(self) -> bool:
        """Atomically write every record to the snapshot path.

        I/O errors are logged and reported through the return value; the
        next save retries.

        Returns:
            ``True`` if the snapshot was written.
        """
        with self._save_lock:
            return self._write_snapshot()

    def _write_snapshot(self) -> bool:
        with self._lock:
            records = list(self._records)
            self._dirty = False

        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            data = encode_snapshot(records)
            with open(tmp_path, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self.path)
        except OSError as exc:
            logger.error("Failed to save snapshot %s: %s", self.path, exc)
            with self._lock:
                self._dirty = True
            return False

        logger.debug("Saved %d records to %s", len(records), self.path)
        return True

    async def flush(self) -> bool:
        """Run :meth:`save` in a worker thread."""
        return await asyncio.to_thread(self.save)

    def _quarantine(self) -> None:
        target = self.path.with_name(self.path.name + ".corrupt")
        try:
            os.replace(self.path, target)
            logger.warning("Moved corrupt snapshot to %s", target)
        except OSError as exc:
            logger.warning("Could not move corrupt snapshot aside: %s", exc)

    # ------------------------------------------------------------------
    # Queries and mutation
    # ------------------------------------------------------------------

    def is_uploaded(self, relative_path: str) -> bool:
        return relative_path in self._uploaded

    def add(self, record: FileRecord) -> None:
        """Append *record*; persisted on the next :meth:`save`."""
        with self._lock:
            self._records.append(record)
            self._uploaded.add(record.relative_path)
            self._dirty = True

    def list(self) -> tuple[FileRecord, ...]:
        """Read-only copy of every record, in append order."""
        with self._lock:
            return tuple(self._records)

    def records_for(self, relative_path: str) -> list[FileRecord]:
        with self._lock:
            return [r for r in self._records if r.relative_path == relative_path]

    def uploaded_paths(self) -> set[str]:
        with self._lock:
            return set(self._uploaded)

    def stats(self) -> dict[str, Any]:
        """Record, path and per-channel counts for status displays."""
        with self._lock:
            per_channel: dict[Any, int] = {}
            for record in self._records:
                per_channel[record.channel_id] = per_channel.get(record.channel_id, 0) + 1
            return {
                "records": len(self._records),
                "paths": len(self._uploaded),
                "channels": per_channel,
            }

    @property
    def dirty(self) -> bool:
        """``True`` when records were added since the last successful save."""
        return self._dirty

    def __len__(self) -> int:
        return len(self._records)
