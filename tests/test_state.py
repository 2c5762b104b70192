"""Tests for MetadataStore snapshot persistence and recovery."""

from __future__ import annotations

import gzip
import json
from pathlib import Path

import pytest

from telecloud.models import FileRecord
from telecloud.upload.exceptions import CorruptSnapshotError
from telecloud.upload.state import MetadataStore, decode_snapshot, encode_snapshot


def _record(path: str = "photos/a.jpg", channel: int = -100123) -> FileRecord:
    return FileRecord(path, f"id-{path}-{channel}", f"Path: {path}\nDate: 1/1/2024", channel)


class TestLoad:
    """Startup behaviour for missing, valid and damaged snapshots."""

    def test_missing_snapshot_starts_empty(self, tmp_path: Path):
        store = MetadataStore(tmp_path / "uploadedFiles.json.gz")
        assert store.load() == 0
        assert len(store) == 0
        assert not store.is_uploaded("photos/a.jpg")

    def test_saved_records_survive_restart(self, tmp_path: Path):
        path = tmp_path / "uploadedFiles.json.gz"
        store = MetadataStore(path)
        store.load()
        store.add(_record("photos/a.jpg", -1))
        store.add(_record("photos/a.jpg", -2))
        store.add(_record("videos/b.mp4", -1))
        assert store.save() is True

        reloaded = MetadataStore(path)
        assert reloaded.load() == 3
        assert reloaded.list() == store.list()
        assert reloaded.is_uploaded("videos/b.mp4")
        assert reloaded.uploaded_paths() == {"photos/a.jpg", "videos/b.mp4"}

    def test_snapshot_is_versioned_gzip_json(self, tmp_path: Path):
        """On-disk format: gzip JSON object with version and record list."""
        path = tmp_path / "uploadedFiles.json.gz"
        store = MetadataStore(path)
        store.add(_record())
        store.save()

        data = json.loads(gzip.decompress(path.read_bytes()))
        assert data["version"] == 1
        assert "saved_at" in data
        assert data["records"] == [
            {
                "filePath": "photos/a.jpg",
                "file_id": "id-photos/a.jpg--100123",
                "caption": "Path: photos/a.jpg\nDate: 1/1/2024",
                "channelId": -100123,
            }
        ]

    def test_legacy_bare_list_is_accepted(self, tmp_path: Path):
        """Unversioned snapshots (a bare JSON list) still load."""
        path = tmp_path / "uploadedFiles.json.gz"
        legacy = [{"filePath": "a.jpg", "file_id": "X", "caption": "c", "channelId": "-100"}]
        path.write_bytes(gzip.compress(json.dumps(legacy).encode()))

        store = MetadataStore(path)
        assert store.load() == 1
        assert store.list()[0].channel_id == -100

    @pytest.mark.parametrize(
        "raw",
        [
            b"not gzip at all",
            gzip.compress(b"{not json"),
            gzip.compress(b'"a string"'),
            gzip.compress(b'{"version": 99, "records": []}'),
            gzip.compress(b'{"version": 1, "records": {}}'),
            gzip.compress(b'[{"filePath": "a.jpg"}]'),
        ],
        ids=["not-gzip", "bad-json", "wrong-type", "unknown-version", "records-not-list", "missing-field"],
    )
    def test_corrupt_snapshot_falls_back_to_empty(self, tmp_path: Path, raw: bytes):
        """Damaged snapshots are moved aside and the store starts empty."""
        path = tmp_path / "uploadedFiles.json.gz"
        path.write_bytes(raw)

        store = MetadataStore(path)
        assert store.load() == 0
        assert len(store) == 0
        assert not path.exists()
        assert (tmp_path / "uploadedFiles.json.gz.corrupt").read_bytes() == raw

    def test_truncated_snapshot_never_partially_parsed(self, tmp_path: Path):
        """A snapshot cut off mid-write is rejected as a whole."""
        path = tmp_path / "uploadedFiles.json.gz"
        full = encode_snapshot([_record(f"p/{i}.jpg") for i in range(50)])
        path.write_bytes(full[: len(full) // 2])

        store = MetadataStore(path)
        assert store.load() == 0
        assert store.list() == ()

    def test_leftover_tmp_file_is_ignored(self, tmp_path: Path):
        """A crash after writing .tmp but before rename keeps the old snapshot."""
        path = tmp_path / "uploadedFiles.json.gz"
        store = MetadataStore(path)
        store.add(_record())
        store.save()
        (tmp_path / "uploadedFiles.json.gz.tmp").write_bytes(b"half-written")

        reloaded = MetadataStore(path)
        assert reloaded.load() == 1


class TestSave:
    """Atomic writes and I/O failure handling."""

    def test_save_creates_parent_and_leaves_no_tmp(self, tmp_path: Path):
        path = tmp_path / "nested" / "dir" / "uploadedFiles.json.gz"
        store = MetadataStore(path)
        store.add(_record())
        assert store.dirty

        assert store.save() is True
        assert path.exists()
        assert not path.with_name(path.name + ".tmp").exists()
        assert not store.dirty

    def test_save_error_is_logged_not_raised(self, tmp_path: Path, caplog):
        """An unwritable location returns False and keeps the store dirty."""
        blocker = tmp_path / "blocker"
        blocker.write_text("a file where a directory should be")
        store = MetadataStore(blocker / "uploadedFiles.json.gz")
        store.add(_record())

        assert store.save() is False
        assert store.dirty
        assert "Failed to save snapshot" in caplog.text

    @pytest.mark.asyncio
    async def test_flush_writes_snapshot(self, tmp_store: MetadataStore):
        tmp_store.add(_record())
        assert await tmp_store.flush() is True
        assert tmp_store.path.exists()


class TestQueries:
    def test_records_for_and_stats(self, tmp_store: MetadataStore):
        tmp_store.add(_record("a.jpg", -1))
        tmp_store.add(_record("a.jpg", -2))
        tmp_store.add(_record("b.jpg", -1))

        assert [r.channel_id for r in tmp_store.records_for("a.jpg")] == [-1, -2]
        assert tmp_store.stats() == {"records": 3, "paths": 2, "channels": {-1: 2, -2: 1}}

    def test_list_is_a_read_only_copy(self, tmp_store: MetadataStore):
        tmp_store.add(_record())
        snapshot = tmp_store.list()
        tmp_store.add(_record("b.jpg"))
        assert len(snapshot) == 1
        assert isinstance(snapshot, tuple)


class TestDecodeSnapshot:
    def test_decode_raises_on_garbage(self):
        with pytest.raises(CorruptSnapshotError):
            decode_snapshot(b"\x1f\x8bgarbage")
