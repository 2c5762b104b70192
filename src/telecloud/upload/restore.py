"""Restore previously uploaded files from storage channels.

The inverse of :mod:`telecloud.upload.scheduler`: every relative path in the
:class:`MetadataStore` is fetched once through the :class:`ClientPool` and
streamed to ``output_root / relative_path``. Each path gets a single
attempt; failures are logged, counted and skipped so that a re-run picks
them up again.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path, PurePosixPath
from typing import Any

import aiofiles
import aiofiles.os

from telecloud.constants import RESTORE_CHUNK_SIZE
from telecloud.models import FileRecord
from telecloud.upload.exceptions import TelegramAPIError
from telecloud.upload.pool import ClientPool
from telecloud.upload.state import MetadataStore

logger = logging.getLogger(__name__)


def resolve_target(output_root: Path, relative_path: str) -> Path:
    """Local path for *relative_path* under *output_root*.

    Raises:
        ValueError: The path is absolute or climbs out of *output_root*.
    """
    rel = PurePosixPath(relative_path.replace("\\", "/"))
    if rel.is_absolute() or ".." in rel.parts or not rel.parts:
        raise ValueError(f"Refusing to restore outside output root: {relative_path!r}")
    return output_root.joinpath(*rel.parts)


class RestoreEngine:
    """Downloads every recorded file into a local directory tree.

    When a path was uploaded to several channels, only its first record is
    used; the others are redundant copies.

    Usage::

        engine = RestoreEngine(pool, store, Path("restored"))
        summary = await engine.restore_all()
    """

    def __init__(
        self,
        pool: ClientPool[Any],
        store: MetadataStore,
        output_root: Path,
        *,
        chunk_size: int = RESTORE_CHUNK_SIZE,
    ) -> None:
        self._pool = pool
        self._store = store
        self.output_root = Path(output_root)
        self._chunk_size = chunk_size
        self.failed_paths: list[str] = []

    def _unique_records(self) -> list[FileRecord]:
        seen: set[str] = set()
        records: list[FileRecord] = []
        for record in self._store.list():
            if record.relative_path in seen:
                continue
            seen.add(record.relative_path)
            records.append(record)
        return records

    async def restore_all(self) -> dict[str, int]:
        """Restore every recorded path; never raises for per-file errors.

        Returns:
            Summary dict with total, restored and failed counts.
        """
        records = self._unique_records()
        self.failed_paths = []
        restored = 0
        logger.info("Restoring %d files to %s", len(records), self.output_root)

        for record in records:
            try:
                target = await self.restore_record(record)
            except Exception as exc:
                logger.error("❌ Failed to restore %s: %s", record.relative_path, exc)
                self.failed_paths.append(record.relative_path)
                continue
            restored += 1
            logger.info("✅ Restored: %s", target)

        summary = {
            "total": len(records),
            "restored": restored,
            "failed": len(self.failed_paths),
        }
        logger.info(
            "Restore finished: %d restored, %d failed of %d",
            summary["restored"],
            summary["failed"],
            summary["total"],
        )
        return summary

    async def restore_record(self, record: FileRecord) -> Path:
        """Fetch one record and write it to its target path.

        The payload is streamed into ``<target>.part`` and renamed into place
        once complete, so an interrupted download never looks restored.

        File ids are only valid for the bot that uploaded them and records
        do not say which bot that was. When the identity from the pool
        rejects the id (HTTP 400), the other identities are tried in turn.
        """
        target = resolve_target(self.output_root, record.relative_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        partial = target.with_name(target.name + ".part")

        first = self._pool.next()
        candidates = [first, *(client for client in self._pool if client is not first)]
        try:
            for index, client in enumerate(candidates):
                try:
                    await self._download(client, record.remote_object_id, partial)
                except TelegramAPIError as exc:
                    if exc.status != 400 or index == len(candidates) - 1:
                        raise
                    logger.debug(
                        "Bot %s cannot fetch %s (%s); trying the next identity",
                        client.identifier,
                        record.relative_path,
                        exc,
                    )
                    continue
                break
            os.replace(partial, target)
        except BaseException:
            if partial.exists():
                await aiofiles.os.remove(partial)
            raise
        return target

    async def _download(self, client: Any, remote_object_id: str, partial: Path) -> None:
        async with client.fetch_object(remote_object_id, self._chunk_size) as chunks:
            async with aiofiles.open(partial, "wb") as fh:
                async for chunk in chunks:
                    await fh.write(chunk)
