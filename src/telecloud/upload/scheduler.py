"""Bounded-concurrency upload scheduler.

Drains a queue of candidate files with a fixed number of asyncio workers:

* Skips files whose relative path is already in the :class:`MetadataStore`
* Sends each new file to every storage channel, taking a fresh client
  identity from the :class:`ClientPool` for every channel
* Retries classified failures through :class:`RetryPolicy` and gives up on
  a file (never on the run) once the attempt ceiling is reached
* Records one :class:`FileRecord` per channel and flushes the snapshot
  after every uploaded file and at the end of the run
* Reports progress periodically and once more when the queue is drained

"Already uploaded" is global across channels: a file recorded once is never
re-sent, even to channels registered after it was uploaded.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

from telecloud.constants import (
    PROGRESS_REPORT_INTERVAL_SECONDS,
    SHUTDOWN_DEADLINE_SECONDS,
)
from telecloud.models import ChannelId, FileRecord, MediaKind, UploadResult
from telecloud.scanner import FileInfo, get_file_info
from telecloud.upload.exceptions import PermanentTransferFailure
from telecloud.upload.pool import ClientPool
from telecloud.upload.progress import Notifier, ProgressReporter, UploadStats
from telecloud.upload.retry import RetryPolicy
from telecloud.upload.state import MetadataStore

logger = logging.getLogger(__name__)


class UploadScheduler:
    """Upload engine coordinating workers, retries, records and progress.

    Usage::

        scheduler = UploadScheduler(pool, store, root=Path("/mnt/photos"))
        summary = await scheduler.run(paths, channels, concurrency=4)

    Args:
        pool: Client identities used for sending.
        store: Durable index of uploaded files.
        root: Directory relative paths are computed against.
        retry_policy: Per-file retry behaviour (defaults to 5 attempts).
        notifier: Coroutine receiving progress report text (admin chat).
        progress: Optional Rich tracker (omit for headless mode).
        report_interval: Seconds between periodic progress reports.
    """

    def __init__(
        self,
        pool: ClientPool[Any],
        store: MetadataStore,
        *,
        root: Path | None = None,
        retry_policy: RetryPolicy | None = None,
        notifier: Notifier | None = None,
        progress: Any | None = None,
        report_interval: float = PROGRESS_REPORT_INTERVAL_SECONDS,
    ) -> None:
        self._pool = pool
        self._store = store
        self._root = Path(root) if root is not None else Path(".")
        self._retry = retry_policy or RetryPolicy()
        self._notifier = notifier
        self._progress = progress
        self._report_interval = report_interval

        self.stats = UploadStats()
        self.failed_paths: list[str] = []
        self._records_added = 0
        self._skipped = 0
        self._stopping = asyncio.Event()
        self._workers: list[asyncio.Task[None]] = []
        self._running = False
        self._in_flight: set[str] = set()

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def run(
        self,
        candidate_paths: Iterable[Path | str],
        channels: Iterable[ChannelId],
        concurrency: int,
    ) -> dict[str, int]:
        """Upload every candidate file to every channel.

        Resolves once all workers have drained the queue, whatever the
        individual outcomes.

        Returns:
            Summary dict with total, uploaded, already_uploaded, failed,
            skipped and records_added counts.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if self._running:
            raise RuntimeError("An upload run is already in progress")

        # Duplicate candidates collapse to their first occurrence
        paths = list(dict.fromkeys(Path(os.path.abspath(p)) for p in candidate_paths))
        targets = tuple(channels)
        self.stats.reset(len(paths))
        self.failed_paths = []
        self._records_added = 0
        self._skipped = 0
        self._stopping.clear()
        self._in_flight.clear()

        if not targets:
            logger.warning("No storage channels registered; skipping %d files", len(paths))
            self._skipped = len(paths)
            await ProgressReporter(self.stats, self._notifier, self._report_interval).stop()
            return self.summary

        queue: asyncio.Queue[Path] = asyncio.Queue()
        for path in paths:
            queue.put_nowait(path)

        worker_count = min(concurrency, len(paths)) or 1
        logger.info(
            "Uploading %d files to %d channel(s) with %d workers",
            len(paths),
            len(targets),
            worker_count,
        )

        reporter = ProgressReporter(self.stats, self._notifier, self._report_interval)
        self._running = True
        try:
            await reporter.start()
            self._workers = [
                asyncio.create_task(self._worker(queue, targets), name=f"upload-worker-{i}")
                for i in range(worker_count)
            ]
            await asyncio.gather(*self._workers, return_exceptions=True)
            self._skipped += queue.qsize()
        finally:
            self._workers = []
            self._running = False
            await reporter.stop()
            await self._store.flush()
            logger.info(
                "Upload complete: %d uploaded, %d already uploaded, %d failed, "
                "%d skipped of %d total",
                self.stats.uploaded_files,
                self.stats.already_uploaded,
                self.stats.failed_files,
                self._skipped,
                self.stats.total_files,
            )

        return self.summary

    async def shutdown(self, deadline: float = SHUTDOWN_DEADLINE_SECONDS) -> None:
        """Stop admitting files, wait up to *deadline* seconds, flush the store.

        Transfers still running at the deadline are cancelled; their files
        stay unrecorded and are picked up by the next run.
        """
        self._stopping.set()
        in_flight = [task for task in self._workers if not task.done()]
        if in_flight:
            logger.warning(
                "Shutdown requested, waiting up to %.0fs for %d worker(s)...",
                deadline,
                len(in_flight),
            )
            _, pending = await asyncio.wait(in_flight, timeout=deadline)
            if pending:
                logger.warning("Cancelling %d unfinished upload(s)", len(pending))
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
        await self._store.flush()

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def _worker(self, queue: asyncio.Queue[Path], channels: Sequence[ChannelId]) -> None:
        while not self._stopping.is_set():
            try:
                path = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                await self._process_file(path, channels)
            except Exception:
                # _process_file contains per-file errors; anything else is a bug
                logger.exception("Unexpected error while uploading %s", path)
                self.stats.record_failed()
                self.failed_paths.append(str(path))
            finally:
                queue.task_done()

    async def _process_file(self, path: Path, channels: Sequence[ChannelId]) -> None:
        try:
            info = get_file_info(path, self._root)
        except OSError as exc:
            logger.error("❌ Cannot read %s: %s", path, exc)
            self._mark_failed(str(path), str(exc))
            return

        if self._store.is_uploaded(info.relative_path) or info.relative_path in self._in_flight:
            self.stats.record_already_uploaded()
            if self._progress is not None:
                self._progress.file_skipped(info.relative_path)
            return

        kind = MediaKind.for_path(path)

        def on_retry(error: BaseException | None) -> None:
            if self._progress is not None:
                self._progress.file_retrying(info.relative_path)

        # Claimed until recorded or failed, so a second worker skips it
        self._in_flight.add(info.relative_path)
        try:
            try:
                results = await self._retry.run(
                    info.relative_path,
                    lambda: self._send_to_channels(info, kind, channels),
                    on_retry=on_retry,
                )
            except PermanentTransferFailure as exc:
                logger.error("❌ Upload failed for %s: %s", info.relative_path, exc.last_error)
                self._mark_failed(info.relative_path, str(exc.last_error))
                return

            for result in results:
                self._store.add(
                    FileRecord(
                        relative_path=info.relative_path,
                        remote_object_id=result.remote_object_id,
                        caption=info.caption,
                        channel_id=result.channel_id,
                    )
                )
                self._records_added += 1
        finally:
            self._in_flight.discard(info.relative_path)
        self.stats.record_uploaded()
        if self._progress is not None:
            self._progress.file_uploaded(info.relative_path)

        await self._store.flush()

    async def _send_to_channels(
        self, info: FileInfo, kind: MediaKind, channels: Sequence[ChannelId]
    ) -> list[UploadResult]:
        """One attempt: send *info* to every channel, one identity per channel."""
        results: list[UploadResult] = []
        for channel_id in channels:
            client = self._pool.next()
            remote_id = await client.send_media(kind, channel_id, info.path, info.caption)
            results.append(UploadResult(remote_object_id=remote_id, channel_id=channel_id))
            logger.info("✅ Uploaded %s: %s to channel %s", kind.value, info.relative_path, channel_id)
        return results

    def _mark_failed(self, label: str, error: str) -> None:
        self.stats.record_failed()
        self.failed_paths.append(label)
        if self._progress is not None:
            self._progress.file_failed(label, error)

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    @property
    def summary(self) -> dict[str, int]:
        return {
            "total": self.stats.total_files,
            "uploaded": self.stats.uploaded_files,
            "already_uploaded": self.stats.already_uploaded,
            "failed": self.stats.failed_files,
            "skipped": self._skipped,
            "records_added": self._records_added,
        }
