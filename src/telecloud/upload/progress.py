"""Progress accounting and reporting for upload runs.

Two consumers watch an upload run:

* the operator chat, which gets a periodic text summary (percent complete,
  elapsed time, throughput and estimated time remaining) and a final
  report -- :class:`ProgressReporter`
* the terminal, when the upload is started from the CLI -- a Rich progress
  bar driven by :class:`UploadProgressTracker`
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
)

from telecloud.constants import PROGRESS_REPORT_INTERVAL_SECONDS

logger = logging.getLogger(__name__)

Notifier = Callable[[str], Awaitable[None]]


@dataclass
class UploadStats:
    """Counters for one upload run; reset at the start of every scan."""

    total_files: int = 0
    uploaded_files: int = 0
    already_uploaded: int = 0
    failed_files: int = 0
    files_since_last_report: int = 0
    start_time: float = field(default_factory=time.monotonic)
    last_report_time: float = field(default_factory=time.monotonic)

    def reset(self, total_files: int, now: float | None = None) -> None:
        now = time.monotonic() if now is None else now
        self.total_files = total_files
        self.uploaded_files = 0
        self.already_uploaded = 0
        self.failed_files = 0
        self.files_since_last_report = 0
        self.start_time = now
        self.last_report_time = now

    def record_uploaded(self) -> None:
        self.uploaded_files += 1
        self.files_since_last_report += 1

    def record_already_uploaded(self) -> None:
        self.already_uploaded += 1
        self.files_since_last_report += 1

    def record_failed(self) -> None:
        self.failed_files += 1

    @property
    def processed(self) -> int:
        return self.uploaded_files + self.already_uploaded + self.failed_files

    @property
    def percent_complete(self) -> float:
        if self.total_files <= 0:
            return 100.0
        return self.processed / self.total_files * 100


def format_progress_report(stats: UploadStats, now: float) -> str:
    """Status summary computed from the counters since the last report."""
    elapsed_minutes = (now - stats.start_time) / 60
    window_minutes = (now - stats.last_report_time) / 60
    rate = stats.files_since_last_report / window_minutes if window_minutes > 0 else 0.0
    remaining = max(stats.total_files - stats.processed, 0)
    if rate > 0:
        eta = f"{remaining / rate:.1f} minutes"
    elif remaining == 0:
        eta = "0.0 minutes"
    else:
        eta = "unknown"

    return "\n".join(
        [
            "Upload Progress Report:",
            f"✅ Uploaded: {stats.uploaded_files + stats.already_uploaded} of "
            f"{stats.total_files} ({stats.percent_complete:.1f}%)",
            f"❌ Failed: {stats.failed_files}",
            f"⏱️ Elapsed: {elapsed_minutes:.1f} minutes",
            f"📈 Rate: {rate:.1f} files/minute",
            f"⏳ Estimated time remaining: {eta}",
        ]
    )


def format_final_report(stats: UploadStats, now: float) -> str:
    elapsed_minutes = (now - stats.start_time) / 60
    average = stats.uploaded_files / elapsed_minutes if elapsed_minutes > 0 else 0.0
    return "\n".join(
        [
            "🏁 Upload Complete!",
            f"✅ Total Uploaded: {stats.uploaded_files} files",
            f"⏭️ Already uploaded: {stats.already_uploaded} files",
            f"❌ Failed: {stats.failed_files} files",
            f"⏱️ Total Time: {elapsed_minutes:.1f} minutes",
            f"📈 Average Rate: {average:.1f} files/minute",
        ]
    )


class ProgressReporter:
    """Emits a progress summary every *interval* seconds and a final report.

    Reports are logged and, when a *notifier* is given, sent through it.
    A failing notifier is logged and otherwise ignored.
    """

    def __init__(
        self,
        stats: UploadStats,
        notifier: Notifier | None = None,
        interval: float = PROGRESS_REPORT_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._stats = stats
        self._notifier = notifier
        self._interval = interval
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Send the opening report and schedule the periodic ones."""
        await self.report()
        self._task = asyncio.create_task(self._loop(), name="upload-progress")

    async def stop(self) -> None:
        """Cancel the timer and send the final report."""
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        message = format_final_report(self._stats, self._clock())
        logger.info(message.replace("\n", " | "))
        await self._notify(message)

    async def report(self) -> None:
        now = self._clock()
        message = format_progress_report(self._stats, now)
        logger.info(message.replace("\n", " | "))
        await self._notify(message)
        self._stats.files_since_last_report = 0
        self._stats.last_report_time = now

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.report()

    async def _notify(self, message: str) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier(message)
        except Exception as exc:
            logger.error("Failed to send progress report: %s", exc)


class UploadProgressTracker:
    """Rich progress bar for CLI-driven upload runs.

    Usage::

        tracker = UploadProgressTracker(total_files=1884)
        with tracker:
            tracker.file_uploaded("photos/2019/a.jpg")
    """

    def __init__(self, total_files: int) -> None:
        self._total_files = total_files
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeRemainingColumn(),
            TextColumn("{task.fields[status]}", style="dim"),
        )
        self._task: TaskID | None = None
        self._stats: dict[str, int] = {
            "uploaded": 0,
            "skipped": 0,
            "failed": 0,
            "retried": 0,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._progress.start()
        self._task = self._progress.add_task(
            "[green]Upload", total=self._total_files, status="starting..."
        )

    def stop(self) -> None:
        self._progress.stop()

    def __enter__(self) -> UploadProgressTracker:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # File-level events
    # ------------------------------------------------------------------

    def file_uploaded(self, file_path: str) -> None:
        self._stats["uploaded"] += 1
        self._advance(_truncate_path(file_path))

    def file_skipped(self, file_path: str) -> None:
        self._stats["skipped"] += 1
        self._advance(f"[dim]skip[/dim] {_truncate_path(file_path)}")

    def file_failed(self, file_path: str, error: str) -> None:
        self._stats["failed"] += 1
        self._advance(f"[red]FAIL[/red] {_truncate_path(file_path)}")
        logger.debug("Progress: %s failed: %s", file_path, error)

    def file_retrying(self, file_path: str) -> None:
        self._stats["retried"] += 1
        if self._task is not None:
            self._progress.update(
                self._task,
                status=f"[yellow]retrying[/yellow] {_truncate_path(file_path)}",
            )

    def _advance(self, status: str) -> None:
        if self._task is not None:
            self._progress.advance(self._task, 1)
            self._progress.update(self._task, status=status)

    @property
    def stats(self) -> dict[str, int]:
        """Return a copy of the current statistics."""
        return dict(self._stats)


def _truncate_path(file_path: str, max_len: int = 40) -> str:
    """Truncate a file path for display, keeping the filename."""
    if len(file_path) <= max_len:
        return file_path
    name = file_path.rsplit("/", 1)[-1]
    if len(name) > max_len - 3:
        return "..." + name[-(max_len - 3) :]
    return "..." + file_path[-(max_len - 3) :]
