"""Local drive scan and per-file metadata.

Discovers candidate files under the scan root and resolves the logical
relative path (the dedup key) and the caption attached to each upload.
Uses os.walk() for symlink-safe traversal with cycle detection via inode
tracking.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FileInfo:
    """Logical identity of a local file."""

    path: Path
    relative_path: str
    modified: datetime

    @property
    def caption(self) -> str:
        return format_caption(self.relative_path, self.modified)


def format_caption(relative_path: str, modified: datetime) -> str:
    """Caption stored alongside the remote object (``D/M/YYYY`` date)."""
    date = f"{modified.day}/{modified.month}/{modified.year}"
    return f"Path: {relative_path}\nDate: {date}"


def relative_path_for(path: Path, root: Path) -> str:
    """POSIX-style path of *path* relative to *root*.

    Files outside *root* keep their full path, with any drive or anchor
    stripped, so the key stays stable across platforms.
    """
    # Symlinks are not resolved: a link inside root is keyed by its own name.
    try:
        rel = Path(os.path.abspath(path)).relative_to(os.path.abspath(root))
        return rel.as_posix()
    except ValueError:
        parts = path.parts[1:] if path.anchor else path.parts
        return "/".join(parts).replace("\\", "/")


def get_file_info(path: Path, root: Path) -> FileInfo:
    """Resolve relative path and modification date for *path*.

    Raises:
        OSError: The file cannot be stat'ed.
    """
    stat = path.stat()
    return FileInfo(
        path=path,
        relative_path=relative_path_for(path, root),
        modified=datetime.fromtimestamp(stat.st_mtime),
    )


def scan_directory(
    root: Path,
    extensions: set[str] | frozenset[str] | None = None,
    skip_hidden: bool = True,
    follow_symlinks: bool = False,
) -> list[Path]:
    """Recursively list files under *root* whose suffix is in *extensions*.

    Unreadable directories are logged and skipped. Results are sorted for
    a deterministic queue order.

    Args:
        root: Directory to walk.
        extensions: Lower-case suffixes including the dot; ``None`` means all.
        skip_hidden: Skip dot-files and dot-directories.
        follow_symlinks: Follow directory symlinks (with cycle detection).
    """
    root = Path(root)
    matched: list[Path] = []
    if not root.is_dir():
        logger.error("Scan root %s is not a directory", root)
        return matched

    visited_inodes: set[tuple[int, int]] = set()
    wanted = {ext.lower() for ext in extensions} if extensions is not None else None

    def _on_error(err: OSError) -> None:
        logger.warning("Skipping inaccessible directory: %s (%s)", err.filename, err)

    for dirpath, dirnames, filenames in os.walk(
        str(root), onerror=_on_error, followlinks=follow_symlinks
    ):
        current = Path(dirpath)

        if follow_symlinks:
            try:
                st = current.stat()
            except OSError as exc:
                logger.warning("Cannot stat directory %s: %s", current, exc)
                dirnames.clear()
                continue
            dir_id = (st.st_dev, st.st_ino)
            if dir_id in visited_inodes:
                logger.warning("Symlink cycle detected: %s", current)
                dirnames.clear()
                continue
            visited_inodes.add(dir_id)

        if skip_hidden:
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]

        for name in filenames:
            if skip_hidden and name.startswith("."):
                continue
            if wanted is not None and Path(name).suffix.lower() not in wanted:
                continue
            matched.append(current / name)

    matched.sort()
    logger.info("Found %d candidate files under %s", len(matched), root)
    return matched
