"""Shared pytest fixtures for telecloud tests.

Provides an in-memory fake of the Telegram transport, a temporary metadata
store, a small drive tree and a retry policy that never really sleeps.
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

from telecloud.models import MediaKind
from telecloud.upload.exceptions import TelegramAPIError
from telecloud.upload.pool import ClientPool
from telecloud.upload.retry import RetryPolicy
from telecloud.upload.state import MetadataStore


class FakeClient:
    """Stands in for TelegramBotClient without touching the network.

    Args:
        identifier: Name used in generated file ids.
        errors: File name -> exception raised on every send of that file, or
            a list of exceptions raised on successive sends (then success).
        payloads: file_id -> bytes returned by ``fetch_object``.
    """

    def __init__(
        self,
        identifier: str = "bot0",
        errors: dict[str, Any] | None = None,
        payloads: dict[str, bytes] | None = None,
    ) -> None:
        self.identifier = identifier
        self.errors = errors or {}
        self.payloads = payloads or {}
        self.sent: list[tuple[MediaKind, Any, Any, str | None]] = []
        self.attempts: dict[str, int] = {}
        self.texts: list[tuple[Any, str, dict[str, Any]]] = []
        self.fetched: list[str] = []
        self.closed = False
        self.alive = True

    async def send_media(
        self, kind: MediaKind, chat_id: Any, source: Path | str, caption: str | None = None
    ) -> str:
        name = source.name if isinstance(source, Path) else str(source)
        self.attempts[name] = self.attempts.get(name, 0) + 1
        error = self.errors.get(name)
        if isinstance(error, list):
            if error:
                raise error.pop(0)
        elif error is not None:
            raise error
        self.sent.append((kind, chat_id, source, caption))
        return f"{self.identifier}-{name}-{chat_id}"

    async def send_text(self, chat_id: Any, text: str, **kwargs: Any) -> None:
        self.texts.append((chat_id, text, kwargs))

    @asynccontextmanager
    async def fetch_object(
        self, remote_object_id: str, chunk_size: int = 65536
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        self.fetched.append(remote_object_id)
        if remote_object_id not in self.payloads:
            raise TelegramAPIError(400, f"getFile: wrong file_id {remote_object_id}")
        data = self.payloads[remote_object_id]

        async def _chunks() -> AsyncIterator[bytes]:
            for start in range(0, len(data), chunk_size):
                yield data[start : start + chunk_size]

        yield _chunks()

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient("bot0")


@pytest.fixture
def pool(fake_client: FakeClient) -> ClientPool[FakeClient]:
    return ClientPool([fake_client])


@pytest.fixture
def tmp_store(tmp_path: Path) -> MetadataStore:
    """Empty, loaded MetadataStore backed by a temp snapshot path."""
    store = MetadataStore(tmp_path / "state" / "uploadedFiles.json.gz")
    store.load()
    return store


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Five-attempt policy whose sleep is an AsyncMock (inspect ``._sleep``)."""
    return RetryPolicy(sleep=AsyncMock())


@pytest.fixture
def tmp_drive(tmp_path: Path) -> Path:
    """Create a small drive tree.

    Structure:
        drive/
          photos/2021/beach.jpg
          photos/2021/sunset.PNG
          videos/clip.mp4
          docs/notes.txt
          .cache/thumb.jpg      (hidden, skipped by the scan)
    """
    root = tmp_path / "drive"
    files = {
        "photos/2021/beach.jpg": b"\xff\xd8beach",
        "photos/2021/sunset.PNG": b"\x89PNGsunset",
        "videos/clip.mp4": b"\x00\x00video",
        "docs/notes.txt": b"plain notes",
        ".cache/thumb.jpg": b"thumb",
    }
    mtime = datetime(2021, 3, 5, 12, 0).timestamp()
    for rel, data in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        os.utime(path, (mtime, mtime))
    return root
