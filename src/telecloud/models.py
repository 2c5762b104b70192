"""Data models and enums for the telecloud backup pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from telecloud.constants import (
    DEFAULT_SCAN_EXTENSIONS,
    MAX_RETRY_ATTEMPTS,
    PHOTO_EXTENSIONS,
    PROGRESS_REPORT_INTERVAL_SECONDS,
    RETRY_BASE_DELAY_SECONDS,
    RETRY_CAP_DELAY_SECONDS,
    SNAPSHOT_FILENAME,
    VIDEO_EXTENSIONS,
)

ChannelId = int | str


def normalize_channel_id(value: Any) -> ChannelId:
    """Return *value* as an ``int`` when it is numeric, else a stripped string.

    Telegram chat ids arrive as ints from the API and as strings from
    configuration; both forms must compare equal.
    """
    if isinstance(value, int):
        return value
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        return text


class MediaKind(str, Enum):
    """Transfer method used for a file, chosen by extension."""

    PHOTO = "photo"
    VIDEO = "video"
    DOCUMENT = "document"

    @classmethod
    def for_path(cls, path: str | Path) -> MediaKind:
        suffix = Path(path).suffix.lower()
        if suffix in PHOTO_EXTENSIONS:
            return cls.PHOTO
        if suffix in VIDEO_EXTENSIONS:
            return cls.VIDEO
        return cls.DOCUMENT


@dataclass(slots=True)
class FileRecord:
    """One uploaded copy of a local file in one storage channel.

    Records are append-only: a file sent to three channels produces three
    records sharing ``relative_path``.
    """

    relative_path: str
    remote_object_id: str
    caption: str
    channel_id: ChannelId

    def to_dict(self) -> dict[str, Any]:
        """Serialise using the snapshot's field names."""
        return {
            "filePath": self.relative_path,
            "file_id": self.remote_object_id,
            "caption": self.caption,
            "channelId": self.channel_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileRecord:
        """Build a record from a snapshot entry.

        Raises:
            KeyError: A required field is missing.
            TypeError: *data* is not a mapping or a field has the wrong type.
        """
        relative_path = data["filePath"]
        remote_object_id = data["file_id"]
        if not isinstance(relative_path, str) or not isinstance(remote_object_id, str):
            raise TypeError("filePath and file_id must be strings")
        return cls(
            relative_path=relative_path,
            remote_object_id=remote_object_id,
            caption=str(data.get("caption", "")),
            channel_id=normalize_channel_id(data["channelId"]),
        )


@dataclass(slots=True)
class UploadResult:
    """Outcome of sending one file to one channel."""

    remote_object_id: str
    channel_id: ChannelId


@dataclass(slots=True)
class Attachment:
    """A file carried by an inbound message."""

    kind: MediaKind
    file_id: str


@dataclass(slots=True)
class InboundEvent:
    """Transport-neutral view of one incoming chat message."""

    session_id: int
    sender_id: int | None = None
    text: str | None = None
    attachment: Attachment | None = None
    forwarded_from_channel: int | None = None


@dataclass
class TelecloudConfig:
    """Runtime configuration for the bot and the upload/restore pipeline.

    Controls client credentials, storage destinations, authorised
    sessions, local roots, concurrency and retry behaviour.
    """

    bot_tokens: list[str] = field(default_factory=list)
    storage_channel_ids: list[ChannelId] = field(default_factory=list)
    authorized_sessions: list[int] = field(default_factory=list)
    admin_chat_id: int | None = None
    scan_root: Path = field(default_factory=lambda: Path("."))
    restore_root: Path = field(default_factory=lambda: Path("restored"))
    snapshot_path: Path = field(default_factory=lambda: Path(SNAPSHOT_FILENAME))
    concurrency: int | None = None
    max_attempts: int = MAX_RETRY_ATTEMPTS
    retry_base_delay: float = RETRY_BASE_DELAY_SECONDS
    retry_cap_delay: float = RETRY_CAP_DELAY_SECONDS
    report_interval: float = PROGRESS_REPORT_INTERVAL_SECONDS
    scan_extensions: set[str] = field(
        default_factory=lambda: set(DEFAULT_SCAN_EXTENSIONS)
    )

    def __post_init__(self) -> None:
        """Ensure paths are Path objects."""
        for name in ("scan_root", "restore_root", "snapshot_path"):
            value = getattr(self, name)
            if isinstance(value, str):
                setattr(self, name, Path(value))

    @property
    def effective_concurrency(self) -> int:
        """Worker count: explicit setting, else two per bot identity."""
        if self.concurrency is not None:
            return self.concurrency
        return max(1, 2 * len(self.bot_tokens))

    @property
    def report_chat_id(self) -> int | None:
        """Chat receiving progress reports: the admin, else the first operator."""
        if self.admin_chat_id is not None:
            return self.admin_chat_id
        return self.authorized_sessions[0] if self.authorized_sessions else None
