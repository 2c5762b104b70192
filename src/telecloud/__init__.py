"""Telegram-backed file backup and restore."""

__version__ = "0.1.0"

from telecloud.models import FileRecord, MediaKind, TelecloudConfig, UploadResult

__all__ = [
    "FileRecord",
    "MediaKind",
    "TelecloudConfig",
    "UploadResult",
    "__version__",
]
