"""Upload and restore pipeline backed by Telegram storage channels.

Public API
----------
.. autoclass:: TelegramBotClient
.. autoclass:: ClientPool
.. autoclass:: ChannelRegistry
.. autoclass:: MetadataStore
.. autoclass:: RetryPolicy
.. autoclass:: UploadScheduler
.. autoclass:: UploadProgressTracker
.. autoclass:: RestoreEngine
"""

from telecloud.upload.client import TelegramBotClient, parse_update
from telecloud.upload.exceptions import (
    CorruptSnapshotError,
    PermanentTransferFailure,
    RateLimitError,
    TelegramAPIError,
    TelecloudError,
    TransferError,
    TransientError,
    UnexpectedConversationState,
)
from telecloud.upload.pool import ChannelRegistry, ClientPool
from telecloud.upload.progress import ProgressReporter, UploadProgressTracker, UploadStats
from telecloud.upload.restore import RestoreEngine
from telecloud.upload.retry import RetryPolicy
from telecloud.upload.scheduler import UploadScheduler
from telecloud.upload.state import MetadataStore

__all__ = [
    "ChannelRegistry",
    "ClientPool",
    "CorruptSnapshotError",
    "MetadataStore",
    "PermanentTransferFailure",
    "ProgressReporter",
    "RateLimitError",
    "RestoreEngine",
    "RetryPolicy",
    "TelecloudError",
    "TelegramAPIError",
    "TelegramBotClient",
    "TransferError",
    "TransientError",
    "UnexpectedConversationState",
    "UploadProgressTracker",
    "UploadScheduler",
    "UploadStats",
    "parse_update",
]
