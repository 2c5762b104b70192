"""Exception taxonomy for the upload and restore pipeline."""

from __future__ import annotations


class TelecloudError(Exception):
    """Base class for all telecloud errors."""


class TransferError(TelecloudError):
    """A call to the chat transport failed."""


class RateLimitError(TransferError):
    """The transport asked us to slow down (HTTP 429).

    Attributes:
        retry_after: Server-provided wait in seconds, or ``None`` when the
            response carried no hint.
    """

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class TransientError(TransferError):
    """Network-level failure (DNS, connection reset, timeout, 5xx)."""


class TelegramAPIError(TransferError):
    """The Bot API rejected a request for a reason other than rate limiting."""

    def __init__(self, status: int, description: str) -> None:
        super().__init__(f"{status}: {description}")
        self.status = status
        self.description = description


class PermanentTransferFailure(TelecloudError):
    """A file could not be transferred within the retry budget."""

    def __init__(self, path: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"Failed after {attempts} attempts for file {path}: {last_error}"
        )
        self.path = path
        self.attempts = attempts
        self.last_error = last_error


class CorruptSnapshotError(TelecloudError):
    """The durable snapshot could not be parsed."""


class UnexpectedConversationState(TelecloudError):
    """A session carried a state value the conversation FSM does not know."""
