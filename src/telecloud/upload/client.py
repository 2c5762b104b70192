"""Telegram Bot API client wrapper.

One :class:`TelegramBotClient` is one client identity: a bot token plus an
HTTP session. It implements the transport capability the pipeline depends
on:

* ``send_text`` -- operator replies and progress reports
* ``send_media`` (photo / video / document) -- returns the remote ``file_id``
* ``fetch_object`` -- streams a stored object back by ``file_id``
* ``get_updates`` -- long-poll for inbound messages

Every failure is classified into the pipeline's error taxonomy before it
leaves this module: :class:`RateLimitError` (429, with the server's
``retry_after`` hint), :class:`TransientError` (network, timeouts, 5xx) and
:class:`TelegramAPIError` (everything else).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiohttp

from telecloud.constants import (
    LONG_POLL_TIMEOUT_SECONDS,
    RESTORE_CHUNK_SIZE,
    TELEGRAM_API_BASE,
    TELEGRAM_CAPTION_LIMIT,
)
from telecloud.models import Attachment, InboundEvent, MediaKind
from telecloud.upload.exceptions import (
    RateLimitError,
    TelegramAPIError,
    TransferError,
    TransientError,
)

logger = logging.getLogger(__name__)

# Bot API method and multipart field name per media kind
_MEDIA_METHODS: dict[MediaKind, tuple[str, str]] = {
    MediaKind.PHOTO: ("sendPhoto", "photo"),
    MediaKind.VIDEO: ("sendVideo", "video"),
    MediaKind.DOCUMENT: ("sendDocument", "document"),
}

_NETWORK_ERRORS = (
    aiohttp.ClientConnectionError,
    aiohttp.ClientPayloadError,
    asyncio.TimeoutError,
)


# ---------------------------------------------------------------------------
# Response classification
# ---------------------------------------------------------------------------


def unwrap_response(method: str, status: int, payload: Any) -> Any:
    """Return ``payload["result"]`` or raise the classified error.

    Args:
        method: Bot API method name (for error messages).
        status: HTTP status code.
        payload: Decoded JSON body, or ``None`` if the body was not JSON.

    Raises:
        RateLimitError: ``error_code`` (or HTTP status) is 429.
        TransientError: 5xx responses.
        TelegramAPIError: Any other unsuccessful response.
    """
    if isinstance(payload, dict) and payload.get("ok"):
        return payload.get("result")

    body = payload if isinstance(payload, dict) else {}
    error_code = body.get("error_code") or status
    description = body.get("description") or f"HTTP {status}"

    if error_code == 429:
        parameters = body.get("parameters") or {}
        retry_after = parameters.get("retry_after")
        try:
            hint = float(retry_after) if retry_after is not None else None
        except (TypeError, ValueError):
            hint = None
        raise RateLimitError(f"{method}: {description}", retry_after=hint)

    if error_code >= 500:
        raise TransientError(f"{method}: {description}")

    raise TelegramAPIError(error_code, f"{method}: {description}")


def extract_file_id(kind: MediaKind, message: Any) -> str:
    """Pull the stored object's ``file_id`` out of a sent message.

    Photos come back as a list of sizes; the largest (last) one is kept.
    """
    if not isinstance(message, dict):
        raise TransferError(f"No message returned for {kind.value}")

    if kind is MediaKind.PHOTO:
        sizes = message.get("photo") or []
        if not sizes:
            raise TransferError("No photo info returned from sendPhoto")
        return sizes[-1]["file_id"]

    obj = message.get(kind.value)
    if not obj:
        raise TransferError(f"No {kind.value} info returned from {_MEDIA_METHODS[kind][0]}")
    return obj["file_id"]


def parse_update(raw: dict[str, Any]) -> InboundEvent | None:
    """Convert a raw ``getUpdates`` entry into an :class:`InboundEvent`.

    Returns ``None`` for updates that carry no message.
    """
    message = raw.get("message")
    if not isinstance(message, dict):
        return None

    chat = message.get("chat") or {}
    if "id" not in chat:
        return None

    forwarded_from: int | None = None
    if message.get("forward_from_chat"):
        forwarded_from = message["forward_from_chat"].get("id")
    else:
        origin = message.get("forward_origin") or {}
        if origin.get("type") == "channel":
            forwarded_from = (origin.get("chat") or {}).get("id")

    attachment: Attachment | None = None
    if message.get("document"):
        attachment = Attachment(MediaKind.DOCUMENT, message["document"]["file_id"])
    elif message.get("video"):
        attachment = Attachment(MediaKind.VIDEO, message["video"]["file_id"])
    elif message.get("photo"):
        attachment = Attachment(MediaKind.PHOTO, message["photo"][-1]["file_id"])

    return InboundEvent(
        session_id=chat["id"],
        sender_id=(message.get("from") or {}).get("id"),
        text=message.get("text"),
        attachment=attachment,
        forwarded_from_channel=forwarded_from,
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class TelegramBotClient:
    """One authenticated bot identity speaking the Telegram Bot API.

    Usage::

        client = TelegramBotClient("123456:ABC...")
        file_id = await client.send_media(
            MediaKind.PHOTO, -100123, Path("img.jpg"), caption="Path: img.jpg"
        )
        async with client.fetch_object(file_id) as chunks:
            async for chunk in chunks:
                ...
        await client.close()
    """

    def __init__(
        self,
        token: str,
        *,
        api_base: str = TELEGRAM_API_BASE,
        session: aiohttp.ClientSession | None = None,
        timeout: float = 120.0,
    ) -> None:
        self.token = token
        self._api_base = api_base.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self.alive = True

    def __repr__(self) -> str:
        return f"TelegramBotClient({self.identifier})"

    @property
    def identifier(self) -> str:
        """Bot id part of the token (safe to log)."""
        return self.token.split(":", 1)[0]

    # ------------------------------------------------------------------
    # Outbound messages
    # ------------------------------------------------------------------

    async def send_text(
        self,
        chat_id: int | str,
        text: str,
        *,
        parse_mode: str | None = None,
        reply_markup: dict[str, Any] | None = None,
    ) -> None:
        body: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if parse_mode:
            body["parse_mode"] = parse_mode
        if reply_markup:
            body["reply_markup"] = reply_markup
        await self._call("sendMessage", json=body)

    async def send_media(
        self,
        kind: MediaKind,
        chat_id: int | str,
        source: Path | str,
        caption: str | None = None,
    ) -> str:
        """Send a local file (``Path``) or an existing ``file_id`` (``str``).

        Returns:
            The ``file_id`` of the stored object.
        """
        method, field_name = _MEDIA_METHODS[kind]
        form = aiohttp.FormData()
        form.add_field("chat_id", str(chat_id))
        if caption:
            form.add_field("caption", caption[:TELEGRAM_CAPTION_LIMIT])
        if kind is MediaKind.VIDEO:
            form.add_field("supports_streaming", "true")

        if isinstance(source, Path):
            with open(source, "rb") as fh:
                form.add_field(field_name, fh, filename=source.name)
                message = await self._call(method, data=form)
        else:
            form.add_field(field_name, source)
            message = await self._call(method, data=form)

        file_id = extract_file_id(kind, message)
        logger.debug("%s -> chat %s via bot %s", method, chat_id, self.identifier)
        return file_id

    async def send_photo(self, chat_id: int | str, source: Path | str, caption: str | None = None) -> str:
        return await self.send_media(MediaKind.PHOTO, chat_id, source, caption)

    async def send_video(self, chat_id: int | str, source: Path | str, caption: str | None = None) -> str:
        return await self.send_media(MediaKind.VIDEO, chat_id, source, caption)

    async def send_document(self, chat_id: int | str, source: Path | str, caption: str | None = None) -> str:
        return await self.send_media(MediaKind.DOCUMENT, chat_id, source, caption)

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def fetch_object(
        self, remote_object_id: str, chunk_size: int = RESTORE_CHUNK_SIZE
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        """Resolve *remote_object_id* and stream its bytes.

        Yields an async iterator of byte chunks; the HTTP response stays
        open until the ``async with`` block exits.
        """
        file_info = await self._call("getFile", json={"file_id": remote_object_id})
        file_path = (file_info or {}).get("file_path")
        if not file_path:
            raise TelegramAPIError(404, f"getFile: no file_path for {remote_object_id}")

        session = await self._get_session()
        url = f"{self._api_base}/file/bot{self.token}/{file_path}"
        try:
            async with session.get(url) as response:
                if response.status != 200:
                    unwrap_response("download", response.status, None)
                yield response.content.iter_chunked(chunk_size)
        except _NETWORK_ERRORS as exc:
            raise TransientError(f"download {remote_object_id}: {exc}") from exc

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def get_updates(
        self, offset: int | None = None, timeout: int = LONG_POLL_TIMEOUT_SECONDS
    ) -> list[dict[str, Any]]:
        body: dict[str, Any] = {"timeout": timeout, "allowed_updates": ["message"]}
        if offset is not None:
            body["offset"] = offset
        result = await self._call(
            "getUpdates",
            json=body,
            timeout=aiohttp.ClientTimeout(total=timeout + 15),
        )
        return result or []

    async def ping(self) -> dict[str, Any]:
        """Call ``getMe``; updates :attr:`alive` with the outcome."""
        try:
            me = await self._call("getMe")
        except TransferError:
            self.alive = False
            raise
        self.alive = True
        return me or {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        self.alive = False
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def _call(
        self,
        method: str,
        *,
        json: dict[str, Any] | None = None,
        data: aiohttp.FormData | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
    ) -> Any:
        """POST *method* and return its ``result`` or raise a classified error."""
        session = await self._get_session()
        url = f"{self._api_base}/bot{self.token}/{method}"
        kwargs: dict[str, Any] = {}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            async with session.post(url, json=json, data=data, **kwargs) as response:
                try:
                    payload = await response.json(content_type=None)
                except ValueError:
                    payload = None
                return unwrap_response(method, response.status, payload)
        except _NETWORK_ERRORS as exc:
            raise TransientError(f"{method}: {exc}") from exc
