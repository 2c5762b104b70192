"""Tests for Bot API response classification and update parsing.

No network access: the HTTP session is a mock, and the pure helpers are
fed canned Bot API payloads.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import aiohttp
import pytest

from telecloud.models import MediaKind
from telecloud.upload.client import (
    TelegramBotClient,
    extract_file_id,
    parse_update,
    unwrap_response,
)
from telecloud.upload.exceptions import (
    RateLimitError,
    TelegramAPIError,
    TransferError,
    TransientError,
)


class TestUnwrapResponse:
    """Classification of Bot API replies into the error taxonomy."""

    def test_ok_returns_result(self):
        assert unwrap_response("getMe", 200, {"ok": True, "result": {"id": 1}}) == {"id": 1}

    def test_429_carries_retry_after_seconds(self):
        payload = {
            "ok": False,
            "error_code": 429,
            "description": "Too Many Requests: retry after 5",
            "parameters": {"retry_after": 5},
        }
        with pytest.raises(RateLimitError) as exc_info:
            unwrap_response("sendPhoto", 429, payload)
        assert exc_info.value.retry_after == 5.0

    def test_429_without_hint(self):
        with pytest.raises(RateLimitError) as exc_info:
            unwrap_response("sendPhoto", 429, None)
        assert exc_info.value.retry_after is None

    def test_5xx_is_transient(self):
        with pytest.raises(TransientError):
            unwrap_response("sendVideo", 502, None)

    def test_other_errors_are_api_errors(self):
        payload = {"ok": False, "error_code": 400, "description": "Bad Request: chat not found"}
        with pytest.raises(TelegramAPIError) as exc_info:
            unwrap_response("sendDocument", 400, payload)
        assert exc_info.value.status == 400
        assert "chat not found" in str(exc_info.value)


class TestExtractFileId:
    def test_photo_uses_largest_size(self):
        message = {"photo": [{"file_id": "small"}, {"file_id": "medium"}, {"file_id": "large"}]}
        assert extract_file_id(MediaKind.PHOTO, message) == "large"

    def test_video_and_document(self):
        assert extract_file_id(MediaKind.VIDEO, {"video": {"file_id": "V"}}) == "V"
        assert extract_file_id(MediaKind.DOCUMENT, {"document": {"file_id": "D"}}) == "D"

    def test_missing_photo_info_raises(self):
        with pytest.raises(TransferError, match="No photo info returned from sendPhoto"):
            extract_file_id(MediaKind.PHOTO, {"message_id": 1})

    def test_missing_video_info_raises(self):
        with pytest.raises(TransferError, match="sendVideo"):
            extract_file_id(MediaKind.VIDEO, {"message_id": 1})


class TestParseUpdate:
    def test_plain_text(self):
        event = parse_update(
            {"update_id": 1, "message": {"chat": {"id": 7}, "from": {"id": 9}, "text": "/start"}}
        )
        assert event.session_id == 7
        assert event.sender_id == 9
        assert event.text == "/start"
        assert event.attachment is None
        assert event.forwarded_from_channel is None

    def test_legacy_forward_from_chat(self):
        event = parse_update(
            {"update_id": 2, "message": {"chat": {"id": 7}, "forward_from_chat": {"id": -100123}}}
        )
        assert event.forwarded_from_channel == -100123

    def test_forward_origin_channel(self):
        message = {
            "chat": {"id": 7},
            "forward_origin": {"type": "channel", "chat": {"id": -100456}},
            "text": "forwarded text",
        }
        event = parse_update({"update_id": 3, "message": message})
        assert event.forwarded_from_channel == -100456

    def test_forward_from_user_is_not_a_channel(self):
        message = {"chat": {"id": 7}, "forward_origin": {"type": "user"}, "text": "hi"}
        assert parse_update({"update_id": 4, "message": message}).forwarded_from_channel is None

    def test_photo_attachment_keeps_largest(self):
        message = {"chat": {"id": 7}, "photo": [{"file_id": "s"}, {"file_id": "l"}]}
        event = parse_update({"update_id": 5, "message": message})
        assert event.attachment.kind is MediaKind.PHOTO
        assert event.attachment.file_id == "l"

    def test_document_attachment(self):
        message = {"chat": {"id": 7}, "document": {"file_id": "doc"}}
        event = parse_update({"update_id": 6, "message": message})
        assert event.attachment.kind is MediaKind.DOCUMENT

    def test_non_message_update_ignored(self):
        assert parse_update({"update_id": 7, "edited_message": {"chat": {"id": 7}}}) is None


class TestTelegramBotClient:
    def test_identifier_hides_secret(self):
        client = TelegramBotClient("123456:SECRET")
        assert client.identifier == "123456"
        assert "SECRET" not in repr(client)

    @pytest.mark.asyncio
    async def test_connection_errors_become_transient(self):
        session = MagicMock()
        session.closed = False
        session.post.side_effect = aiohttp.ClientConnectionError("connection reset")
        client = TelegramBotClient("1:x", session=session)

        with pytest.raises(TransientError, match="getMe"):
            await client.ping()
        assert client.alive is False

    @pytest.mark.asyncio
    async def test_close_leaves_borrowed_session_open(self):
        session = MagicMock()
        session.closed = False
        client = TelegramBotClient("1:x", session=session)

        await client.close()

        session.close.assert_not_called()
        assert client.alive is False
