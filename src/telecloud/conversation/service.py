"""Per-session conversation logic for the operator chat.

Pure logic: every handler returns a :class:`BotResponse` and the caller is
responsible for sending it and for starting any work the response signals
through :attr:`BotResponse.action`. The only side effects are updates to the
injected session table and channel registry.
"""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from statemachine.exceptions import TransitionNotAllowed

from telecloud.conversation.constants import (
    CHANNEL_ALREADY_REGISTERED_TEXT,
    CHANNEL_REGISTERED_TEXT,
    FORWARD_REQUIRED_TEXT,
    HELP_TEXT,
    KEYBOARD,
    REGISTER_PROMPT_TEXT,
    RESTORE_ACK_TEXT,
    UNEXPECTED_FORWARD_TEXT,
    UNEXPECTED_STATE_TEXT,
    UNKNOWN_COMMAND_TEXT,
    UPLOAD_ACK_TEXT,
    WELCOME_TEXT,
    Command,
    parse_command,
)
from telecloud.conversation.fsm import ConversationState, create_fsm, is_known_state
from telecloud.models import ChannelId
from telecloud.upload.exceptions import UnexpectedConversationState
from telecloud.upload.pool import ChannelRegistry

logger = logging.getLogger(__name__)


class ConversationAction(str, Enum):
    """Work the caller should start after sending the response."""

    UPLOAD = "upload"
    RESTORE = "restore"


@dataclass
class ConversationContext:
    state: str = ConversationState.IDLE.value


@dataclass
class BotResponse:
    """Reply to an operator message plus an optional keyboard hint."""

    text: str
    keyboard: list[list[str]] | None = None
    remove_keyboard: bool = False
    action: ConversationAction | None = None
    parse_mode: str | None = None

    def reply_markup(self) -> dict[str, Any] | None:
        """Telegram ``reply_markup`` for this response, if any."""
        if self.keyboard is not None:
            return {
                "keyboard": [[{"text": label} for label in row] for row in self.keyboard],
                "resize_keyboard": True,
                "one_time_keyboard": True,
            }
        if self.remove_keyboard:
            return {"remove_keyboard": True}
        return None


class ConversationStateMachine:
    """Session table plus the channel registration handshake.

    Usage::

        conversation = ConversationStateMachine(ChannelRegistry())
        conversation.handle_message(chat_id, "register-channel")
        response = conversation.handle_forwarded_message(chat_id, -100123)

    Args:
        channels: Registry that confirmed channel ids are added to.
        sessions: Session id -> context table; a new dict when omitted.
    """

    def __init__(
        self,
        channels: ChannelRegistry | None = None,
        sessions: MutableMapping[int, ConversationContext] | None = None,
    ) -> None:
        self.channels = channels if channels is not None else ChannelRegistry()
        self._sessions: MutableMapping[int, ConversationContext] = (
            sessions if sessions is not None else {}
        )

    # ------------------------------------------------------------------
    # Session table
    # ------------------------------------------------------------------

    def get_context(self, session_id: int) -> ConversationContext:
        """Return the session's context, creating an Idle one on first contact."""
        context = self._sessions.get(session_id)
        if context is None:
            context = ConversationContext()
            self._sessions[session_id] = context
        return context

    def reset_context(self, session_id: int) -> None:
        self._sessions[session_id] = ConversationContext()

    def storage_channel_ids(self) -> tuple[ChannelId, ...]:
        return self.channels.snapshot()

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def handle_message(self, session_id: int, text: str | None) -> BotResponse:
        """Respond to a plain text message."""
        context = self.get_context(session_id)
        if not is_known_state(context.state):
            return self._recover(session_id, context.state)

        if context.state == ConversationState.WAITING_FOR_CHANNEL_FORWARD.value:
            return BotResponse(FORWARD_REQUIRED_TEXT)

        command = parse_command(text)
        if command is Command.START:
            return BotResponse(WELCOME_TEXT, keyboard=KEYBOARD)

        if command is Command.REGISTER_CHANNEL:
            fsm = create_fsm(context.state)
            fsm.request_channel()
            context.state = fsm.current_state.value
            return BotResponse(REGISTER_PROMPT_TEXT, remove_keyboard=True)

        if command is Command.UPLOAD:
            return BotResponse(
                UPLOAD_ACK_TEXT, remove_keyboard=True, action=ConversationAction.UPLOAD
            )

        if command is Command.RESTORE:
            return BotResponse(
                RESTORE_ACK_TEXT, remove_keyboard=True, action=ConversationAction.RESTORE
            )

        if command is Command.HELP:
            return BotResponse(HELP_TEXT, remove_keyboard=True)

        return BotResponse(UNKNOWN_COMMAND_TEXT)

    def handle_forwarded_message(self, session_id: int, channel_id: ChannelId) -> BotResponse:
        """Respond to a message forwarded from a channel.

        Registers *channel_id* only when the session is waiting for it.
        """
        context = self.get_context(session_id)
        if not is_known_state(context.state):
            return self._recover(session_id, context.state)

        fsm = create_fsm(context.state)
        try:
            fsm.register_channel()
        except TransitionNotAllowed:
            logger.debug("Session %s forwarded a message while idle", session_id)
            return BotResponse(UNEXPECTED_FORWARD_TEXT)

        is_new = self.channels.add(channel_id)
        context.state = fsm.current_state.value
        template = CHANNEL_REGISTERED_TEXT if is_new else CHANNEL_ALREADY_REGISTERED_TEXT
        return BotResponse(
            template.format(channel_id=channel_id),
            remove_keyboard=True,
            parse_mode="Markdown",
        )

    def _recover(self, session_id: int, bad_state: Any) -> BotResponse:
        error = UnexpectedConversationState(
            f"session {session_id} had unknown state {bad_state!r}"
        )
        logger.warning("%s; resetting to %s", error, ConversationState.IDLE.value)
        self.reset_context(session_id)
        return BotResponse(UNEXPECTED_STATE_TEXT)
