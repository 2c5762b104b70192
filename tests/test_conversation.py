"""Tests for the conversation FSM and the channel registration handshake."""

from __future__ import annotations

import pytest

from telecloud.conversation import (
    ConversationAction,
    ConversationContext,
    ConversationStateMachine,
    create_fsm,
)
from telecloud.conversation.constants import (
    HELP_TEXT,
    KEYBOARD,
    UNEXPECTED_FORWARD_TEXT,
    UNEXPECTED_STATE_TEXT,
    UNKNOWN_COMMAND_TEXT,
    parse_command,
)
from telecloud.upload.pool import ChannelRegistry

IDLE = "Idle"
WAITING = "WaitingForChannelForward"


@pytest.fixture
def conversation() -> ConversationStateMachine:
    return ConversationStateMachine(ChannelRegistry())


class TestFSMTransitions:
    """Legal transitions succeed and illegal ones raise."""

    def test_idle_to_waiting(self):
        fsm = create_fsm(IDLE)
        fsm.request_channel()
        assert fsm.current_state.value == WAITING

    def test_waiting_to_idle_on_register(self):
        fsm = create_fsm(WAITING)
        fsm.register_channel()
        assert fsm.current_state.value == IDLE

    def test_reset_from_either_state(self):
        for start in (IDLE, WAITING):
            fsm = create_fsm(start)
            fsm.reset()
            assert fsm.current_state.value == IDLE

    def test_illegal_register_while_idle(self):
        fsm = create_fsm(IDLE)
        with pytest.raises(Exception):
            fsm.register_channel()

    def test_illegal_request_while_waiting(self):
        fsm = create_fsm(WAITING)
        with pytest.raises(Exception):
            fsm.request_channel()


class TestHandshake:
    """Idle -> register-channel -> forwarded(channel) -> Idle."""

    def test_register_channel_42(self, conversation):
        prompt = conversation.handle_message(1, "register-channel")
        assert conversation.get_context(1).state == WAITING
        assert "forward a message" in prompt.text

        response = conversation.handle_forwarded_message(1, 42)

        assert 42 in conversation.storage_channel_ids()
        assert "42" in response.text
        assert conversation.get_context(1).state == IDLE

    def test_plain_text_while_waiting_is_rejected(self, conversation):
        conversation.handle_message(1, "register-channel")

        response = conversation.handle_message(1, "hello?")

        assert response.text.startswith("❌ Please forward a message from the channel")
        assert conversation.get_context(1).state == WAITING
        assert conversation.storage_channel_ids() == ()

    def test_forward_while_idle_registers_nothing(self, conversation):
        response = conversation.handle_forwarded_message(1, 42)
        assert response.text == UNEXPECTED_FORWARD_TEXT
        assert conversation.storage_channel_ids() == ()
        assert conversation.get_context(1).state == IDLE

    def test_registering_known_channel_again(self, conversation):
        conversation.channels.add(42)
        conversation.handle_message(1, "register-channel")

        response = conversation.handle_forwarded_message(1, 42)

        assert "already registered" in response.text
        assert conversation.storage_channel_ids() == (42,)

    def test_sessions_are_independent(self, conversation):
        conversation.handle_message(1, "register-channel")
        assert conversation.get_context(2).state == IDLE
        assert conversation.handle_message(2, "help").text == HELP_TEXT


class TestCommands:
    def test_start_offers_keyboard(self, conversation):
        response = conversation.handle_message(1, "/start")
        assert response.keyboard == KEYBOARD
        assert response.reply_markup()["keyboard"][0] == [{"text": "Add Cloud Storage Channel"}]

    def test_upload_signals_action(self, conversation):
        response = conversation.handle_message(1, "📤 Upload From Drive")
        assert response.action is ConversationAction.UPLOAD
        assert response.reply_markup() == {"remove_keyboard": True}
        assert conversation.get_context(1).state == IDLE

    def test_restore_signals_action(self, conversation):
        response = conversation.handle_message(1, "/RESTORE")
        assert response.action is ConversationAction.RESTORE

    def test_unknown_text_reprompts(self, conversation):
        response = conversation.handle_message(1, "what now")
        assert response.text == UNKNOWN_COMMAND_TEXT
        assert response.action is None
        assert response.reply_markup() is None

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("/start", "start"),
            ("START", "start"),
            ("/start@telecloud_bot", "start"),
            ("Add Cloud Storage Channel", "register-channel"),
            ("/register-channel", "register-channel"),
            ("  help ", "help"),
            ("upload please", None),
            ("", None),
        ],
    )
    def test_parse_command(self, text, expected):
        command = parse_command(text)
        assert (command.value if command else None) == expected


class TestCorruptState:
    def test_unknown_state_resets_to_idle(self, caplog):
        sessions = {7: ConversationContext(state="Bogus")}
        conversation = ConversationStateMachine(ChannelRegistry(), sessions=sessions)

        response = conversation.handle_message(7, "/start")

        assert response.text == UNEXPECTED_STATE_TEXT
        assert sessions[7].state == IDLE
        assert "unknown state 'Bogus'" in caplog.text

    def test_unknown_state_on_forward_registers_nothing(self):
        sessions = {7: ConversationContext(state="Bogus")}
        conversation = ConversationStateMachine(ChannelRegistry(), sessions=sessions)

        response = conversation.handle_forwarded_message(7, 42)

        assert response.text == UNEXPECTED_STATE_TEXT
        assert conversation.storage_channel_ids() == ()
