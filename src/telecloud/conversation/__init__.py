"""Operator chat conversation: command menu and channel registration."""

from telecloud.conversation.fsm import ConversationSM, ConversationState, create_fsm
from telecloud.conversation.service import (
    BotResponse,
    ConversationAction,
    ConversationContext,
    ConversationStateMachine,
)

__all__ = [
    "BotResponse",
    "ConversationAction",
    "ConversationContext",
    "ConversationSM",
    "ConversationState",
    "ConversationStateMachine",
    "create_fsm",
]
