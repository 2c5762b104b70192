"""Channel registration handshake as a finite state machine.

Each session gets an ephemeral FSM instance, initialised at the session's
stored state value, used to validate a transition before the new value is
written back to the session table. The FSM performs no I/O and has no
callbacks.
"""

from __future__ import annotations

from enum import Enum

from statemachine import State, StateMachine


class ConversationState(str, Enum):
    IDLE = "Idle"
    WAITING_FOR_CHANNEL_FORWARD = "WaitingForChannelForward"


class ConversationSM(StateMachine):
    """Two-state handshake for registering a storage channel.

    States:
        idle -- Default; commands are accepted.
        waiting_for_channel_forward -- A forwarded channel message is expected.
    """

    idle = State("Idle", initial=True, value=ConversationState.IDLE.value)
    waiting_for_channel_forward = State(
        "WaitingForChannelForward",
        value=ConversationState.WAITING_FOR_CHANNEL_FORWARD.value,
    )

    request_channel = idle.to(waiting_for_channel_forward)
    register_channel = waiting_for_channel_forward.to(idle)
    reset = waiting_for_channel_forward.to(idle) | idle.to(idle)


def is_known_state(value: object) -> bool:
    return value in {state.value for state in ConversationState}


def create_fsm(current_state: str) -> ConversationSM:
    """Create an FSM instance at the given state.

    Args:
        current_state: ``"Idle"`` or ``"WaitingForChannelForward"``.

    Returns:
        A ConversationSM positioned at *current_state*.
    """
    return ConversationSM(start_value=current_state)
