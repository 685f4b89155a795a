from enum import Enum


class DispatchState(str, Enum):
    RECEIVED = "received"
    CHANNEL_VERIFIED = "channel_verified"
    DEBITED = "debited"
    SENT = "sent"
    PERSISTED = "persisted"
    SEND_FAILED = "send_failed"
    CREDITED = "credited"
    REJECTED_INVALID_INPUT = "rejected_invalid_input"
    REJECTED_UNAUTHORIZED = "rejected_unauthorized"
    REJECTED_INSUFFICIENT_FUNDS = "rejected_insufficient_funds"


VALID_TRANSITIONS = {
    DispatchState.RECEIVED: [
        DispatchState.CHANNEL_VERIFIED,
        DispatchState.REJECTED_INVALID_INPUT,
        DispatchState.REJECTED_UNAUTHORIZED,
    ],
    DispatchState.CHANNEL_VERIFIED: [DispatchState.DEBITED, DispatchState.REJECTED_INSUFFICIENT_FUNDS],
    DispatchState.DEBITED: [DispatchState.SENT, DispatchState.SEND_FAILED],
    DispatchState.SENT: [DispatchState.PERSISTED],
    DispatchState.SEND_FAILED: [DispatchState.CREDITED],
}

TERMINAL_STATES = frozenset(
    {
        DispatchState.PERSISTED,
        DispatchState.CREDITED,
        DispatchState.REJECTED_INVALID_INPUT,
        DispatchState.REJECTED_UNAUTHORIZED,
        DispatchState.REJECTED_INSUFFICIENT_FUNDS,
    }
)


class InvalidTransitionError(Exception):
    def __init__(self, from_state: DispatchState, to_state: DispatchState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: DispatchState, to_state: DispatchState) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: DispatchState, to_state: DispatchState) -> DispatchState:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def is_terminal(state: DispatchState) -> bool:
    return state in TERMINAL_STATES
