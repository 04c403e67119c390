from enum import Enum


class BotState(str, Enum):
    ACTIVE = "active"
    MUTED = "muted"


VALID_TRANSITIONS = {
    BotState.ACTIVE: [BotState.MUTED],
    BotState.MUTED: [BotState.ACTIVE],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: BotState, to_state: BotState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: BotState, to_state: BotState) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: BotState, to_state: BotState) -> BotState:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def mute(current_state: BotState) -> BotState:
    """User asked the bot to stop responding."""
    return transition(current_state, BotState.MUTED)


def unmute(current_state: BotState) -> BotState:
    """User asked the bot to resume."""
    return transition(current_state, BotState.ACTIVE)


def state_of(active: bool) -> BotState:
    return BotState.ACTIVE if active else BotState.MUTED
