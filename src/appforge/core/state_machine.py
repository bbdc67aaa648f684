from __future__ import annotations

from enum import Enum
from typing import Dict, List


class TurnState(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FALLBACK = "fallback"


# A turn may fail before the first fragment arrives, hence PENDING -> FALLBACK.
TURN_TRANSITIONS: Dict[TurnState, List[TurnState]] = {
    TurnState.PENDING: [TurnState.STREAMING, TurnState.COMPLETED, TurnState.FALLBACK],
    TurnState.STREAMING: [TurnState.COMPLETED, TurnState.FALLBACK],
    TurnState.COMPLETED: [],
    TurnState.FALLBACK: [],
}


def is_valid_transition(current: TurnState, target: TurnState) -> bool:
    return target in TURN_TRANSITIONS.get(current, [])


def is_terminal(state: TurnState) -> bool:
    return not TURN_TRANSITIONS.get(state)


class TurnStateMachine:
    """Tracks one conversational turn. Transitions are one-way."""

    def __init__(self) -> None:
        self.state = TurnState.PENDING
        self.history: List[TurnState] = [TurnState.PENDING]

    def advance(self, target: TurnState) -> TurnState:
        if self.state == target:
            return self.state
        if not is_valid_transition(self.state, target):
            raise ValueError(f"Illegal turn transition {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)
        return self.state

    @property
    def finished(self) -> bool:
        return is_terminal(self.state)
