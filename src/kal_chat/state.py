"""Turn state machine and lock-protected transitions."""

from __future__ import annotations

import asyncio
from enum import Enum


class TurnState(str, Enum):
    """Lifecycle of the pending turn in one session."""

    IDLE = "IDLE"
    COMPOSING = "COMPOSING"
    SENDING = "SENDING"


class StateManager:
    """Manage state transitions with async lock semantics."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._state = TurnState.IDLE

    @property
    def state(self) -> TurnState:
        """Current state without taking the lock, for synchronous readers."""
        return self._state

    async def transition_to(self, new_state: TurnState) -> TurnState:
        """Transition to a new state and return it."""
        async with self._lock:
            self._state = new_state
            return self._state

    async def transition_if(
        self,
        expected_state: TurnState | set[TurnState],
        new_state: TurnState,
    ) -> bool:
        """Transition only when the current state matches the expected state(s)."""
        allowed = (
            expected_state if isinstance(expected_state, set) else {expected_state}
        )
        async with self._lock:
            if self._state not in allowed:
                return False
            self._state = new_state
            return True
