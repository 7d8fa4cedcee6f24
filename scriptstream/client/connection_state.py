"""
MODULE OVERVIEW:
The connection lifecycle of the generation socket as an explicit state machine.

WHAT IS HAPPENING HERE:
Instead of a handful of booleans and a free-floating retry counter, the session
owns one ConnectionStateMachine. It holds the current ConnectionState and the
reconnect attempt counter, and refuses any change not listed in TRANSITIONS.
Notably CONNECTED can never jump straight back to CONNECTING: a dropped socket
always passes through RECONNECTING with a recorded reason.
"""
from loguru import logger

from scriptstream.shared.errors import InvalidTransitionError
from scriptstream.shared.models import ConnectionState

S = ConnectionState

TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    S.DISCONNECTED: frozenset({S.CONNECTING}),
    S.CONNECTING: frozenset({S.CONNECTED, S.RECONNECTING, S.DISCONNECTED}),
    S.CONNECTED: frozenset({S.RECONNECTING, S.DISCONNECTED}),
    S.RECONNECTING: frozenset({S.CONNECTING, S.FAILED, S.DISCONNECTED}),
    S.FAILED: frozenset({S.DISCONNECTED}),
}


class ConnectionStateMachine:
    def __init__(self, max_retries: int, base_delay_ms: int, client_id: str = "unknown"):
        self.state = S.DISCONNECTED
        self.attempt = 0
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.client_id = client_id
        self.last_reason: str | None = None

    def can_transition(self, target: ConnectionState) -> bool:
        return target in TRANSITIONS[self.state]

    def transition(self, target: ConnectionState, reason: str = "") -> ConnectionState:
        if not self.can_transition(target):
            raise InvalidTransitionError(self.state.value, target.value)
        previous = self.state
        self.state = target
        self.last_reason = reason or None
        if target is S.CONNECTED:
            self.attempt = 0
        logger.info(
            f"client_id={self.client_id} protocol=websocket event=state "
            f"from={previous.value} to={target.value} reason='{reason}'"
        )
        return previous

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_retries

    def next_delay(self) -> float:
        """Backoff in seconds for the upcoming attempt, then counts that attempt."""
        delay = self.base_delay_ms * (2 ** self.attempt) / 1000.0
        self.attempt += 1
        return delay
