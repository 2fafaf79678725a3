# meet/calls/state.py
"""
Per-peer call lifecycle.

    Connecting -> Connected -> Disconnected -> Connected ...
         \            \             \
          `------------`-------------`--> Ended (terminal)

Connecting may also drop straight to Disconnected (negotiation failure) or
Ended (hang-up before media flowed). Going back from Disconnected to
Connected requires the room to still be active; otherwise the machine is
forced to Ended. Every event received in Ended is ignored.
"""
import enum
import logging
import time
from typing import Callable, List, Optional, Tuple

from meet.common.exceptions import InvalidTransition, MeetError

logger = logging.getLogger(__name__)


class CallState(str, enum.Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ENDED = "ended"


ALLOWED_TRANSITIONS = {
    CallState.CONNECTING: {CallState.CONNECTED, CallState.DISCONNECTED, CallState.ENDED},
    CallState.CONNECTED: {CallState.DISCONNECTED, CallState.ENDED},
    CallState.DISCONNECTED: {CallState.CONNECTED, CallState.ENDED},
    CallState.ENDED: set(),
}

Listener = Callable[[CallState, CallState, str], None]


def format_duration(seconds: float) -> str:
    seconds = int(seconds)
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


class CallStateMachine:
    def __init__(
        self,
        room_id,
        user_id,
        *,
        room_active: Optional[Callable[[], bool]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.room_id = room_id
        self.user_id = user_id
        self.state = CallState.CONNECTING
        self.failure_code: Optional[str] = None
        self.history: List[Tuple[CallState, str]] = [(CallState.CONNECTING, "call started")]
        self._room_active = room_active or (lambda: True)
        self._clock = clock
        self._listeners: List[Listener] = []
        self._connected_since: Optional[float] = None
        self._connected_total = 0.0
        self.ever_connected = False

    def __repr__(self):
        return f"<CallStateMachine room={self.room_id} user={self.user_id} {self.state.value}>"

    @property
    def is_ended(self) -> bool:
        return self.state is CallState.ENDED

    @property
    def duration_sec(self) -> float:
        """Time spent in Connected so far. Display only."""
        total = self._connected_total
        if self._connected_since is not None:
            total += self._clock() - self._connected_since
        return total

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def transition(self, new_state: CallState, reason: str = "") -> bool:
        if self.state is CallState.ENDED:
            return False
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.value} -> {new_state.value}")

        old_state = self.state
        now = self._clock()
        if old_state is CallState.CONNECTED and self._connected_since is not None:
            self._connected_total += now - self._connected_since
            self._connected_since = None
        if new_state is CallState.CONNECTED:
            self._connected_since = now
            self.ever_connected = True

        self.state = new_state
        self.history.append((new_state, reason))
        logger.info(
            "call state room=%s user=%s %s -> %s (%s)",
            self.room_id,
            self.user_id,
            old_state.value,
            new_state.value,
            reason,
        )
        for listener in list(self._listeners):
            listener(old_state, new_state, reason)
        return True

    # ---- events ----

    def mark_connected(self, reason: str = "peer connected") -> bool:
        if self.state in (CallState.CONNECTED, CallState.ENDED):
            return False
        if self.state is CallState.DISCONNECTED and not self._room_active():
            return self.end("room inactive")
        return self.transition(CallState.CONNECTED, reason)

    def mark_disconnected(self, reason: str = "connection lost") -> bool:
        if self.state in (CallState.DISCONNECTED, CallState.ENDED):
            return False
        return self.transition(CallState.DISCONNECTED, reason)

    def end(self, reason: str = "hung up") -> bool:
        return self.transition(CallState.ENDED, reason)

    def room_closed(self) -> bool:
        return self.end("room ended")

    def fail(self, error: MeetError) -> bool:
        """Fatal error for this call attempt: Disconnected, then Ended."""
        if self.is_ended:
            return False
        self.failure_code = error.code
        self.mark_disconnected(error.message)
        return self.end(error.code)
