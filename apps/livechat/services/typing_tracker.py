import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple


@dataclass
class TypingState:
    is_typing: bool
    expires_at: float


class TypingTracker:
    """Per-(session, user) "is typing" state with a server-side staleness ceiling.

    The last signal wins until a newer signal, a message from the same user,
    or the ceiling supersedes it. Nothing here is persisted.
    """

    def __init__(self, timeout_seconds: float = 5.0, clock=time.monotonic):
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._states: Dict[Tuple[str, str], TypingState] = {}
        self._last_signal: Dict[str, float] = {}

    def set_typing(self, session_id: str, user_id: str, is_typing: bool) -> bool:
        """Record a signal. Returns True if the visible state changed."""
        now = self._clock()
        self._last_signal[session_id] = now
        key = (session_id, user_id)
        was_typing = self.is_typing(session_id, user_id)
        if is_typing:
            self._states[key] = TypingState(True, now + self.timeout_seconds)
        else:
            self._states.pop(key, None)
        return was_typing != is_typing or is_typing

    def clear(self, session_id: str, user_id: str) -> bool:
        """Drop a user's typing state; True if they were shown as typing."""
        was_typing = self.is_typing(session_id, user_id)
        self._states.pop((session_id, user_id), None)
        return was_typing

    def clear_session(self, session_id: str):
        for key in [k for k in self._states if k[0] == session_id]:
            del self._states[key]
        self._last_signal.pop(session_id, None)

    def is_typing(self, session_id: str, user_id: str) -> bool:
        state = self._states.get((session_id, user_id))
        return state is not None and state.is_typing and state.expires_at > self._clock()

    def pop_expired(self) -> List[Tuple[str, str]]:
        """Remove and return every (session_id, user_id) whose signal went stale."""
        now = self._clock()
        expired = [key for key, state in self._states.items() if state.expires_at <= now]
        for key in expired:
            del self._states[key]
        return expired

    def last_signal_at(self, session_id: str) -> Optional[float]:
        return self._last_signal.get(session_id)

    def __len__(self) -> int:
        return len(self._states)
