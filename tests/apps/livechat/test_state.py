import pytest

from apps.livechat.exceptions import AlreadyAssigned, SessionConflict, SessionNotFound
from apps.livechat.models import SessionStatus
from apps.livechat.state import SessionEvent, transition


class TestTransitions:
    def test_start_creates_waiting_session(self):
        assert transition(None, SessionEvent.START) == SessionStatus.WAITING

    def test_assign_moves_waiting_to_active(self):
        assert transition("waiting", SessionEvent.ASSIGN) == SessionStatus.ACTIVE

    @pytest.mark.parametrize("status", ["waiting", "active"])
    def test_open_sessions_can_end(self, status):
        assert transition(status, SessionEvent.END) == SessionStatus.ENDED

    @pytest.mark.parametrize("status", ["waiting", "active"])
    @pytest.mark.parametrize("event", [SessionEvent.POST, SessionEvent.RESUME])
    def test_self_loops_keep_state(self, status, event):
        assert transition(status, event) == SessionStatus(status)


class TestRejectedTransitions:
    @pytest.mark.parametrize("status", ["waiting", "active"])
    def test_start_with_open_session_conflicts(self, status):
        with pytest.raises(SessionConflict) as exc:
            transition(status, SessionEvent.START, "s-1")
        assert exc.value.session_id == "s-1"

    def test_assign_on_active_session_is_already_assigned(self):
        with pytest.raises(AlreadyAssigned):
            transition("active", SessionEvent.ASSIGN, "s-1")

    @pytest.mark.parametrize("event", [
        SessionEvent.ASSIGN, SessionEvent.END, SessionEvent.POST, SessionEvent.RESUME,
    ])
    def test_ended_session_accepts_nothing(self, event):
        with pytest.raises(SessionNotFound):
            transition("ended", event, "s-1")

    @pytest.mark.parametrize("event", [SessionEvent.ASSIGN, SessionEvent.END, SessionEvent.POST])
    def test_events_without_session_are_not_found(self, event):
        with pytest.raises(SessionNotFound):
            transition(None, event)

    def test_ended_session_can_not_restart(self):
        # A new session is a new row; "ended" itself never goes back
        with pytest.raises(SessionNotFound):
            transition("ended", SessionEvent.START)
