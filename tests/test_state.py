from voice_companion.core.state import ACTIVITY, FLAGS, MESSAGES, ConversationState
from voice_companion.models import ActivityState, Role


def test_transcript_uses_speaker_labels():
    state = ConversationState()
    state.add_message(Role.ASSISTANT, "How are you?")
    state.add_message(Role.USER, "I feel fine")
    assert state.transcript() == "Caro: How are you?\n\nUser: I feel fine"


def test_transcript_empty():
    assert ConversationState().transcript() == ""


def test_messages_are_a_snapshot():
    state = ConversationState()
    before = state.messages
    state.add_message(Role.USER, "hello")
    assert before == ()
    assert len(state.messages) == 1
    assert state.messages[0].id


def test_subscribers_get_events_until_unsubscribed():
    state = ConversationState()
    events = []
    unsubscribe = state.subscribe(lambda event, s: events.append(event))

    state.set_activity(ActivityState.THINKING)
    state.set_activity(ActivityState.THINKING)
    state.add_message(Role.USER, "hi")
    state.set_flags(processing=True)
    unsubscribe()
    state.set_activity(ActivityState.IDLE)

    assert events == [ACTIVITY, MESSAGES, FLAGS]


def test_set_flags_reports_changes():
    state = ConversationState()
    assert state.set_flags(session_active=True) is True
    assert state.set_flags(session_active=True) is False
    assert state.set_flags(session_active=True, processing=True) is True
    assert state.is_session_active and state.is_processing


def test_new_session_id():
    state = ConversationState()
    old = state.session_id
    assert state.new_session_id() != old
