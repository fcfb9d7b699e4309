from __future__ import annotations

import logging
import uuid
from typing import Callable, List, Optional, Tuple

from voice_companion.models import ActivityState, Message, Role

logger = logging.getLogger(__name__)

DEFAULT_ASSISTANT_NAME = "Caro"

# Events published to subscribers
ACTIVITY = "activity"
MESSAGES = "messages"
ERROR = "error"
FLAGS = "flags"

StateListener = Callable[[str, "ConversationState"], None]


class ConversationState:
    """Messages, activity and session flags for one application session.

    The session controller is the only writer. Renderers (avatar, transcript
    view, CLI) read the properties and ``subscribe`` to change events.
    """

    def __init__(self, assistant_name: str = DEFAULT_ASSISTANT_NAME) -> None:
        self.assistant_name = assistant_name
        self._messages: List[Message] = []
        self._activity = ActivityState.IDLE
        self._is_processing = False
        self._is_session_active = False
        self._error: Optional[str] = None
        self.session_id = str(uuid.uuid4())
        self._listeners: List[StateListener] = []

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register ``listener(event, state)``; returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, event: str) -> None:
        for listener in list(self._listeners):
            listener(event, self)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------
    @property
    def messages(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def activity(self) -> ActivityState:
        return self._activity

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    @property
    def is_session_active(self) -> bool:
        return self._is_session_active

    @property
    def error(self) -> Optional[str]:
        return self._error

    def transcript(self) -> str:
        """Render the conversation as the plain-text transcript used for analysis."""
        lines = []
        for m in self._messages:
            speaker = "User" if m.role is Role.USER else self.assistant_name
            lines.append(f"{speaker}: {m.content}")
        return "\n\n".join(lines)

    # ------------------------------------------------------------------
    # Write side (session controller only)
    # ------------------------------------------------------------------
    def set_activity(self, activity: ActivityState) -> None:
        if activity is self._activity:
            return
        logger.debug("Activity %s -> %s", self._activity.value, activity.value)
        self._activity = activity
        self._emit(ACTIVITY)

    def set_flags(self, *, session_active: bool | None = None, processing: bool | None = None) -> bool:
        """Update the session flags; returns True if either changed."""
        changed = False
        if session_active is not None and session_active != self._is_session_active:
            self._is_session_active = session_active
            changed = True
        if processing is not None and processing != self._is_processing:
            self._is_processing = processing
            changed = True
        if changed:
            self._emit(FLAGS)
        return changed

    def add_message(self, role: Role, content: str) -> Message:
        message = Message(role=role, content=content)
        self._messages.append(message)
        self._emit(MESSAGES)
        return message

    def clear_messages(self) -> None:
        self._messages = []
        self._emit(MESSAGES)

    def set_error(self, error: Optional[str]) -> None:
        if error == self._error:
            return
        self._error = error
        self._emit(ERROR)

    def new_session_id(self) -> str:
        self.session_id = str(uuid.uuid4())
        return self.session_id
