from .buffers import TurnAudio
from .state import ConversationState

__all__ = ["TurnAudio", "ConversationState"]
