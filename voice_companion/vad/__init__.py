from .turn_detector import CompletedTurn, DetectorState, Turn, TurnDetector

__all__ = ["CompletedTurn", "DetectorState", "Turn", "TurnDetector"]
