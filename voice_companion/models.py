from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal

from pydantic import BaseModel, Field


class ActivityState(str, Enum):
    """What the assistant is doing right now; drives the avatar."""

    IDLE = "idle"
    LISTENING = "listening"
    THINKING = "thinking"
    SPEAKING = "speaking"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    """One line of the transcript. Immutable once created."""

    role: Role
    content: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_chat(self) -> dict:
        """Shape sent to the backend as prior context."""
        return {"role": self.role.value, "content": self.content}


# -----------------------------------------------------------------------------
# Wire models
# -----------------------------------------------------------------------------


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ReplyHeader(BaseModel):
    """JSON header line of a streamed response."""

    text: str | None = None
    transcript: str | None = None


class DomainAssessment(BaseModel):
    score: int = Field(ge=1, le=10)
    observations: List[str] = Field(default_factory=list)
    concerns: List[str] = Field(default_factory=list)


class AssessmentReport(BaseModel):
    memory: DomainAssessment
    language: DomainAssessment
    attention: DomainAssessment
    orientation: DomainAssessment
    executiveFunction: DomainAssessment
    overallSeverity: Literal["normal", "mild", "moderate", "significant"]
    summary: str
    recommendations: List[str] = Field(default_factory=list)


class AnalyzeRequest(BaseModel):
    transcript: str


class AnalyzeResponse(BaseModel):
    success: bool
    analysis: AssessmentReport | None = None
    error: str | None = None
