"""Pydantic models for the SMS session engine.

- Use str Enums for modes and kinds so persisted JSON stays readable.
- Decision is a tagged union on ``type`` so callers can't mix up answer and
  clarify payloads.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Mode(str, Enum):
    idle = "idle"
    drafting = "drafting"
    editing = "editing"
    confirming = "confirming"
    sending = "sending"


ACTIVE_MODES = (Mode.drafting, Mode.editing, Mode.confirming)


class DraftKind(str, Enum):
    announcement = "announcement"
    poll = "poll"


class IntentKind(str, Enum):
    announcement = "announcement"
    poll = "poll"
    query = "query"
    smalltalk = "smalltalk"
    system = "system"


class QueryKind(str, Enum):
    content_query = "content_query"
    enclave_help = "enclave_help"
    action_request = "action_request"
    smalltalk = "smalltalk"
    abusive = "abusive"


SLOT_FIELDS = ("title", "body", "time", "date", "location", "audience", "question", "options")


class DraftSlots(BaseModel):
    title: Optional[str] = None
    body: Optional[str] = None
    time: Optional[str] = None  # HH:MM:SS, 24h
    date: Optional[str] = None
    location: Optional[str] = None
    audience: Optional[str] = None
    question: Optional[str] = None
    options: Optional[List[str]] = None


class DraftConstraints(BaseModel):
    verbatim_only: bool = False
    must_include: List[str] = Field(default_factory=list)
    must_not_change: List[str] = Field(default_factory=list)


class Draft(BaseModel):
    id: str
    kind: DraftKind
    verbatim_text: Optional[str] = None
    slots: DraftSlots = Field(default_factory=DraftSlots)
    constraints: DraftConstraints = Field(default_factory=DraftConstraints)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SessionState(BaseModel):
    mode: Mode = Mode.idle
    draft: Optional[Draft] = None
    history_window_ids: List[str] = Field(default_factory=list)
    last_updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0


class Intent(BaseModel):
    kind: IntentKind
    mode_transition: Optional[Mode] = None
    fields_changed: Dict[str, Any] = Field(default_factory=dict)
    fields_locked: List[str] = Field(default_factory=list)
    must_include: List[str] = Field(default_factory=list)
    quoted_text: Optional[str] = None
    is_control_command: bool = False


class VerbatimConstraint(BaseModel):
    is_verbatim: bool = False
    text: Optional[str] = None
    provenance: Literal["quoted", "explicit_keyword", "colon_pattern", "none"] = "none"


class ActionProposal(BaseModel):
    kind: Literal["record_vote"]
    preview_text: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class RetrievalItem(BaseModel):
    layer: Literal["content", "convo", "enclave", "action"]
    id: str
    title: Optional[str] = None
    snippet: str = ""
    score: float = 0.0
    proposal: Optional[ActionProposal] = None


class Source(BaseModel):
    layer: str
    title: Optional[str] = None


class ClarifyDecision(BaseModel):
    type: Literal["clarify"] = "clarify"
    message: str
    confidence: float


class AnswerDecision(BaseModel):
    type: Literal["answer"] = "answer"
    message: str
    confidence: float
    sources: List[Source] = Field(default_factory=list)


class ExecuteActionDecision(BaseModel):
    type: Literal["execute_action"] = "execute_action"
    action: ActionProposal
    confidence: float


Decision = Annotated[
    Union[ClarifyDecision, AnswerDecision, ExecuteActionDecision],
    Field(discriminator="type"),
]


class HistoryEntry(BaseModel):
    id: str
    user_message: str
    bot_response: str
    created_at: datetime = Field(default_factory=utcnow)
