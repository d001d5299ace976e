"""Pydantic models for API I/O and the turn contract."""
from pydantic import BaseModel, Field
from typing import List, Optional

from .session_models import Mode, SessionState


class TurnResult(BaseModel):
    messages: List[str] = Field(default_factory=list)
    mode: Mode = Mode.idle


class TurnRequest(BaseModel):
    sender: str
    text: str


class TurnResponse(BaseModel):
    sender: str
    messages: List[str]
    mode: Mode


class SessionView(BaseModel):
    sender: str
    state: Optional[SessionState] = None
