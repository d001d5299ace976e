from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base
import enum


class ResponseStatus(str, enum.Enum):
    pending = "pending"
    answered = "answered"


class Member(Base):
    __tablename__ = "members"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=True)
    phone_number = Column(String, unique=True, index=True, nullable=False)  # E.164
    opted_in = Column(Boolean, nullable=False, default=True)
    is_admin = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Announcement(Base):
    __tablename__ = "announcements"

    id = Column(Integer, primary_key=True, index=True)
    draft_id = Column(String, index=True, nullable=False)
    sender = Column(String, nullable=False)
    body = Column(Text, nullable=False)
    recipient_count = Column(Integer, nullable=False, default=0)
    sent_at = Column(DateTime(timezone=True), server_default=func.now())


class Poll(Base):
    __tablename__ = "polls"

    id = Column(Integer, primary_key=True, index=True)
    draft_id = Column(String, index=True, nullable=False)
    sender = Column(String, nullable=False)
    question = Column(Text, nullable=False)
    options = Column(Text, nullable=False)  # newline-separated
    sent_at = Column(DateTime(timezone=True), server_default=func.now())

    responses = relationship("PollResponse", back_populates="poll")

    @property
    def option_list(self):
        return [o for o in self.options.split("\n") if o]


class PollResponse(Base):
    __tablename__ = "poll_responses"
    __table_args__ = (UniqueConstraint("poll_id", "phone_number"),)

    id = Column(Integer, primary_key=True, index=True)
    poll_id = Column(Integer, ForeignKey("polls.id"), nullable=False)
    phone_number = Column(String, index=True, nullable=False)
    status = Column(String, nullable=False, default=ResponseStatus.pending.value)
    answer = Column(String, nullable=True)
    responded_at = Column(DateTime(timezone=True), nullable=True)

    poll = relationship("Poll", back_populates="responses")
