"""Relational queries for members, announcements and polls.

Everything here is blocking SQLAlchemy; async callers go through
``asyncio.to_thread``.
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select

from .models import Announcement, Member, Poll, PollResponse, ResponseStatus


def resolve_answer(options: Sequence[str], text: str) -> str:
    """Map a reply like '1' or 'yes' onto the poll's option label."""
    t = (text or "").strip().rstrip(".!")
    if t.isdigit():
        idx = int(t) - 1
        if 0 <= idx < len(options):
            return options[idx]
    for opt in options:
        if opt.lower() == t.lower():
            return opt
    if t.lower() in ("y", "yep", "yeah") and "Yes" in options:
        return "Yes"
    if t.lower() in ("n", "nope", "nah") and "No" in options:
        return "No"
    return t


class Repository:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def upsert_member(self, phone: str, name: Optional[str] = None, is_admin: bool = False) -> Member:
        with self.session_factory() as db:
            member = db.execute(select(Member).where(Member.phone_number == phone)).scalar_one_or_none()
            if member is None:
                member = Member(phone_number=phone, name=name, is_admin=is_admin, opted_in=True)
                db.add(member)
            else:
                if name:
                    member.name = name
                member.is_admin = member.is_admin or is_admin
            db.commit()
            db.refresh(member)
            return member

    def set_opt_in(self, phone: str, opted_in: bool) -> Member:
        """Record a STOP/START reply; unknown numbers are registered first."""
        with self.session_factory() as db:
            member = db.execute(select(Member).where(Member.phone_number == phone)).scalar_one_or_none()
            if member is None:
                member = Member(phone_number=phone, opted_in=opted_in)
                db.add(member)
            else:
                member.opted_in = opted_in
            db.commit()
            db.refresh(member)
            return member

    def is_admin(self, phone: str) -> bool:
        with self.session_factory() as db:
            flag = db.execute(select(Member.is_admin).where(Member.phone_number == phone)).scalar_one_or_none()
        return bool(flag)

    def list_recipients(self, exclude: Optional[str] = None) -> List[str]:
        """Phone numbers of opted-in members, optionally without the sender."""
        with self.session_factory() as db:
            rows = db.execute(
                select(Member.phone_number).where(Member.opted_in.is_(True)).order_by(Member.id)
            ).scalars().all()
        return [p for p in rows if p != exclude]

    def record_announcement(self, draft_id: str, sender: str, body: str, recipient_count: int) -> int:
        with self.session_factory() as db:
            row = Announcement(draft_id=draft_id, sender=sender, body=body, recipient_count=recipient_count)
            db.add(row)
            db.commit()
            return row.id

    def record_poll(self, draft_id: str, sender: str, question: str, options: Sequence[str],
                    recipients: Sequence[str]) -> int:
        """Store the poll and a pending response row per recipient."""
        with self.session_factory() as db:
            poll = Poll(draft_id=draft_id, sender=sender, question=question, options="\n".join(options))
            db.add(poll)
            db.flush()
            for phone in recipients:
                db.add(PollResponse(poll_id=poll.id, phone_number=phone, status=ResponseStatus.pending.value))
            db.commit()
            return poll.id

    def find_pending_poll(self, phone: str) -> Optional[Dict]:
        """Most recent poll still waiting on this member's answer."""
        with self.session_factory() as db:
            row = db.execute(
                select(PollResponse, Poll)
                .join(Poll, PollResponse.poll_id == Poll.id)
                .where(PollResponse.phone_number == phone)
                .where(PollResponse.status == ResponseStatus.pending.value)
                .order_by(Poll.id.desc())
                .limit(1)
            ).first()
            if row is None:
                return None
            _, poll = row
            return {"poll_id": poll.id, "question": poll.question, "options": poll.option_list}

    def record_vote(self, poll_id: int, phone: str, answer_text: str) -> Optional[str]:
        """Store the answer; returns the resolved option or None when nothing was pending."""
        with self.session_factory() as db:
            response = db.execute(
                select(PollResponse)
                .where(PollResponse.poll_id == poll_id)
                .where(PollResponse.phone_number == phone)
            ).scalar_one_or_none()
            if response is None or response.status != ResponseStatus.pending.value:
                return None
            answer = resolve_answer(response.poll.option_list, answer_text)
            response.answer = answer
            response.status = ResponseStatus.answered.value
            response.responded_at = datetime.now(timezone.utc)
            db.commit()
            return answer
