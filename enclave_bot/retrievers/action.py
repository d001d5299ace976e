"""Action layer: proposes recording a vote when the sender owes a poll answer."""
import asyncio
from typing import List

from ..schemas.session_models import ActionProposal, RetrievalItem
from .base import Retriever

PENDING_POLL_SCORE = 0.8


class ActionRetriever(Retriever):
    name = "action"

    def __init__(self, repository):
        self.repository = repository

    async def retrieve(self, query: str, sender: str) -> List[RetrievalItem]:
        pending = await asyncio.to_thread(self.repository.find_pending_poll, sender)
        if not pending:
            return []
        return [RetrievalItem(
            layer="action",
            id=f"poll-{pending['poll_id']}",
            snippet=f"Pending poll: {pending['question']}",
            score=PENDING_POLL_SCORE,
            proposal=ActionProposal(
                kind="record_vote",
                preview_text="Record poll vote",
                payload={"poll_id": pending["poll_id"], "answer": query.strip()},
            ),
        )]
