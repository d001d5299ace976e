"""Recent-conversation layer, scored by recency over the last day."""
from datetime import datetime
from typing import List, Optional

from ..schemas.session_models import RetrievalItem, utcnow
from .base import Retriever

DAY_SECONDS = 24 * 60 * 60


class ConversationRetriever(Retriever):
    name = "convo"

    def __init__(self, history_log, limit: int = 5, clock=utcnow):
        self.history = history_log
        self.limit = limit
        self.clock = clock

    def _recency(self, created_at: datetime, now: Optional[datetime] = None) -> float:
        age = ((now or self.clock()) - created_at).total_seconds()
        return max(0.0, min(1.0, 1 - age / DAY_SECONDS))

    async def retrieve(self, query: str, sender: str) -> List[RetrievalItem]:
        entries = await self.history.recent(sender, self.limit)
        now = self.clock()
        return [
            RetrievalItem(
                layer="convo",
                id=entry.id,
                snippet=f"User: {entry.user_message}\nBot: {entry.bot_response}",
                score=self._recency(entry.created_at, now),
            )
            for entry in reversed(entries)
        ]
